"""
Governance Engine - HTTP Server

FastAPI server exposing one-shot verification and the full
verify-and-correct loop over HTTP.
"""

import logging
import os
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from governance_engine import (
    Artifact,
    BaseGenerator,
    ClaudeGenerator,
    ConfigError,
    GovernanceOrchestrator,
    HttpGenerator,
    MockGenerator,
    RunConfig,
    __version__,
    explain_run,
    get_default_governors,
)

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def build_generator(kind: Optional[str] = None) -> BaseGenerator:
    """Generator selected by GOV_GENERATOR (claude, http or mock)"""
    kind = (kind or os.getenv("GOV_GENERATOR", "claude")).lower()
    if kind == "mock":
        return MockGenerator()
    if kind == "http":
        return HttpGenerator()
    if kind == "claude":
        return ClaudeGenerator()
    raise ConfigError(f"Unknown generator: {kind}")


# Create FastAPI app
app = FastAPI(
    title="Governance Engine",
    description="Verification orchestration for generated source code",
    version=__version__,
)

orchestrator = GovernanceOrchestrator(
    governors=get_default_governors(),
    generator=build_generator(),
    config=RunConfig.from_env(),
)


# --- Request/Response Models ---


class VerifyRequest(BaseModel):
    """Request to verify one artifact"""

    text: str = Field(..., description="Source text to verify")
    score_threshold: Optional[float] = Field(
        default=None, description="Override the configured score threshold"
    )


class VerifyResponse(BaseModel):
    """Compliance record for the submitted text"""

    artifact_fingerprint: str
    score: float
    passed: bool
    threshold: float
    failing_governors: List[str]
    per_governor_results: Dict[str, Any]


class RunRequest(BaseModel):
    """Request to run the verify-and-correct loop"""

    prompt: str = Field(..., description="Task prompt for the generator")
    context: Dict[str, Any] = Field(default_factory=dict, description="Generation context")
    initial_artifact: Optional[str] = Field(
        default=None, description="Source text verified as the first candidate"
    )
    config: Dict[str, Any] = Field(
        default_factory=dict, description="RunConfig overrides for this run"
    )


class RunResponse(BaseModel):
    """Run result and its explanation"""

    run_id: str
    accepted: bool
    terminal_state: Dict[str, Any]
    iterations: int
    final_artifact: Optional[str]
    result: Dict[str, Any]
    explanation: Dict[str, Any]


# --- Endpoints ---


@app.get("/health")
def health() -> Dict[str, Any]:
    """Health check endpoint"""
    return {
        "status": "ok",
        "service": "governance-engine",
        "version": __version__,
        "governors": [g.name for g in orchestrator.governors],
    }


@app.post("/verify", response_model=VerifyResponse)
async def verify(request: VerifyRequest) -> VerifyResponse:
    """Verify one artifact with every registered governor"""
    config = orchestrator.config
    threshold = request.score_threshold
    if threshold is None:
        threshold = config.score_threshold
    elif not 0.0 <= threshold <= 1.0:
        raise HTTPException(status_code=400, detail="score_threshold must be within [0, 1]")

    artifact = Artifact.from_text(request.text)
    logger.info(f"Verification request for {artifact.short_id}")

    record = await orchestrator.aggregator.aggregate(
        artifact,
        threshold=threshold,
        warning_penalty=config.warning_penalty,
        weights=config.governor_weights,
        per_governor_timeout_ms=config.per_governor_timeout_ms,
        overhead_ms=config.aggregator_overhead_ms,
    )

    return VerifyResponse(
        artifact_fingerprint=record.artifact_fingerprint,
        score=record.score,
        passed=record.passed,
        threshold=record.threshold,
        failing_governors=list(record.failing_governors),
        per_governor_results={
            name: result.to_dict() for name, result in record.per_governor_results.items()
        },
    )


@app.post("/run", response_model=RunResponse)
async def run(request: RunRequest) -> RunResponse:
    """Run the loop to ACCEPTED or FAILED(reason)"""
    if "cache_capacity" in request.config:
        raise HTTPException(
            status_code=400, detail="cache_capacity is fixed at startup (GOV_CACHE_CAPACITY)"
        )
    try:
        config = orchestrator.config.merged(**request.config)
    except (ConfigError, TypeError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    seed = Artifact.from_text(request.initial_artifact) if request.initial_artifact is not None else None
    logger.info(f"Run request (max_iterations={config.max_iterations})")

    try:
        result = await orchestrator.run(
            request.prompt,
            context=request.context,
            config=config,
            initial_artifact=seed,
        )
    except ConfigError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return RunResponse(
        run_id=result.run_id,
        accepted=result.accepted,
        terminal_state=result.terminal_state.to_dict(),
        iterations=result.iterations,
        final_artifact=result.final_artifact.text if result.final_artifact else None,
        result=result.to_dict(),
        explanation=explain_run(result).to_dict(),
    )


@app.get("/")
def root() -> Dict[str, str]:
    """Root endpoint with service info"""
    return {
        "service": "governance-engine",
        "version": __version__,
        "description": "Verification orchestration for generated source code",
        "note": "Artifacts with blocking violations are never accepted",
    }
