"""
FastAPI matching service.

Endpoints:
- POST /keys - Register a client's evaluation key
- POST /targets - Register an advertiser target profile
- POST /match - Score an encrypted profile against targets
"""
import base64
import logging
import pickle
from contextlib import asynccontextmanager
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from blindmatch.server.evaluator import MatchingEvaluator, TargetStore, create_mock_targets
from blindmatch.shared.ciphertext import EncryptedProfile
from blindmatch.shared.errors import EncodingError, KeyMaterialError, MatchingError
from blindmatch.shared.instrumentation import StageRecorder
from blindmatch.shared.keys import EvaluationKey
from blindmatch.shared.profile import Profile
from blindmatch.shared.protocol import MatchingConfig

logger = logging.getLogger(__name__)


# Pydantic models for API
class EvaluationKeyRequest(BaseModel):
    """Request to register a client's evaluation key."""
    client_id: str
    public_key: dict
    width: int
    key_size: int = 2048


class TargetRequest(BaseModel):
    """Request to register an advertiser target."""
    target_id: str
    profile_hex: str = Field(..., description="Target bits as a hex integer, e.g. 0xAAAA")


class MatchRequestModel(BaseModel):
    """Request to match an encrypted profile."""
    client_id: str
    encrypted_profile_b64: str = Field(..., description="Base64-encoded pickled EncryptedProfile")
    target_ids: Optional[List[str]] = None
    record_stages: bool = False


class MatchOutcomeModel(BaseModel):
    target_id: str
    distance_b64: str
    overlap_b64: str
    target_popcount: int


class MatchResponseModel(BaseModel):
    """Response with encrypted metrics."""
    outcomes: List[MatchOutcomeModel]
    server_time_ms: float
    stage_ms: Dict[str, float] = Field(default_factory=dict)
    num_results: int


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    num_targets: int
    width: int
    registered_clients: int


# Server state
class ServerState:
    """Server state container."""
    def __init__(self):
        self.config = MatchingConfig()
        self.target_store: Optional[TargetStore] = None
        self.evaluators: Dict[str, MatchingEvaluator] = {}  # client_id -> evaluator


state = ServerState()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize server on startup."""
    if state.target_store is None:
        logger.info("Initializing server with mock targets...")
        state.target_store = create_mock_targets(
            num_targets=20, width=state.config.width, seed=42
        )
    logger.info(
        "Server ready: %d targets, width=%d", len(state.target_store), state.target_store.width
    )
    yield
    logger.info("Server shutting down...")


app = FastAPI(
    title="Blindmatch",
    description="Encrypted profile matching API",
    version="0.1.0",
    lifespan=lifespan,
)


def serialize_encrypted(obj: Any) -> str:
    """Serialize an encrypted handle to a base64 string."""
    return base64.b64encode(pickle.dumps(obj)).decode('utf-8')


def deserialize_encrypted(b64_str: str) -> Any:
    """Deserialize an encrypted handle from a base64 string."""
    return pickle.loads(base64.b64decode(b64_str))


@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    return HealthResponse(
        status="healthy",
        num_targets=len(state.target_store) if state.target_store else 0,
        width=state.target_store.width if state.target_store else 0,
        registered_clients=len(state.evaluators),
    )


@app.post("/keys")
async def register_evaluation_key(request: EvaluationKeyRequest):
    """Register a client's evaluation key."""
    if state.target_store is None:
        raise HTTPException(status_code=500, detail="Server not initialized")

    try:
        key = EvaluationKey(request.public_key, width=request.width, key_size=request.key_size)
    except KeyMaterialError as e:
        raise HTTPException(status_code=400, detail=str(e))

    if key.width != state.target_store.width:
        raise HTTPException(
            status_code=400,
            detail=f"Service matches {state.target_store.width}-bit profiles, key serves {key.width}",
        )

    state.evaluators[request.client_id] = MatchingEvaluator(
        key, state.target_store, rerandomise=state.config.rerandomise
    )
    return {
        "status": "registered",
        "client_id": request.client_id,
        "fingerprint": key.fingerprint,
    }


@app.post("/targets")
async def register_target(request: TargetRequest):
    """Register an advertiser target profile."""
    if state.target_store is None:
        raise HTTPException(status_code=500, detail="Server not initialized")

    try:
        profile = Profile.from_int(int(request.profile_hex, 16), state.target_store.width)
        state.target_store.add(request.target_id, profile)
    except (ValueError, EncodingError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return {
        "status": "registered",
        "target_id": request.target_id,
        "popcount": profile.popcount(),
    }


@app.post("/match", response_model=MatchResponseModel)
def match_profile(request: MatchRequestModel):
    """
    Score an encrypted profile.

    The server computes encrypted distance and overlap for every requested
    target and returns them without being able to read them.
    """
    evaluator = state.evaluators.get(request.client_id)
    if evaluator is None:
        raise HTTPException(status_code=400, detail="Client not registered")

    # Deserialize encrypted profile
    try:
        encrypted_profile = deserialize_encrypted(request.encrypted_profile_b64)
    except Exception as e:
        raise HTTPException(status_code=400, detail=f"Failed to deserialize profile: {e}")
    if not isinstance(encrypted_profile, EncryptedProfile):
        raise HTTPException(status_code=400, detail="Payload is not an EncryptedProfile")

    record = request.record_stages or state.config.record_stages
    recorder = StageRecorder() if record else None
    try:
        if state.config.num_workers and recorder is None:
            outcomes, time_ms = evaluator.score_targets_parallel(
                encrypted_profile, request.target_ids, num_workers=state.config.num_workers
            )
        else:
            outcomes, time_ms = evaluator.score_targets(
                encrypted_profile, request.target_ids, recorder=recorder
            )
    except MatchingError as e:
        raise HTTPException(status_code=400, detail=f"{type(e).__name__}: {e}")

    return MatchResponseModel(
        outcomes=[
            MatchOutcomeModel(
                target_id=o.target_id,
                distance_b64=serialize_encrypted(o.distance),
                overlap_b64=serialize_encrypted(o.overlap),
                target_popcount=o.target_popcount,
            )
            for o in outcomes
        ],
        server_time_ms=time_ms,
        stage_ms=recorder.as_dict() if recorder else {},
        num_results=len(outcomes),
    )


def create_app(
    num_targets: int = 20,
    width: int = 128,
    seed: int = 42,
    config: Optional[MatchingConfig] = None,
) -> FastAPI:
    """
    Create and configure the FastAPI app.

    For programmatic use in tests and demos.
    """
    state.config = config or MatchingConfig(width=width)
    state.target_store = create_mock_targets(num_targets, state.config.width, seed=seed)
    state.evaluators = {}
    return app


def run_server(host: str = "127.0.0.1", port: int = 8000):
    """Run the server directly."""
    import uvicorn
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(name)s %(levelname)s %(message)s")
    uvicorn.run(app, host=host, port=port)


if __name__ == "__main__":
    run_server()
