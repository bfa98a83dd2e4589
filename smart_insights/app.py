# smart_insights/app.py
import os
import time
import uuid
from contextlib import asynccontextmanager

# Load .env BEFORE any smart_insights imports (they read env vars at import time)
from dotenv import load_dotenv
load_dotenv(override=True)

from fastapi import FastAPI, Request, Path
from fastapi.responses import JSONResponse, Response, PlainTextResponse

from smart_insights import monitoring
from smart_insights import db as dbmod
from smart_insights.admission import AdmissionController
from smart_insights.config_store import ConfigStore
from smart_insights.errors import ResponseNotFoundError
from smart_insights.llm_registry import LLMRegistry
from smart_insights.orchestrator import InsightOrchestrator
from smart_insights.response_log import ResponseLog
from smart_insights.schemas import AskRequest
from smart_insights.source_registry import SourceRegistry

MAX_CONCURRENT_ORCHESTRATIONS = int(os.getenv("MAX_CONCURRENT_ORCHESTRATIONS", "10"))
CONFIG_SEED_FILE = os.getenv("CONFIG_SEED_FILE")

# Built once and shared by every handler
config_store = ConfigStore()
response_log = ResponseLog()
source_registry = SourceRegistry(config_store)
llm_registry = LLMRegistry(config_store)
admission = AdmissionController(MAX_CONCURRENT_ORCHESTRATIONS)
orchestrator = InsightOrchestrator(response_log, source_registry, llm_registry, admission)


@asynccontextmanager
async def lifespan(app: FastAPI):
    dbmod.init_db()
    if CONFIG_SEED_FILE:
        saved = config_store.seed_from_file(CONFIG_SEED_FILE)
        monitoring.logger.info("Seeded configurations", extra={"path": CONFIG_SEED_FILE, **saved})
    yield
    # Background orchestrations are daemon threads; give them a moment to land
    if not orchestrator.wait_all(timeout=5.0):
        monitoring.logger.warning("Shutting down with orchestrations still running",
                                  extra={"response_ids": orchestrator.running()})
    try:
        source_registry.close_all()
    except Exception:
        monitoring.logger.exception("Failed to close source pools on shutdown")


app = FastAPI(title="Smart Insights API", lifespan=lifespan)


# ---------------------------------------------------------------------------
# Metrics middleware
# ---------------------------------------------------------------------------
@app.middleware("http")
async def metrics_middleware(request: Request, call_next):
    start = time.time()
    endpoint = request.url.path
    method = request.method
    status = "500"
    try:
        response = await call_next(request)
        status = str(response.status_code)
        return response
    except Exception:
        monitoring.logger.exception("Unhandled exception in request", extra={"path": endpoint})
        raise
    finally:
        monitoring.observe_request(start, endpoint, method, status)


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------
def _is_valid_uuid(value: str) -> bool:
    try:
        uuid.UUID(value)
    except ValueError:
        return False
    return True


@app.post("/assistant/ask")
def ask(req: AskRequest):
    """
    POST /assistant/ask
    Body: { "db_configuration_name": "...", "question": "...",
            "options": { "llm_provider": "...", "llm_config": "..." } }
    Returns the in_progress response immediately; poll GET /assistant/ask/{uuid}.
    """
    monitoring.logger.info("Received /assistant/ask request",
                           extra={"question_preview": req.question[:200]})
    try:
        snapshot = orchestrator.accept(req)
    except Exception as e:
        monitoring.logger.exception("Unexpected error in /assistant/ask handler")
        return JSONResponse(status_code=500, content={"detail": "Internal server error", "error": str(e)})
    return JSONResponse(status_code=201, content=snapshot.model_dump(mode="json"))


@app.get("/assistant/ask")
def get_response_without_id():
    return JSONResponse(status_code=400, content={"detail": "Response uuid is required"})


@app.get("/assistant/ask/{response_id}")
def get_response(response_id: str = Path(..., description="Response uuid returned by POST /assistant/ask")):
    if not _is_valid_uuid(response_id):
        return JSONResponse(status_code=400, content={"detail": "Invalid UUID format"})
    try:
        resp = response_log.get(response_id)
    except ResponseNotFoundError:
        return JSONResponse(status_code=404, content={"detail": "Response not found"})
    return JSONResponse(status_code=200, content=resp.model_dump(mode="json"))


@app.get("/assistant/histories")
def histories():
    return JSONResponse(status_code=200, content=[r.model_dump(mode="json") for r in response_log.list_all()])


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/metrics")
async def metrics():
    if not monitoring.PROMETHEUS_ENABLED:
        return PlainTextResponse("Prometheus disabled", status_code=404)
    payload, content_type = monitoring.prometheus_metrics_response()
    return Response(content=payload, media_type=content_type)
