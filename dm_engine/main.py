import logging
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from dm_engine.config import ensure_dev_database_schema, settings
from dm_engine.db import session as db_session
from dm_engine.modules.telemetry.router import router as telemetry_router
from dm_engine.modules.turn.errors import TurnEngineError
from dm_engine.modules.turn.router import router as turn_router

logging.basicConfig(
    level=getattr(logging, str(settings.log_level).upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
log = logging.getLogger(__name__)

REQUEST_ID_HEADER = "x-request-id"


@asynccontextmanager
async def _lifespan(_app: FastAPI):
    if settings.env == "dev":
        ensure_dev_database_schema(str(db_session.engine.url))
    yield


app = FastAPI(title="DM Turn Engine", lifespan=_lifespan)


@app.middleware("http")
async def _request_id_middleware(request: Request, call_next):
    request_id = str(request.headers.get(REQUEST_ID_HEADER) or "").strip()[:128] or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers[REQUEST_ID_HEADER] = request_id
    return response


def _request_id(request: Request) -> str | None:
    return getattr(request.state, "request_id", None)


@app.exception_handler(TurnEngineError)
async def _turn_engine_error_handler(request: Request, exc: TurnEngineError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("turn.request.error", extra={"request_id": _request_id(request), "code": exc.code})
    return JSONResponse(status_code=exc.status_code, content=exc.to_body(_request_id(request)))


@app.exception_handler(RequestValidationError)
async def _validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    errors = [
        {"loc": [str(part) for part in error.get("loc", ())], "msg": str(error.get("msg") or "")}
        for error in exc.errors()
    ]
    body = TurnEngineError(
        "invalid_request",
        status.HTTP_400_BAD_REQUEST,
        "Request validation failed",
        details={"errors": errors},
    ).to_body(_request_id(request))
    return JSONResponse(status_code=status.HTTP_400_BAD_REQUEST, content=body)


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


app.include_router(turn_router)
app.include_router(telemetry_router)
