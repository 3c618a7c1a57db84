import time
import traceback
import uuid
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import ORJSONResponse
from granian import Granian
from loguru import logger
from pymongo.errors import PyMongoError
from starlette.middleware.base import BaseHTTPMiddleware

from livesignal.api.errors import app_error_handler, store_error_handler
from livesignal.api.v1.routers import streams
from livesignal.app_config import get_app_environ_config
from livesignal.services.store import create_signal_store
from livesignal.shared.api import health
from livesignal.shared.api.utils import api_failure, init_logger, make_response, validation_exception_handler
from livesignal.utils.app_errors import AppError, AppErrorCode, HttpStatusCode

REQUEST_ID_HEADER = "X-Request-ID"

# Polled by load balancers; logged at debug level only
QUIET_PATHS = frozenset({"/api/v1/health"})


class HTTPLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):  # type: ignore
        start_time = time.perf_counter()
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid.uuid4().hex[:8]
        log = logger.debug if request.url.path in QUIET_PATHS else logger.info

        with logger.contextualize(request_id=request_id):
            try:
                response = await call_next(request)
            except Exception as exc:
                elapsed = (time.perf_counter() - start_time) * 1000
                logger.error(
                    "[{}] {} {} failed after {:.2f}ms: {}: {}\n{}",
                    request_id, request.method, request.url.path, elapsed,
                    type(exc).__name__, exc, traceback.format_exc(),
                )
                failure = api_failure(
                    errcode=AppErrorCode.E_INTERNAL_ERROR,
                    errmesg=f"Internal server error (request_id: {request_id})",
                )
                response = make_response(failure, status_code=HttpStatusCode.INTERNAL_SERVER_ERROR)
            else:
                elapsed = (time.perf_counter() - start_time) * 1000
                log(
                    "[{}] {} {} -> {} in {:.2f}ms",
                    request_id, request.method, request.url.path, response.status_code, elapsed,
                )

        response.headers[REQUEST_ID_HEADER] = request_id
        return response


@asynccontextmanager
async def lifespan(server: FastAPI):
    init_logger()

    logger.info("Application startup...")

    # A store set before startup (tests) is kept
    if getattr(server.state, "signal_store", None) is None:
        server.state.signal_store = create_signal_store()
    await server.state.signal_store.open()

    yield

    logger.info("Application shutdown...")

    await server.state.signal_store.close()


cfg = get_app_environ_config()

app = FastAPI(
    version="1.0",
    title="LiveSignal API",
    docs_url=None,
    redoc_url=None,
    openapi_url=None,
    default_response_class=ORJSONResponse,
    lifespan=lifespan,
)

app.include_router(health.router, prefix="/api/v1")
app.include_router(streams.router, prefix="/api/v1")

app.add_middleware(HTTPLoggingMiddleware)

app.add_middleware(
    CORSMiddleware,  # type: ignore
    allow_origins=cfg.API_CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.add_exception_handler(RequestValidationError, validation_exception_handler)  # type: ignore
app.add_exception_handler(AppError, app_error_handler)  # type: ignore
app.add_exception_handler(PyMongoError, store_error_handler)  # type: ignore


def build_granian_kwargs():
    kwargs = {
        "interface": "asgi",
        "address": cfg.API_HOST,
        "port": cfg.API_PORT,
        "workers": cfg.API_WORKERS,
        "reload": cfg.DEBUG,
    }

    return kwargs


def main():
    granian_kwargs = build_granian_kwargs()
    Granian("livesignal.main:app", **granian_kwargs).serve()


if __name__ == "__main__":
    main()
