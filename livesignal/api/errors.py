from fastapi import Request
from fastapi.responses import JSONResponse
from loguru import logger
from pymongo.errors import PyMongoError

from livesignal.shared.api.utils import ApiFailure, api_failure, make_response
from livesignal.utils.app_errors import AppError, AppErrorCode, HttpStatusCode


async def app_error_handler(request: Request, exc: AppError) -> JSONResponse:
    """Return an AppError as an ApiFailure with the error's own status code."""
    # Caller info was captured when the AppError was raised
    log = logger.error if exc.status_code >= HttpStatusCode.INTERNAL_SERVER_ERROR else logger.warning
    log(
        "{} {} {} {} msg={} caller={}",
        request.method, request.url.path, exc.errcode, exc.erresid, exc.errmesg, exc.caller_info,
    )

    failure = ApiFailure(errcode=exc.errcode, errmesg=exc.errmesg, erresid=exc.erresid)
    return make_response(failure, status_code=exc.status_code)


async def store_error_handler(request: Request, exc: PyMongoError) -> JSONResponse:
    """The MongoDB signal store is unreachable or rejected a read."""
    logger.error("Signal store error on {} {}: {}", request.method, request.url.path, exc)

    failure = api_failure(AppErrorCode.E_STORE_UNAVAILABLE, "Signal store is unavailable, try again later")
    return make_response(failure, status_code=HttpStatusCode.SERVICE_UNAVAILABLE)
