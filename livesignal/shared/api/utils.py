"""Response envelopes and logger setup shared by the API server and the agent."""

import logging
import sys
from functools import lru_cache
from os import environ
from pathlib import Path
from typing import Any, Literal
from uuid import uuid4

from fastapi import Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import ORJSONResponse
from loguru import logger
from pydantic import BaseModel, Field

from livesignal.utils.app_errors import AppErrorCode, HttpStatusCode

DEFAULT_ERROR_MESSAGE = 'We are sorry, an error occurred.'

# Chatty stdlib loggers of the WebRTC and Mongo stacks
QUIET_LOGGERS = ('aioice', 'aiortc', 'pymongo')


class ApiResponse(BaseModel):
    version: str | None = Field(default_factory=lambda: environ.get('BUILD_COMMIT', 'dev'))


class ApiSuccess(ApiResponse):
    success: Literal[True] = True
    results: Any = 'OK'


class ApiFailure(ApiResponse):
    success: Literal[False] = False
    errcode: str = AppErrorCode.E_INTERNAL_ERROR.value
    erresid: str = Field(default_factory=lambda: uuid4().hex[:10])
    errmesg: str = DEFAULT_ERROR_MESSAGE


def api_failure(errcode: AppErrorCode | str | None = None, errmesg: str | None = None) -> ApiFailure:
    """Build a failure envelope and log it under its residue id."""
    failure = ApiFailure(
        errcode=str(errcode or AppErrorCode.E_INTERNAL_ERROR),
        errmesg=errmesg or DEFAULT_ERROR_MESSAGE,
    )
    logger.warning('{} {} {}', failure.errcode, failure.erresid, failure.errmesg)
    return failure


def make_response(results: ApiResponse, *, status_code: int | None = None) -> ORJSONResponse:
    if status_code is None:
        if isinstance(results, ApiFailure):
            internal = results.errcode == AppErrorCode.E_INTERNAL_ERROR.value
            status_code = HttpStatusCode.INTERNAL_SERVER_ERROR if internal else HttpStatusCode.BAD_REQUEST
        else:
            status_code = HttpStatusCode.OK

    return ORJSONResponse(status_code=int(status_code), content=results.model_dump())


async def validation_exception_handler(request: Request, exc: RequestValidationError):
    errors = exc.errors()

    logger.warning(
        'Validation error: path={} method={} errors={}',
        request.url.path, request.method, errors
    )

    failure = api_failure(AppErrorCode.E_INVALID_PARAMS, errmesg=str(errors))
    return make_response(failure, status_code=HttpStatusCode.UNPROCESSABLE_ENTITY)


@lru_cache
def get_worker_info() -> tuple[str, str]:
    project_root = Path(__file__).parent.parent.parent.parent
    worker_name = environ.get('WORKER_NAME', project_root.name)

    parts = environ.get('BUILD_COMMIT', '').split('-')
    commit_id = parts[1] if len(parts) > 1 else 'dev'

    return worker_name, commit_id


def init_logger():
    from ..config import config

    debug = str(config.get('DEBUG', 'false')).lower() == 'true'

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.INFO if debug else logging.WARNING)

    logger.remove()

    worker_name, commit_id = get_worker_info()

    if debug:
        logger_level = 'DEBUG'
        logger_format = (
            f'<yellow>{worker_name}:{commit_id}</yellow> | '
            '<green>{time:MM-DD HH:mm:ss.SSS}</green> | '
            '<level>{level: <8}</level> | '
            '<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> | '
            '<level>{message}</level>'
        )
    else:
        logger_level = 'INFO'
        logger_format = (
            f'{worker_name}:{commit_id} | '
            '{time:MM-DD HH:mm:ss.SSS} | '
            '{level: <8} | '
            '{name}:{function}:{line} | '
            '{message}'
        )
    logger.add(sys.stderr, level=logger_level, format=logger_format)
