"""Application error type shared by the domain, services and API layers."""

import inspect
from enum import Enum, IntEnum
from uuid import uuid4


class AppErrorCode(str, Enum):
    E_INTERNAL_ERROR = "E_INTERNAL_ERROR"
    E_INVALID_REQUEST = "E_INVALID_REQUEST"
    E_INVALID_PARAMS = "E_INVALID_PARAMS"
    E_UNAUTHENTICATED = "E_UNAUTHENTICATED"

    # Stream lifecycle
    E_MEDIA_PERMISSION_DENIED = "E_MEDIA_PERMISSION_DENIED"
    E_STREAM_START_FAILED = "E_STREAM_START_FAILED"
    E_STREAM_NOT_FOUND = "E_STREAM_NOT_FOUND"
    E_NO_OFFER_FOUND = "E_NO_OFFER_FOUND"

    # Document store
    E_DOCUMENT_NOT_FOUND = "E_DOCUMENT_NOT_FOUND"
    E_INVALID_PATH = "E_INVALID_PATH"
    E_STORE_UNAVAILABLE = "E_STORE_UNAVAILABLE"

    def __str__(self) -> str:
        return self.value


class HttpStatusCode(IntEnum):
    OK = 200
    BAD_REQUEST = 400
    UNAUTHORIZED = 401
    FORBIDDEN = 403
    NOT_FOUND = 404
    CONFLICT = 409
    UNPROCESSABLE_ENTITY = 422
    GATEWAY_TIMEOUT = 504
    INTERNAL_SERVER_ERROR = 500
    SERVICE_UNAVAILABLE = 503


class AppError(Exception):
    """Error carrying an API error code, a user-facing message and an HTTP status.

    The caller location is captured when the error is raised so handlers can
    log where it came from without a full traceback.
    """

    def __init__(
        self,
        errcode: AppErrorCode | str = AppErrorCode.E_INTERNAL_ERROR,
        errmesg: str = "We are sorry, an error occurred.",
        status_code: HttpStatusCode | int = HttpStatusCode.INTERNAL_SERVER_ERROR,
    ):
        self.errcode = errcode.value if isinstance(errcode, AppErrorCode) else str(errcode)
        self.errmesg = errmesg
        self.status_code = int(status_code)
        self.erresid = uuid4().hex[:10]

        caller_frame = inspect.stack()[1]
        module = inspect.getmodule(caller_frame.frame)
        module_name = module.__name__ if module else caller_frame.filename
        self.caller_info = f"{module_name}:{caller_frame.function}:{caller_frame.lineno}"

        super().__init__(errmesg)

    def __repr__(self) -> str:
        return f"AppError(errcode={self.errcode!r}, errmesg={self.errmesg!r})"
