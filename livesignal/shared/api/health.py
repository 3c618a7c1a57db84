from fastapi import APIRouter, Request

from .utils import ApiSuccess

router = APIRouter(tags=["Health"])


@router.get('/health', response_model=ApiSuccess)
async def health(request: Request):
    """Liveness plus the signal store backend in use."""
    store = getattr(request.app.state, 'signal_store', None)
    return ApiSuccess(results={
        'status': 'OK',
        'store': type(store).__name__ if store is not None else None,
    })
