from .ajax import NONCE_ACTION, AjaxDispatcher
from .models import AjaxRequest, AjaxResponse, ErrorCode, ResponseMeta

__all__ = [
    "AjaxDispatcher",
    "AjaxRequest",
    "AjaxResponse",
    "ErrorCode",
    "NONCE_ACTION",
    "ResponseMeta",
]
