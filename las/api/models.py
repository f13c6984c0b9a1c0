from enum import Enum
from typing import Any

from pydantic import BaseModel, Field

class ErrorCode(str, Enum):
    unknown_action           = "unknown_action"
    missing_nonce            = "missing_nonce"
    invalid_nonce            = "invalid_nonce"
    insufficient_permissions = "insufficient_permissions"
    rate_limited             = "rate_limited"
    invalid_data             = "invalid_data"
    save_failed              = "save_failed"
    reset_failed             = "reset_failed"
    invalid_error_message    = "invalid_error_message"
    unexpected_error         = "unexpected_error"

class AjaxRequest(BaseModel):
    action: str
    nonce:  str | None = None
    data:   dict[str, Any] = Field(default_factory=dict, examples=[{"settings": {"menu_text_color": "#ffffff"}}])

class ResponseMeta(BaseModel):
    timestamp:         str
    execution_time_ms: float
    memory_usage:      int
    request_id:        str = Field(..., pattern=r"^las_[0-9a-f]{16}$")

class AjaxResponse(BaseModel):
    success: bool
    data:    Any = None
    message: str | None = None
    code:    str | None = None
    extra:   dict[str, Any] = Field(default_factory=dict)
    meta:    ResponseMeta

    def to_dict(self) -> dict[str, Any]:
        """Wire form: `data` on success, `message`/`code` plus extras on failure."""
        payload: dict[str, Any] = {"success": self.success}
        if self.success:
            payload["data"] = self.data
        else:
            payload["message"] = self.message
            payload["code"] = self.code
            payload.update(self.extra)
        payload["meta"] = self.meta.model_dump()
        return payload
