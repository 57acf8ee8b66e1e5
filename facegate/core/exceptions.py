"""
Error taxonomy for FaceGate.

Every error carries an HTTP status and a machine-readable ``code`` so the API
layer can render it without knowing which component raised it.
"""

from typing import Any, Dict, Optional


class FaceGateError(Exception):
    http_status = 500
    code = "internal_error"

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.code, "message": self.message, "details": self.details}


class DeviceConnectionError(FaceGateError):
    """Transport failure or a non-2xx answer from the device."""

    http_status = 503
    code = "device_unavailable"

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        reason: Optional[str] = None,
        url: Optional[str] = None,
    ):
        super().__init__(message, {"status": status, "reason": reason, "url": url})
        self.status = status
        self.reason = reason
        self.url = url


class IsapiOperationError(FaceGateError):
    """Business error reported by the device inside a 2xx envelope."""

    http_status = 400
    code = "device_operation_failed"

    def __init__(
        self,
        status_code: int,
        status_string: str,
        sub_status_code: str,
        error_code: int,
        error_msg: str,
        request_url: str,
        description: Optional[str] = None,
    ):
        message = (
            f"ISAPI error on {request_url}: {status_string} ({status_code}) - "
            f"{error_msg} ({sub_status_code})"
        )
        super().__init__(
            message,
            {
                "statusCode": status_code,
                "statusString": status_string,
                "subStatusCode": sub_status_code,
                "errorCode": error_code,
                "errorMsg": error_msg,
                "requestURL": request_url,
                "description": description,
            },
        )
        self.status_code = status_code
        self.status_string = status_string
        self.sub_status_code = sub_status_code
        self.error_code = error_code
        self.error_msg = error_msg
        self.request_url = request_url
        self.description = description


class DigestChallengeError(FaceGateError):
    """The device sent a challenge we cannot answer (missing realm/nonce, bad algorithm)."""

    http_status = 502
    code = "digest_challenge_invalid"


class ValidationError(FaceGateError):
    http_status = 400
    code = "validation_error"


class ConflictError(FaceGateError):
    http_status = 409
    code = "conflict"


class NotFoundError(FaceGateError):
    http_status = 404
    code = "not_found"


class WebhookSignatureError(FaceGateError):
    http_status = 400
    code = "invalid_webhook_signature"
