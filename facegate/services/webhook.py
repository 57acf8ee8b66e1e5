"""
Inbound device webhook verification.

The signature is a hex HMAC-SHA256 over the canonical JSON of the body with
its ``signature`` member removed. Nothing here touches the database; callers
persist only what ``parse_webhook`` returns.
"""

import hashlib
import hmac
import json
import logging
from typing import Any, Dict, Union

import pydantic

from facegate.core.exceptions import ValidationError, WebhookSignatureError
from facegate.schemas.face import WebhookPayload

log = logging.getLogger("facegate.webhook")

REQUIRED_FIELDS = ("eventType", "faceId", "confidence", "timestamp", "signature")
SIGNATURE_PREFIX = "sha256="


def canonical_payload(body: Dict[str, Any]) -> bytes:
    unsigned = {k: v for k, v in body.items() if k != "signature"}
    return json.dumps(unsigned, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_payload(raw_payload: Union[bytes, str], secret: str) -> str:
    if isinstance(raw_payload, str):
        raw_payload = raw_payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), raw_payload, hashlib.sha256).hexdigest()


def sign_body(body: Dict[str, Any], secret: str) -> str:
    """Signature a device (or a test) attaches to ``body``"""
    return sign_payload(canonical_payload(body), secret)


def verify_signature(raw_payload: Union[bytes, str], supplied_signature: str, secret: str) -> bool:
    if not supplied_signature or not secret:
        return False
    supplied = supplied_signature.strip()
    if supplied.lower().startswith(SIGNATURE_PREFIX):
        supplied = supplied[len(SIGNATURE_PREFIX):]
    expected = sign_payload(raw_payload, secret)
    return hmac.compare_digest(expected.encode("ascii"), supplied.encode("ascii", errors="replace"))


def _load(raw_body: Union[bytes, str, Dict[str, Any]]) -> Dict[str, Any]:
    if isinstance(raw_body, dict):
        return raw_body
    try:
        body = json.loads(raw_body)
    except (TypeError, ValueError) as exc:
        raise ValidationError("Webhook body is not valid JSON") from exc
    if not isinstance(body, dict):
        raise ValidationError("Webhook body must be a JSON object")
    return body


def parse_webhook(raw_body: Union[bytes, str, Dict[str, Any]], secret: str) -> WebhookPayload:
    """
    Validate an inbound webhook body and return the trusted payload.

    Raises:
        ValidationError: not a JSON object, a required field is missing, or a value is invalid
        WebhookSignatureError: signature does not match the body
    """
    body = _load(raw_body)

    missing = [name for name in REQUIRED_FIELDS if body.get(name) in (None, "")]
    if missing:
        raise ValidationError(
            f"Webhook payload missing required fields: {', '.join(missing)}",
            {"missing": missing},
        )

    if not verify_signature(canonical_payload(body), str(body["signature"]), secret):
        log.warning("Rejected webhook with invalid signature for face %s", body.get("faceId"))
        raise WebhookSignatureError("Invalid webhook signature")

    try:
        return WebhookPayload.model_validate(body)
    except pydantic.ValidationError as exc:
        raise ValidationError(
            "Invalid webhook payload",
            {"errors": exc.errors(include_url=False, include_context=False, include_input=False)},
        ) from exc
