"""
ISAPI response normalization.

Devices answer in XML or JSON and report business failures inside 2xx
responses. Both wire formats are parsed into the same ``IsapiEnvelope`` before
any rule is applied, so callers never branch on format.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union
from xml.etree.ElementTree import Element

import defusedxml.ElementTree as ET
from defusedxml import DefusedXmlException

from facegate.core.exceptions import IsapiOperationError

log = logging.getLogger("facegate.isapi")

# Presentation only; raw codes are always kept on the error.
SUB_STATUS_DESCRIPTIONS = {
    "ok": "Operation completed",
    "deviceBusy": "Device is busy, retry later",
    "deviceError": "Device hardware error",
    "badFlash": "Flash operation failed on the device",
    "notSupport": "Operation not supported by this device",
    "lowPrivilege": "Account lacks the required privilege",
    "badAuthorization": "Authentication failed",
    "methodNotAllowed": "HTTP method not allowed for this resource",
    "notSetHdiskRedund": "Storage redundancy not configured",
    "invalidOperation": "Invalid operation",
    "notActivated": "Device is not activated",
    "badXmlFormat": "Malformed XML request",
    "badJsonFormat": "Malformed JSON request",
    "badParameters": "Invalid request parameters",
    "badURLFormat": "Malformed request URL",
    "employeeNoAlreadyExist": "A person with this employee number already exists",
    "faceAlreadyExist": "This face is already enrolled",
    "FPIDAlreadyExist": "This face identifier is already in the library",
    "deviceUserAlreadyExistFace": "The person already has a face enrolled",
    "faceLibraryFull": "Face library is full",
    "modelingFailed": "Device could not model a face from the image",
    "noFace": "No face found in the image",
    "faceQualityLow": "Face image quality is too low",
    "picSizeTooLarge": "Image exceeds the device size limit",
    "userNotExist": "Person does not exist on the device",
}


def describe_sub_status(sub_status_code: Optional[str]) -> Optional[str]:
    if not sub_status_code:
        return None
    return SUB_STATUS_DESCRIPTIONS.get(sub_status_code)


@dataclass(frozen=True)
class IsapiEnvelope:
    status_code: int
    status_string: str
    sub_status_code: str = ""
    error_code: Optional[int] = None
    error_msg: Optional[str] = None
    request_url: Optional[str] = None

    @property
    def is_failure(self) -> bool:
        return self.status_code > 1 and self.status_string != "OK"

    def to_error(self, request_url: str) -> IsapiOperationError:
        return IsapiOperationError(
            self.status_code,
            self.status_string,
            self.sub_status_code,
            self.error_code if self.error_code is not None else -1,
            self.error_msg or "No error message provided.",
            self.request_url or request_url,
            description=describe_sub_status(self.sub_status_code),
        )


def _local(tag: str) -> str:
    # "{http://www.isapi.org/ver20/XMLSchema}ResponseStatus" -> "ResponseStatus"
    return tag.rsplit("}", 1)[-1]


def _element_to_value(el: Element) -> Any:
    children = list(el)
    if not children:
        return (el.text or "").strip()
    out: Dict[str, Any] = {}
    for child in children:
        key = _local(child.tag)
        value = _element_to_value(child)
        if key in out:
            if not isinstance(out[key], list):
                out[key] = [out[key]]
            out[key].append(value)
        else:
            out[key] = value
    return out


def xml_to_dict(text: Union[str, bytes]) -> Dict[str, Any]:
    """Parse an ISAPI XML document into ``{RootTag: {...}}`` with namespaces dropped."""
    try:
        root = ET.fromstring(text)
    except (ET.ParseError, DefusedXmlException) as exc:
        raise ValueError(f"Failed to parse XML response from device: {exc}") from exc
    return {_local(root.tag): _element_to_value(root)}


def parse_body(body: Union[str, bytes, Dict[str, Any], None], content_type: Optional[str] = None) -> Any:
    """Decode a raw device body into Python data. Unknown text is returned as-is."""
    if body is None or isinstance(body, dict):
        return body
    text = body.decode("utf-8", errors="replace") if isinstance(body, bytes) else body
    stripped = text.lstrip()
    if not stripped:
        return None
    ctype = (content_type or "").lower()
    if "json" in ctype or stripped[0] in "{[":
        try:
            return json.loads(stripped)
        except json.JSONDecodeError:
            log.debug("Device body is not valid JSON despite content type %s", ctype)
            return text
    if "xml" in ctype or stripped.startswith("<"):
        try:
            return xml_to_dict(stripped)
        except ValueError:
            log.debug("Device body is not valid XML despite content type %s", ctype)
            return text
    return text


def _as_int(value: Any) -> Optional[int]:
    if value is None or value == "":
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def extract_envelope(payload: Any) -> Optional[IsapiEnvelope]:
    """Return the status envelope carried by a parsed payload, or None if it has none."""
    if not isinstance(payload, dict):
        return None
    status = payload.get("ResponseStatus")
    if not isinstance(status, dict):
        status = payload
    if "statusCode" not in status or "statusString" not in status:
        return None
    status_code = _as_int(status.get("statusCode"))
    if status_code is None:
        return None
    return IsapiEnvelope(
        status_code=status_code,
        status_string=str(status.get("statusString") or ""),
        sub_status_code=str(status.get("subStatusCode") or ""),
        error_code=_as_int(status.get("errorCode")),
        error_msg=status.get("errorMsg") or None,
        request_url=status.get("requestURL") or None,
    )


def validate(payload: Any, request_url: str) -> Any:
    """Raise ``IsapiOperationError`` if a parsed payload reports a business failure."""
    envelope = extract_envelope(payload)
    if envelope is not None and envelope.is_failure:
        error = envelope.to_error(request_url)
        log.warning("ISAPI operation failed: %s", error.message)
        raise error
    return payload


def validate_response(
    body: Union[str, bytes, Dict[str, Any], None],
    request_url: str,
    content_type: Optional[str] = None,
) -> Any:
    return validate(parse_body(body, content_type), request_url)
