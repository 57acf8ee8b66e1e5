"""
Async ISAPI client for Hikvision access terminals.

Every call goes through ``IsapiClient.request``: one unauthenticated attempt,
then at most one retry answering a Digest challenge. 2xx bodies are run through
the envelope normalizer so business failures surface as ``IsapiOperationError``.
"""

import base64
import ipaddress
import json
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from xml.etree import ElementTree

import httpx

from facegate.core.exceptions import DeviceConnectionError, FaceGateError
from facegate.services import metrics
from facegate.services.digest_auth import DeviceCredentials, compute_authorization_header
from facegate.services.isapi_envelope import validate_response
from facegate.utils.imagedata import to_data_uri

log = logging.getLogger("facegate.isapi")

ISAPI_XMLNS = "http://www.isapi.org/ver20/XMLSchema"

DEVICE_INFO_PATH = "/ISAPI/System/deviceInfo"
CAPABILITIES_PATH = "/ISAPI/AccessControl/capabilities"
FACE_RECORD_PATH = "/ISAPI/Intelligent/FDLib/FaceDataRecord"
FACE_SEARCH_PATH = "/ISAPI/Intelligent/FDLib/FDSearch"
USER_RECORD_PATH = "/ISAPI/AccessControl/UserInfo/Record"
USER_MODIFY_PATH = "/ISAPI/AccessControl/UserInfo/Modify"
USER_SEARCH_PATH = "/ISAPI/AccessControl/UserInfo/Search"
USER_DELETE_PATH = "/ISAPI/AccessControl/UserInfoDetail/Delete"
HTTP_HOSTS_PATH = "/ISAPI/Event/notification/httpHosts"

_BINARY_TYPES = ("image/", "application/octet-stream")


@dataclass(frozen=True)
class DeviceFaceMatch:
    # None when the terminal detected a face it could not match
    face_id: Optional[str]
    confidence: float
    bounding_box: Dict[str, float] = field(default_factory=dict)


def _bounding_box(raw: Any) -> Dict[str, float]:
    box = raw if isinstance(raw, dict) else {}
    out = {}
    for key in ("x", "y", "width", "height"):
        try:
            out[key] = float(box.get(key, 0) or 0)
        except (TypeError, ValueError):
            out[key] = 0.0
    return out


def _is_binary(response: httpx.Response) -> bool:
    ctype = response.headers.get("content-type", "").lower()
    return ctype.startswith(_BINARY_TYPES)


class IsapiClient:
    def __init__(
        self,
        base_url: str,
        credentials: DeviceCredentials,
        *,
        timeout: float = 10.0,
        face_lib_id: str = "1",
        face_lib_type: str = "blackFD",
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.credentials = credentials
        self.face_lib_id = face_lib_id
        self.face_lib_type = face_lib_type
        self._client = httpx.AsyncClient(base_url=self.base_url, timeout=timeout, transport=transport)

    @classmethod
    def from_settings(cls, settings, transport: Optional[httpx.AsyncBaseTransport] = None) -> "IsapiClient":
        return cls(
            settings.device_base_url,
            DeviceCredentials(settings.HIKVISION_USERNAME, settings.HIKVISION_PASSWORD),
            timeout=settings.HIKVISION_TIMEOUT,
            face_lib_id=settings.HIKVISION_FACE_LIB_ID,
            face_lib_type=settings.HIKVISION_FACE_LIB_TYPE,
            transport=transport,
        )

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "IsapiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    # ------------------------------------------------------------------ transport

    async def _dispatch(self, request: httpx.Request) -> httpx.Response:
        try:
            response = await self._client.send(request)
        except httpx.HTTPError as exc:
            metrics.record_device_request(request.method, "network_error")
            log.warning("Device request %s %s failed: %s", request.method, request.url.path, exc)
            raise DeviceConnectionError(
                f"Could not reach device: {exc}",
                reason=type(exc).__name__,
                url=str(request.url),
            ) from exc
        log.debug("Device %s %s -> %s", request.method, request.url.path, response.status_code)
        return response

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        request = self._client.build_request(method, path, **kwargs)
        # Buffer the body so the authenticated retry carries identical bytes
        request.read()
        response = await self._dispatch(request)

        if response.status_code == 401:
            challenge = response.headers.get("www-authenticate", "")
            if "digest" in challenge.lower():
                metrics.record_digest_challenge()
                log.debug("Device sent a digest challenge for %s %s", request.method, request.url.path)
                uri = request.url.raw_path.decode("ascii")
                headers = httpx.Headers(request.headers)
                headers["Authorization"] = compute_authorization_header(
                    request.method, uri, challenge, self.credentials
                )
                retry = httpx.Request(request.method, request.url, headers=headers, content=request.content)
                response = await self._dispatch(retry)
                if response.status_code == 401:
                    metrics.record_device_request(method, "auth_rejected")
                    raise DeviceConnectionError(
                        "Device rejected digest credentials",
                        status=401,
                        reason=response.reason_phrase,
                        url=str(request.url),
                    )

        if not response.is_success:
            metrics.record_device_request(method, "http_error")
            log.warning(
                "Device %s %s returned %s %s",
                request.method,
                request.url.path,
                response.status_code,
                response.reason_phrase,
            )
            raise DeviceConnectionError(
                f"Device returned HTTP {response.status_code}",
                status=response.status_code,
                reason=response.reason_phrase,
                url=str(request.url),
            )
        metrics.record_device_request(method, "ok")
        return response

    def _payload(self, response: httpx.Response) -> Any:
        if _is_binary(response):
            return response.content
        return validate_response(
            response.content,
            str(response.request.url),
            response.headers.get("content-type"),
        )

    async def request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[Dict[str, Any]] = None,
        json: Any = None,
        content: Optional[bytes] = None,
        files: Any = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """
        Send one logical request to the device.

        Raises:
            DeviceConnectionError: network failure, timeout, non-2xx, or a rejected retry
            IsapiOperationError: 2xx response whose envelope reports a failure
            DigestChallengeError: the device challenge cannot be answered
        """
        response = await self._send(
            method, path, params=params, json=json, content=content, files=files, headers=headers
        )
        self._payload(response)
        return response

    async def call(self, method: str, path: str, **kwargs) -> Any:
        """Like ``request`` but returns the parsed payload"""
        response = await self._send(method, path, **kwargs)
        return self._payload(response)

    # ------------------------------------------------------------------ device

    async def get_device_info(self) -> Dict[str, Any]:
        payload = await self.call("GET", DEVICE_INFO_PATH)
        if isinstance(payload, dict):
            return payload.get("DeviceInfo", payload)
        return {"raw": payload}

    async def get_capabilities(self) -> Dict[str, Any]:
        payload = await self.call("GET", CAPABILITIES_PATH)
        if isinstance(payload, dict):
            return payload.get("AcsCfg", payload)
        return {"raw": payload}

    async def test_connection(self) -> bool:
        try:
            await self.get_device_info()
        except FaceGateError as exc:
            log.warning("Device connection test failed: %s", exc.message)
            return False
        return True

    async def capture_snapshot(self, channel: str = "1") -> str:
        response = await self.request("GET", f"/ISAPI/Streaming/channels/{channel}/picture")
        ctype = response.headers.get("content-type", "image/jpeg").split(";")[0].strip() or "image/jpeg"
        if not ctype.startswith("image/"):
            ctype = "image/jpeg"
        return to_data_uri(response.content, ctype)

    # ------------------------------------------------------------------ face library

    async def enroll_face(self, face_id: str, image: bytes, *, name: Optional[str] = None) -> Any:
        record = {
            "faceLibType": self.face_lib_type,
            "FDID": self.face_lib_id,
            "FPID": face_id,
            "name": name or face_id,
        }
        files = {
            "FaceDataRecord": (None, json.dumps(record), "application/json"),
            "faceImage": ("face.jpg", image, "image/jpeg"),
        }
        payload = await self.call("POST", FACE_RECORD_PATH, params={"format": "json"}, files=files)
        log.info("Enrolled face %s on device library %s", face_id, self.face_lib_id)
        return payload

    async def search_faces(self, image: bytes, *, max_results: int = 30) -> List[DeviceFaceMatch]:
        body = {
            "searchResultPosition": 0,
            "maxResults": max_results,
            "faceLibType": self.face_lib_type,
            "FDID": self.face_lib_id,
            "FaceImageData": base64.b64encode(image).decode("ascii"),
        }
        payload = await self.call("POST", FACE_SEARCH_PATH, params={"format": "json"}, json=body)
        matches = payload.get("FaceMatchList") if isinstance(payload, dict) else None
        out: List[DeviceFaceMatch] = []
        for match in matches or []:
            face_id = match.get("faceID") or match.get("FPID")
            try:
                similarity = float(match.get("similarity", 0))
            except (TypeError, ValueError):
                similarity = 0.0
            confidence = min(max(similarity / 100.0, 0.0), 1.0)
            out.append(DeviceFaceMatch(str(face_id) if face_id else None, confidence, _bounding_box(match.get("boundingBox"))))
        return out

    async def list_faces(self) -> List[Dict[str, Any]]:
        payload = await self.call("GET", FACE_RECORD_PATH, params={"format": "json", "searchID": "1"})
        faces = payload.get("FaceInfoList") if isinstance(payload, dict) else None
        return [
            {
                "faceId": face.get("faceID") or face.get("FPID"),
                "name": face.get("name"),
                "createTime": face.get("createTime"),
            }
            for face in faces or []
        ]

    async def delete_face(self, face_id: str) -> Any:
        payload = await self.call("DELETE", FACE_RECORD_PATH, params={"format": "json", "FPID": face_id})
        log.info("Deleted face %s from device", face_id)
        return payload

    # ------------------------------------------------------------------ persons

    async def add_person(self, person: Dict[str, Any]) -> Any:
        return await self.call("POST", USER_RECORD_PATH, params={"format": "json"}, json={"UserInfo": person})

    async def get_person(self, employee_no: str) -> Optional[Dict[str, Any]]:
        body = {
            "UserInfoSearchCond": {
                "searchID": uuid.uuid4().hex,
                "searchResultPosition": 0,
                "maxResults": 1,
                "EmployeeNoList": [{"employeeNo": employee_no}],
            }
        }
        payload = await self.call("POST", USER_SEARCH_PATH, params={"format": "json"}, json=body)
        search = payload.get("UserInfoSearch", {}) if isinstance(payload, dict) else {}
        users = search.get("UserInfo") or []
        return users[0] if users else None

    async def delete_person(self, employee_no: str) -> Any:
        body = {
            "UserInfoDetail": {
                "mode": "byEmployeeNo",
                "EmployeeNoList": [{"employeeNo": employee_no}],
            }
        }
        return await self.call("PUT", USER_DELETE_PATH, params={"format": "json"}, json=body)

    async def assign_permission(self, employee_no: str, door_no: int = 1, plan_template_no: str = "1") -> Any:
        body = {
            "UserInfo": {
                "employeeNo": employee_no,
                "RightPlan": [{"doorNo": door_no, "planTemplateNo": plan_template_no}],
            }
        }
        return await self.call("PUT", USER_MODIFY_PATH, params={"format": "json"}, json=body)

    # ------------------------------------------------------------------ event listener

    async def set_event_listener(self, url: str, host_id: int = 1) -> Any:
        body = build_http_host_xml(url, host_id)
        return await self.call(
            "PUT",
            HTTP_HOSTS_PATH,
            content=body,
            headers={"Content-Type": "application/xml"},
        )

    async def get_event_listeners(self) -> Any:
        return await self.call("GET", HTTP_HOSTS_PATH)

    async def delete_event_listeners(self) -> Any:
        return await self.call("DELETE", HTTP_HOSTS_PATH)

    async def test_event_listener(self, host_id: int = 1) -> Any:
        return await self.call("POST", f"{HTTP_HOSTS_PATH}/{host_id}/test")


def build_http_host_xml(url: str, host_id: int = 1) -> bytes:
    """Render the ``HttpHostNotificationList`` document pointing the device at ``url``"""
    target = httpx.URL(url)
    port = target.port or (443 if target.scheme == "https" else 80)

    root = ElementTree.Element("HttpHostNotificationList", {"xmlns": ISAPI_XMLNS})
    host = ElementTree.SubElement(root, "HttpHostNotification")

    def add(parent, tag, text):
        el = ElementTree.SubElement(parent, tag)
        el.text = str(text)
        return el

    add(host, "id", host_id)
    add(host, "url", target.raw_path.decode("ascii") or "/")
    add(host, "protocolType", "HTTPS" if target.scheme == "https" else "HTTP")
    add(host, "parameterFormatType", "JSON")
    try:
        ipaddress.ip_address(target.host)
        add(host, "addressingFormatType", "ipaddress")
        add(host, "ipAddress", target.host)
    except ValueError:
        add(host, "addressingFormatType", "hostname")
        add(host, "hostName", target.host)
    add(host, "portNo", port)
    add(host, "httpAuthenticationMethod", "none")
    subscribe = ElementTree.SubElement(host, "SubscribeEvent")
    add(subscribe, "heartbeat", 30)
    add(subscribe, "eventMode", "all")
    event_list = ElementTree.SubElement(subscribe, "EventList")
    event = ElementTree.SubElement(event_list, "Event")
    add(event, "type", "AccessControllerEvent")
    return ElementTree.tostring(root, encoding="utf-8", xml_declaration=True)
