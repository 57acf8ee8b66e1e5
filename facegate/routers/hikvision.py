import logging
from typing import Any, Optional

from fastapi import APIRouter, Depends, status

from facegate.core.exceptions import NotFoundError
from facegate.dependencies import get_isapi_client
from facegate.schemas.hikvision import CreatePersonDto, ListenerTestDto, PermissionDto, SetListenerDto
from facegate.services.isapi_client import IsapiClient
from facegate.services.security import require_api_key

router = APIRouter(prefix="/hikvision", tags=["hikvision"], dependencies=[Depends(require_api_key)])
log = logging.getLogger("facegate.hikvision")


@router.get("/device-info")
async def device_info(client: IsapiClient = Depends(get_isapi_client)) -> Any:
    return await client.get_device_info()


@router.get("/capabilities")
async def capabilities(client: IsapiClient = Depends(get_isapi_client)) -> Any:
    return await client.get_capabilities()


@router.post("/persons", status_code=status.HTTP_201_CREATED)
async def create_person(body: CreatePersonDto, client: IsapiClient = Depends(get_isapi_client)):
    response = await client.add_person(body.to_device())
    log.info("Created person %s on device", body.employee_no)
    return {"success": True, "employeeNo": body.employee_no, "deviceResponse": response}


@router.get("/persons/{employee_no}")
async def get_person(employee_no: str, client: IsapiClient = Depends(get_isapi_client)):
    person = await client.get_person(employee_no)
    if person is None:
        raise NotFoundError(f"Person {employee_no} not found on device", {"employeeNo": employee_no})
    return person


@router.delete("/persons/{employee_no}")
async def delete_person(employee_no: str, client: IsapiClient = Depends(get_isapi_client)):
    response = await client.delete_person(employee_no)
    log.info("Deleted person %s from device", employee_no)
    return {"success": True, "employeeNo": employee_no, "deviceResponse": response}


@router.post("/persons/{employee_no}/permissions")
async def assign_permission(
    employee_no: str,
    body: Optional[PermissionDto] = None,
    client: IsapiClient = Depends(get_isapi_client),
):
    body = body or PermissionDto()
    response = await client.assign_permission(employee_no, body.door_no, body.plan_template_no)
    return {"success": True, "employeeNo": employee_no, "deviceResponse": response}


@router.put("/event-listener")
async def set_event_listener(body: SetListenerDto, client: IsapiClient = Depends(get_isapi_client)):
    response = await client.set_event_listener(body.url, body.host_id)
    log.info("Event listener %s set to %s", body.host_id, body.url)
    return {"success": True, "url": body.url, "deviceResponse": response}


@router.get("/event-listener")
async def get_event_listener(client: IsapiClient = Depends(get_isapi_client)) -> Any:
    return await client.get_event_listeners()


@router.delete("/event-listener")
async def delete_event_listener(client: IsapiClient = Depends(get_isapi_client)):
    response = await client.delete_event_listeners()
    return {"success": True, "deviceResponse": response}


@router.post("/event-listener/test")
async def test_event_listener(
    body: Optional[ListenerTestDto] = None,
    client: IsapiClient = Depends(get_isapi_client),
):
    body = body or ListenerTestDto()
    response = await client.test_event_listener(body.host_id)
    return {"success": True, "hostId": body.host_id, "deviceResponse": response}
