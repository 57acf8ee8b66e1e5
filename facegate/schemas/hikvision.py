from typing import Literal

from pydantic import Field, field_validator

from .face import CamelModel, http_url


class CreatePersonDto(CamelModel):
    employee_no: str = Field(min_length=1, max_length=32, examples=["EMP12345"])
    name: str = Field(min_length=1, max_length=128, examples=["John Doe"])
    user_type: Literal["normal", "visitor"] = "normal"

    def to_device(self) -> dict:
        return {
            "employeeNo": self.employee_no,
            "name": self.name,
            "userType": self.user_type,
            "Valid": {
                "enable": True,
                "beginTime": "2020-01-01T00:00:00",
                "endTime": "2037-12-31T23:59:59",
            },
        }


class PermissionDto(CamelModel):
    door_no: int = Field(1, ge=1)
    plan_template_no: str = Field("1", min_length=1)


class SetListenerDto(CamelModel):
    url: str = Field(examples=["http://192.168.1.10:8999/face-recognition/webhook"])
    host_id: int = Field(1, ge=1)

    @field_validator("url")
    @classmethod
    def _http_url(cls, v: str) -> str:
        return http_url(v)


class ListenerTestDto(CamelModel):
    host_id: int = Field(1, ge=1)
