from __future__ import annotations

import datetime as dt
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_serializer
from pydantic.alias_generators import to_camel

from .utils import serialize_datetime


def _json_value(value: Any) -> Any:
    if isinstance(value, dt.datetime):
        return serialize_datetime(value)
    if isinstance(value, dt.date):
        return value.isoformat()
    if isinstance(value, ResponseModel):
        return value._serialize()
    if isinstance(value, list):
        return [_json_value(item) for item in value]
    return value


class RequestModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ResponseModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    @model_serializer(mode="plain", when_used="json")
    def _serialize(self) -> dict[str, Any]:
        return {to_camel(name): _json_value(getattr(self, name)) for name in type(self).model_fields}


class TimerStartRequest(RequestModel):
    task_id: int


class TimeEntryCreateRequest(RequestModel):
    task_id: int
    start_time: dt.datetime
    end_time: Optional[dt.datetime] = None
    duration: Optional[int] = None


class TimeEntryUpdateRequest(RequestModel):
    start_time: dt.datetime
    end_time: dt.datetime
    duration: Optional[int] = None
    task_id: Optional[int] = None


class TimerStartResponse(ResponseModel):
    time_entry_id: int
    task_id: int
    task_notion_id: str
    start_time: dt.datetime
    already_running: bool = False


class TimerStopResponse(ResponseModel):
    time_entry_id: int
    end_time: dt.datetime
    duration: int


class TimeEntryDeletedResponse(ResponseModel):
    time_entry_id: int


class TimeEntryResponse(ResponseModel):
    time_entry_id: int
    task_id: int
    task_notion_id: str
    task_name: Optional[str] = None
    is_billable: Optional[bool] = None
    project_id: Optional[int] = None
    project_name: Optional[str] = None
    project_notion_id: Optional[str] = None
    project_color: Optional[str] = None
    project_icon_type: Optional[str] = None
    project_icon_value: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    client_notion_id: Optional[str] = None
    start_time: dt.datetime
    end_time: Optional[dt.datetime] = None
    duration: Optional[int] = None
    is_running: bool = False


class ClientResponse(ResponseModel):
    id: int
    notion_id: str
    name: str
    status: Optional[str] = None
    project_count: int = 0
    total_hours_spent: float = 0.0


class ProjectUpdateRequest(RequestModel):
    color: Optional[str] = None
    hourly_rate: Optional[float] = None


class ProjectResponse(ResponseModel):
    id: int
    notion_id: str
    name: str
    status: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    budgeted_time: float = 0.0
    hourly_rate: float = 0.0
    color: Optional[str] = None
    icon_type: Optional[str] = None
    icon_value: Optional[str] = None
    total_hours_spent: float = 0.0
    unbilled_hours: float = 0.0
    percentage_budget_used: float = 0.0


class TaskResponse(ResponseModel):
    id: int
    notion_id: str
    name: str
    status: Optional[str] = None
    assignee: Optional[str] = None
    is_billable: bool = True
    been_billed: bool = False
    project_id: Optional[int] = None
    project_name: Optional[str] = None
    client_id: Optional[int] = None
    client_name: Optional[str] = None
    total_hours_spent: float = 0.0
    active_timer_start_time: Optional[dt.datetime] = None


class TaskDetailResponse(TaskResponse):
    time_entries: List[TimeEntryResponse] = Field(default_factory=list)


class ProjectDetailResponse(ProjectResponse):
    tasks: List[TaskResponse] = Field(default_factory=list)


class ClientDetailResponse(ClientResponse):
    projects: List[ProjectResponse] = Field(default_factory=list)


class InProgressProjectResponse(ResponseModel):
    project_id: int
    project_name: str
    project_notion_id: str
    tasks: List[TaskResponse] = Field(default_factory=list)
