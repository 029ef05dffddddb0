from __future__ import annotations

import datetime as dt
import logging
from typing import Optional

from fastapi import Depends, FastAPI, Query, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from . import models
from .config import settings
from .database import engine, get_db
from .errors import install_exception_handlers
from .schemas import (
    ClientDetailResponse,
    ClientResponse,
    InProgressProjectResponse,
    ProjectDetailResponse,
    ProjectResponse,
    ProjectUpdateRequest,
    TaskDetailResponse,
    TaskResponse,
    TimeEntryCreateRequest,
    TimeEntryDeletedResponse,
    TimeEntryResponse,
    TimeEntryUpdateRequest,
    TimerStartRequest,
    TimerStartResponse,
    TimerStopResponse,
)
from .services import (
    create_time_entry,
    delete_time_entry,
    entry_payload,
    get_active_timer,
    get_client,
    get_project,
    get_task,
    get_time_entry,
    list_clients,
    list_in_progress_tasks,
    list_projects,
    list_tasks,
    list_time_entries,
    start_timer,
    stop_timer,
    update_project,
    update_time_entry,
)

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

models.Base.metadata.create_all(bind=engine)

app = FastAPI(title=settings.app_name)
install_exception_handlers(app)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.get("/healthz")
def healthz() -> dict[str, str]:
    return {"status": "ok"}


@app.get("/time-entries/active", response_model=Optional[TimeEntryResponse])
def time_entries_active(db: Session = Depends(get_db)) -> Optional[TimeEntryResponse]:
    entry = get_active_timer(db)
    if entry is None:
        return None
    return TimeEntryResponse(**entry_payload(entry))


@app.post("/time-entries/start", response_model=TimerStartResponse, status_code=status.HTTP_201_CREATED)
def time_entries_start(payload: TimerStartRequest, db: Session = Depends(get_db)) -> TimerStartResponse:
    entry, created = start_timer(db, payload.task_id)
    return TimerStartResponse(
        time_entry_id=entry.id,
        task_id=entry.task_id,
        task_notion_id=entry.notion_task_id,
        start_time=entry.start_time,
        already_running=not created,
    )


@app.post("/time-entries/{entry_id}/stop", response_model=TimerStopResponse)
def time_entries_stop(entry_id: int, db: Session = Depends(get_db)) -> TimerStopResponse:
    entry = stop_timer(db, entry_id)
    return TimerStopResponse(time_entry_id=entry.id, end_time=entry.end_time, duration=entry.duration)


@app.get("/time-entries", response_model=list[TimeEntryResponse])
def time_entries_list(
    date: Optional[dt.date] = None,
    start_date: Optional[dt.date] = Query(None, alias="startDate"),
    end_date: Optional[dt.date] = Query(None, alias="endDate"),
    task_id: Optional[int] = Query(None, alias="taskId"),
    db: Session = Depends(get_db),
) -> list[TimeEntryResponse]:
    entries = list_time_entries(db, date, start_date, end_date, task_id)
    return [TimeEntryResponse(**entry_payload(entry)) for entry in entries]


@app.post("/time-entries", response_model=TimeEntryResponse, status_code=status.HTTP_201_CREATED)
def time_entries_create(payload: TimeEntryCreateRequest, db: Session = Depends(get_db)) -> TimeEntryResponse:
    entry = create_time_entry(db, payload.task_id, payload.start_time, payload.end_time, payload.duration)
    return TimeEntryResponse(**entry_payload(entry))


@app.get("/time-entries/{entry_id}", response_model=TimeEntryResponse)
def time_entries_get(entry_id: int, db: Session = Depends(get_db)) -> TimeEntryResponse:
    return TimeEntryResponse(**entry_payload(get_time_entry(db, entry_id)))


@app.put("/time-entries/{entry_id}", response_model=TimeEntryResponse)
def time_entries_update(
    entry_id: int,
    payload: TimeEntryUpdateRequest,
    db: Session = Depends(get_db),
) -> TimeEntryResponse:
    entry = update_time_entry(
        db,
        entry_id,
        payload.start_time,
        payload.end_time,
        payload.task_id,
    )
    return TimeEntryResponse(**entry_payload(entry))


@app.delete("/time-entries/{entry_id}", response_model=TimeEntryDeletedResponse)
def time_entries_delete(entry_id: int, db: Session = Depends(get_db)) -> TimeEntryDeletedResponse:
    return TimeEntryDeletedResponse(time_entry_id=delete_time_entry(db, entry_id))


@app.get("/clients", response_model=list[ClientResponse])
def clients_list(db: Session = Depends(get_db)) -> list[ClientResponse]:
    return list_clients(db)


@app.get("/clients/active", response_model=list[ClientResponse])
def clients_active(db: Session = Depends(get_db)) -> list[ClientResponse]:
    return list_clients(db, active_only=True)


@app.get("/clients/{client_id}", response_model=ClientDetailResponse)
def clients_get(client_id: str, db: Session = Depends(get_db)) -> ClientDetailResponse:
    return get_client(db, client_id)


@app.get("/projects", response_model=list[ProjectResponse])
def projects_list(db: Session = Depends(get_db)) -> list[ProjectResponse]:
    return list_projects(db)


@app.get("/projects/active", response_model=list[ProjectResponse])
def projects_active(db: Session = Depends(get_db)) -> list[ProjectResponse]:
    return list_projects(db, active_only=True)


@app.get("/projects/{project_id}", response_model=ProjectDetailResponse)
def projects_get(project_id: str, db: Session = Depends(get_db)) -> ProjectDetailResponse:
    return get_project(db, project_id)


@app.put("/projects/{project_id}", response_model=ProjectResponse)
def projects_update(
    project_id: str,
    payload: ProjectUpdateRequest,
    db: Session = Depends(get_db),
) -> ProjectResponse:
    return update_project(db, project_id, payload.color, payload.hourly_rate)


@app.get("/tasks", response_model=list[TaskResponse])
def tasks_list(
    status_value: Optional[str] = Query(None, alias="status"),
    project_id: Optional[str] = Query(None, alias="projectId"),
    db: Session = Depends(get_db),
) -> list[TaskResponse]:
    return list_tasks(db, status_value, project_id)


@app.get("/tasks/in-progress", response_model=list[InProgressProjectResponse])
def tasks_in_progress(db: Session = Depends(get_db)) -> list[InProgressProjectResponse]:
    return list_in_progress_tasks(db, settings.assignee)


@app.get("/tasks/{task_id}", response_model=TaskDetailResponse)
def tasks_get(task_id: str, db: Session = Depends(get_db)) -> TaskDetailResponse:
    return get_task(db, task_id)
