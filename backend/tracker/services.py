from __future__ import annotations

import datetime as dt
import re
import logging
from threading import RLock
from typing import Any, Dict, List, Optional, Tuple, Union

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, joinedload

from .durations import end_from_duration
from .errors import AlreadyStoppedError, NotFoundError, StorageError, ValidationError
from .models import Client, Project, Task, TimeEntry
from .utils import day_bounds, ensure_utc, from_db_datetime, now_utc

logger = logging.getLogger(__name__)

# Serialises read-open-entry -> close-it -> insert-new within this process.
_TIMER_LOCK = RLock()


def _commit(db: Session, action: str) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("Storage failure while trying to %s", action)
        raise StorageError(f"Could not {action}") from exc


def _entry_query(db: Session):
    return db.query(TimeEntry).options(
        joinedload(TimeEntry.task).joinedload(Task.project).joinedload(Project.client)
    )


def _open_entry(db: Session) -> Optional[TimeEntry]:
    return (
        db.query(TimeEntry)
        .filter(TimeEntry.end_time.is_(None))
        .order_by(TimeEntry.start_time.desc())
        .with_for_update()
        .first()
    )


def _get_task(db: Session, task_id: int) -> Task:
    task = db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found.")
    return task


def _get_entry(db: Session, entry_id: int) -> TimeEntry:
    entry = _entry_query(db).filter(TimeEntry.id == entry_id).one_or_none()
    if entry is None:
        raise NotFoundError("Time entry not found.")
    return entry


def _stop_at(entry: TimeEntry, now: dt.datetime) -> dt.datetime:
    # A clock step backwards must not produce a negative interval.
    return max(now, from_db_datetime(entry.start_time))


def entry_payload(entry: TimeEntry) -> Dict[str, Any]:
    task = entry.task
    project = task.project if task is not None else None
    client = project.client if project is not None else None
    return {
        "time_entry_id": entry.id,
        "task_id": entry.task_id,
        "task_notion_id": entry.notion_task_id,
        "task_name": task.name if task else None,
        "is_billable": task.is_billable if task else None,
        "project_id": project.id if project else None,
        "project_name": project.name if project else None,
        "project_notion_id": project.notion_id if project else None,
        "project_color": project.color if project else None,
        "project_icon_type": project.icon_type if project else None,
        "project_icon_value": project.icon_value if project else None,
        "client_id": client.id if client else None,
        "client_name": client.name if client else None,
        "client_notion_id": client.notion_id if client else None,
        "start_time": from_db_datetime(entry.start_time),
        "end_time": from_db_datetime(entry.end_time),
        "duration": entry.duration if entry.end_time is not None else None,
        "is_running": entry.is_running,
    }


# ---------------------------------------------------------------------------
# Timer
# ---------------------------------------------------------------------------


def get_active_timer(db: Session) -> Optional[TimeEntry]:
    return (
        _entry_query(db)
        .filter(TimeEntry.end_time.is_(None))
        .order_by(TimeEntry.start_time.desc())
        .first()
    )


def start_timer(db: Session, task_id: int, now: Optional[dt.datetime] = None) -> Tuple[TimeEntry, bool]:
    """Start a timer for ``task_id``, closing whichever timer is open.

    Returns the running entry and whether a new entry was created. Starting
    the task that is already running leaves that entry untouched.
    """
    now = ensure_utc(now) if now else now_utc()
    with _TIMER_LOCK:
        try:
            active = _open_entry(db)
            if active is not None and active.task_id == task_id:
                logger.info("Timer %s already running for task %s", active.id, task_id)
                return active, False
            if active is not None:
                active.mark_stopped(_stop_at(active, now))
                db.flush()
                logger.info("Timer %s stopped due to new timer start", active.id)

            task = db.get(Task, task_id)
            if task is None:
                db.rollback()
                logger.warning("Start rejected: task %s does not exist", task_id)
                raise NotFoundError("Task not found.")

            entry = TimeEntry(task_id=task.id, notion_task_id=task.notion_id)
            entry.mark_running(now)
            db.add(entry)
            db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.exception("Storage failure while starting timer for task %s", task_id)
            raise StorageError("Could not start timer") from exc
    db.refresh(entry)
    logger.info("Timer %s started for task %s", entry.id, task_id)
    return entry, True


def stop_timer(db: Session, entry_id: int, now: Optional[dt.datetime] = None) -> TimeEntry:
    now = ensure_utc(now) if now else now_utc()
    with _TIMER_LOCK:
        entry = (
            db.query(TimeEntry)
            .filter(TimeEntry.id == entry_id, TimeEntry.end_time.is_(None))
            .with_for_update()
            .one_or_none()
        )
        if entry is None:
            raise AlreadyStoppedError("Active time entry not found or already stopped.")
        entry.mark_stopped(_stop_at(entry, now))
        _commit(db, "stop timer")
    db.refresh(entry)
    logger.info("Timer %s stopped after %s seconds", entry.id, entry.duration)
    return entry


# ---------------------------------------------------------------------------
# Interval store
# ---------------------------------------------------------------------------


def list_time_entries(
    db: Session,
    day: Optional[dt.date] = None,
    start_date: Optional[dt.date] = None,
    end_date: Optional[dt.date] = None,
    task_id: Optional[int] = None,
) -> List[TimeEntry]:
    if day is not None and (start_date is not None or end_date is not None):
        raise ValidationError("Use either date or startDate/endDate, not both.")
    if start_date is not None and end_date is not None and end_date < start_date:
        raise ValidationError("endDate cannot be before startDate.")
    if day is not None:
        start_date = end_date = day

    query = _entry_query(db)
    if start_date is not None:
        range_start, _ = day_bounds(start_date)
        query = query.filter(TimeEntry.start_time >= range_start)
    if end_date is not None:
        _, range_end = day_bounds(end_date)
        query = query.filter(TimeEntry.start_time < range_end)
    if task_id is not None:
        query = query.filter(TimeEntry.task_id == task_id)
    return query.order_by(TimeEntry.start_time.asc(), TimeEntry.id.asc()).all()


def get_time_entry(db: Session, entry_id: int) -> TimeEntry:
    return _get_entry(db, entry_id)


def create_time_entry(
    db: Session,
    task_id: int,
    start_time: dt.datetime,
    end_time: Optional[dt.datetime] = None,
    duration: Optional[int] = None,
) -> TimeEntry:
    """Store a finished entry.

    With ``end_time`` the endpoints are authoritative and the duration is
    derived from them; ``duration`` only places the end when ``end_time`` is
    missing.
    """
    if end_time is None and duration is None:
        raise ValidationError("Either endTime or duration (in seconds) is required.")
    start_utc = ensure_utc(start_time)
    if end_time is not None:
        end_utc = ensure_utc(end_time)
        if end_utc < start_utc:
            raise ValidationError("endTime cannot be before startTime.")
    else:
        if duration < 0:
            raise ValidationError("Invalid duration.")
        end_utc = end_from_duration(start_utc, duration)

    task = _get_task(db, task_id)
    entry = TimeEntry(task_id=task.id, notion_task_id=task.notion_id)
    entry.set_interval(start_utc, end_utc)
    db.add(entry)
    _commit(db, "create time entry")
    logger.info("Time entry %s added for task %s (%s seconds)", entry.id, task.id, entry.duration)
    return _get_entry(db, entry.id)


def update_time_entry(
    db: Session,
    entry_id: int,
    start_time: dt.datetime,
    end_time: dt.datetime,
    task_id: Optional[int] = None,
) -> TimeEntry:
    entry = _get_entry(db, entry_id)
    if entry.is_running:
        raise ValidationError("Running time entries cannot be edited; stop the timer first.")

    start_utc = ensure_utc(start_time)
    end_utc = ensure_utc(end_time)
    if end_utc < start_utc:
        raise ValidationError("endTime cannot be before startTime.")

    if task_id is not None and task_id != entry.task_id:
        task = _get_task(db, task_id)
        entry.task_id = task.id
        entry.notion_task_id = task.notion_id
        entry.task = task
    entry.set_interval(start_utc, end_utc)
    db.add(entry)
    _commit(db, "update time entry")
    logger.info("Time entry %s updated (%s seconds)", entry.id, entry.duration)
    return _get_entry(db, entry.id)


def delete_time_entry(db: Session, entry_id: int) -> int:
    entry = db.get(TimeEntry, entry_id)
    if entry is None:
        raise NotFoundError("Time entry not found.")
    db.delete(entry)
    _commit(db, "delete time entry")
    logger.info("Time entry %s deleted", entry_id)
    return entry_id


# ---------------------------------------------------------------------------
# Mirrored catalogue
# ---------------------------------------------------------------------------

ACTIVE_PROJECT_STATUSES = ("Proposal", "In Progress", "Ongoing")
CLOSED_CLIENT_STATUSES = ("Done", "Completed", "Archived")
IN_PROGRESS_TASK_STATUSES = ("Doing", "To Do")
_HEX_COLOR = re.compile(r"^#([A-Fa-f0-9]{6}|[A-Fa-f0-9]{3})$")


def _seconds_by_task(db: Session) -> Dict[int, int]:
    rows = (
        db.query(TimeEntry.task_id, func.coalesce(func.sum(TimeEntry.duration), 0))
        .filter(TimeEntry.end_time.isnot(None))
        .group_by(TimeEntry.task_id)
        .all()
    )
    return {task_id: int(seconds or 0) for task_id, seconds in rows}


def _running_starts(db: Session) -> Dict[int, dt.datetime]:
    rows = db.query(TimeEntry.task_id, TimeEntry.start_time).filter(TimeEntry.end_time.is_(None)).all()
    return {task_id: from_db_datetime(start) for task_id, start in rows}


def _hours(seconds: int) -> float:
    return round(seconds / 3600.0, 4)


def _id_or_notion_id(column_id, column_notion_id, value: str):
    conditions = [column_notion_id == value]
    if value.isdigit():
        conditions.append(column_id == int(value))
    return or_(*conditions)


def _task_payload(
    task: Task,
    seconds_by_task: Dict[int, int],
    running: Dict[int, dt.datetime],
) -> Dict[str, Any]:
    project = task.project
    client = project.client if project else None
    return {
        "id": task.id,
        "notion_id": task.notion_id,
        "name": task.name,
        "status": task.status,
        "assignee": task.assignee,
        "is_billable": bool(task.is_billable),
        "been_billed": bool(task.been_billed),
        "project_id": project.id if project else None,
        "project_name": project.name if project else None,
        "client_id": client.id if client else None,
        "client_name": client.name if client else None,
        "total_hours_spent": _hours(seconds_by_task.get(task.id, 0)),
        "active_timer_start_time": running.get(task.id),
    }


def _project_payload(project: Project, seconds_by_task: Dict[int, int]) -> Dict[str, Any]:
    total = 0
    unbilled = 0
    for task in project.tasks:
        seconds = seconds_by_task.get(task.id, 0)
        total += seconds
        if task.is_billable and not task.been_billed:
            unbilled += seconds
    budget = project.budgeted_time or 0.0
    total_hours = _hours(total)
    return {
        "id": project.id,
        "notion_id": project.notion_id,
        "name": project.name,
        "status": project.status,
        "client_id": project.client_id,
        "client_name": project.client.name if project.client else None,
        "budgeted_time": budget,
        "hourly_rate": project.hourly_rate or 0.0,
        "color": project.color,
        "icon_type": project.icon_type,
        "icon_value": project.icon_value,
        "total_hours_spent": total_hours,
        "unbilled_hours": _hours(unbilled),
        "percentage_budget_used": round(total_hours / budget * 100, 2) if budget > 0 else 0.0,
    }


def _client_payload(client: Client, seconds_by_task: Dict[int, int]) -> Dict[str, Any]:
    seconds = sum(seconds_by_task.get(task.id, 0) for project in client.projects for task in project.tasks)
    return {
        "id": client.id,
        "notion_id": client.notion_id,
        "name": client.name,
        "status": client.status,
        "project_count": len(client.projects),
        "total_hours_spent": _hours(seconds),
    }


def list_tasks(
    db: Session,
    status_value: Optional[str] = None,
    project_id: Optional[Union[int, str]] = None,
) -> List[Dict[str, Any]]:
    query = db.query(Task).outerjoin(Project, Task.project_id == Project.id).options(
        joinedload(Task.project).joinedload(Project.client)
    )
    if status_value:
        query = query.filter(Task.status == status_value)
    if project_id is not None:
        query = query.filter(_id_or_notion_id(Task.project_id, Project.notion_id, str(project_id)))
    tasks = query.order_by(func.lower(Project.name), func.lower(Task.name)).all()
    seconds_by_task = _seconds_by_task(db)
    running = _running_starts(db)
    return [_task_payload(task, seconds_by_task, running) for task in tasks]


def list_in_progress_tasks(db: Session, assignee: Optional[str] = None) -> List[Dict[str, Any]]:
    """Tasks to pick a timer from, grouped by project.

    A task qualifies when its status is open or a timer is running on it.
    With ``assignee`` set, tasks assigned to somebody else are left out.
    """
    running = _running_starts(db)
    query = (
        db.query(Task)
        .join(Project, Task.project_id == Project.id)
        .options(joinedload(Task.project).joinedload(Project.client))
        .filter(or_(Task.status.in_(IN_PROGRESS_TASK_STATUSES), Task.id.in_(list(running))))
    )
    if assignee:
        query = query.filter(or_(Task.assignee.is_(None), Task.assignee.ilike(f"%{assignee}%")))
    tasks = query.order_by(func.lower(Project.name), func.lower(Task.name)).all()

    seconds_by_task = _seconds_by_task(db)
    groups: Dict[int, Dict[str, Any]] = {}
    for task in tasks:
        group = groups.setdefault(
            task.project.id,
            {
                "project_id": task.project.id,
                "project_name": task.project.name,
                "project_notion_id": task.project.notion_id,
                "tasks": [],
            },
        )
        group["tasks"].append(_task_payload(task, seconds_by_task, running))
    return list(groups.values())


def get_task(db: Session, id_or_notion_id: str) -> Dict[str, Any]:
    task = (
        db.query(Task)
        .options(joinedload(Task.project).joinedload(Project.client))
        .filter(_id_or_notion_id(Task.id, Task.notion_id, id_or_notion_id))
        .first()
    )
    if task is None:
        raise NotFoundError("Task not found.")
    entries = (
        _entry_query(db)
        .filter(TimeEntry.task_id == task.id)
        .order_by(TimeEntry.start_time.desc())
        .all()
    )
    payload = _task_payload(task, _seconds_by_task(db), _running_starts(db))
    payload["time_entries"] = [entry_payload(entry) for entry in entries]
    return payload


def _project_query(db: Session):
    return db.query(Project).options(joinedload(Project.client), joinedload(Project.tasks))


def _find_project(db: Session, id_or_notion_id: str) -> Project:
    project = _project_query(db).filter(_id_or_notion_id(Project.id, Project.notion_id, id_or_notion_id)).first()
    if project is None:
        raise NotFoundError("Project not found.")
    return project


def list_projects(db: Session, active_only: bool = False) -> List[Dict[str, Any]]:
    query = _project_query(db)
    if active_only:
        query = query.filter(Project.status.in_(ACTIVE_PROJECT_STATUSES))
    projects = query.order_by(func.lower(Project.name)).all()
    seconds_by_task = _seconds_by_task(db)
    return [_project_payload(project, seconds_by_task) for project in projects]


def get_project(db: Session, id_or_notion_id: str) -> Dict[str, Any]:
    project = _find_project(db, id_or_notion_id)
    seconds_by_task = _seconds_by_task(db)
    running = _running_starts(db)
    payload = _project_payload(project, seconds_by_task)
    tasks = sorted(project.tasks, key=lambda task: task.name.lower())
    payload["tasks"] = [_task_payload(task, seconds_by_task, running) for task in tasks]
    return payload


def update_project(
    db: Session,
    id_or_notion_id: str,
    color: Optional[str] = None,
    hourly_rate: Optional[float] = None,
) -> Dict[str, Any]:
    """Update the fields that are owned locally rather than mirrored from Notion."""
    if color is None and hourly_rate is None:
        raise ValidationError("color or hourlyRate is required.")
    if color is not None and not _HEX_COLOR.match(color):
        raise ValidationError("color must be a valid hex color (e.g., #FF5733 or #F53)")
    if hourly_rate is not None and hourly_rate < 0:
        raise ValidationError("hourlyRate must be a non-negative number.")

    project = _find_project(db, id_or_notion_id)
    if color is not None:
        project.color = color
    if hourly_rate is not None:
        project.hourly_rate = hourly_rate
    _commit(db, "update project")
    logger.info("Project %s updated", project.id)
    return _project_payload(project, _seconds_by_task(db))


def _client_query(db: Session):
    return db.query(Client).options(joinedload(Client.projects).joinedload(Project.tasks))


def list_clients(db: Session, active_only: bool = False) -> List[Dict[str, Any]]:
    query = _client_query(db)
    if active_only:
        query = query.filter(or_(Client.status.is_(None), Client.status.notin_(CLOSED_CLIENT_STATUSES)))
    clients = query.order_by(func.lower(Client.name)).all()
    seconds_by_task = _seconds_by_task(db)
    return [_client_payload(client, seconds_by_task) for client in clients]


def get_client(db: Session, id_or_notion_id: str) -> Dict[str, Any]:
    client = _client_query(db).filter(_id_or_notion_id(Client.id, Client.notion_id, id_or_notion_id)).first()
    if client is None:
        raise NotFoundError("Client not found.")
    seconds_by_task = _seconds_by_task(db)
    payload = _client_payload(client, seconds_by_task)
    projects = sorted(client.projects, key=lambda project: project.name.lower())
    payload["projects"] = [_project_payload(project, seconds_by_task) for project in projects]
    return payload
