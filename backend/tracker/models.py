from __future__ import annotations

import datetime as dt

from sqlalchemy import Boolean, Column, DateTime, Float, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship

from .durations import duration_seconds

Base = declarative_base()


def utcnow() -> dt.datetime:
    return dt.datetime.now(dt.timezone.utc)


UTC = dt.timezone.utc


def _as_utc(value: dt.datetime) -> dt.datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


class Client(Base):
    __tablename__ = "clients"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    notion_id = Column(String(64), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    status = Column(String(50), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    projects = relationship("Project", back_populates="client")


class Project(Base):
    __tablename__ = "projects"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    notion_id = Column(String(64), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    client_id = Column(Integer, ForeignKey("clients.id", ondelete="SET NULL"), nullable=True, index=True)
    notion_client_id = Column(String(64), nullable=True)
    budgeted_time = Column(Float, nullable=False, default=0)  # hours
    hourly_rate = Column(Float, nullable=False, default=0)
    status = Column(String(50), nullable=True)
    icon_type = Column(String(20), nullable=True)
    icon_value = Column(String(500), nullable=True)
    color = Column(String(20), nullable=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    client = relationship("Client", back_populates="projects")
    tasks = relationship("Task", back_populates="project")


class Task(Base):
    __tablename__ = "tasks"
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    notion_id = Column(String(64), nullable=False, unique=True)
    name = Column(String(200), nullable=False)
    project_id = Column(Integer, ForeignKey("projects.id", ondelete="SET NULL"), nullable=True, index=True)
    notion_project_id = Column(String(64), nullable=True)
    status = Column(String(50), nullable=True)
    assignee = Column(String(200), nullable=True)
    is_billable = Column(Boolean, nullable=False, default=True)
    been_billed = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    project = relationship("Project", back_populates="tasks")
    time_entries = relationship(
        "TimeEntry",
        back_populates="task",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="TimeEntry.start_time",
    )


class TimeEntry(Base):
    __tablename__ = "time_entries"
    # Never hand a deleted row's id to a new one.
    __table_args__ = {"sqlite_autoincrement": True}

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False, index=True)
    notion_task_id = Column(String(64), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False, index=True)
    end_time = Column(DateTime(timezone=True), nullable=True, index=True)
    duration = Column(Integer, nullable=True)  # seconds
    # TRUE while running, NULL once stopped; NULLs never collide, so the
    # unique constraint admits at most one running entry.
    running_marker = Column(Boolean, nullable=True, unique=True)
    created_at = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    task = relationship("Task", back_populates="time_entries")

    @property
    def is_running(self) -> bool:
        return self.end_time is None

    def mark_running(self, now: dt.datetime) -> None:
        self.start_time = _as_utc(now)
        self.end_time = None
        self.duration = None
        self.running_marker = True

    def mark_stopped(self, now: dt.datetime) -> None:
        if self.end_time is not None:
            return
        self.set_interval(_as_utc(self.start_time), _as_utc(now))

    def set_interval(self, start: dt.datetime, end: dt.datetime) -> None:
        start_utc = _as_utc(start)
        end_utc = _as_utc(end)
        self.duration = duration_seconds(start_utc, end_utc)
        self.start_time = start_utc
        self.end_time = end_utc
        self.running_marker = None

