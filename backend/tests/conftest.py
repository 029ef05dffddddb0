from __future__ import annotations

import datetime as dt
import tempfile
from pathlib import Path
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from tracker.database import get_db
from tracker.main import app
from tracker import models
from tracker.utils import LOCAL_TZ


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT nesting. Hand
    # transaction control to SQLAlchemy so each test can be rolled back.
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    # Service-level commits and rollbacks become savepoints inside the
    # outer transaction, which is discarded after every test.
    SessionTesting = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        future=True,
        join_transaction_mode="create_savepoint",
    )
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture(scope="function")
def client(session: Session, catalog) -> Generator[TestClient, None, None]:
    def override_get_db():
        # The session is shared with the test body and closed by the
        # ``session`` fixture at teardown; closing it here would detach
        # objects the test still holds.
        yield session

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture()
def catalog(session: Session) -> dict:
    acme = models.Client(id=1, notion_id="client-acme", name="Acme Ltd", status="Active")
    website = models.Project(
        id=3,
        notion_id="project-website",
        name="Website",
        client=acme,
        notion_client_id=acme.notion_id,
        budgeted_time=10,
        hourly_rate=120,
        status="In Progress",
        color="#ff8800",
        icon_type="emoji",
        icon_value="*",
    )
    report = models.Task(id=7, notion_id="task-report", name="Write report", project=website, status="Doing")
    review = models.Task(id=8, notion_id="task-review", name="Code review", project=website, status="To Do")
    internal = models.Task(
        id=9,
        notion_id="task-internal",
        name="Internal admin",
        project=website,
        status="Doing",
        is_billable=False,
    )
    session.add_all([acme, website, report, review, internal])
    session.commit()
    return {"client": acme, "project": website, "tasks": {7: report, 8: review, 9: internal}}


@pytest.fixture()
def sample_day() -> dt.date:
    return dt.date(2024, 1, 1)


@pytest.fixture()
def local_time(sample_day: dt.date):
    """Build an aware instant on the sample day in the display timezone."""

    def _build(hour: int, minute: int = 0, day: dt.date | None = None) -> dt.datetime:
        return dt.datetime.combine(day or sample_day, dt.time(hour, minute), tzinfo=LOCAL_TZ)

    return _build
