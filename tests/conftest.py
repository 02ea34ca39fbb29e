"""Pytest configuration and shared fixtures.

Store-backed tests use a file-backed SQLite database per test. The
schema is created and seeded through a synchronous engine; async tests
open their own ``aiosqlite`` engine with ``NullPool`` so concurrent
statements get independent connections.
"""

import sys
from dataclasses import dataclass
from datetime import date
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.orm import Session
from sqlalchemy.pool import NullPool

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from pmsy.db.base import Base  # noqa: E402
from pmsy.db.models import (  # noqa: E402
    Profile,
    Project,
    ProjectMember,
    SystemConfig,
    Task,
    TaskDependency,
)

# Fixed ids of the seeded rows
ADMIN_ID = "00000000-0000-0000-0000-0000000000a1"
ALICE_ID = "00000000-0000-0000-0000-0000000000a2"
BOB_ID = "00000000-0000-0000-0000-0000000000a3"
CAROL_ID = "00000000-0000-0000-0000-0000000000a4"

APOLLO_ID = "00000000-0000-0000-0000-0000000000b1"
ZEUS_ID = "00000000-0000-0000-0000-0000000000b2"

TASK_DESIGN_ID = "00000000-0000-0000-0000-0000000000c1"
TASK_BUILD_ID = "00000000-0000-0000-0000-0000000000c2"
TASK_TEST_ID = "00000000-0000-0000-0000-0000000000c3"
TASK_SHIP_ID = "00000000-0000-0000-0000-0000000000c4"
TASK_ZEUS_ID = "00000000-0000-0000-0000-0000000000c5"

DEP_BUILD_DESIGN_ID = "00000000-0000-0000-0000-0000000000d1"


@dataclass
class SeededDatabase:
    """Paths and URLs of a seeded test database."""

    path: Path

    @property
    def sync_url(self) -> str:
        return f"sqlite:///{self.path}"

    @property
    def async_url(self) -> str:
        return f"sqlite+aiosqlite:///{self.path}"

    def async_engine(self):
        return create_async_engine(self.async_url, poolclass=NullPool)


def seed(session: Session) -> None:
    """Seed a small organisation.

    - Alice manages project Apollo and created its tasks.
    - Bob is a member of Apollo only.
    - Carol belongs to nothing; she manages project Zeus.
    - Build depends on Design.
    """
    session.add_all([
        Profile(id=ADMIN_ID, email="admin@example.com", full_name="Admin", role="admin"),
        Profile(id=ALICE_ID, email="alice@example.com", full_name="Alice", role="user"),
        Profile(id=BOB_ID, email="bob@example.com", full_name="Bob", role="user"),
        Profile(id=CAROL_ID, email="carol@example.com", full_name="Carol", role="user"),
    ])
    session.flush()
    session.add_all([
        Project(id=APOLLO_ID, name="Apollo", status="active", manager_id=ALICE_ID, created_by=ALICE_ID),
        Project(id=ZEUS_ID, name="Zeus", status="archived", manager_id=CAROL_ID, created_by=CAROL_ID),
    ])
    session.flush()
    session.add_all([
        ProjectMember(project_id=APOLLO_ID, user_id=ALICE_ID, role="manager"),
        ProjectMember(project_id=APOLLO_ID, user_id=BOB_ID, role="member"),
        ProjectMember(project_id=ZEUS_ID, user_id=CAROL_ID, role="manager"),
    ])
    session.add_all([
        Task(id=TASK_DESIGN_ID, project_id=APOLLO_ID, title="Design", status="done",
             priority=1, due_date=date(2026, 3, 1), created_by=ALICE_ID),
        Task(id=TASK_BUILD_ID, project_id=APOLLO_ID, title="Build", status="in_progress",
             priority=2, due_date=date(2026, 4, 1), created_by=ALICE_ID),
        Task(id=TASK_TEST_ID, project_id=APOLLO_ID, title="Test", status="todo",
             priority=2, due_date=date(2026, 5, 1), created_by=ALICE_ID),
        Task(id=TASK_SHIP_ID, project_id=APOLLO_ID, title="Ship", status="todo",
             priority=3, created_by=BOB_ID),
        Task(id=TASK_ZEUS_ID, project_id=ZEUS_ID, title="Zeus plan", status="todo",
             priority=1, created_by=CAROL_ID),
    ])
    session.flush()
    session.add(TaskDependency(
        id=DEP_BUILD_DESIGN_ID,
        task_id=TASK_BUILD_ID,
        depends_on_task_id=TASK_DESIGN_ID,
        project_id=APOLLO_ID,
        dependency_type="FS",
        created_by=ALICE_ID,
    ))
    session.add_all([
        SystemConfig(key="maintenance", value="off"),
        SystemConfig(key="theme", value="light"),
    ])
    session.commit()


@pytest.fixture
def database(tmp_path) -> SeededDatabase:
    """A fresh, seeded SQLite database file."""
    db = SeededDatabase(path=tmp_path / "pmsy_test.db")
    engine = create_engine(db.sync_url)
    Base.metadata.create_all(engine)
    with Session(engine) as session:
        seed(session)
    engine.dispose()
    return db
