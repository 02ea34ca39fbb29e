"""SQLAlchemy ORM models for the PMSY core tables.

Tables:
- profiles: Users, with their application role
- projects: Projects, managed by one profile
- project_members: Membership relation granting access to a project
- tasks: Project tasks
- task_dependencies: "task depends on task" edges inside a project
- system_configs: Admin-only key/value settings

Identifiers are UUID strings generated by the application, so the same
schema runs on PostgreSQL and on SQLite.
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    false,
    func,
    true,
)
from sqlalchemy.orm import relationship

from pmsy.db.base import Base


def new_id() -> str:
    return str(uuid.uuid4())


class Profile(Base):
    """Application user."""

    __tablename__ = "profiles"

    id = Column(String(36), primary_key=True, default=new_id)
    email = Column(String(255), unique=True, nullable=False)
    full_name = Column(String(200))
    role = Column(String(20), nullable=False, default="user", server_default="user")
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())


class Project(Base):
    """Project; visible to its manager and its members."""

    __tablename__ = "projects"

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default="active", server_default="active")
    manager_id = Column(String(36), ForeignKey("profiles.id"), index=True)
    is_public = Column(Boolean, default=False, server_default=false())
    created_by = Column(String(36), ForeignKey("profiles.id"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    updated_by = Column(String(36))

    members = relationship("ProjectMember", back_populates="project", cascade="all, delete-orphan")
    tasks = relationship("Task", back_populates="project", cascade="all, delete-orphan")


class ProjectMember(Base):
    """Links a profile to a project it may access."""

    __tablename__ = "project_members"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), nullable=False)
    user_id = Column(String(36), ForeignKey("profiles.id", ondelete="CASCADE"), nullable=False)
    role = Column(String(20), nullable=False, default="member", server_default="member")
    created_at = Column(DateTime, server_default=func.now())

    project = relationship("Project", back_populates="members")

    __table_args__ = (
        UniqueConstraint("project_id", "user_id", name="uq_project_member"),
        Index("ix_project_members_user", "user_id"),
    )


class Task(Base):
    """Project task."""

    __tablename__ = "tasks"

    id = Column(String(36), primary_key=True, default=new_id)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    title = Column(String(300), nullable=False)
    description = Column(Text)
    status = Column(String(20), nullable=False, default="todo", server_default="todo")
    priority = Column(Integer, default=0, server_default="0")
    progress = Column(Integer, default=0, server_default="0")
    is_public = Column(Boolean, default=True, server_default=true())
    start_date = Column(Date)
    due_date = Column(Date)
    created_by = Column(String(36), ForeignKey("profiles.id"))
    created_at = Column(DateTime, server_default=func.now())
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
    updated_by = Column(String(36))

    project = relationship("Project", back_populates="tasks")


class TaskDependency(Base):
    """``task_id`` cannot start (or finish) before ``depends_on_task_id``."""

    __tablename__ = "task_dependencies"

    id = Column(String(36), primary_key=True, default=new_id)
    task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    depends_on_task_id = Column(String(36), ForeignKey("tasks.id", ondelete="CASCADE"), nullable=False)
    project_id = Column(String(36), ForeignKey("projects.id", ondelete="CASCADE"), index=True)
    dependency_type = Column(String(2), nullable=False, default="FS", server_default="FS")
    created_by = Column(String(36), ForeignKey("profiles.id"))
    created_at = Column(DateTime, server_default=func.now())

    __table_args__ = (
        UniqueConstraint("task_id", "depends_on_task_id", name="uq_task_dependency"),
        Index("ix_task_dependencies_depends_on", "depends_on_task_id"),
    )


class SystemConfig(Base):
    """Admin-only configuration value."""

    __tablename__ = "system_configs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(100), unique=True, nullable=False)
    value = Column(Text)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now())
