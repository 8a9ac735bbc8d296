import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, ForeignKey, Boolean, Integer, Text
from sqlalchemy.orm import relationship

from database import Base

UNASSIGNED = "unassigned"


def new_id() -> str:
    return uuid.uuid4().hex


def utcnow() -> datetime:
    # stored naive, always UTC
    return datetime.now(timezone.utc).replace(tzinfo=None)


class User(Base):
    __tablename__ = "users"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    pending_links = relationship(
        "PendingTask",
        back_populates="user",
        order_by="PendingTask.position",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def pending_tasks(self) -> list:
        return [link.task_id for link in self.pending_links]

    def to_document(self) -> dict:
        return {
            "_id": self.id,
            "name": self.name,
            "email": self.email,
            "pendingTasks": self.pending_tasks,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class Task(Base):
    __tablename__ = "tasks"

    id = Column(String(32), primary_key=True, default=new_id)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=False, default="")
    deadline = Column(DateTime, nullable=False)
    completed = Column(Boolean, nullable=False, default=False)
    # "" when nobody owns the task
    assigned_user = Column(String(32), nullable=False, default="", index=True)
    assigned_user_name = Column(String(255), nullable=False, default=UNASSIGNED)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    def to_document(self) -> dict:
        return {
            "_id": self.id,
            "name": self.name,
            "description": self.description,
            "deadline": self.deadline,
            "completed": self.completed,
            "assignedUser": self.assigned_user,
            "assignedUserName": self.assigned_user_name,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


class PendingTask(Base):
    """One row per (owner, task) pair in a user's pendingTasks.

    task_id is the primary key, so a task can be pending for one user at a
    time and never twice for the same user.
    """

    __tablename__ = "pending_tasks"

    task_id = Column(String(32), ForeignKey("tasks.id", ondelete="CASCADE"), primary_key=True)
    user_id = Column(String(32), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    position = Column(Integer, nullable=False, default=0)

    user = relationship("User", back_populates="pending_links")
