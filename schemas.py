from datetime import datetime, timezone
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, field_validator


class TaskPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    description: Optional[str] = None
    deadline: Optional[datetime] = None
    completed: Any = None
    assignedUser: Optional[str] = None
    assignedUserName: Optional[str] = None

    @field_validator("name", "description", "assignedUser", "assignedUserName", mode="before")
    @classmethod
    def trim(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("deadline", mode="before")
    @classmethod
    def blank_deadline(cls, value):
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @field_validator("deadline")
    @classmethod
    def naive_utc(cls, value: Optional[datetime]) -> Optional[datetime]:
        if value is not None and value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value


class UserPayload(BaseModel):
    model_config = ConfigDict(extra="ignore")

    name: Optional[str] = None
    email: Optional[str] = None
    # anything that is not a list is treated as "no pending tasks"
    pendingTasks: Any = None

    @field_validator("name", "email", mode="before")
    @classmethod
    def trim(cls, value):
        if isinstance(value, str):
            return value.strip()
        return value
