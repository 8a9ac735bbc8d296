from typing import Iterable, Optional, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from models import User, Task, PendingTask, UNASSIGNED


class EntityStore:
    """Document-style access to one ORM model.

    Writes only flush; committing or rolling back is the caller's job.
    """

    model = None

    def __init__(self, db: Session):
        self.db = db

    def query(self, criteria: Iterable = ()):
        return self.db.query(self.model).filter(*criteria)

    def find_many(self, criteria: Iterable = (), order_by: Sequence = (),
                  skip: int = 0, limit: Optional[int] = None) -> list:
        q = self.query(criteria)
        if order_by:
            q = q.order_by(*order_by)
        if skip:
            q = q.offset(skip)
        if limit is not None:
            q = q.limit(limit)
        return q.all()

    def find_by_id(self, id: str):
        if not id:
            return None
        return self.db.get(self.model, id)

    def create(self, **fields):
        obj = self.model(**fields)
        self.db.add(obj)
        self.db.flush()
        return obj

    def save(self, obj):
        self.db.add(obj)
        self.db.flush()
        return obj

    def delete_by_id(self, id: str) -> bool:
        obj = self.find_by_id(id)
        if obj is None:
            return False
        self.db.delete(obj)
        self.db.flush()
        return True

    def update_many(self, criteria: Iterable, patch: dict) -> int:
        self.db.flush()
        count = self.query(criteria).update(patch, synchronize_session=False)
        # loaded objects may now be stale
        self.db.expire_all()
        return count

    def count_matching(self, criteria: Iterable = ()) -> int:
        return self.query(criteria).count()


class TaskStore(EntityStore):
    model = Task

    def unassign_all(self, user_id: str) -> int:
        return self.update_many(
            [Task.assigned_user == user_id],
            {Task.assigned_user: "", Task.assigned_user_name: UNASSIGNED},
        )


class UserStore(EntityStore):
    model = User

    def find_by_email(self, email: str):
        # emails are stored lower-cased
        return self.query([User.email == email.lower()]).first()

    def add_pending(self, user: User, task_id: str) -> bool:
        """Append task_id to user's pendingTasks unless it is already there."""
        if task_id in user.pending_tasks:
            return False
        position = (
            self.db.query(func.coalesce(func.max(PendingTask.position), -1))
            .filter(PendingTask.user_id == user.id)
            .scalar()
            + 1
        )
        self.db.add(PendingTask(user_id=user.id, task_id=task_id, position=position))
        self.db.flush()
        self.db.expire(user, ["pending_links"])
        return True

    def pull_pending(self, task_id: str) -> int:
        """Remove task_id from every user's pendingTasks."""
        self.db.flush()
        count = (
            self.db.query(PendingTask)
            .filter(PendingTask.task_id == task_id)
            .delete(synchronize_session="fetch")
        )
        self.db.expire_all()
        return count

    def clear_pending(self, user_id: str) -> int:
        self.db.flush()
        count = (
            self.db.query(PendingTask)
            .filter(PendingTask.user_id == user_id)
            .delete(synchronize_session="fetch")
        )
        self.db.expire_all()
        return count
