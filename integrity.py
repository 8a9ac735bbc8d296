"""Write operations that keep Task.assignedUser and User.pendingTasks in sync.

After every successful call:

* an assigned, not completed task is in its owner's pendingTasks;
* an unassigned or completed task is in nobody's pendingTasks;
* a task is pending for at most one user;
* assignedUserName is the owner's current name, or "unassigned";
* emails are unique ignoring case.

Each operation runs in a single transaction, so a failure part way through
(an unknown task id in the middle of a user's pendingTasks, say) leaves the
database exactly as it was.
"""
import logging
from contextlib import contextmanager
from typing import Any, Optional

from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from errors import ApiError, ConflictError, InvalidReferenceError, NotFoundError, StoreError, ValidationError
from models import Task, User, UNASSIGNED
from schemas import TaskPayload, UserPayload
from store import TaskStore, UserStore

logger = logging.getLogger(__name__)

EMAIL_TAKEN = "A user with this email already exists"


def normalize_completed(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def normalize_task_ids(value: Any) -> list:
    """De-duplicated string ids, first occurrence wins."""
    if not isinstance(value, list):
        return []
    seen = []
    for task_id in value:
        task_id = str(task_id).strip()
        if task_id and task_id not in seen:
            seen.append(task_id)
    return seen


class ReferenceIntegrityEngine:
    def __init__(self, db: Session):
        self.db = db
        self.tasks = TaskStore(db)
        self.users = UserStore(db)

    @contextmanager
    def _transaction(self, failure: str):
        try:
            yield
            self.db.commit()
        except ApiError:
            self.db.rollback()
            raise
        except IntegrityError as exc:
            self.db.rollback()
            # the unique index on users.email is the final word on duplicates
            if "email" in str(exc.orig).lower():
                raise ConflictError(EMAIL_TAKEN)
            logger.exception("Integrity failure: %s", failure)
            raise StoreError(failure)
        except SQLAlchemyError:
            self.db.rollback()
            logger.exception("Store failure: %s", failure)
            raise StoreError(failure)

    # ---- tasks ----

    def _check_task(self, payload: TaskPayload) -> None:
        if not payload.name or payload.deadline is None:
            raise ValidationError("Task name and deadline are required")

    def _resolve_owner(self, user_id: str) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise InvalidReferenceError("Assigned user not found")
        return user

    def create_task(self, payload: TaskPayload) -> Task:
        self._check_task(payload)
        completed = normalize_completed(payload.completed)
        assigned_user = payload.assignedUser or ""

        with self._transaction("Could not create task"):
            task = self.tasks.create(
                name=payload.name,
                description=payload.description or "",
                deadline=payload.deadline,
                completed=completed,
                assigned_user=assigned_user,
                assigned_user_name=UNASSIGNED,
            )
            if assigned_user:
                # an unknown user aborts the transaction, taking the new task with it
                owner = self._resolve_owner(assigned_user)
                task.assigned_user_name = owner.name
                self.tasks.save(task)
                if not completed:
                    self.users.add_pending(owner, task.id)

        logger.info("Created task %s assigned_user=%r", task.id, task.assigned_user)
        return task

    def update_task(self, task_id: str, payload: TaskPayload) -> Task:
        task = self.tasks.find_by_id(task_id)
        if task is None:
            raise NotFoundError("Task")
        self._check_task(payload)
        completed = normalize_completed(payload.completed)
        assigned_user = payload.assignedUser or ""

        owner: Optional[User] = None
        if assigned_user:
            owner = self._resolve_owner(assigned_user)

        with self._transaction("Could not update task"):
            task.name = payload.name
            task.description = payload.description or ""
            task.deadline = payload.deadline
            task.completed = completed
            task.assigned_user = assigned_user
            task.assigned_user_name = owner.name if owner is not None else UNASSIGNED
            self.tasks.save(task)

            # drop every earlier claim on this task, the new owner's included
            self.users.pull_pending(task.id)
            if owner is not None and not completed:
                self.users.add_pending(owner, task.id)

        logger.info("Updated task %s assigned_user=%r completed=%s", task.id, task.assigned_user, task.completed)
        return task

    def delete_task(self, task_id: str) -> None:
        task = self.tasks.find_by_id(task_id)
        if task is None:
            raise NotFoundError("Task")

        with self._transaction("Could not delete task"):
            # not only task.assigned_user: a stale holder must let go as well
            self.users.pull_pending(task.id)
            self.tasks.delete_by_id(task.id)

        logger.info("Deleted task %s", task_id)

    # ---- users ----

    def _check_user(self, payload: UserPayload) -> None:
        if not payload.name or not payload.email:
            raise ValidationError("Name and email are required")

    def _attach_tasks(self, user: User, task_ids: list) -> list:
        """Make user the owner of every not completed task in task_ids.

        Returns the ids that ended up pending for the user.
        """
        attached = []
        for task_id in task_ids:
            task = self.tasks.find_by_id(task_id)
            if task is None:
                raise ValidationError(f"Task with id {task_id} not found")
            if task.assigned_user and task.assigned_user != user.id:
                raise ConflictError("The task is already assigned to another user")
            if task.completed:
                continue
            task.assigned_user = user.id
            task.assigned_user_name = user.name
            self.tasks.save(task)
            self.users.add_pending(user, task.id)
            attached.append(task.id)
        return attached

    def create_user(self, payload: UserPayload) -> User:
        self._check_user(payload)
        email = payload.email.lower()
        if self.users.find_by_email(email) is not None:
            raise ConflictError(EMAIL_TAKEN)
        task_ids = normalize_task_ids(payload.pendingTasks)

        with self._transaction("Could not create user"):
            user = self.users.create(name=payload.name, email=email)
            self._attach_tasks(user, task_ids)

        logger.info("Created user %s pending=%d", user.id, len(user.pending_tasks))
        return user

    def update_user(self, user_id: str, payload: UserPayload) -> User:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User")
        self._check_user(payload)
        email = payload.email.lower()
        email_owner = self.users.find_by_email(email)
        if email_owner is not None and email_owner.id != user.id:
            raise ConflictError(EMAIL_TAKEN)
        task_ids = normalize_task_ids(payload.pendingTasks)

        with self._transaction("Could not update user"):
            user.name = payload.name
            user.email = email
            self.users.save(user)

            # start from a clean slate, then re-apply the requested set
            self.tasks.unassign_all(user.id)
            self.users.clear_pending(user.id)
            self._attach_tasks(user, task_ids)

        logger.info("Updated user %s pending=%d", user.id, len(user.pending_tasks))
        return user

    def delete_user(self, user_id: str) -> None:
        user = self.users.find_by_id(user_id)
        if user is None:
            raise NotFoundError("User")

        with self._transaction("Could not delete user"):
            self.tasks.unassign_all(user.id)
            self.users.clear_pending(user.id)
            self.users.delete_by_id(user.id)

        logger.info("Deleted user %s", user_id)
