# tests/helpers.py

from models import PendingTask, Task, User, UNASSIGNED

DEADLINE = "2030-01-01T12:00:00Z"


def assert_consistent(db) -> None:
    """Check every assignment invariant across the whole database."""
    db.expire_all()
    users = {u.id: u for u in db.query(User).all()}
    holders = {}
    for link in db.query(PendingTask).all():
        assert link.task_id not in holders, "task pending for two users"
        holders[link.task_id] = link.user_id

    emails = [u.email.lower() for u in users.values()]
    assert len(emails) == len(set(emails))

    for task in db.query(Task).all():
        if task.assigned_user and not task.completed:
            assert holders.get(task.id) == task.assigned_user
        else:
            assert task.id not in holders
        if task.assigned_user:
            assert task.assigned_user_name == users[task.assigned_user].name
        else:
            assert task.assigned_user_name == UNASSIGNED
