"""
ORM-level enforcement of the closure lock.

Second guard layer behind ClosureService: even code that bypasses the
service cannot modify or delete a COMPLETED closure, or any justification
attached to one, through the ORM.

    session.flush()
         |
         v
    [before_update] --> _check_closure_update()        --> ClosureLockedError
    [before_delete] --> _check_closure_delete()        --> ClosureLockedError
    [before_update] --> _check_justification_update()  --> ClosureLockedError
    [before_delete] --> _check_justification_delete()  --> ClosureLockedError
         |
         v
    SQL sent to database (only if checks pass)

The DRAFT -> COMPLETED transition itself is allowed: the check looks at the
status the row had *before* this flush.  updated_at / updated_by_id are
audit metadata and may change on a locked row.

Usage:

    from closure_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

    unregister_immutability_listeners()  # tests only
"""

from sqlalchemy import event, inspect, select
from sqlalchemy.orm.attributes import get_history

from closure_kernel.exceptions import ClosureLockedError
from closure_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_COMPLETED = "completed"


def _status_value(status) -> str | None:
    if status is None:
        return None
    return getattr(status, "value", status)


def _was_completed(target) -> bool:
    history = get_history(target, "status")
    if history.deleted:
        return _status_value(history.deleted[0]) == _COMPLETED
    if not history.added:
        return _status_value(target.status) == _COMPLETED
    return False


def _blocked(entity_type: str, entity_id, closure_id, operation: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    return ClosureLockedError(closure_id=str(closure_id), operation=operation)


def _check_closure_update(mapper, connection, target):
    if not _was_completed(target):
        return
    for attr in inspect(target).attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            raise _blocked("DailyClosure", target.id, target.id, "update", attr.key)


def _check_closure_delete(mapper, connection, target):
    if _was_completed(target):
        raise _blocked("DailyClosure", target.id, target.id, "delete")


def _parent_is_completed(connection, closure_id) -> bool:
    from closure_kernel.models.daily_closure import DailyClosure

    status = connection.execute(
        select(DailyClosure.status).where(DailyClosure.id == closure_id)
    ).scalar_one_or_none()
    return _status_value(status) == _COMPLETED


def _check_justification_update(mapper, connection, target):
    if _parent_is_completed(connection, target.closure_id):
        raise _blocked(
            "VarianceJustification", target.id, target.closure_id, "update justification on"
        )


def _check_justification_delete(mapper, connection, target):
    if _parent_is_completed(connection, target.closure_id):
        raise _blocked(
            "VarianceJustification", target.id, target.closure_id, "delete justification on"
        )


_LISTENERS = (
    ("DailyClosure", "before_update", _check_closure_update),
    ("DailyClosure", "before_delete", _check_closure_delete),
    ("VarianceJustification", "before_update", _check_justification_update),
    ("VarianceJustification", "before_delete", _check_justification_delete),
)


def _targets():
    from closure_kernel.models.daily_closure import DailyClosure
    from closure_kernel.models.variance_justification import VarianceJustification

    return {
        "DailyClosure": DailyClosure,
        "VarianceJustification": VarianceJustification,
    }


def register_immutability_listeners() -> None:
    """Install the lock guard. Safe to call more than once."""
    targets = _targets()
    for name, event_name, listener_fn in _LISTENERS:
        if not event.contains(targets[name], event_name, listener_fn):
            event.listen(targets[name], event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """
    Remove the lock guard.

    WARNING: Only use this in tests that need to exercise the service-level
    guard on its own.
    """
    targets = _targets()
    for name, event_name, listener_fn in _LISTENERS:
        if event.contains(targets[name], event_name, listener_fn):
            event.remove(targets[name], event_name, listener_fn)
