from contextlib import contextmanager
from marketplace.extensions import db
from marketplace.errors import InvalidTransitionError, NotFoundError
import logging

logger = logging.getLogger(__name__)


class UnitOfWork:
    """One database transaction plus the side effects queued behind it."""

    def __init__(self, session):
        self.session = session
        self._after_commit = []

    def add(self, instance):
        self.session.add(instance)
        return instance

    def flush(self):
        self.session.flush()

    def after_commit(self, fn, *args, **kwargs):
        self._after_commit.append((fn, args, kwargs))

    def _run_after_commit(self):
        for fn, args, kwargs in self._after_commit:
            try:
                fn(*args, **kwargs)
            except Exception:
                logger.error(
                    "After-commit hook %s failed",
                    getattr(fn, '__name__', fn),
                    exc_info=True)


@contextmanager
def unit_of_work():
    uow = UnitOfWork(db.session)
    try:
        yield uow
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise
    uow._run_after_commit()


def lock(model, entity_id, label=None):
    """Re-read a row inside the open transaction, locking it where the
    database supports row locks."""
    instance = (
        model.query
        .filter(model.id == entity_id)
        .populate_existing()
        .with_for_update()
        .first()
    )
    if instance is None:
        raise NotFoundError(label or model.__name__, entity_id)
    return instance


def guarded_transition(
        model,
        entity_id,
        from_statuses,
        values,
        transitions=None,
        label=None,
        criteria=()):
    """Apply ``values`` only if the row is still in one of ``from_statuses``.

    The status check is part of the UPDATE predicate, so a concurrent
    writer that moved the row first makes this a zero-row update.
    """
    label = label or model.__name__
    count = (
        model.query
        .filter(
            model.id == entity_id,
            model.status.in_(list(from_statuses)),
            *criteria)
        .update(values, synchronize_session='fetch')
    )
    if count == 0:
        current = (
            db.session.query(model.status)
            .filter(model.id == entity_id)
            .scalar()
        )
        if current is None:
            raise NotFoundError(label, entity_id)
        allowed = (transitions or {}).get(current, ())
        target = values.get('status')
        raise InvalidTransitionError(
            f"{label} {entity_id} cannot move from "
            f"'{current.value}'"
            + (f" to '{target.value}'" if target is not None else ''),
            current_status=current,
            allowed=allowed)
    instance = db.session.get(model, entity_id)
    db.session.refresh(instance)
    return instance
