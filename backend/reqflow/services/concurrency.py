# Overview: Service-layer transaction boundary and optimistic status preconditions.

from __future__ import annotations

from contextlib import contextmanager

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm.exc import StaleDataError

from ..errors import Conflict


@contextmanager
def atomic(session):
    """
    One unit of work: commit on success, roll back on any exception.

    IntegrityError (unique races such as batch numbering) and StaleDataError
    surface as Conflict. Nothing is retried here; retrying a workflow action
    is the caller's decision.
    """
    try:
        yield session
        session.commit()
    except (IntegrityError, StaleDataError) as exc:
        session.rollback()
        raise Conflict("The record was changed by another request; reload and try again") from exc
    except BaseException:
        session.rollback()
        raise


def compare_and_swap_status(session, model, entity_id: int, expected_status: str, values: dict) -> None:
    """
    UPDATE model SET ... WHERE id = :id AND status = :expected.

    The status observed at guard-check time is the precondition: if another
    actor moved the row in between, zero rows match and Conflict is raised
    instead of silently overwriting their transition.
    """
    result = session.execute(
        update(model)
        .where(model.id == entity_id, model.status == expected_status)
        .values(**values)
        .execution_options(synchronize_session="fetch")
    )
    if result.rowcount != 1:
        raise Conflict(
            f"{model.__name__} {entity_id} is no longer in status {expected_status}"
        )


def load_fresh(session, model, entity_id: int):
    """Re-read a row, overwriting any identity-map copy with the stored state."""
    return session.get(model, entity_id, populate_existing=True)
