"""
Pytest fixtures for reqflow backend tests.

Provides test database setup, one user per workflow role, a requisition
factory, the workflow engine wired to an in-memory notification sink, and
the Flask test client.
"""

import pytest

from reqflow import create_app
from reqflow.extensions import db
from reqflow.models import Requisition, RequisitionItem, ShipmentBatch, BatchLineItem, User
from reqflow.services.notification_service import RecordingNotificationSink
from reqflow.services.persistence import SqlAlchemyWorkflowStore
from reqflow.services.workflow_engine import Actor, WorkflowEngine


DISPATCH_STAGE_STATUSES = {
    "PURCHASING",
    "READY_TO_DISPATCH",
    "SHIPPED",
    "PARTIALLY_DELIVERED",
    "FULLY_DELIVERED",
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


def _make_user(session, username: str, role: str, is_active: bool = True) -> User:
    user = User(
        username=username,
        email=f"{username}@example.org",
        full_name=username.replace("_", " ").title(),
        role=role,
        is_active=is_active,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture(scope='function')
def users(db_session):
    """One active user per role, keyed by role code (lowercase)."""
    return {
        "requester": _make_user(db_session, "req_owner", "REQUESTER"),
        "other_requester": _make_user(db_session, "req_other", "REQUESTER"),
        "security": _make_user(db_session, "sec_officer", "SECURITY"),
        "operations": _make_user(db_session, "ops_officer", "OPERATIONS"),
        "management": _make_user(db_session, "mgmt_lead", "MANAGEMENT"),
        "logistics": _make_user(db_session, "log_planner", "LOGISTICS"),
        "administration": _make_user(db_session, "adm_clerk", "ADMINISTRATION"),
        "receiver": _make_user(db_session, "site_receiver", "RECEIVER"),
        "admin": _make_user(db_session, "sys_admin", "ADMIN"),
    }


@pytest.fixture(scope='function')
def actors(users):
    """Actor value objects matching ``users``."""
    return {key: Actor(user_id=user.id, role=user.role) for key, user in users.items()}


@pytest.fixture(scope='function')
def make_requisition(db_session, users):
    """
    Factory: make_requisition(status="DRAFT", items=[(requested, approved), ...]).

    Items are given as (requested_quantity, approved_quantity) pairs; pass
    removed=True in a third slot to soft-delete one.

    item_status defaults to READY_TO_DISPATCH for requisitions already past
    logistics review and to PENDING_CLASSIFICATION otherwise.
    """
    counter = {"n": 0}

    def _make(status="DRAFT", items=((5, None),), requester=None, item_status=None):
        if item_status is None:
            item_status = "READY_TO_DISPATCH" if status in DISPATCH_STAGE_STATUSES else "PENDING_CLASSIFICATION"
        counter["n"] += 1
        requisition = Requisition(
            number=f"REQ-2026-{counter['n']:04d}",
            requester_id=(requester or users["requester"]).id,
            purpose="Site equipment",
            status=status,
        )
        for idx, row in enumerate(items, start=1):
            requested, approved = row[0], row[1]
            removed = row[2] if len(row) > 2 else False
            requisition.items.append(RequisitionItem(
                description=f"Item {idx}",
                requested_quantity=requested,
                approved_quantity=approved,
                removed=removed,
                status=item_status,
            ))
        db_session.add(requisition)
        db_session.commit()
        return requisition

    return _make


@pytest.fixture(scope='function')
def make_batch(db_session, users):
    """Factory: make_batch(requisition, [(item, qty), ...], status="PENDING")."""

    def _make(requisition, lines, status="PENDING", batch_number=None):
        number = batch_number or (
            db_session.query(ShipmentBatch).filter_by(requisition_id=requisition.id).count() + 1
        )
        batch = ShipmentBatch(
            requisition_id=requisition.id,
            batch_number=number,
            status=status,
            created_by_id=users["logistics"].id,
        )
        for item, qty in lines:
            batch.lines.append(BatchLineItem(requisition_item_id=item.id, shipped_quantity=qty))
        db_session.add(batch)
        db_session.commit()
        return batch

    return _make


@pytest.fixture(scope='function')
def notifier():
    return RecordingNotificationSink()


@pytest.fixture(scope='function')
def store(db_session):
    return SqlAlchemyWorkflowStore(db_session)


@pytest.fixture(scope='function')
def engine(store, notifier):
    return WorkflowEngine(store, notifier)


