# Overview: Flask extension instances for database and migrations, plus the workflow engine factory.

from flask import current_app
from flask_sqlalchemy import SQLAlchemy
from flask_migrate import Migrate

db = SQLAlchemy()
migrate = Migrate()


def get_workflow_engine():
    """
    WorkflowEngine bound to db.session and the app's guard settings.

    Notifications are written by the database sink, in the same session,
    so they commit or roll back with the action.
    """
    from .services.notification_service import DatabaseNotificationSink
    from .services.persistence import SqlAlchemyWorkflowStore
    from .services.workflow_engine import WorkflowEngine

    return WorkflowEngine(
        SqlAlchemyWorkflowStore(db.session),
        DatabaseNotificationSink(db.session),
        min_comment_length=current_app.config["MIN_REJECTION_COMMENT_LENGTH"],
        min_pickup_note_length=current_app.config["MIN_PICKUP_NOTE_LENGTH"],
    )
