# backend/app/database.py
#   Centralizes database configuration and session management for both
#   the Flask web app and standalone scripts (seeding, maintenance).
from contextlib import contextmanager

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import create_engine
from sqlalchemy.orm import scoped_session, sessionmaker

from .config.settings import settings

# ------------------------------
# Flask-SQLAlchemy for app usage
# ------------------------------
db = SQLAlchemy()  # use db.Model for your models

# ------------------------------
# Standard SQLAlchemy for scripts
# ------------------------------
DATABASE_URL = settings.SQLALCHEMY_DATABASE_URI
engine = create_engine(DATABASE_URL, echo=False)
SessionLocal = scoped_session(sessionmaker(bind=engine, autoflush=False, expire_on_commit=False))


@contextmanager
def get_db_session():
    """Yield a SQLAlchemy session for scripts outside the Flask app."""
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


def init_db(app=None, create_tables: bool = False):
    """
    Bind Flask-SQLAlchemy to the app. With create_tables=True the capture
    tables are created if missing (dev servers and tests).
    """
    if app:
        db.init_app(app)
        if create_tables:
            # Models must be imported so their tables are registered on db.metadata.
            from . import models  # noqa: F401

            with app.app_context():
                db.create_all()
