# backend/app/models/__init__.py
#    Central place to import and expose all SQLAlchemy ORM models.
from .Profile import Profile
from .Assessment import Assessment
from .IdempotencyKey import IdempotencyKey

__all__ = ["Profile", "Assessment", "IdempotencyKey"]
