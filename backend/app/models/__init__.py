"""SQLAlchemy models package.

All ORM classes are imported here so Base.metadata is complete regardless of
import order (Alembic autogenerate and the API both rely on it).
"""

from app.models import delegation  # noqa: F401
