"""
OrganizationModel — Abstract base class for organization-scoped models.

All models that need tenant isolation inherit from OrganizationModel
instead of db.Model directly. This adds:
  - organization_id column with index
  - query_for_organization(organization_id) classmethod
  - _uuid / _utcnow column defaults
"""

import uuid
from datetime import datetime, timezone

from routine_selection.models import db


def _uuid():
    return str(uuid.uuid4())


def _utcnow():
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def iso(value) -> str | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        value = as_utc(value)
    return value.isoformat()


class OrganizationModel(db.Model):
    """Abstract base for organization-scoped tables."""
    __abstract__ = True

    organization_id = db.Column(db.String(64), nullable=False, index=True)

    @classmethod
    def query_for_organization(cls, organization_id):
        """Return a query filtered by organization_id."""
        return cls.query.filter_by(organization_id=organization_id)
