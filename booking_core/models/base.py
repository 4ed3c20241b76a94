"""Base model classes with tenant isolation."""

from datetime import datetime, timezone

from sqlalchemy.orm import declared_attr, validates

from booking_core.errors import NotFound, ValidationFailed
from booking_core.extensions import db


class TenantScopedMixin:
    """
    Mixin for every entity partitioned by organization.

    Guarantees:
    - organization_id is required and set once at creation; reassigning it
      raises ValidationFailed
    - Helpers always take an explicit organization id; there is no ambient
      "current tenant" to fall back on

    Usage:
        # From a resolved principal (request handling)
        query = Appointment.tenant_query(principal.organization_id)

        # In background jobs, from the ids the job was enqueued with
        appointment = Appointment.get_for_tenant(appointment_id, organization_id)
    """

    __tenant_scoped__ = True

    @declared_attr
    def organization_id(cls):
        return db.Column(
            db.Integer,
            db.ForeignKey('organizations.id'),
            nullable=False,
            index=True
        )

    @validates('organization_id')
    def _validate_organization_id(self, key, value):
        current = self.organization_id
        if current is not None and value != current:
            raise ValidationFailed(
                'Organization cannot be reassigned',
                errors={'organization_id': ['cannot be changed once set']}
            )
        return value

    @classmethod
    def tenant_query(cls, organization_id):
        """
        Returns query filtered to one organization.

        Raises:
            RuntimeError: If organization_id is missing
        """
        if organization_id is None:
            raise RuntimeError(
                f"Cannot query {cls.__name__} without an organization id"
            )
        return cls.query.filter(cls.organization_id == organization_id)

    @classmethod
    def get_for_tenant(cls, id, organization_id):
        """
        Get record by ID inside one organization.

        Raises:
            NotFound: If the record does not exist in that organization
        """
        record = cls.tenant_query(organization_id).filter(cls.id == id).first()
        if record is None:
            raise NotFound(f"{cls.__name__} not found")
        return record


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite drops tzinfo on the way back; treat naive datetimes as UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


def isoformat(value):
    return as_utc(value).isoformat() if value else None


class TimestampMixin:
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        default=utcnow,
        onupdate=utcnow
    )
