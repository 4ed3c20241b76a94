"""Organization model for multi-tenant support."""

import re

from sqlalchemy.orm import validates

from booking_core.errors import ValidationFailed
from booking_core.extensions import db
from booking_core.models.base import isoformat, utcnow

SUBDOMAIN_PATTERN = re.compile(r'^[a-z0-9\-]+$')


class Organization(db.Model):
    """
    Organization model representing tenants in multi-tenant architecture.

    Each organization is completely isolated - users belong to one organization
    and can only access resources owned by their organization. Subdomains are
    stored lowercase and are the routing hint used to pick the tenant.
    """

    __tablename__ = 'organizations'

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(255), nullable=False, unique=True, index=True)
    subdomain = db.Column(db.String(63), nullable=False, unique=True, index=True)
    email = db.Column(db.String(255), nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    settings = db.Column(db.JSON, nullable=False, default=dict)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    # Relationships
    users = db.relationship('User', back_populates='organization', lazy='dynamic', cascade='all, delete-orphan')
    appointments = db.relationship('Appointment', back_populates='organization', lazy='dynamic', cascade='all, delete-orphan')

    @validates('subdomain')
    def _normalize_subdomain(self, key, value):
        value = (value or '').strip().lower()
        if not SUBDOMAIN_PATTERN.match(value):
            raise ValidationFailed(
                'Invalid subdomain',
                errors={'subdomain': ['only allows lowercase letters, numbers, and hyphens']}
            )
        return value

    @classmethod
    def find_by_subdomain(cls, subdomain):
        if not subdomain:
            return None
        return cls.query.filter_by(subdomain=subdomain.strip().lower()).first()

    def __repr__(self):
        return f'<Organization {self.subdomain}>'

    def to_dict(self):
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'name': self.name,
            'subdomain': self.subdomain,
            'email': self.email,
            'active': self.active,
            'settings': self.settings or {},
            'created_at': isoformat(self.created_at)
        }
