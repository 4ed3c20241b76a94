"""User model with Flask-Login integration."""

import enum
import uuid

from flask_login import UserMixin
from sqlalchemy.orm import validates
from werkzeug.security import generate_password_hash, check_password_hash

from booking_core.errors import ValidationFailed
from booking_core.extensions import db
from booking_core.models.base import TenantScopedMixin, isoformat, utcnow


class Role(str, enum.Enum):
    ADMIN = 'admin'
    PROFESSIONAL = 'professional'
    STAFF = 'staff'
    GUARDIAN = 'guardian'


def new_revocation_marker():
    return uuid.uuid4().hex


class User(db.Model, UserMixin, TenantScopedMixin):
    """
    User model representing application users.

    - Each user belongs to exactly one organization, set at creation
    - Email is unique within the organization, not globally
    - ``jti`` is the revocation marker embedded in every issued credential;
      rotating it invalidates all of them at once
    """

    __tablename__ = 'users'
    __table_args__ = (
        db.UniqueConstraint('organization_id', 'email', name='uq_users_organization_email'),
    )

    id = db.Column(db.Integer, primary_key=True)
    email = db.Column(db.String(255), nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=False, default='')
    last_name = db.Column(db.String(100), nullable=False, default='')
    password_hash = db.Column(db.String(255), nullable=False)
    role = db.Column(
        db.Enum(Role, native_enum=False, length=20, values_callable=lambda roles: [r.value for r in roles]),
        nullable=False,
        default=Role.GUARDIAN
    )

    # Subject id from the external identity provider
    uid = db.Column(db.String(255), nullable=True, unique=True)
    jti = db.Column(db.String(64), nullable=False, default=new_revocation_marker)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)
    is_active = db.Column(db.Boolean, nullable=False, default=True)
    is_locked = db.Column(db.Boolean, nullable=False, default=False)

    # Relationships
    organization = db.relationship('Organization', back_populates='users')

    @validates('email')
    def _normalize_email(self, key, value):
        return (value or '').strip().lower()

    @validates('role')
    def _coerce_role(self, key, value):
        try:
            return Role(value)
        except ValueError:
            raise ValidationFailed('Invalid role', errors={'role': [f'unknown role {value!r}']})

    def set_password(self, password):
        """Hash and store password."""
        self.password_hash = generate_password_hash(password)

    def check_password(self, password):
        """Verify password against hash."""
        return check_password_hash(self.password_hash, password)

    def rotate_revocation_marker(self):
        self.jti = new_revocation_marker()
        return self.jti

    @property
    def can_authenticate(self):
        return self.is_active and not self.is_locked

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'.strip() or self.email

    @classmethod
    def find_in_organization(cls, organization_id, email):
        return cls.tenant_query(organization_id).filter(
            cls.email == (email or '').strip().lower()
        ).first()

    def __repr__(self):
        return f'<User {self.email}>'

    def to_dict(self):
        """Convert to dictionary representation."""
        return {
            'id': self.id,
            'email': self.email,
            'first_name': self.first_name,
            'last_name': self.last_name,
            'full_name': self.full_name,
            'role': self.role.value,
            'organization_id': self.organization_id,
            'is_active': self.is_active,
            'is_locked': self.is_locked,
            'created_at': isoformat(self.created_at)
        }
