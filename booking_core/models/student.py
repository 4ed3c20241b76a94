"""Student model: a guardian's dependant who attends sessions."""

from datetime import date

from booking_core.extensions import db
from booking_core.models.base import TenantScopedMixin, utcnow


class Student(db.Model, TenantScopedMixin):
    """
    - ORG-OWNS-RESOURCE: organization_id
    - USER-OWNS-RESOURCE: parent_id (the guardian)
    """

    __tablename__ = 'students'

    id = db.Column(db.Integer, primary_key=True)
    parent_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    first_name = db.Column(db.String(100), nullable=False)
    last_name = db.Column(db.String(100), nullable=False)
    date_of_birth = db.Column(db.Date, nullable=True)
    active = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    parent = db.relationship('User')

    @property
    def full_name(self):
        return f'{self.first_name} {self.last_name}'

    @property
    def age(self):
        if self.date_of_birth is None:
            return None
        today = date.today()
        years = today.year - self.date_of_birth.year
        if (today.month, today.day) < (self.date_of_birth.month, self.date_of_birth.day):
            years -= 1
        return years

    def __repr__(self):
        return f'<Student {self.full_name}>'
