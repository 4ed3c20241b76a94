"""Posts and likes shared inside an organization."""

from booking_core.extensions import db
from booking_core.models.base import TenantScopedMixin, utcnow


class Post(db.Model, TenantScopedMixin):
    __tablename__ = 'posts'

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    content = db.Column(db.String(1000), nullable=False)
    published = db.Column(db.Boolean, nullable=False, default=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship('User')
    likes = db.relationship('Like', back_populates='post', lazy='dynamic', cascade='all, delete-orphan')


class Like(db.Model, TenantScopedMixin):
    __tablename__ = 'likes'
    __table_args__ = (
        db.UniqueConstraint('organization_id', 'post_id', 'user_id', name='uq_likes_post_user'),
    )

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey('users.id'), nullable=False, index=True)
    post_id = db.Column(db.Integer, db.ForeignKey('posts.id'), nullable=False, index=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, default=utcnow)

    user = db.relationship('User')
    post = db.relationship('Post', back_populates='likes')
