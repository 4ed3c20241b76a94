"""Authorization: role capabilities, per-kind policies and the engine that combines them."""

from booking_core.authz.engine import AuthorizationEngine
from booking_core.authz.policies import Action, ResourceKind

__all__ = ['Action', 'AuthorizationEngine', 'ResourceKind']
