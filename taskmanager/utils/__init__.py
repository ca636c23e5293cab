from .session import ActorSession, Role
from .scope_guard import Capability, TenantScopeGuard, has_capability

__all__ = [
    'ActorSession',
    'Role',
    'Capability',
    'TenantScopeGuard',
    'has_capability',
]
