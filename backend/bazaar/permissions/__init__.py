# Overview: Role and capability package.
# Re-exports all public APIs for short imports.

from .capabilities import Capability, CAPABILITY_DEFINITIONS
from .roles import Role, ALL_ROLES, COLLECTOR_ROLES, SUBMITTER_ROLES, ROLE_CAPABILITIES
from .helpers import (
    get_all_capability_codes,
    validate_role,
    capabilities_for_roles,
    roles_granting,
)

__all__ = [
    "Capability",
    "CAPABILITY_DEFINITIONS",
    "Role",
    "ALL_ROLES",
    "COLLECTOR_ROLES",
    "SUBMITTER_ROLES",
    "ROLE_CAPABILITIES",
    "get_all_capability_codes",
    "validate_role",
    "capabilities_for_roles",
    "roles_granting",
]
