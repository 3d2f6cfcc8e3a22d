# Overview: Utility functions for role and capability lookups.

from .capabilities import CAPABILITY_DEFINITIONS
from .roles import ALL_ROLES, ROLE_CAPABILITIES


def get_all_capability_codes():
    """Get list of all capability codes."""
    return [cap[0] for cap in CAPABILITY_DEFINITIONS]


def validate_role(role):
    """Check if a role tag belongs to the closed role set."""
    return role in ALL_ROLES


def capabilities_for_roles(roles):
    """Union of capabilities granted by a set of role tags."""
    granted = set()
    for role in roles:
        granted |= ROLE_CAPABILITIES.get(role, set())
    return granted


def roles_granting(capability, roles=None):
    """
    Roles (optionally restricted to `roles`) that grant a capability.

    Returned in a stable order so the acting role recorded on ledger rows is
    deterministic for multi-role users.
    """
    candidates = roles if roles is not None else ALL_ROLES
    return sorted(role for role in candidates if capability in ROLE_CAPABILITIES.get(role, set()))
