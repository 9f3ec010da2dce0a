"""
Role and Permission Definitions

WHY: Centralized permission definitions ensure consistency across the application.
All permission codes, roles and role mappings are defined here. Nothing else
in the codebase compares role strings directly.

DESIGN PRINCIPLES:
- Permissions are granular (one "resource:action" per permission)
- Role grants are static; there is no runtime grant/revoke
- Unknown roles hold no permissions (fail closed)
- super_admin holds every permission
"""

from __future__ import annotations

from enum import Enum


# =============================================================================
# ROLES
# =============================================================================

class Role(str, Enum):
    SUPER_ADMIN = "super_admin"
    PROVIDER_USER = "provider_user"
    PARTNER_ADMIN = "partner_admin"
    PARTNER_USER = "partner_user"
    PARTNER_CUSTOMER = "partner_customer"
    END_USER = "end_user"

    @classmethod
    def parse(cls, value) -> "Role | None":
        """Case-insensitive lookup; None for anything unknown."""
        if isinstance(value, Role):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower())
        except ValueError:
            return None


# Roles that see every partner's data
PRIVILEGED_ROLES = frozenset({Role.SUPER_ADMIN, Role.PROVIDER_USER})

# Roles carried on a PartnerUser link
PARTNER_MEMBER_ROLES = frozenset({Role.PARTNER_ADMIN, Role.PARTNER_USER, Role.PARTNER_CUSTOMER})

# Partner-scoped roles that author quotes and must price for their customer
PARTNER_SELLER_ROLES = frozenset({Role.PARTNER_ADMIN, Role.PARTNER_USER})


# =============================================================================
# PERMISSION CATEGORIES
# =============================================================================

class PermissionCategory:
    """Permission categories for organization."""
    USERS = "USERS"
    PARTNERS = "PARTNERS"
    CATALOG = "CATALOG"
    QUOTES = "QUOTES"
    ORDERS = "ORDERS"
    REPORTING = "REPORTING"
    SYSTEM = "SYSTEM"


# =============================================================================
# PERMISSION DEFINITIONS
# =============================================================================

# Each permission is defined as: (code, name, description, category)
PERMISSION_DEFINITIONS = [
    # USER PERMISSIONS
    (
        "user:view",
        "View Users",
        "List users (partner roles see members of their own partner only)",
        PermissionCategory.USERS
    ),
    (
        "user:create",
        "Create Users",
        "Register new user accounts",
        PermissionCategory.USERS
    ),
    (
        "user:manage",
        "Manage Users",
        "Change user roles and deactivate accounts",
        PermissionCategory.USERS
    ),
    (
        "user:manage_partner",
        "Manage Partner Members",
        "Add, remove and re-role partner members",
        PermissionCategory.USERS
    ),

    # PARTNER PERMISSIONS
    (
        "partner:view",
        "View Partners",
        "View partner organizations and their price lists",
        PermissionCategory.PARTNERS
    ),
    (
        "partner:manage",
        "Manage Partners",
        "Create, update and deactivate partners; set partner prices",
        PermissionCategory.PARTNERS
    ),

    # CATALOG PERMISSIONS
    (
        "product:view",
        "View Products",
        "Browse the product catalog",
        PermissionCategory.CATALOG
    ),
    (
        "product:manage",
        "Manage Products",
        "Create, update and delete products and dependencies",
        PermissionCategory.CATALOG
    ),

    # QUOTE PERMISSIONS
    (
        "quote:view",
        "View Quotes",
        "View quotes visible to the caller",
        PermissionCategory.QUOTES
    ),
    (
        "quote:create",
        "Create Quotes",
        "Author draft quotes",
        PermissionCategory.QUOTES
    ),
    (
        "quote:manage",
        "Manage Quotes",
        "Send, approve and reject quotes",
        PermissionCategory.QUOTES
    ),
    (
        "quote:accept",
        "Accept Quotes",
        "Approve a quote addressed to the caller",
        PermissionCategory.QUOTES
    ),
    (
        "quote:reject",
        "Reject Quotes",
        "Reject a quote addressed to the caller",
        PermissionCategory.QUOTES
    ),

    # ORDER PERMISSIONS
    (
        "order:view",
        "View Orders",
        "View orders visible to the caller",
        PermissionCategory.ORDERS
    ),
    (
        "order:manage",
        "Manage Orders",
        "Convert approved quotes and update order status",
        PermissionCategory.ORDERS
    ),

    # REPORTING PERMISSIONS
    (
        "reports:view",
        "View Reports",
        "View sales reports",
        PermissionCategory.REPORTING
    ),
    (
        "analytics:view",
        "View Analytics",
        "View revenue and margin analytics",
        PermissionCategory.REPORTING
    ),

    # SYSTEM PERMISSIONS
    (
        "system:admin",
        "System Administration",
        "Maintenance views, notification queue and orphaned accounts",
        PermissionCategory.SYSTEM
    ),
]


# =============================================================================
# ROLE DEFINITIONS
# =============================================================================

# (role, display name, description)
ROLE_DEFINITIONS = [
    (Role.SUPER_ADMIN, "Super Admin", "Full control of the portal"),
    (Role.PROVIDER_USER, "Provider User", "Provider staff: catalog, quotes and order fulfilment"),
    (Role.PARTNER_ADMIN, "Partner Admin", "Administers one partner and its members"),
    (Role.PARTNER_USER, "Partner User", "Partner sales staff authoring quotes"),
    (Role.PARTNER_CUSTOMER, "Partner Customer", "End customer of a partner; approves quotes addressed to them"),
    (Role.END_USER, "End User", "Catalog access only"),
]


DEFAULT_ROLE_PERMISSIONS = {
    Role.SUPER_ADMIN: [code for code, _, _, _ in PERMISSION_DEFINITIONS],

    Role.PROVIDER_USER: [
        "user:view",
        "partner:view",
        "product:view",
        "product:manage",
        "quote:view",
        "quote:create",
        "quote:manage",
        "order:view",
        "order:manage",
        "reports:view",
        "analytics:view",
    ],

    Role.PARTNER_ADMIN: [
        "user:view",
        "user:create",
        "user:manage_partner",
        "partner:view",
        "product:view",
        "quote:view",
        "quote:create",
        "quote:manage",
        "order:view",
        "reports:view",
        "analytics:view",
    ],

    Role.PARTNER_USER: [
        "user:view",
        "partner:view",
        "product:view",
        "quote:view",
        "quote:create",
        "order:view",
    ],

    Role.PARTNER_CUSTOMER: [
        "product:view",
        "quote:view",
        "quote:accept",
        "quote:reject",
        "order:view",
    ],

    Role.END_USER: [
        "product:view",
    ],
}


# Higher number manages lower numbers. partner_customer sits beside end_user.
ROLE_HIERARCHY = {
    Role.SUPER_ADMIN: 5,
    Role.PROVIDER_USER: 4,
    Role.PARTNER_ADMIN: 3,
    Role.PARTNER_USER: 2,
    Role.PARTNER_CUSTOMER: 1,
    Role.END_USER: 1,
}


_ROLE_PERMISSION_SETS = {
    role: frozenset(codes) for role, codes in DEFAULT_ROLE_PERMISSIONS.items()
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def get_all_permission_codes():
    """Get list of all permission codes."""
    return [code for code, _, _, _ in PERMISSION_DEFINITIONS]


def get_permissions_by_category(category):
    """Get all permissions in a category."""
    return [p for p in PERMISSION_DEFINITIONS if p[3] == category]


def get_permission_definition(code):
    """Get permission definition by code."""
    for perm in PERMISSION_DEFINITIONS:
        if perm[0] == code:
            return {
                "code": perm[0],
                "name": perm[1],
                "description": perm[2],
                "category": perm[3],
            }
    return None


def validate_permission_code(code):
    """Check if permission code is valid."""
    return code in get_all_permission_codes()


def permissions_for_role(role) -> frozenset[str]:
    parsed = Role.parse(role)
    if parsed is None:
        return frozenset()
    return _ROLE_PERMISSION_SETS.get(parsed, frozenset())


def has_permission(role, permission_code: str) -> bool:
    """Exact-match lookup. Unknown role or unknown code -> False."""
    return permission_code in permissions_for_role(role)


def can_manage_role(manager_role, target_role) -> bool:
    """Informational: True if manager_role ranks strictly above target_role."""
    manager = Role.parse(manager_role)
    target = Role.parse(target_role)
    if manager is None or target is None:
        return False
    return ROLE_HIERARCHY[manager] > ROLE_HIERARCHY[target]


def can_bypass_partner_isolation(role) -> bool:
    return Role.parse(role) in PRIVILEGED_ROLES


def is_partner_member_role(role) -> bool:
    return Role.parse(role) in PARTNER_MEMBER_ROLES


def get_role_definitions() -> list[dict]:
    """Serializable role table for GET /api/roles."""
    return [
        {
            "role": role.value,
            "name": name,
            "description": description,
            "rank": ROLE_HIERARCHY[role],
            "permissions": sorted(_ROLE_PERMISSION_SETS[role]),
            "can_bypass_partner_isolation": role in PRIVILEGED_ROLES,
        }
        for role, name, description in ROLE_DEFINITIONS
    ]
