# Overview: Permission system package.
# Re-exports all public APIs for backwards-compatible imports.

from .categories import PermissionCategory
from .definitions import (
    PERMISSION_DEFINITIONS,
    CATALOG_PERMISSIONS,
    ORDER_PERMISSIONS,
    DELIVERY_PERMISSIONS,
    DRIVER_SALES_PERMISSIONS,
    LOCATION_PERMISSIONS,
    USER_PERMISSIONS,
)
from .roles import DEFAULT_ROLE_PERMISSIONS
from .helpers import (
    get_all_permission_codes,
    get_permissions_by_category,
    get_permission_definition,
    get_role_permissions,
    role_has_permission,
    validate_permission_code,
)

__all__ = [
    "PermissionCategory",
    "PERMISSION_DEFINITIONS",
    "CATALOG_PERMISSIONS",
    "ORDER_PERMISSIONS",
    "DELIVERY_PERMISSIONS",
    "DRIVER_SALES_PERMISSIONS",
    "LOCATION_PERMISSIONS",
    "USER_PERMISSIONS",
    "DEFAULT_ROLE_PERMISSIONS",
    "get_all_permission_codes",
    "get_permissions_by_category",
    "get_permission_definition",
    "get_role_permissions",
    "role_has_permission",
    "validate_permission_code",
]
