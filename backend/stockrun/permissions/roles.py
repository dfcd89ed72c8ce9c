# Overview: Default permission set granted to each role.

from ..models.auth import ROLE_ADMIN, ROLE_DRIVER, ROLE_MANAGER, ROLE_SALES_REP, ROLE_SECRETARY
from .definitions import PERMISSION_DEFINITIONS


_ALL = frozenset(perm[0] for perm in PERMISSION_DEFINITIONS)

_OFFICE = frozenset({
    "VIEW_PRODUCTS",
    "VIEW_ORDERS",
    "CREATE_ORDERS",
    "UPDATE_ORDER_STATUS",
    "VIEW_DELIVERIES",
    "ALLOCATE_DELIVERIES",
    "VIEW_ALLOCATIONS",
    "UNALLOCATE_DELIVERIES",
    "RECONCILE_ALLOCATIONS",
    "VIEW_DRIVER_SALES",
    "VIEW_DRIVER_STOCK",
    "VIEW_LIVE_LOCATIONS",
})

# Drivers only ever see their own allocations, stock and sales (enforced in routes)
DEFAULT_ROLE_PERMISSIONS = {
    ROLE_ADMIN: _ALL,
    ROLE_MANAGER: _ALL - {"MANAGE_USERS", "SHARE_LOCATION"},
    ROLE_SECRETARY: _OFFICE,
    ROLE_SALES_REP: frozenset({
        "VIEW_PRODUCTS",
        "VIEW_ORDERS",
        "CREATE_ORDERS",
        "SHARE_LOCATION",
    }),
    ROLE_DRIVER: frozenset({
        "VIEW_PRODUCTS",
        "VIEW_ALLOCATIONS",
        "RECORD_DRIVER_SALE",
        "VIEW_DRIVER_SALES",
        "VIEW_DRIVER_STOCK",
        "SHARE_LOCATION",
    }),
}
