# Overview: All permission definitions organized by category.
# Each permission is defined as: (code, name, description, category)

from .categories import PermissionCategory


# -- CATALOG --

CATALOG_PERMISSIONS = [
    (
        "VIEW_PRODUCTS",
        "View Products",
        "View the product list (drivers see their allocated stock instead of warehouse stock)",
        PermissionCategory.CATALOG,
    ),
]


# -- ORDERS --

ORDER_PERMISSIONS = [
    (
        "VIEW_ORDERS",
        "View Orders",
        "View customer orders",
        PermissionCategory.ORDERS,
    ),
    (
        "CREATE_ORDERS",
        "Create Orders",
        "Enter new customer orders",
        PermissionCategory.ORDERS,
    ),
    (
        "UPDATE_ORDER_STATUS",
        "Update Order Status",
        "Mark orders shipped, delivered or cancelled",
        PermissionCategory.ORDERS,
    ),
]


# -- DELIVERIES --

DELIVERY_PERMISSIONS = [
    (
        "VIEW_DELIVERIES",
        "View Deliveries",
        "View pending delivery dates and aggregated demand",
        PermissionCategory.DELIVERIES,
    ),
    (
        "ALLOCATE_DELIVERIES",
        "Allocate Deliveries",
        "Allocate delivery dates to a driver",
        PermissionCategory.DELIVERIES,
    ),
    (
        "VIEW_ALLOCATIONS",
        "View Allocations",
        "View driver allocations and their stock summaries",
        PermissionCategory.DELIVERIES,
    ),
    (
        "UNALLOCATE_DELIVERIES",
        "Unallocate Deliveries",
        "Remove an active allocation that has no sales",
        PermissionCategory.DELIVERIES,
    ),
    (
        "RECONCILE_ALLOCATIONS",
        "Reconcile Allocations",
        "Close out an allocation with returned items",
        PermissionCategory.DELIVERIES,
    ),
]


# -- DRIVER SALES --

DRIVER_SALES_PERMISSIONS = [
    (
        "RECORD_DRIVER_SALE",
        "Record Driver Sale",
        "Sell from allocated stock",
        PermissionCategory.DRIVER_SALES,
    ),
    (
        "VIEW_DRIVER_SALES",
        "View Driver Sales",
        "View recorded driver sales",
        PermissionCategory.DRIVER_SALES,
    ),
    (
        "VIEW_DRIVER_STOCK",
        "View Driver Stock",
        "View a driver's remaining allocated stock",
        PermissionCategory.DRIVER_SALES,
    ),
]


# -- LOCATION --

LOCATION_PERMISSIONS = [
    (
        "SHARE_LOCATION",
        "Share Location",
        "Report device position and control own location tracking",
        PermissionCategory.LOCATION,
    ),
    (
        "VIEW_LIVE_LOCATIONS",
        "View Live Locations",
        "View the live field-staff location dashboard",
        PermissionCategory.LOCATION,
    ),
    (
        "MANAGE_DEMO_LOCATIONS",
        "Manage Demo Locations",
        "Seed or clear demo locations for field staff",
        PermissionCategory.LOCATION,
    ),
]


# -- USERS --

USER_PERMISSIONS = [
    (
        "MANAGE_USERS",
        "Manage Users",
        "Create users and assign roles",
        PermissionCategory.USERS,
    ),
]


# Combined list of all permissions
PERMISSION_DEFINITIONS = (
    CATALOG_PERMISSIONS
    + ORDER_PERMISSIONS
    + DELIVERY_PERMISSIONS
    + DRIVER_SALES_PERMISSIONS
    + LOCATION_PERMISSIONS
    + USER_PERMISSIONS
)
