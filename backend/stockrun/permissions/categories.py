# Overview: Permission category constants for grouping related permissions.


class PermissionCategory:
    """Permission categories for organization and UI display."""
    CATALOG = "CATALOG"
    ORDERS = "ORDERS"
    DELIVERIES = "DELIVERIES"
    DRIVER_SALES = "DRIVER_SALES"
    LOCATION = "LOCATION"
    USERS = "USERS"
