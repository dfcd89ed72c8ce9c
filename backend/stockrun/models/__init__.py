from .auth import User, SessionToken
from .catalog import Product
from .orders import Order, OrderLine
from .allocations import (
    DriverAllocation,
    DriverAllocationItem,
    DriverAllocationReturn,
    DriverSale,
    DriverSaleLine,
)

__all__ = [
    'User', 'SessionToken',
    'Product',
    'Order', 'OrderLine',
    'DriverAllocation', 'DriverAllocationItem', 'DriverAllocationReturn',
    'DriverSale', 'DriverSaleLine',
]
