from .catalog import Product, Warehouse, Customer, Supplier
from .auth import User, Role, UserRole
from .orders import SalesOrder, SalesOrderItem
from .stock import StockMovement
from .purchasing import PurchaseOrder, PurchaseOrderItem
from .audit import AuditLogEntry

__all__ = [
    'Product', 'Warehouse', 'Customer', 'Supplier',
    'User', 'Role', 'UserRole',
    'SalesOrder', 'SalesOrderItem',
    'StockMovement',
    'PurchaseOrder', 'PurchaseOrderItem',
    'AuditLogEntry',
]
