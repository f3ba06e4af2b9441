from .base import StoreModel, new_id
from .tenancy import Tenant, TenantDomain, COURIER_MODES
from .auth import User, ROLE_DEV_ADMIN, ROLE_SUPER_ADMIN, ROLE_ADMIN, VALID_ROLES
from .inventory import Product, StockBatch
from .orders import Order, OrderLine, OrderLog, OrderStatus

__all__ = [
    'StoreModel', 'new_id',
    'Tenant', 'TenantDomain', 'COURIER_MODES',
    'User', 'ROLE_DEV_ADMIN', 'ROLE_SUPER_ADMIN', 'ROLE_ADMIN', 'VALID_ROLES',
    'Product', 'StockBatch',
    'Order', 'OrderLine', 'OrderLog', 'OrderStatus',
]
