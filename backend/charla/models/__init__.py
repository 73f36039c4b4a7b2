from .tenancy import Tenant
from .catalog import Product, ProductPrice, PaymentMethod
from .customers import Customer
from .sales import Sale, SaleLine, SalePayment

__all__ = [
    'Tenant',
    'Product', 'ProductPrice', 'PaymentMethod',
    'Customer',
    'Sale', 'SaleLine', 'SalePayment',
]
