from .catalog import Category, Supplier, UnitOfMeasure, Product, ProductDetail
from .purchasing import Purchase, PurchaseLineItem, Lot
from .warehouse import IntakeRecord, WarehouseMovement
from .sales import Customer, Sale, SaleLine
from .auth import User, SessionToken

__all__ = [
    'Category', 'Supplier', 'UnitOfMeasure', 'Product', 'ProductDetail',
    'Purchase', 'PurchaseLineItem', 'Lot',
    'IntakeRecord', 'WarehouseMovement',
    'Customer', 'Sale', 'SaleLine',
    'User', 'SessionToken',
]
