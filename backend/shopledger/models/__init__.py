from .tenancy import Store, User
from .inventory import Phone, Accessory, StockMovement
from .counterparties import Customer, Supplier
from .documents import Document, DocumentItem, Payment, DocumentSequence
from .returns import ReturnTransaction
from .cash import CashRegisterSession, CashMovement
from .expenses import Expense
from .ledger import AuditEvent

__all__ = [
    'Store', 'User',
    'Phone', 'Accessory', 'StockMovement',
    'Customer', 'Supplier',
    'Document', 'DocumentItem', 'Payment', 'DocumentSequence',
    'ReturnTransaction',
    'CashRegisterSession', 'CashMovement',
    'Expense',
    'AuditEvent',
]
