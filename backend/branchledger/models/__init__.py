from .tenancy import Company, User, Branch, PaymentMethod, BranchStock
from .documents import SequenceCounter, Order, OrderItem, Event, Expense, Buy
from .registers import CashRegister, CashRegisterEntry, CashRegisterEntryPayment, CashRegisterLog
from .payments import Payment
from .discounts import DiscountAuthorization
from .notifications import BranchNotification
from .audit import LedgerAuditEvent

__all__ = [
    'Company', 'User', 'Branch', 'PaymentMethod', 'BranchStock',
    'SequenceCounter', 'Order', 'OrderItem', 'Event', 'Expense', 'Buy',
    'CashRegister', 'CashRegisterEntry', 'CashRegisterEntryPayment', 'CashRegisterLog',
    'Payment',
    'DiscountAuthorization',
    'BranchNotification',
    'LedgerAuditEvent',
]
