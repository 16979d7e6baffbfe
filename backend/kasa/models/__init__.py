from .sales import Sale, SaleLine, SaleAllocation
from .registers import CashRegisterSession, CashTransaction
from .customers import Customer, CreditTransaction
from .documents import DocumentSequence, OutboxEvent

__all__ = [
    'Sale', 'SaleLine', 'SaleAllocation',
    'CashRegisterSession', 'CashTransaction',
    'Customer', 'CreditTransaction',
    'DocumentSequence', 'OutboxEvent',
]
