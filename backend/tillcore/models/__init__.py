from .sales import Sale, SaleLine, SalePayment
from .shifts import Shift, CashMovementEntry

__all__ = [
    'Sale', 'SaleLine', 'SalePayment',
    'Shift', 'CashMovementEntry',
]
