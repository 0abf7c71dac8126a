from .tenancy import Store, User, DocumentSequence, user_stores
from .deposits import Deposit, Withdrawal
from .transfers import TransferItem, HqDeposit
from .borrows import Borrow, BorrowItem
from .stock import Comparison
from .audit import AuditLog, Notification

__all__ = [
    'Store', 'User', 'DocumentSequence', 'user_stores',
    'Deposit', 'Withdrawal',
    'TransferItem', 'HqDeposit',
    'Borrow', 'BorrowItem',
    'Comparison',
    'AuditLog', 'Notification',
]
