from .tenancy import Organization, Event
from .users import User, UserRole, ManagedDepartment, CallerCredential
from .accounts import SellerAccount, SellerManagerAccount, PointSellerAccount, CustomerAccount, CollectorAccount
from .merchants import Merchant, MerchantAssistant
from .ledger import Transaction, TransactionStatusHistory
from .cards import PointCard
from .cash import CashSubmission, CashSubmissionSource, FinanceSummary, CashSourceSummary
from .stats import DepartmentStats, SellerManagerStats, EventPointStats
from .security import SecurityEvent

__all__ = [
    'Organization', 'Event',
    'User', 'UserRole', 'ManagedDepartment', 'CallerCredential',
    'SellerAccount', 'SellerManagerAccount', 'PointSellerAccount', 'CustomerAccount', 'CollectorAccount',
    'Merchant', 'MerchantAssistant',
    'Transaction', 'TransactionStatusHistory',
    'PointCard',
    'CashSubmission', 'CashSubmissionSource', 'FinanceSummary', 'CashSourceSummary',
    'DepartmentStats', 'SellerManagerStats', 'EventPointStats',
    'SecurityEvent',
]
