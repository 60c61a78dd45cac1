from .branches import Branch
from .customers import CustomerAccount, CustomerAccountTransaction
from .sales import Sale, SaleLine, SalePayment
from .laybye import LaybyeOrder, LaybyeItem, LaybyePayment
from .cashup import CashupSession, CashupMovement, CashVariance, CashVarianceAction

__all__ = [
    'Branch',
    'CustomerAccount', 'CustomerAccountTransaction',
    'Sale', 'SaleLine', 'SalePayment',
    'LaybyeOrder', 'LaybyeItem', 'LaybyePayment',
    'CashupSession', 'CashupMovement', 'CashVariance', 'CashVarianceAction',
]
