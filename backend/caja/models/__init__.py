from .currencies import Currency
from .tills import Till, TillBalance, TillMovement, TILL_OPEN, TILL_CLOSED
from .inventory import InventoryLot
from .transactions import ExchangeTransaction, TX_STATUS_COMPLETED, TX_STATUS_PENDING

__all__ = [
    'Currency',
    'Till', 'TillBalance', 'TillMovement', 'TILL_OPEN', 'TILL_CLOSED',
    'InventoryLot',
    'ExchangeTransaction', 'TX_STATUS_COMPLETED', 'TX_STATUS_PENDING',
]
