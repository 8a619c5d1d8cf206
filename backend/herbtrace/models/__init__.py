from .auth import User, SessionToken
from .batches import HerbBatch, BatchEvent, LedgerReceipt, EVENT_TYPES, BATCH_STATUSES, UNITS

__all__ = [
    'User', 'SessionToken',
    'HerbBatch', 'BatchEvent', 'LedgerReceipt',
    'EVENT_TYPES', 'BATCH_STATUSES', 'UNITS',
]
