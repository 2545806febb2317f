from .stock import (
    StockRecord,
    StockTransaction,
    StockStatus,
    TransactionKind,
    classify_quantity,
    MAX_QUANTITY,
)
from .transfers import TransferOperation, TransferStatus
from .production import ProductionBatch, BatchStatus, QualityCheck

__all__ = [
    'StockRecord', 'StockTransaction', 'StockStatus', 'TransactionKind', 'classify_quantity', 'MAX_QUANTITY',
    'TransferOperation', 'TransferStatus',
    'ProductionBatch', 'BatchStatus', 'QualityCheck',
]
