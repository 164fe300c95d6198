from app.core.database import Base
from .ledgers import BillingLedger, LedgerStatus, derive_status
from .payments import Payment, PaymentMethod, FeeCategory

__all__ = [
    "Base",
    "BillingLedger",
    "LedgerStatus",
    "derive_status",
    "Payment",
    "PaymentMethod",
    "FeeCategory",
]
