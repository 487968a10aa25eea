"""Mini README: Ledger records and the store they live in.

``models`` defines sites, users and the transaction kinds folded into a
site balance; ``store`` is the table-scoped CRUD surface with its realtime
change feed. Mutations that also refresh balances go through
``sitefunds.ledger.service``, imported directly to keep this package free of
balance dependencies.
"""

from .models import (
    Advance,
    AdvancePurpose,
    ApprovalStatus,
    ApproverType,
    BankDetails,
    Expense,
    ExpenseCategory,
    FundsReceived,
    FundsSource,
    Invoice,
    MaterialItem,
    PaymentStatus,
    RecipientType,
    Site,
    SupervisorTransaction,
    SupervisorTransactionType,
    User,
    UserRole,
)
from .store import ChangeEvent, InMemoryLedgerStore, LedgerStore

__all__ = [
    "Advance",
    "AdvancePurpose",
    "ApprovalStatus",
    "ApproverType",
    "BankDetails",
    "ChangeEvent",
    "Expense",
    "ExpenseCategory",
    "FundsReceived",
    "FundsSource",
    "InMemoryLedgerStore",
    "Invoice",
    "LedgerStore",
    "MaterialItem",
    "PaymentStatus",
    "RecipientType",
    "Site",
    "SupervisorTransaction",
    "SupervisorTransactionType",
    "User",
    "UserRole",
]
