"""Mini README: Table-scoped ledger store with a realtime change feed.

Structure:
    * ChangeEvent - notification published after every write.
    * LedgerStore - async CRUD interface the rest of the service depends on.
    * InMemoryLedgerStore - dictionary backed implementation with demo seeding.

The store plays the role of the hosted backend: it exposes ``select`` /
``get`` / ``insert`` / ``update`` / ``delete`` per table and pushes change
events to subscribers. It never derives balances. The denormalised
``Site.funds`` cache is only written through ``update_site_projection``,
which the balance coordinator calls after a complete recomputation.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from ..errors import RecordNotFoundError
from ..logging_utils import get_logger
from .models import (
    Advance,
    AdvancePurpose,
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

LOGGER = get_logger(__name__)

TABLE_MODELS: Dict[str, type] = {
    "users": User,
    "sites": Site,
    "expenses": Expense,
    "advances": Advance,
    "funds_received": FundsReceived,
    "site_invoices": Invoice,
    "supervisor_transactions": SupervisorTransaction,
}

TRANSACTION_TABLES: Tuple[str, ...] = (
    "expenses",
    "advances",
    "funds_received",
    "site_invoices",
    "supervisor_transactions",
)


@dataclass(frozen=True, slots=True)
class ChangeEvent:
    """Row change notification delivered to feed subscribers."""

    table: str
    action: str
    record_id: str
    site_ids: Tuple[str, ...]


ChangeListener = Callable[[ChangeEvent], None]


def affected_site_ids(table: str, record: object) -> Tuple[str, ...]:
    """Return the site(s) whose balance a row of ``table`` feeds into."""

    if table == "sites":
        return (record.id,)  # type: ignore[attr-defined]
    if table == "supervisor_transactions":
        return (record.payer_site_id, record.receiver_site_id)  # type: ignore[attr-defined]
    site_id = getattr(record, "site_id", None)
    return (site_id,) if site_id else ()


def _check_table(table: str) -> None:
    if table not in TABLE_MODELS:
        raise ValueError(f"Unknown ledger table '{table}'")


class LedgerStore(ABC):
    """Async CRUD surface of the ledger backend."""

    def __init__(self) -> None:
        self._listeners: List[ChangeListener] = []

    @abstractmethod
    async def select(self, table: str, **filters: object) -> List[object]:
        """Return rows whose attributes equal every filter, newest first."""

    @abstractmethod
    async def get(self, table: str, record_id: str) -> object:
        """Return one row or raise ``RecordNotFoundError``."""

    @abstractmethod
    async def insert(self, table: str, record: object) -> object:
        """Persist a new row."""

    @abstractmethod
    async def update(self, table: str, record_id: str, **changes: object) -> object:
        """Apply field changes to an existing row."""

    @abstractmethod
    async def delete(self, table: str, record_id: str) -> object:
        """Remove a row and return it."""

    @abstractmethod
    async def update_site_projection(
        self, site_id: str, *, funds: Decimal, total_funds: Decimal
    ) -> None:
        """Refresh the cached balance figures on a site row."""

    def subscribe(self, listener: ChangeListener) -> Callable[[], None]:
        """Register a change feed listener and return its unsubscribe hook."""

        self._listeners.append(listener)
        LOGGER.debug("Change feed listener registered (%s active)", len(self._listeners))

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def _publish(self, table: str, action: str, record: object) -> None:
        event = ChangeEvent(
            table=table,
            action=action,
            record_id=record.id,  # type: ignore[attr-defined]
            site_ids=affected_site_ids(table, record),
        )
        for listener in list(self._listeners):
            try:
                listener(event)
            except Exception:  # pragma: no cover - listener bugs must not fail writes
                LOGGER.exception("Change feed listener failed for %s", event)


class InMemoryLedgerStore(LedgerStore):
    """Dictionary backed store used by the CLI, the web app and the tests."""

    def __init__(self, *, latency_seconds: float = 0.0) -> None:
        super().__init__()
        self.latency_seconds = latency_seconds
        self._tables: Dict[str, Dict[str, object]] = {table: {} for table in TABLE_MODELS}
        LOGGER.debug("In-memory ledger store initialised")

    async def _roundtrip(self) -> None:
        await asyncio.sleep(self.latency_seconds)

    async def select(self, table: str, **filters: object) -> List[object]:
        _check_table(table)
        await self._roundtrip()
        rows = [
            row
            for row in self._tables[table].values()
            if all(getattr(row, key) == value for key, value in filters.items())
        ]
        return sorted(rows, key=_newest_first_key, reverse=True)

    async def get(self, table: str, record_id: str) -> object:
        _check_table(table)
        await self._roundtrip()
        try:
            return self._tables[table][record_id]
        except KeyError:
            raise RecordNotFoundError(f"{table} row {record_id} not found") from None

    async def insert(self, table: str, record: object) -> object:
        _check_table(table)
        model = TABLE_MODELS[table]
        if not isinstance(record, model):
            raise ValueError(f"Table '{table}' stores {model.__name__} rows")
        await self._roundtrip()
        if record.id in self._tables[table]:  # type: ignore[attr-defined]
            raise ValueError(f"{table} row {record.id} already exists")  # type: ignore[attr-defined]
        self._tables[table][record.id] = record  # type: ignore[attr-defined]
        LOGGER.debug("Inserted %s row %s", table, record.id)  # type: ignore[attr-defined]
        self._publish(table, "insert", record)
        return record

    async def update(self, table: str, record_id: str, **changes: object) -> object:
        current = await self.get(table, record_id)
        if "id" in changes:
            raise ValueError("Row identifiers cannot be changed.")
        updated = replace(current, **changes)
        self._tables[table][record_id] = updated
        LOGGER.debug("Updated %s row %s fields=%s", table, record_id, sorted(changes))
        self._publish(table, "update", updated)
        return updated

    async def delete(self, table: str, record_id: str) -> object:
        current = await self.get(table, record_id)
        del self._tables[table][record_id]
        LOGGER.debug("Deleted %s row %s", table, record_id)
        self._publish(table, "delete", current)
        return current

    async def update_site_projection(
        self, site_id: str, *, funds: Decimal, total_funds: Decimal
    ) -> None:
        await self._roundtrip()
        site = self._tables["sites"].get(site_id)
        if site is None:
            LOGGER.debug("Skipping projection update for unknown site %s", site_id)
            return
        # Projection writes are cache maintenance and do not publish change events.
        self._tables["sites"][site_id] = replace(site, funds=funds, total_funds=total_funds)

    def seed_demo_data(self) -> None:
        """Populate an empty store with deterministic demo users, sites and rows."""

        if any(self._tables.values()):
            LOGGER.debug("Store already populated; demo seeding skipped")
            return
        for row in _demo_rows():
            table = next(name for name, model in TABLE_MODELS.items() if isinstance(row, model))
            self._tables[table][row.id] = row  # type: ignore[attr-defined]
        LOGGER.info(
            "Seeded demo ledger with %s sites and %s users",
            len(self._tables["sites"]),
            len(self._tables["users"]),
        )


def _newest_first_key(row: object) -> Tuple[object, ...]:
    row_date = getattr(row, "date", None) or getattr(row, "start_date", None) or date.min
    return (row_date, getattr(row, "created_at", None) or 0, row.id)  # type: ignore[attr-defined]


def _demo_rows() -> Iterable[object]:
    """Deterministic rows mirroring a small two-site contractor."""

    yield User(id="user_admin", name="Head Office Admin", email="admin@example.com", role=UserRole.ADMIN)
    yield User(id="user_ravi", name="Ravi Kumar", email="ravi@example.com", role=UserRole.SUPERVISOR)
    yield User(id="user_meena", name="Meena Iyer", email="meena@example.com", role=UserRole.SUPERVISOR)
    yield User(id="user_audit", name="Auditor", email="audit@example.com", role=UserRole.VIEWER)
    yield Site(
        id="site_riverside",
        name="Riverside Apartments",
        job_name="Block B structure",
        pos_no="PO-2024-117",
        location="Chennai",
        start_date=date(2024, 4, 1),
        supervisor_id="user_ravi",
    )
    yield Site(
        id="site_ringroad",
        name="Ring Road Flyover",
        job_name="Pier casting",
        pos_no="PO-2024-131",
        location="Coimbatore",
        start_date=date(2024, 5, 15),
        supervisor_id="user_meena",
    )
    yield FundsReceived(
        id="funds_received_demo_1",
        site_id="site_riverside",
        date=date(2024, 4, 2),
        amount=Decimal("50000"),
        source=FundsSource.HEAD_OFFICE,
        reference="HO/APR/01",
        method="NEFT",
        created_by="user_admin",
    )
    yield Expense(
        id="expenses_demo_1",
        site_id="site_riverside",
        date=date(2024, 4, 5),
        description="Diesel for mixer",
        category=ExpenseCategory.DIESEL_FUEL_CHARGES,
        amount=Decimal("12000"),
        created_by="user_ravi",
    )
    yield Advance(
        id="advances_demo_1",
        site_id="site_riverside",
        date=date(2024, 4, 6),
        recipient_name="Murugan",
        recipient_type=RecipientType.WORKER,
        purpose=AdvancePurpose.ADVANCE,
        amount=Decimal("3000"),
        created_by="user_ravi",
    )
    yield Advance(
        id="advances_demo_2",
        site_id="site_riverside",
        date=date(2024, 4, 7),
        recipient_name="Murugan",
        recipient_type=RecipientType.WORKER,
        purpose=AdvancePurpose.TOOLS,
        amount=Decimal("1000"),
        remarks="Trowel and level",
        created_by="user_ravi",
    )
    yield Invoice(
        id="site_invoices_demo_1",
        site_id="site_riverside",
        date=date(2024, 4, 9),
        party_id="vendor_cement",
        party_name="Sri Balaji Cements",
        invoice_number="SBC-4471",
        material_items=[MaterialItem(description="OPC 53 cement bags", quantity=Decimal("10"), rate=Decimal("500"))],
        bank_details=BankDetails(account_number="001122334455", bank_name="Canara Bank", ifsc_code="CNRB0001234"),
        payment_status=PaymentStatus.PAID,
        approver_type=ApproverType.SUPERVISOR,
        created_by="user_ravi",
    )
    yield FundsReceived(
        id="funds_received_demo_2",
        site_id="site_ringroad",
        date=date(2024, 5, 16),
        amount=Decimal("80000"),
        source=FundsSource.HEAD_OFFICE,
        reference="HO/MAY/07",
        method="RTGS",
        created_by="user_admin",
    )
    yield SupervisorTransaction(
        id="supervisor_transactions_demo_1",
        date=date(2024, 5, 20),
        payer_supervisor_id="user_meena",
        receiver_supervisor_id="user_ravi",
        payer_site_id="site_ringroad",
        receiver_site_id="site_riverside",
        amount=Decimal("10000"),
        transaction_type=SupervisorTransactionType.ADVANCE_PAID,
        created_by="user_meena",
    )
