"""Mini README: Shared fixtures and ledger builders for the test-suite.

Structure:
    * settings - fast settings (no retry delays, short timeout).
    * RecordingStore - in-memory store that counts reads, fails chosen tables
      and can hold every read until a gate opens.
    * seed_riverside - inserts the worked example site used across tests.
"""

from __future__ import annotations

import asyncio
from datetime import date
from decimal import Decimal
from typing import Dict, List, Optional

import pytest

from sitefunds.configuration import SiteFundsSettings
from sitefunds.errors import LedgerUnavailableError
from sitefunds.ledger import (
    Advance,
    AdvancePurpose,
    ApproverType,
    Expense,
    ExpenseCategory,
    FundsReceived,
    InMemoryLedgerStore,
    Invoice,
    MaterialItem,
    PaymentStatus,
    RecipientType,
    Site,
    User,
    UserRole,
)

SITE_ID = "site_riverside"
OTHER_SITE_ID = "site_ringroad"


class RecordingStore(InMemoryLedgerStore):
    """Store double used to observe and disturb balance recomputations."""

    def __init__(self) -> None:
        super().__init__()
        self.calls: List[str] = []
        self.failures: Dict[str, int] = {}
        self.gate: Optional[asyncio.Event] = None
        self.hang_seconds = 0.0

    def fail(self, table: str, times: int = -1) -> None:
        """Make reads of ``table`` fail ``times`` times (-1 = always)."""

        self.failures[table] = times

    async def select(self, table: str, **filters: object) -> List[object]:
        self.calls.append(table)
        if self.gate is not None:
            await self.gate.wait()
        if self.hang_seconds:
            await asyncio.sleep(self.hang_seconds)
        remaining = self.failures.get(table, 0)
        if remaining:
            if remaining > 0:
                self.failures[table] = remaining - 1
            raise LedgerUnavailableError(f"{table} unreachable")
        return await super().select(table, **filters)

    def rounds(self) -> int:
        """Number of recomputation rounds that reached the expenses table."""

        return self.calls.count("expenses")


@pytest.fixture
def settings() -> SiteFundsSettings:
    return SiteFundsSettings(
        fetch_max_retries=2,
        fetch_retry_delay_seconds=0.0,
        recompute_timeout_seconds=1.0,
        visibility_ignore_below_seconds=1.0,
        visibility_refresh_after_seconds=30.0,
        seed_demo_data=False,
    )


@pytest.fixture
def store() -> RecordingStore:
    return RecordingStore()


async def seed_people(store: InMemoryLedgerStore) -> None:
    """Insert one user per role plus two supervised sites."""

    await store.insert("users", User(id="admin", name="Admin", email="a@example.com", role=UserRole.ADMIN))
    await store.insert("users", User(id="ravi", name="Ravi", email="r@example.com", role=UserRole.SUPERVISOR))
    await store.insert("users", User(id="meena", name="Meena", email="m@example.com", role=UserRole.SUPERVISOR))
    await store.insert("users", User(id="viewer", name="Viewer", email="v@example.com", role=UserRole.VIEWER))
    await store.insert(
        "sites",
        Site(
            id=SITE_ID,
            name="Riverside Apartments",
            job_name="Block B",
            pos_no="PO-1",
            location="Chennai",
            start_date=date(2024, 4, 1),
            supervisor_id="ravi",
        ),
    )
    await store.insert(
        "sites",
        Site(
            id=OTHER_SITE_ID,
            name="Ring Road Flyover",
            job_name="Piers",
            pos_no="PO-2",
            location="Coimbatore",
            start_date=date(2024, 5, 1),
            supervisor_id="meena",
        ),
    )


async def seed_riverside(store: InMemoryLedgerStore) -> None:
    """Funds 50000, expense 12000, advance 3000, tools 1000, paid invoice 5000."""

    await seed_people(store)
    await store.insert(
        "funds_received",
        FundsReceived(id="f1", site_id=SITE_ID, date=date(2024, 4, 2), amount=Decimal("50000")),
    )
    await store.insert(
        "expenses",
        Expense(
            id="e1",
            site_id=SITE_ID,
            date=date(2024, 4, 3),
            description="Diesel",
            category=ExpenseCategory.DIESEL_FUEL_CHARGES,
            amount=Decimal("12000"),
            created_by="ravi",
        ),
    )
    await store.insert(
        "advances",
        Advance(
            id="a1",
            site_id=SITE_ID,
            date=date(2024, 4, 4),
            recipient_name="Murugan",
            recipient_type=RecipientType.WORKER,
            purpose=AdvancePurpose.ADVANCE,
            amount=Decimal("3000"),
            created_by="ravi",
        ),
    )
    await store.insert(
        "advances",
        Advance(
            id="a2",
            site_id=SITE_ID,
            date=date(2024, 4, 5),
            recipient_name="Murugan",
            recipient_type=RecipientType.WORKER,
            purpose=AdvancePurpose.TOOLS,
            amount=Decimal("1000"),
            created_by="ravi",
        ),
    )
    await store.insert(
        "site_invoices",
        Invoice(
            id="i1",
            site_id=SITE_ID,
            date=date(2024, 4, 6),
            party_id="vendor",
            party_name="Cement Co",
            material_items=[MaterialItem(description="Cement", quantity=Decimal("10"), rate=Decimal("500"))],
            payment_status=PaymentStatus.PAID,
            approver_type=ApproverType.SUPERVISOR,
            created_by="ravi",
        ),
    )
