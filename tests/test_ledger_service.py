"""Mini README: Tests covering role checks and balance refreshes around ledger writes.

Structure:
    * Permissions - viewers never write, supervisors stay on their sites, deletes are admin only.
    * Read your own writes - every mutation returns the recomputed summary.
    * Transfers and deletions - both affected sites are refreshed.
"""

from __future__ import annotations

import asyncio
from decimal import Decimal
from typing import Tuple

import pytest

from sitefunds.balance import BalanceCalculator, RefreshCoordinator, SummaryStatus
from sitefunds.errors import ConflictingWriteError, LedgerPermissionError, RecordNotFoundError
from sitefunds.ledger.service import LedgerService

from .conftest import OTHER_SITE_ID, SITE_ID, RecordingStore, seed_riverside

EXPENSE = {"date": "2024-04-21", "description": "Binding wire", "category": "material", "amount": "1500"}


async def _service(store: RecordingStore, settings) -> LedgerService:
    await seed_riverside(store)
    return LedgerService(store, RefreshCoordinator(BalanceCalculator(store, settings)))


async def _contexts(service: LedgerService, *user_ids: str) -> Tuple:
    return tuple([await service.resolve_user(user_id) for user_id in user_ids])


def test_unknown_or_missing_users_are_rejected(store: RecordingStore, settings) -> None:
    async def scenario() -> None:
        service = await _service(store, settings)
        with pytest.raises(LedgerPermissionError):
            await service.resolve_user(None)
        with pytest.raises(LedgerPermissionError):
            await service.resolve_user("intruder")

    asyncio.run(scenario())


def test_supervisors_only_see_and_write_their_sites(store: RecordingStore, settings) -> None:
    async def scenario() -> None:
        service = await _service(store, settings)
        admin, ravi, meena = await _contexts(service, "admin", "ravi", "meena")

        assert [site.id for site in await service.list_sites(ravi)] == [SITE_ID]
        assert len(await service.list_sites(admin)) == 2
        with pytest.raises(LedgerPermissionError):
            await service.get_site(meena, SITE_ID)
        with pytest.raises(LedgerPermissionError):
            await service.record_expense(meena, SITE_ID, **EXPENSE)

    asyncio.run(scenario())


def test_viewers_cannot_record_transactions(store: RecordingStore, settings) -> None:
    async def scenario() -> None:
        service = await _service(store, settings)
        (viewer,) = await _contexts(service, "viewer")
        with pytest.raises(LedgerPermissionError):
            await service.record_expense(viewer, SITE_ID, **EXPENSE)
        assert len(await store.select("expenses", site_id=SITE_ID)) == 1

    asyncio.run(scenario())


def test_recorded_expense_is_reflected_in_the_returned_summary(store: RecordingStore, settings) -> None:
    """The acting user sees its own write without another read."""

    async def scenario() -> None:
        service = await _service(store, settings)
        (ravi,) = await _contexts(service, "ravi")

        result = await service.record_expense(ravi, SITE_ID, **EXPENSE)

        (view,) = result.views
        assert result.record.created_by == "ravi"
        assert view.status is SummaryStatus.FRESH
        assert view.summary.total_expenditure == Decimal("13500.00")
        assert view.trusted_balance == Decimal("28500.00")
        site = await store.get("sites", SITE_ID)
        assert site.funds == Decimal("28500.00")

    asyncio.run(scenario())


def test_invoice_counts_once_paid(store: RecordingStore, settings) -> None:
    async def scenario() -> None:
        service = await _service(store, settings)
        (ravi,) = await _contexts(service, "ravi")

        created = await service.record_invoice(
            ravi,
            SITE_ID,
            date="2024-04-22",
            party_id="vendor_steel",
            party_name="Steel Traders",
            material_items=[{"description": "TMT rods", "quantity": "4", "rate": "2000"}],
        )
        assert created.views[0].summary.pending_invoices == Decimal("8000.00")
        assert created.views[0].summary.total_balance == Decimal("30000.00")

        paid = await service.mark_invoice_paid(ravi, created.record.id)
        assert paid.views[0].summary.invoices_paid == Decimal("13000.00")
        assert paid.views[0].summary.total_balance == Decimal("22000.00")

        rounds = store.rounds()
        again = await service.mark_invoice_paid(ravi, created.record.id)
        assert again.views[0].summary.total_balance == Decimal("22000.00")
        assert store.rounds() == rounds

    asyncio.run(scenario())


def test_transfer_refreshes_payer_and_receiver(store: RecordingStore, settings) -> None:
    async def scenario() -> None:
        service = await _service(store, settings)
        (admin,) = await _contexts(service, "admin")
        await service.record_funds_received(admin, OTHER_SITE_ID, date="2024-05-02", amount="20000")

        result = await service.record_supervisor_transfer(
            admin,
            payer_site_id=OTHER_SITE_ID,
            receiver_site_id=SITE_ID,
            amount="4000",
            transaction_type="advance_paid",
            date="2024-05-03",
        )

        views = {view.site_id: view for view in result.views}
        assert result.record.payer_supervisor_id == "meena"
        assert result.record.receiver_supervisor_id == "ravi"
        assert views[OTHER_SITE_ID].summary.advance_paid_to_supervisor == Decimal("4000.00")
        assert views[OTHER_SITE_ID].summary.total_balance == Decimal("16000.00")
        assert views[SITE_ID].summary.total_balance == Decimal("30000.00")

    asyncio.run(scenario())


def test_only_admins_delete_transactions(store: RecordingStore, settings) -> None:
    """Deleting the tools advance leaves the balance but clears debits to worker."""

    async def scenario() -> None:
        service = await _service(store, settings)
        admin, ravi = await _contexts(service, "admin", "ravi")

        with pytest.raises(LedgerPermissionError):
            await service.delete_transaction(ravi, "advance", "a2")
        with pytest.raises(ValueError):
            await service.delete_transaction(admin, "payroll", "a2")

        result = await service.delete_transaction(admin, "advance", "a2")
        summary = result.views[0].summary
        assert summary.debits_to_worker == Decimal("0.00")
        assert summary.total_balance == Decimal("30000.00")

        with pytest.raises(RecordNotFoundError):
            await service.delete_transaction(admin, "advance", "a2")

    asyncio.run(scenario())


def test_delete_racing_another_writer_recomputes_and_reports_conflict(settings) -> None:
    class RacingStore(RecordingStore):
        async def delete(self, table: str, record_id: str) -> object:
            await super().delete(table, record_id)
            raise RecordNotFoundError(f"{table} row {record_id} not found")

    async def scenario() -> None:
        racing = RacingStore()
        service = await _service(racing, settings)
        (admin,) = await _contexts(service, "admin")

        with pytest.raises(ConflictingWriteError):
            await service.delete_transaction(admin, "expense", "e1")

        view = service.coordinator.get_view(SITE_ID)
        assert view.summary.total_expenditure == Decimal("0.00")

    asyncio.run(scenario())


def test_admin_manages_sites(store: RecordingStore, settings) -> None:
    async def scenario() -> None:
        service = await _service(store, settings)
        admin, ravi = await _contexts(service, "admin", "ravi")
        fields = {
            "name": "Lakeview Villas",
            "job_name": "Phase 1",
            "pos_no": "PO-9",
            "location": "Madurai",
            "start_date": "2024-06-01",
            "supervisor_id": "ravi",
        }

        with pytest.raises(LedgerPermissionError):
            await service.create_site(ravi, **fields)
        with pytest.raises(ValueError):
            await service.create_site(admin, **{**fields, "supervisor_id": "viewer"})

        site = await service.create_site(admin, **fields)
        assert site.id in {row.id for row in await service.list_sites(ravi)}

        completed = await service.set_site_completion(
            admin, site.id, completed=True, completion_date="2024-09-30"
        )
        assert completed.is_completed
        assert completed.completion_date.isoformat() == "2024-09-30"

    asyncio.run(scenario())


def test_admin_edits_site_details_but_not_its_funds(store: RecordingStore, settings) -> None:
    async def scenario() -> None:
        service = await _service(store, settings)
        admin, ravi = await _contexts(service, "admin", "ravi")

        with pytest.raises(LedgerPermissionError):
            await service.update_site(ravi, SITE_ID, name="Riverside Towers")
        with pytest.raises(ValueError, match="funds"):
            await service.update_site(admin, SITE_ID, funds="999999")
        with pytest.raises(ValueError):
            await service.update_site(admin, SITE_ID, supervisor_id="viewer")
        with pytest.raises(ValueError):
            await service.update_site(admin, SITE_ID)

        site = await service.update_site(
            admin, SITE_ID, name="Riverside Towers", supervisor_id="meena", start_date="2024-04-05"
        )

        assert site.name == "Riverside Towers"
        assert site.supervisor_id == "meena"
        assert site.start_date.isoformat() == "2024-04-05"
        assert (await store.get("sites", SITE_ID)).name == "Riverside Towers"
        assert [row.id for row in await service.list_sites(ravi)] == []
        with pytest.raises(RecordNotFoundError):
            await service.update_site(admin, "site_unknown", name="Nowhere")

    asyncio.run(scenario())
