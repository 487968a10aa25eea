"""Mini README: Role-checked ledger mutations that keep balances current.

Structure:
    * AccessContext - the acting user and role.
    * MutationResult - written row plus the refreshed summary view(s).
    * LedgerService - site and transaction operations.

Every write is checked against the acting role before the store is touched.
After the store acknowledges a write, the service awaits a mutation refresh of
each affected site so the caller always sees its own writes. The cached
``Site.funds`` figures are never written here; the coordinator maintains them.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from ..balance.coordinator import RefreshCoordinator, RefreshTrigger, SummaryView
from ..errors import ConflictingWriteError, LedgerPermissionError, RecordNotFoundError
from ..logging_utils import get_logger
from .models import (
    Advance,
    Expense,
    FundsReceived,
    Invoice,
    PaymentStatus,
    Site,
    SupervisorTransaction,
    User,
    UserRole,
    parse_date,
)
from .store import LedgerStore, affected_site_ids

LOGGER = get_logger(__name__)

# Site fields an admin may edit; the funds projection belongs to the balance layer.
EDITABLE_SITE_FIELDS = frozenset(
    {"name", "job_name", "pos_no", "location", "start_date", "supervisor_id", "completion_date"}
)

# Public transaction kind -> ledger table.
TRANSACTION_KINDS: Dict[str, str] = {
    "expense": "expenses",
    "advance": "advances",
    "funds": "funds_received",
    "invoice": "site_invoices",
    "supervisor_transfer": "supervisor_transactions",
}


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


@dataclass(frozen=True, slots=True)
class AccessContext:
    """Who is acting on the ledger."""

    user: User

    @property
    def user_id(self) -> str:
        return self.user.id

    @property
    def role(self) -> UserRole:
        return self.user.role

    @property
    def is_admin(self) -> bool:
        return self.user.role is UserRole.ADMIN


def require_role(context: AccessContext, *roles: UserRole) -> None:
    """Raise ``LedgerPermissionError`` unless the context holds one of ``roles``."""

    if context.role not in roles:
        allowed = ", ".join(role.value for role in roles)
        raise LedgerPermissionError(
            f"User {context.user_id} ({context.role.value}) may not do this; requires {allowed}"
        )


@dataclass(slots=True)
class MutationResult:
    record: object
    views: List[SummaryView] = field(default_factory=list)

    def as_dict(self) -> Dict[str, object]:
        return {
            "record": self.record.as_dict(),  # type: ignore[attr-defined]
            "summaries": [view.as_dict() for view in self.views],
        }


class LedgerService:
    """Site and transaction operations for admins and supervisors."""

    def __init__(self, store: LedgerStore, coordinator: RefreshCoordinator) -> None:
        self.store = store
        self.coordinator = coordinator

    async def resolve_user(self, user_id: Optional[str]) -> AccessContext:
        """Load the acting user, rejecting unknown identities."""

        if not user_id:
            raise LedgerPermissionError("A user identity is required.")
        try:
            user = await self.store.get("users", user_id)
        except RecordNotFoundError:
            raise LedgerPermissionError(f"Unknown user {user_id}") from None
        return AccessContext(user=user)  # type: ignore[arg-type]

    # ------------------------------------------------------------------ sites
    async def list_sites(self, context: AccessContext) -> List[Site]:
        if context.role is UserRole.SUPERVISOR:
            return await self.store.select("sites", supervisor_id=context.user_id)  # type: ignore[return-value]
        return await self.store.select("sites")  # type: ignore[return-value]

    async def get_site(self, context: AccessContext, site_id: str) -> Site:
        site: Site = await self.store.get("sites", site_id)  # type: ignore[assignment]
        if context.role is UserRole.SUPERVISOR and site.supervisor_id != context.user_id:
            raise LedgerPermissionError(f"Site {site_id} is not assigned to {context.user_id}")
        return site

    async def create_site(self, context: AccessContext, **fields: object) -> Site:
        require_role(context, UserRole.ADMIN)
        supervisor_id = str(fields.get("supervisor_id", ""))
        supervisor: User = await self.store.get("users", supervisor_id)  # type: ignore[assignment]
        if supervisor.role is not UserRole.SUPERVISOR:
            raise ValueError(f"User {supervisor_id} is not a supervisor")
        site = Site(id=_new_id("site"), **fields)  # type: ignore[arg-type]
        await self.store.insert("sites", site)
        LOGGER.info("Site %s (%s) created by %s", site.id, site.name, context.user_id)
        return site

    async def update_site(self, context: AccessContext, site_id: str, **changes: object) -> Site:
        """Edit a site's descriptive fields; completion state and funds are not editable here."""

        require_role(context, UserRole.ADMIN)
        if not changes:
            raise ValueError("No site fields to update.")
        rejected = sorted(set(changes) - EDITABLE_SITE_FIELDS)
        if rejected:
            raise ValueError(f"Site fields cannot be edited: {', '.join(rejected)}")
        cleared = sorted(name for name, value in changes.items() if value is None and name != "completion_date")
        if cleared:
            raise ValueError(f"Site fields cannot be cleared: {', '.join(cleared)}")
        if "supervisor_id" in changes:
            supervisor: User = await self.store.get("users", str(changes["supervisor_id"]))  # type: ignore[assignment]
            if supervisor.role is not UserRole.SUPERVISOR:
                raise ValueError(f"User {supervisor.id} is not a supervisor")
        for name in ("start_date", "completion_date"):
            if changes.get(name) is not None:
                changes[name] = parse_date(changes[name])
        updated = await self.store.update("sites", site_id, **changes)
        LOGGER.info("Site %s updated by %s fields=%s", site_id, context.user_id, sorted(changes))
        return updated  # type: ignore[return-value]

    async def set_site_completion(
        self, context: AccessContext, site_id: str, *, completed: bool, completion_date: object = None
    ) -> Site:
        require_role(context, UserRole.ADMIN)
        changes: Dict[str, object] = {"is_completed": completed}
        if completed:
            changes["completion_date"] = parse_date(completion_date) if completion_date else date.today()
        else:
            changes["completion_date"] = None
        updated = await self.store.update("sites", site_id, **changes)
        LOGGER.info("Site %s marked %s", site_id, "completed" if completed else "active")
        return updated  # type: ignore[return-value]

    async def _site_for_write(self, context: AccessContext, site_id: str) -> Site:
        require_role(context, UserRole.ADMIN, UserRole.SUPERVISOR)
        return await self.get_site(context, site_id)

    async def site_transactions(self, context: AccessContext, site_id: str) -> Dict[str, List[object]]:
        """Rows of every transaction kind recorded for a site."""

        await self.get_site(context, site_id)
        return {
            "expenses": await self.store.select("expenses", site_id=site_id),
            "advances": await self.store.select("advances", site_id=site_id),
            "funds": await self.store.select("funds_received", site_id=site_id),
            "invoices": await self.store.select("site_invoices", site_id=site_id),
            "supervisor_transfers": [
                *await self.store.select("supervisor_transactions", payer_site_id=site_id),
                *await self.store.select("supervisor_transactions", receiver_site_id=site_id),
            ],
        }

    # ----------------------------------------------------------- transactions
    async def record_expense(self, context: AccessContext, site_id: str, **fields: object) -> MutationResult:
        await self._site_for_write(context, site_id)
        expense = Expense(id=_new_id("expense"), site_id=site_id, created_by=context.user_id, **fields)  # type: ignore[arg-type]
        return await self._insert("expenses", expense, [site_id], context)

    async def record_advance(self, context: AccessContext, site_id: str, **fields: object) -> MutationResult:
        await self._site_for_write(context, site_id)
        advance = Advance(id=_new_id("advance"), site_id=site_id, created_by=context.user_id, **fields)  # type: ignore[arg-type]
        return await self._insert("advances", advance, [site_id], context)

    async def record_funds_received(
        self, context: AccessContext, site_id: str, **fields: object
    ) -> MutationResult:
        await self._site_for_write(context, site_id)
        funds = FundsReceived(id=_new_id("funds"), site_id=site_id, created_by=context.user_id, **fields)  # type: ignore[arg-type]
        return await self._insert("funds_received", funds, [site_id], context)

    async def record_invoice(self, context: AccessContext, site_id: str, **fields: object) -> MutationResult:
        await self._site_for_write(context, site_id)
        invoice = Invoice(id=_new_id("invoice"), site_id=site_id, created_by=context.user_id, **fields)  # type: ignore[arg-type]
        return await self._insert("site_invoices", invoice, [site_id], context)

    async def record_supervisor_transfer(
        self,
        context: AccessContext,
        *,
        payer_site_id: str,
        receiver_site_id: str,
        amount: object,
        transaction_type: object,
        date: object,
    ) -> MutationResult:
        """Record money moving from one supervisor's site to another's."""

        payer_site = await self._site_for_write(context, payer_site_id)
        receiver_site: Site = await self.store.get("sites", receiver_site_id)  # type: ignore[assignment]
        transfer = SupervisorTransaction(
            id=_new_id("transfer"),
            date=date,  # type: ignore[arg-type]
            payer_supervisor_id=payer_site.supervisor_id,
            receiver_supervisor_id=receiver_site.supervisor_id,
            payer_site_id=payer_site_id,
            receiver_site_id=receiver_site_id,
            amount=amount,  # type: ignore[arg-type]
            transaction_type=transaction_type,  # type: ignore[arg-type]
            created_by=context.user_id,
        )
        return await self._insert(
            "supervisor_transactions", transfer, [payer_site_id, receiver_site_id], context
        )

    async def mark_invoice_paid(self, context: AccessContext, invoice_id: str) -> MutationResult:
        invoice: Invoice = await self.store.get("site_invoices", invoice_id)  # type: ignore[assignment]
        await self._site_for_write(context, invoice.site_id)
        if invoice.is_paid:
            LOGGER.debug("Invoice %s already paid", invoice_id)
            return MutationResult(invoice, [await self.coordinator.current(invoice.site_id)])
        updated = await self.store.update("site_invoices", invoice_id, payment_status=PaymentStatus.PAID)
        LOGGER.info("Invoice %s on site %s marked paid by %s", invoice_id, invoice.site_id, context.user_id)
        return MutationResult(updated, await self._refresh([invoice.site_id]))

    async def delete_transaction(self, context: AccessContext, kind: str, record_id: str) -> MutationResult:
        """Admin-only removal of a transaction row."""

        require_role(context, UserRole.ADMIN)
        table = TRANSACTION_KINDS.get(kind)
        if table is None:
            raise ValueError(f"Unknown transaction kind '{kind}'")
        record = await self.store.get(table, record_id)
        site_ids = list(affected_site_ids(table, record))
        try:
            await self.store.delete(table, record_id)
        except RecordNotFoundError:
            views = await self._refresh(site_ids)
            LOGGER.warning("%s %s vanished before deletion; balances recomputed", kind, record_id)
            raise ConflictingWriteError(
                f"{kind} {record_id} was removed concurrently; summaries recomputed for {', '.join(site_ids)}"
            ) from None
        LOGGER.info("Deleted %s %s by %s", kind, record_id, context.user_id)
        return MutationResult(record, await self._refresh(site_ids))

    # ---------------------------------------------------------------- helpers
    async def _insert(
        self, table: str, record: object, site_ids: List[str], context: AccessContext
    ) -> MutationResult:
        await self.store.insert(table, record)
        LOGGER.info(
            "Recorded %s %s on %s by %s amount=%s",
            table,
            record.id,  # type: ignore[attr-defined]
            ", ".join(site_ids),
            context.user_id,
            _amount_of(record),
        )
        return MutationResult(record, await self._refresh(site_ids))

    async def _refresh(self, site_ids: Iterable[str]) -> List[SummaryView]:
        views = []
        for site_id in dict.fromkeys(site_ids):
            views.append(await self.coordinator.request_refresh(site_id, RefreshTrigger.MUTATION))
        return views


def _amount_of(record: object) -> Optional[Decimal]:
    if isinstance(record, Invoice):
        return record.net_amount
    return getattr(record, "amount", None)
