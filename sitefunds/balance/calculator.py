"""Mini README: The one place a site's balance is derived.

Structure:
    * BalanceSummary - fixed-shape aggregate shown for a site.
    * SiteTransactions - joined ledger rows for one site (None = fetch failed).
    * summarise - pure fold of the rows into a summary.
    * BalanceCalculator - fetches the rows concurrently and applies ``summarise``.

Balance formula::

    total_balance = (funds_received + funds_received_from_supervisor)
                    - (total_expenditure + total_advances
                       + invoices_paid + advance_paid_to_supervisor)

Debits to worker (safety shoes, tools, other) and unpaid invoices are
reported but never enter the formula. A component whose rows could not be
fetched is ``None`` rather than zero, and so is the total that depends on it.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from ..configuration import SiteFundsSettings, get_settings
from ..errors import LedgerUnavailableError, PartialDataError, SummaryUnavailableError
from ..ledger.models import (
    ZERO,
    Advance,
    AdvancePurpose,
    ApproverType,
    Expense,
    FundsReceived,
    FundsSource,
    Invoice,
    PaymentStatus,
    SupervisorTransaction,
    SupervisorTransactionType,
)
from ..ledger.store import LedgerStore
from ..logging_utils import get_logger
from .retry import fetch_with_retry

LOGGER = get_logger(__name__)

# Sub-fetch name -> summary fields that cannot be computed without it.
COMPONENT_FIELDS: Dict[str, Tuple[str, ...]] = {
    "funds_received": ("funds_received", "funds_received_from_supervisor"),
    "transfers_in": ("funds_received_from_supervisor",),
    "expenses": ("total_expenditure",),
    "advances": ("total_advances", "debits_to_worker"),
    "invoices": ("invoices_paid", "pending_invoices"),
    "transfers_out": ("advance_paid_to_supervisor",),
}

SUMMARY_FIELDS: Tuple[str, ...] = (
    "funds_received",
    "funds_received_from_supervisor",
    "total_expenditure",
    "total_advances",
    "debits_to_worker",
    "invoices_paid",
    "pending_invoices",
    "advance_paid_to_supervisor",
    "total_balance",
)


@dataclass(frozen=True, slots=True)
class BalanceSummary:
    """Derived financial position of a site at a point in time."""

    site_id: str
    funds_received: Optional[Decimal]
    funds_received_from_supervisor: Optional[Decimal]
    total_expenditure: Optional[Decimal]
    total_advances: Optional[Decimal]
    debits_to_worker: Optional[Decimal]
    invoices_paid: Optional[Decimal]
    pending_invoices: Optional[Decimal]
    advance_paid_to_supervisor: Optional[Decimal]
    total_balance: Optional[Decimal]
    missing: Tuple[str, ...] = ()

    @classmethod
    def zero(cls, site_id: str) -> "BalanceSummary":
        """Summary of a site that has no transactions yet."""

        return cls(site_id, *([ZERO] * len(SUMMARY_FIELDS)))

    @property
    def complete(self) -> bool:
        return not self.missing

    @property
    def total_funds(self) -> Optional[Decimal]:
        if self.funds_received is None or self.funds_received_from_supervisor is None:
            return None
        return self.funds_received + self.funds_received_from_supervisor

    @property
    def unavailable_fields(self) -> Tuple[str, ...]:
        """Summary fields left empty by the missing sub-fetches, in display order."""

        lost = {name for component in self.missing for name in COMPONENT_FIELDS.get(component, ())}
        return tuple(name for name in SUMMARY_FIELDS if name in lost)

    def raise_for_incomplete(self) -> None:
        """Raise ``PartialDataError`` when any sub-fetch was missing."""

        if self.missing:
            raise PartialDataError(self.site_id, self.missing, fields=self.unavailable_fields)

    def as_dict(self) -> Dict[str, object]:
        payload: Dict[str, object] = {"site_id": self.site_id}
        for name in SUMMARY_FIELDS:
            value = getattr(self, name)
            payload[name] = None if value is None else str(value)
        payload["complete"] = self.complete
        payload["missing"] = list(self.missing)
        payload["unavailable_fields"] = list(self.unavailable_fields)
        return payload


@dataclass(slots=True)
class SiteTransactions:
    """Ledger rows of one site as returned by the sub-fetches."""

    funds_received: Optional[List[FundsReceived]] = field(default_factory=list)
    transfers_in: Optional[List[SupervisorTransaction]] = field(default_factory=list)
    expenses: Optional[List[Expense]] = field(default_factory=list)
    advances: Optional[List[Advance]] = field(default_factory=list)
    invoices: Optional[List[Invoice]] = field(default_factory=list)
    transfers_out: Optional[List[SupervisorTransaction]] = field(default_factory=list)

    def missing(self) -> Tuple[str, ...]:
        return tuple(name for name in COMPONENT_FIELDS if getattr(self, name) is None)


def _total(amounts: Iterable[Decimal]) -> Decimal:
    return sum(amounts, ZERO)


def _optional_sum(*parts: Optional[Decimal]) -> Optional[Decimal]:
    if any(part is None for part in parts):
        return None
    return _total(parts)  # type: ignore[arg-type]


def summarise(site_id: str, transactions: SiteTransactions) -> BalanceSummary:
    """Fold a site's rows into its balance summary without side effects."""

    funds_received = funds_from_supervisor = None
    if transactions.funds_received is not None:
        funds = [row for row in transactions.funds_received if row.site_id == site_id]
        funds_received = _total(row.amount for row in funds if row.source is FundsSource.HEAD_OFFICE)
        funds_from_supervisor = _total(row.amount for row in funds if row.source is FundsSource.SUPERVISOR)

    transfers_in = None
    if transactions.transfers_in is not None:
        transfers_in = _total(
            row.amount
            for row in transactions.transfers_in
            if row.receiver_site_id == site_id
            and row.transaction_type is SupervisorTransactionType.FUNDS_RECEIVED
        )
    funds_received_from_supervisor = _optional_sum(funds_from_supervisor, transfers_in)

    total_expenditure = None
    if transactions.expenses is not None:
        total_expenditure = _total(row.amount for row in transactions.expenses if row.site_id == site_id)

    total_advances = debits_to_worker = None
    if transactions.advances is not None:
        advances = [row for row in transactions.advances if row.site_id == site_id]
        total_advances = _total(row.amount for row in advances if row.purpose is AdvancePurpose.ADVANCE)
        debits_to_worker = _total(row.amount for row in advances if row.is_debit_to_worker)

    invoices_paid = pending_invoices = None
    if transactions.invoices is not None:
        invoices = [row for row in transactions.invoices if row.site_id == site_id]
        invoices_paid = _total(
            row.net_amount
            for row in invoices
            if row.payment_status is PaymentStatus.PAID
            and row.approver_type is ApproverType.SUPERVISOR
        )
        pending_invoices = _total(row.net_amount for row in invoices if not row.is_paid)

    advance_paid_to_supervisor = None
    if transactions.transfers_out is not None:
        advance_paid_to_supervisor = _total(
            row.amount
            for row in transactions.transfers_out
            if row.payer_site_id == site_id
            and row.transaction_type is SupervisorTransactionType.ADVANCE_PAID
        )

    inflow = _optional_sum(funds_received, funds_received_from_supervisor)
    outflow = _optional_sum(total_expenditure, total_advances, invoices_paid, advance_paid_to_supervisor)
    total_balance = None if inflow is None or outflow is None else inflow - outflow

    return BalanceSummary(
        site_id=site_id,
        funds_received=funds_received,
        funds_received_from_supervisor=funds_received_from_supervisor,
        total_expenditure=total_expenditure,
        total_advances=total_advances,
        debits_to_worker=debits_to_worker,
        invoices_paid=invoices_paid,
        pending_invoices=pending_invoices,
        advance_paid_to_supervisor=advance_paid_to_supervisor,
        total_balance=total_balance,
        missing=transactions.missing(),
    )


class BalanceCalculator:
    """Fetch a site's rows concurrently and derive its summary."""

    def __init__(self, store: LedgerStore, settings: Optional[SiteFundsSettings] = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    def _queries(self, site_id: str) -> Dict[str, Tuple[str, Dict[str, object]]]:
        return {
            "funds_received": ("funds_received", {"site_id": site_id}),
            "transfers_in": (
                "supervisor_transactions",
                {
                    "receiver_site_id": site_id,
                    "transaction_type": SupervisorTransactionType.FUNDS_RECEIVED,
                },
            ),
            "expenses": ("expenses", {"site_id": site_id}),
            "advances": ("advances", {"site_id": site_id}),
            "invoices": ("site_invoices", {"site_id": site_id}),
            "transfers_out": (
                "supervisor_transactions",
                {
                    "payer_site_id": site_id,
                    "transaction_type": SupervisorTransactionType.ADVANCE_PAID,
                },
            ),
        }

    async def _fetch(self, component: str, table: str, filters: Dict[str, object]) -> List[object]:
        return await fetch_with_retry(
            lambda: self.store.select(table, **filters),
            context=component,
            max_retries=self.settings.fetch_max_retries,
            retry_delay=self.settings.fetch_retry_delay_seconds,
        )

    async def calculate(self, site_id: str) -> BalanceSummary:
        """Return the site's summary, flagged incomplete when sub-fetches failed.

        Raises ``SummaryUnavailableError`` only when every sub-fetch failed.
        """

        queries = self._queries(site_id)
        names: Sequence[str] = list(queries)
        results = await asyncio.gather(
            *(self._fetch(name, *queries[name]) for name in names),
            return_exceptions=True,
        )

        fetched: Dict[str, Optional[List[object]]] = {}
        failures: Dict[str, BaseException] = {}
        for name, result in zip(names, results):
            if isinstance(result, BaseException):
                if not isinstance(result, LedgerUnavailableError):
                    raise result
                failures[name] = result
                fetched[name] = None
            else:
                fetched[name] = result

        if len(failures) == len(names):
            reason = "; ".join(str(error) for error in failures.values())
            raise SummaryUnavailableError(site_id, reason)

        summary = summarise(site_id, SiteTransactions(**fetched))  # type: ignore[arg-type]
        if failures:
            LOGGER.warning(
                "Summary for site %s is incomplete; unavailable components: %s",
                site_id,
                ", ".join(summary.missing),
            )
        else:
            LOGGER.debug("Computed summary for site %s balance=%s", site_id, summary.total_balance)
        return summary
