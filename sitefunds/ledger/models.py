"""Mini README: Ledger records kept per construction site.

Structure:
    * Enumerations - roles, expense categories, advance purposes, payment and
      approval states, funding sources and supervisor transfer types.
    * Site / User - the entities transactions hang off.
    * Expense, Advance, FundsReceived, Invoice, SupervisorTransaction - the
      transaction kinds folded into a site's balance.
    * coerce_amount / parse_date - input coercion shared by every record.

Records are plain dataclasses validated on construction. Money is held as
``Decimal`` quantised to paise so that sums and the balance formula stay
exact. Each record exports ``as_dict`` for JSON responses.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Dict, FrozenSet, List, Optional

CENT = Decimal("0.01")
ZERO = Decimal("0.00")


class _LookupEnum(str, Enum):
    """String enum accepting loosely formatted input."""

    @classmethod
    def from_str(cls, value: object):
        """Coerce arbitrary casing (and dashes for underscores) into a member."""

        if isinstance(value, cls):
            return value
        try:
            raw = str(value).strip()
        except (TypeError, ValueError) as error:  # pragma: no cover - str() rarely fails
            raise ValueError(f"Unsupported {cls.__name__}: {value}") from error
        candidates = (raw, raw.lower(), raw.lower().replace("-", "_"), raw.upper())
        for candidate in candidates:
            try:
                return cls(candidate)
            except ValueError:
                continue
        raise ValueError(f"Unsupported {cls.__name__}: {value}")


class UserRole(_LookupEnum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    VIEWER = "viewer"


class ApprovalStatus(_LookupEnum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class ExpenseCategory(_LookupEnum):
    """Fixed expense heads used on site ledgers."""

    TRAVEL = "travel"
    MATERIAL = "material"
    LABOR = "labor"
    OFFICE = "office"
    MISC = "misc"
    TRANSPORT = "transport"
    FOOD = "food"
    ACCOMMODATION = "accommodation"
    EQUIPMENT = "equipment"
    MAINTENANCE = "maintenance"
    STAFF_TRAVELLING_CHARGES = "STAFF TRAVELLING CHARGES"
    STATIONARY_PRINTING = "STATIONARY & PRINTING"
    DIESEL_FUEL_CHARGES = "DIESEL & FUEL CHARGES"
    LABOUR_TRAVELLING_EXP = "LABOUR TRAVELLING EXP."
    LODGING_BOARDING_STAFF = "LOADGING & BOARDING FOR STAFF"
    FOOD_CHARGES_LABOUR = "FOOD CHARGES FOR LABOUR"
    SITE_EXPENSES = "SITE EXPENSES"
    ROOM_RENT_LABOUR = "ROOM RENT FOR LABOUR"


class AdvancePurpose(_LookupEnum):
    ADVANCE = "advance"
    SAFETY_SHOES = "safety_shoes"
    TOOLS = "tools"
    OTHER = "other"


# Purposes booked as a debit against the worker rather than a site advance.
DEBIT_TO_WORKER_PURPOSES: FrozenSet[AdvancePurpose] = frozenset(
    {AdvancePurpose.SAFETY_SHOES, AdvancePurpose.TOOLS, AdvancePurpose.OTHER}
)


class RecipientType(_LookupEnum):
    WORKER = "worker"
    SUBCONTRACTOR = "subcontractor"
    SUPERVISOR = "supervisor"


class FundsSource(_LookupEnum):
    HEAD_OFFICE = "head_office"
    SUPERVISOR = "supervisor"


class PaymentStatus(_LookupEnum):
    PENDING = "pending"
    PAID = "paid"


class ApproverType(_LookupEnum):
    HEAD_OFFICE = "ho"
    SUPERVISOR = "supervisor"


class SupervisorTransactionType(_LookupEnum):
    FUNDS_RECEIVED = "funds_received"
    ADVANCE_PAID = "advance_paid"


def coerce_amount(value: object, *, allow_zero: bool = False) -> Decimal:
    """Convert user input into a two-place ``Decimal`` amount."""

    if isinstance(value, bool):
        raise ValueError("Amounts must be numeric, not boolean.")
    try:
        if isinstance(value, float):
            amount = Decimal(str(value))
        else:
            amount = Decimal(value)  # type: ignore[arg-type]
    except (InvalidOperation, TypeError, ValueError) as error:
        raise ValueError(f"Invalid amount: {value!r}") from error
    if not amount.is_finite():
        raise ValueError(f"Invalid amount: {value!r}")
    amount = amount.quantize(CENT, rounding=ROUND_HALF_UP)
    if amount < 0 or (amount == 0 and not allow_zero):
        raise ValueError(f"Amount must be positive, got {amount}")
    return amount


def parse_date(value: object) -> date:
    """Parse ISO formatted strings or date objects safely."""

    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return date.fromisoformat(value)
    raise ValueError("Dates must be provided as ISO strings or date/datetime instances.")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _money(value: Optional[Decimal]) -> Optional[str]:
    return None if value is None else str(value)


@dataclass(slots=True)
class User:
    """Account allowed to act on the ledger."""

    id: str
    name: str
    email: str
    role: UserRole

    def __post_init__(self) -> None:
        self.role = UserRole.from_str(self.role)

    def as_dict(self) -> Dict[str, object]:
        return {"id": self.id, "name": self.name, "email": self.email, "role": self.role.value}


@dataclass(slots=True)
class Site:
    """Construction project tracked independently for financial purposes.

    ``funds`` and ``total_funds`` are a cached projection of the latest
    complete balance summary. Only the balance layer refreshes them.
    """

    id: str
    name: str
    job_name: str
    pos_no: str
    location: str
    start_date: date
    supervisor_id: str
    completion_date: Optional[date] = None
    is_completed: bool = False
    funds: Decimal = ZERO
    total_funds: Decimal = ZERO
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        if not self.name.strip():
            raise ValueError("Site name is required.")
        self.start_date = parse_date(self.start_date)
        if self.completion_date is not None:
            self.completion_date = parse_date(self.completion_date)
            if self.completion_date < self.start_date:
                raise ValueError("Completion date cannot precede the start date.")

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "name": self.name,
            "job_name": self.job_name,
            "pos_no": self.pos_no,
            "location": self.location,
            "start_date": self.start_date.isoformat(),
            "completion_date": self.completion_date.isoformat() if self.completion_date else None,
            "supervisor_id": self.supervisor_id,
            "is_completed": self.is_completed,
            "funds": _money(self.funds),
            "total_funds": _money(self.total_funds),
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class Expense:
    """Money spent on a site under one of the fixed categories."""

    id: str
    site_id: str
    date: date
    description: str
    category: ExpenseCategory
    amount: Decimal
    created_by: str
    status: ApprovalStatus = ApprovalStatus.APPROVED
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)
        self.category = ExpenseCategory.from_str(self.category)
        self.amount = coerce_amount(self.amount)
        self.status = ApprovalStatus.from_str(self.status)

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "date": self.date.isoformat(),
            "description": self.description,
            "category": self.category.value,
            "amount": _money(self.amount),
            "created_by": self.created_by,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class Advance:
    """Cash handed to a worker or subcontractor ahead of work performed."""

    id: str
    site_id: str
    date: date
    recipient_name: str
    recipient_type: RecipientType
    purpose: AdvancePurpose
    amount: Decimal
    created_by: str
    remarks: str = ""
    status: ApprovalStatus = ApprovalStatus.APPROVED
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)
        self.recipient_type = RecipientType.from_str(self.recipient_type)
        self.purpose = AdvancePurpose.from_str(self.purpose)
        self.amount = coerce_amount(self.amount)
        self.status = ApprovalStatus.from_str(self.status)

    @property
    def is_debit_to_worker(self) -> bool:
        return self.purpose in DEBIT_TO_WORKER_PURPOSES

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "date": self.date.isoformat(),
            "recipient_name": self.recipient_name,
            "recipient_type": self.recipient_type.value,
            "purpose": self.purpose.value,
            "debit_to_worker": self.is_debit_to_worker,
            "amount": _money(self.amount),
            "remarks": self.remarks,
            "created_by": self.created_by,
            "status": self.status.value,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class FundsReceived:
    """Money credited to a site, from head office or a peer supervisor."""

    id: str
    site_id: str
    date: date
    amount: Decimal
    source: FundsSource = FundsSource.HEAD_OFFICE
    reference: str = ""
    method: str = ""
    created_by: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)
        self.amount = coerce_amount(self.amount)
        self.source = FundsSource.from_str(self.source)

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "date": self.date.isoformat(),
            "amount": _money(self.amount),
            "source": self.source.value,
            "reference": self.reference,
            "method": self.method,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class MaterialItem:
    """One invoice line."""

    description: str
    quantity: Decimal
    rate: Decimal

    def __post_init__(self) -> None:
        if not self.description.strip():
            raise ValueError("Material description is required.")
        self.quantity = coerce_amount(self.quantity, allow_zero=True)
        self.rate = coerce_amount(self.rate, allow_zero=True)

    @property
    def amount(self) -> Decimal:
        return (self.quantity * self.rate).quantize(CENT, rounding=ROUND_HALF_UP)

    def as_dict(self) -> Dict[str, object]:
        return {
            "description": self.description,
            "quantity": str(self.quantity),
            "rate": str(self.rate),
            "amount": str(self.amount),
        }


@dataclass(slots=True)
class BankDetails:
    """Where a vendor invoice should be paid."""

    account_number: str
    bank_name: str
    ifsc_code: str
    email: str = ""
    mobile: str = ""

    def as_dict(self) -> Dict[str, str]:
        return {
            "account_number": self.account_number,
            "bank_name": self.bank_name,
            "ifsc_code": self.ifsc_code,
            "email": self.email,
            "mobile": self.mobile,
        }


@dataclass(slots=True)
class Invoice:
    """Vendor bill raised against a site.

    Gross and net amounts are derived from the material lines; only paid
    invoices settled by the site supervisor reduce the site balance.
    """

    id: str
    site_id: str
    date: date
    party_id: str
    party_name: str
    material_items: List[MaterialItem]
    created_by: str
    gst_percentage: Decimal = ZERO
    bank_details: Optional[BankDetails] = None
    invoice_number: str = ""
    payment_status: PaymentStatus = PaymentStatus.PENDING
    approver_type: ApproverType = ApproverType.SUPERVISOR
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)
        if not self.material_items:
            raise ValueError("An invoice needs at least one material line.")
        self.material_items = [
            item if isinstance(item, MaterialItem) else MaterialItem(**item)
            for item in self.material_items
        ]
        self.gst_percentage = coerce_amount(self.gst_percentage, allow_zero=True)
        if isinstance(self.bank_details, dict):
            self.bank_details = BankDetails(**self.bank_details)
        self.payment_status = PaymentStatus.from_str(self.payment_status)
        self.approver_type = ApproverType.from_str(self.approver_type)
        if self.net_amount <= 0:
            raise ValueError("Invoice net amount must be positive.")

    @property
    def gross_amount(self) -> Decimal:
        return sum((item.amount for item in self.material_items), ZERO)

    @property
    def gst_amount(self) -> Decimal:
        return (self.gross_amount * self.gst_percentage / 100).quantize(CENT, rounding=ROUND_HALF_UP)

    @property
    def net_amount(self) -> Decimal:
        return self.gross_amount + self.gst_amount

    @property
    def is_paid(self) -> bool:
        return self.payment_status is PaymentStatus.PAID

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "date": self.date.isoformat(),
            "party_id": self.party_id,
            "party_name": self.party_name,
            "invoice_number": self.invoice_number,
            "material_items": [item.as_dict() for item in self.material_items],
            "gst_percentage": str(self.gst_percentage),
            "gross_amount": str(self.gross_amount),
            "net_amount": str(self.net_amount),
            "bank_details": self.bank_details.as_dict() if self.bank_details else None,
            "payment_status": self.payment_status.value,
            "approver_type": self.approver_type.value,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }


@dataclass(slots=True)
class SupervisorTransaction:
    """Money moved between two supervisors' sites."""

    id: str
    date: date
    payer_supervisor_id: str
    receiver_supervisor_id: str
    payer_site_id: str
    receiver_site_id: str
    amount: Decimal
    transaction_type: SupervisorTransactionType
    created_by: str = ""
    created_at: datetime = field(default_factory=_utcnow)

    def __post_init__(self) -> None:
        self.date = parse_date(self.date)
        self.amount = coerce_amount(self.amount)
        self.transaction_type = SupervisorTransactionType.from_str(self.transaction_type)
        if self.payer_site_id == self.receiver_site_id:
            raise ValueError("A transfer needs two different sites.")

    def as_dict(self) -> Dict[str, object]:
        return {
            "id": self.id,
            "date": self.date.isoformat(),
            "payer_supervisor_id": self.payer_supervisor_id,
            "receiver_supervisor_id": self.receiver_supervisor_id,
            "payer_site_id": self.payer_site_id,
            "receiver_site_id": self.receiver_site_id,
            "amount": _money(self.amount),
            "transaction_type": self.transaction_type.value,
            "created_by": self.created_by,
            "created_at": self.created_at.isoformat(),
        }
