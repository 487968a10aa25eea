"""Mini README: Tests covering ledger record validation and coercion.

Structure:
    * Amount coercion - paise rounding, rejection of zero, negative and boolean input.
    * Enumerations - loose parsing of roles, categories and purposes.
    * Invoices - derived gross, GST and net amounts.
    * Transfers - payer and receiver sites must differ.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import pytest

from sitefunds.ledger import (
    Advance,
    AdvancePurpose,
    ApproverType,
    ExpenseCategory,
    Invoice,
    PaymentStatus,
    Site,
    SupervisorTransaction,
    UserRole,
)
from sitefunds.ledger.models import coerce_amount, parse_date


def test_coerce_amount_rounds_to_paise() -> None:
    assert coerce_amount("10.005") == Decimal("10.01")
    assert coerce_amount(0.1) == Decimal("0.10")
    assert coerce_amount(0, allow_zero=True) == Decimal("0.00")


@pytest.mark.parametrize("value", [0, -5, "abc", True, float("nan")])
def test_coerce_amount_rejects_invalid_values(value: object) -> None:
    with pytest.raises(ValueError):
        coerce_amount(value)


def test_enums_accept_loose_spelling() -> None:
    """Enumerations should tolerate casing and dashes from form input."""

    assert UserRole.from_str("Supervisor") is UserRole.SUPERVISOR
    assert AdvancePurpose.from_str("safety-shoes") is AdvancePurpose.SAFETY_SHOES
    assert ExpenseCategory.from_str("diesel & fuel charges") is ExpenseCategory.DIESEL_FUEL_CHARGES
    with pytest.raises(ValueError):
        UserRole.from_str("owner")


def test_advance_purposes_split_into_debits_to_worker() -> None:
    def advance(purpose: str) -> Advance:
        return Advance(
            id=purpose,
            site_id="s",
            date="2024-04-01",
            recipient_name="Murugan",
            recipient_type="worker",
            purpose=purpose,
            amount="100",
            created_by="ravi",
        )

    assert not advance("advance").is_debit_to_worker
    assert all(advance(purpose).is_debit_to_worker for purpose in ("safety_shoes", "tools", "other"))


def test_invoice_derives_net_amount_with_gst() -> None:
    """Material lines and GST percentage should produce the payable amount."""

    invoice = Invoice(
        id="inv",
        site_id="s",
        date=date(2024, 4, 1),
        party_id="vendor",
        party_name="Cement Co",
        material_items=[
            {"description": "Cement", "quantity": "10", "rate": "350"},
            {"description": "Sand", "quantity": "2.5", "rate": "1200"},
        ],
        gst_percentage="18",
        bank_details={"account_number": "1", "bank_name": "Canara", "ifsc_code": "CNRB0001"},
        created_by="ravi",
    )

    assert invoice.gross_amount == Decimal("6500.00")
    assert invoice.gst_amount == Decimal("1170.00")
    assert invoice.net_amount == Decimal("7670.00")
    assert invoice.payment_status is PaymentStatus.PENDING
    assert invoice.approver_type is ApproverType.SUPERVISOR
    assert invoice.as_dict()["bank_details"]["bank_name"] == "Canara"


def test_invoice_requires_positive_total() -> None:
    with pytest.raises(ValueError):
        Invoice(
            id="inv",
            site_id="s",
            date=date(2024, 4, 1),
            party_id="vendor",
            party_name="Cement Co",
            material_items=[{"description": "Samples", "quantity": "3", "rate": "0"}],
            created_by="ravi",
        )


def test_transfer_between_the_same_site_is_rejected() -> None:
    with pytest.raises(ValueError):
        SupervisorTransaction(
            id="t",
            date="2024-05-01",
            payer_supervisor_id="ravi",
            receiver_supervisor_id="ravi",
            payer_site_id="s",
            receiver_site_id="s",
            amount="500",
            transaction_type="funds_received",
        )


def test_site_completion_cannot_precede_start() -> None:
    with pytest.raises(ValueError):
        Site(
            id="s",
            name="Riverside",
            job_name="",
            pos_no="",
            location="Chennai",
            start_date="2024-04-01",
            supervisor_id="ravi",
            completion_date="2024-03-01",
        )


def test_parse_date_rejects_unsupported_types() -> None:
    assert parse_date("2024-04-01") == date(2024, 4, 1)
    with pytest.raises(ValueError):
        parse_date(20240401)
