"""Mini README: FastAPI surface for the Site Funds service.

Structure:
    * Request models - pydantic payloads for sites and transactions.
    * create_application - application factory wiring store, balance layer
      and routes.

Callers identify themselves with the ``X-User-Id`` header and, for view and
visibility tracking, an ``X-Session-Id`` header; a session is kept only
while it has open views. Every mutation returns the
written row together with the refreshed summaries of the sites it touched.
Summary payloads always carry a ``status`` so clients can tell a zero
balance from one that could not be computed.
"""

from __future__ import annotations

import datetime
from contextlib import asynccontextmanager
from decimal import Decimal
from typing import AsyncIterator, Dict, List, Literal, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from ..balance import BalanceCalculator, RefreshCoordinator, SummaryStatus, ViewerSession
from ..configuration import SiteFundsSettings, get_settings
from ..errors import (
    ConflictingWriteError,
    LedgerPermissionError,
    LedgerUnavailableError,
    RecordNotFoundError,
    SummaryUnavailableError,
)
from ..ledger.service import AccessContext, LedgerService
from ..ledger.store import InMemoryLedgerStore, LedgerStore
from ..logging_utils import get_logger

LOGGER = get_logger(__name__)


class SiteIn(BaseModel):
    name: str = Field(..., min_length=1)
    job_name: str = ""
    pos_no: str = ""
    location: str = Field(..., min_length=1)
    start_date: datetime.date
    supervisor_id: str
    completion_date: Optional[datetime.date] = None


class SiteUpdateIn(BaseModel):
    name: Optional[str] = Field(None, min_length=1)
    job_name: Optional[str] = None
    pos_no: Optional[str] = None
    location: Optional[str] = Field(None, min_length=1)
    start_date: Optional[datetime.date] = None
    supervisor_id: Optional[str] = None
    completion_date: Optional[datetime.date] = None


class CompletionIn(BaseModel):
    completed: bool
    completion_date: Optional[datetime.date] = None


class ExpenseIn(BaseModel):
    date: datetime.date
    description: str = Field(..., min_length=1)
    category: str
    amount: Decimal = Field(..., gt=0)


class AdvanceIn(BaseModel):
    date: datetime.date
    recipient_name: str = Field(..., min_length=1)
    recipient_type: str = "worker"
    purpose: str = "advance"
    amount: Decimal = Field(..., gt=0)
    remarks: str = ""


class FundsIn(BaseModel):
    date: datetime.date
    amount: Decimal = Field(..., gt=0)
    source: str = "head_office"
    reference: str = ""
    method: str = ""


class MaterialItemIn(BaseModel):
    description: str = Field(..., min_length=1)
    quantity: Decimal = Field(..., ge=0)
    rate: Decimal = Field(..., ge=0)


class BankDetailsIn(BaseModel):
    account_number: str
    bank_name: str
    ifsc_code: str
    email: str = ""
    mobile: str = ""


class InvoiceIn(BaseModel):
    date: datetime.date
    party_id: str
    party_name: str = Field(..., min_length=1)
    material_items: List[MaterialItemIn] = Field(..., min_length=1)
    gst_percentage: Decimal = Field(Decimal("0"), ge=0)
    bank_details: Optional[BankDetailsIn] = None
    invoice_number: str = ""
    payment_status: str = "pending"
    approver_type: str = "supervisor"


class TransferIn(BaseModel):
    payer_site_id: str
    receiver_site_id: str
    amount: Decimal = Field(..., gt=0)
    transaction_type: str
    date: datetime.date


class VisibilityIn(BaseModel):
    state: Literal["hidden", "visible"]


def _error(status_code: int, error: Exception) -> JSONResponse:
    return JSONResponse({"detail": str(error)}, status_code=status_code)


def create_application(
    store: Optional[LedgerStore] = None,
    settings: Optional[SiteFundsSettings] = None,
) -> FastAPI:
    """Create the FastAPI application with routes and dependencies."""

    settings = settings or get_settings()
    if store is None:
        store = InMemoryLedgerStore()
        if settings.seed_demo_data:
            store.seed_demo_data()
    calculator = BalanceCalculator(store, settings)
    coordinator = RefreshCoordinator(calculator)
    service = LedgerService(store, coordinator)
    sessions: Dict[str, ViewerSession] = {}
    # Requests currently using each session.
    session_users: Dict[str, int] = {}

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        coordinator.connect_change_feed()
        LOGGER.info("Site Funds service started (environment=%s)", settings.environment)
        yield
        for session in sessions.values():
            session.close()
        sessions.clear()
        await coordinator.close()
        LOGGER.info("Site Funds service stopped")

    app = FastAPI(title="Site Funds", version="0.1.0", lifespan=lifespan)
    app.state.store = store
    app.state.coordinator = coordinator
    app.state.service = service
    app.state.sessions = sessions

    @app.exception_handler(LedgerPermissionError)
    async def permission_denied(_: Request, error: LedgerPermissionError) -> JSONResponse:
        LOGGER.warning("Permission denied: %s", error)
        return _error(403, error)

    @app.exception_handler(RecordNotFoundError)
    async def not_found(_: Request, error: RecordNotFoundError) -> JSONResponse:
        return _error(404, error)

    @app.exception_handler(ConflictingWriteError)
    async def conflicting_write(_: Request, error: ConflictingWriteError) -> JSONResponse:
        return _error(409, error)

    @app.exception_handler(LedgerUnavailableError)
    async def ledger_unavailable(_: Request, error: LedgerUnavailableError) -> JSONResponse:
        LOGGER.error("Ledger unavailable: %s", error)
        return _error(503, error)

    @app.exception_handler(SummaryUnavailableError)
    async def summary_unavailable(_: Request, error: SummaryUnavailableError) -> JSONResponse:
        return _error(503, error)

    @app.exception_handler(ValueError)
    async def invalid_input(_: Request, error: ValueError) -> JSONResponse:
        return _error(400, error)

    async def access_context(x_user_id: Optional[str] = Header(None)) -> AccessContext:
        return await service.resolve_user(x_user_id)

    async def viewer_session(x_session_id: str = Header("default")) -> AsyncIterator[ViewerSession]:
        """Yield the caller's session; it is forgotten once it has no open views."""

        session = sessions.get(x_session_id)
        if session is None:
            session = ViewerSession(coordinator, session_id=x_session_id)
            sessions[x_session_id] = session
            LOGGER.debug("Opened viewer session %s", x_session_id)
        session_users[x_session_id] = session_users.get(x_session_id, 0) + 1
        try:
            yield session
        finally:
            session_users[x_session_id] -= 1
            if not session_users[x_session_id]:
                del session_users[x_session_id]
                if not session.open_sites:
                    sessions.pop(x_session_id, None)
                    LOGGER.debug("Dropped viewer session %s without open views", x_session_id)

    def summary_response(view) -> JSONResponse:
        status_code = 503 if view.status is SummaryStatus.UNAVAILABLE else 200
        return JSONResponse(view.as_dict(), status_code=status_code)

    @app.get("/health")
    async def health() -> JSONResponse:
        return JSONResponse({"status": "ok", "environment": settings.environment})

    @app.get("/sites")
    async def list_sites(context: AccessContext = Depends(access_context)) -> JSONResponse:
        sites = await service.list_sites(context)
        return JSONResponse({"sites": [site.as_dict() for site in sites]})

    @app.post("/sites", status_code=201)
    async def create_site(
        payload: SiteIn, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        site = await service.create_site(context, **payload.model_dump())
        return JSONResponse(site.as_dict(), status_code=201)

    @app.get("/sites/{site_id}")
    async def get_site(site_id: str, context: AccessContext = Depends(access_context)) -> JSONResponse:
        site = await service.get_site(context, site_id)
        return JSONResponse(site.as_dict())

    @app.patch("/sites/{site_id}")
    async def update_site(
        site_id: str, payload: SiteUpdateIn, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        site = await service.update_site(context, site_id, **payload.model_dump(exclude_unset=True))
        return JSONResponse(site.as_dict())

    @app.post("/sites/{site_id}/completion")
    async def set_completion(
        site_id: str, payload: CompletionIn, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        site = await service.set_site_completion(
            context, site_id, completed=payload.completed, completion_date=payload.completion_date
        )
        return JSONResponse(site.as_dict())

    @app.get("/sites/{site_id}/summary")
    async def site_summary(site_id: str, context: AccessContext = Depends(access_context)) -> JSONResponse:
        """Return the current summary, computing it only when missing or invalidated."""

        await service.get_site(context, site_id)
        return summary_response(await coordinator.current(site_id))

    @app.post("/sites/{site_id}/refresh")
    async def refresh_summary(
        site_id: str,
        context: AccessContext = Depends(access_context),
        session: ViewerSession = Depends(viewer_session),
    ) -> JSONResponse:
        await service.get_site(context, site_id)
        return summary_response(await session.refresh(site_id))

    @app.get("/sites/{site_id}/transactions")
    async def site_transactions(
        site_id: str, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        grouped = await service.site_transactions(context, site_id)
        return JSONResponse(
            {kind: [row.as_dict() for row in rows] for kind, rows in grouped.items()}  # type: ignore[attr-defined]
        )

    @app.post("/sites/{site_id}/expenses", status_code=201)
    async def record_expense(
        site_id: str, payload: ExpenseIn, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        result = await service.record_expense(context, site_id, **payload.model_dump())
        return JSONResponse(result.as_dict(), status_code=201)

    @app.post("/sites/{site_id}/advances", status_code=201)
    async def record_advance(
        site_id: str, payload: AdvanceIn, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        result = await service.record_advance(context, site_id, **payload.model_dump())
        return JSONResponse(result.as_dict(), status_code=201)

    @app.post("/sites/{site_id}/funds", status_code=201)
    async def record_funds(
        site_id: str, payload: FundsIn, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        result = await service.record_funds_received(context, site_id, **payload.model_dump())
        return JSONResponse(result.as_dict(), status_code=201)

    @app.post("/sites/{site_id}/invoices", status_code=201)
    async def record_invoice(
        site_id: str, payload: InvoiceIn, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        result = await service.record_invoice(context, site_id, **payload.model_dump())
        return JSONResponse(result.as_dict(), status_code=201)

    @app.post("/invoices/{invoice_id}/pay")
    async def pay_invoice(invoice_id: str, context: AccessContext = Depends(access_context)) -> JSONResponse:
        result = await service.mark_invoice_paid(context, invoice_id)
        return JSONResponse(result.as_dict())

    @app.post("/supervisor-transfers", status_code=201)
    async def record_transfer(
        payload: TransferIn, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        result = await service.record_supervisor_transfer(context, **payload.model_dump())
        return JSONResponse(result.as_dict(), status_code=201)

    @app.delete("/transactions/{kind}/{record_id}")
    async def delete_transaction(
        kind: str, record_id: str, context: AccessContext = Depends(access_context)
    ) -> JSONResponse:
        result = await service.delete_transaction(context, kind, record_id)
        return JSONResponse(result.as_dict())

    @app.post("/sessions/views/{site_id}")
    async def open_view(
        site_id: str,
        context: AccessContext = Depends(access_context),
        session: ViewerSession = Depends(viewer_session),
    ) -> JSONResponse:
        await service.get_site(context, site_id)
        return summary_response(await session.open_site(site_id))

    @app.delete("/sessions/views/{site_id}")
    async def close_view(site_id: str, session: ViewerSession = Depends(viewer_session)) -> JSONResponse:
        session.close_site(site_id)
        return JSONResponse({"session_id": session.session_id, "open_sites": sorted(session.open_sites)})

    @app.post("/sessions/visibility")
    async def visibility(
        payload: VisibilityIn, session: ViewerSession = Depends(viewer_session)
    ) -> JSONResponse:
        if payload.state == "hidden":
            session.hidden()
            refreshed = []
        else:
            refreshed = await session.visible()
        return JSONResponse(
            {
                "session_id": session.session_id,
                "state": payload.state,
                "refreshed": [view.as_dict() for view in refreshed],
            }
        )

    return app
