"""Mini README: Decides when site summaries are recomputed and what viewers see.

Structure:
    * RefreshTrigger - why a recomputation was requested.
    * SummaryStatus - freshness of the summary handed to the presentation layer.
    * SummaryView - read model: latest summary, last complete summary, status.
    * RefreshCoordinator - per-site in-flight registry, timeouts, realtime feed.
    * ViewerSession - one client session: open views and visibility signals.

Rules enforced here:
    * At most one recomputation runs per site. Mount, manual and visibility
      triggers join a running round. Mutation and realtime triggers that
      arrive while a round started before the change queue a single
      follow-up round; later triggers coalesce into it.
    * Every round is bounded by ``recompute_timeout_seconds``. A failed or
      timed-out round keeps the previous summary and marks it stale.
    * Closing the last view of a site cancels its round and drops the result,
      unless a writer is still waiting to see its own change.
    * Only complete summaries refresh the site's cached ``funds`` fields.
    * Sites nobody views or waits on are kept only up to
      ``idle_summary_cache_size``; the least recently used are evicted.
"""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Callable, Dict, List, Optional, Set

from ..configuration import SiteFundsSettings
from ..errors import LedgerUnavailableError, PartialDataError, SummaryUnavailableError
from ..ledger.store import TRANSACTION_TABLES, ChangeEvent, LedgerStore
from ..logging_utils import get_logger
from .calculator import BalanceCalculator, BalanceSummary

LOGGER = get_logger(__name__)


class RefreshTrigger(str, Enum):
    MOUNT = "mount"
    MUTATION = "mutation"
    VISIBILITY = "visibility"
    MANUAL = "manual"
    REALTIME = "realtime"


# Triggers caused by a ledger write the running round may not have seen.
DATA_TRIGGERS = frozenset({RefreshTrigger.MUTATION, RefreshTrigger.REALTIME})


class SummaryStatus(str, Enum):
    LOADING = "loading"
    FRESH = "fresh"
    INCOMPLETE = "incomplete"
    STALE = "stale"
    UNAVAILABLE = "unavailable"


RETRYABLE_STATUSES = frozenset(
    {SummaryStatus.INCOMPLETE, SummaryStatus.STALE, SummaryStatus.UNAVAILABLE}
)


@dataclass(slots=True)
class SummaryView:
    """What the presentation layer renders for one site."""

    site_id: str
    status: SummaryStatus = SummaryStatus.LOADING
    summary: Optional[BalanceSummary] = None
    last_complete: Optional[BalanceSummary] = None
    error: Optional[str] = None
    refreshed_at: Optional[datetime] = None
    round_count: int = 0

    @property
    def retry_allowed(self) -> bool:
        return self.status in RETRYABLE_STATUSES

    @property
    def trusted_balance(self) -> Optional[Decimal]:
        """Balance safe to present as final, if any."""

        if self.status is SummaryStatus.FRESH and self.summary is not None:
            return self.summary.total_balance
        return None

    def as_dict(self) -> Dict[str, object]:
        return {
            "site_id": self.site_id,
            "status": self.status.value,
            "summary": self.summary.as_dict() if self.summary else None,
            "last_complete": self.last_complete.as_dict() if self.last_complete else None,
            "trusted_balance": None if self.trusted_balance is None else str(self.trusted_balance),
            "error": self.error,
            "retry_allowed": self.retry_allowed,
            "refreshed_at": self.refreshed_at.isoformat() if self.refreshed_at else None,
            "round_count": self.round_count,
        }


@dataclass(slots=True)
class _SiteState:
    view: SummaryView
    task: Optional["asyncio.Task[None]"] = None
    # Trigger that queued the next round, if any.
    follow_up: Optional[RefreshTrigger] = None
    rounds_started: int = 0
    viewers: int = 0
    # Callers awaiting a round to see their own write.
    writers: int = 0
    dirty: bool = True
    closed: bool = False

    @property
    def idle(self) -> bool:
        return self.viewers == 0 and self.writers == 0 and (self.task is None or self.task.done())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RefreshCoordinator:
    """Single entry point for recomputing and reading site summaries."""

    def __init__(
        self,
        calculator: BalanceCalculator,
        *,
        store: Optional[LedgerStore] = None,
        settings: Optional[SiteFundsSettings] = None,
    ) -> None:
        self.calculator = calculator
        self.store = store or calculator.store
        self.settings = settings or calculator.settings
        self._states: Dict[str, _SiteState] = {}
        self._background: Set["asyncio.Task[SummaryView]"] = set()
        self._unsubscribe: Optional[Callable[[], None]] = None
        LOGGER.debug(
            "RefreshCoordinator ready (timeout=%ss)", self.settings.recompute_timeout_seconds
        )

    # ------------------------------------------------------------------ reads
    def get_view(self, site_id: str) -> SummaryView:
        """Return the current view without triggering any work."""

        state = self._states.get(site_id)
        return state.view if state else SummaryView(site_id=site_id)

    def is_in_flight(self, site_id: str) -> bool:
        state = self._states.get(site_id)
        return bool(state and state.task and not state.task.done())

    def tracked_sites(self) -> List[str]:
        """Sites whose summary state is currently held, least recently used first."""

        return list(self._states)

    async def current(self, site_id: str) -> SummaryView:
        """Return the view, recomputing first if it was never computed or invalidated."""

        state = self._states.get(site_id)
        if state is None or state.dirty:
            return await self.request_refresh(site_id, RefreshTrigger.MOUNT)
        self._touch(site_id)
        if state.task and not state.task.done():
            await asyncio.wait({state.task})
        return state.view

    # --------------------------------------------------------------- commands
    async def request_refresh(
        self,
        site_id: str,
        trigger: RefreshTrigger,
        *,
        observed_round: Optional[int] = None,
    ) -> SummaryView:
        """Recompute ``site_id`` (or join the covering round) and return its view."""

        state = self._touch(site_id)
        if observed_round is None:
            observed_round = state.rounds_started

        task = state.task
        if task is not None and not task.done():
            if trigger in DATA_TRIGGERS and state.rounds_started <= observed_round:
                state.follow_up = state.follow_up or trigger
                LOGGER.debug("Queued follow-up round for site %s (%s)", site_id, trigger.value)
            else:
                LOGGER.debug("Joining in-flight round for site %s (%s)", site_id, trigger.value)
        elif trigger is RefreshTrigger.REALTIME and state.rounds_started > observed_round:
            LOGGER.debug("Change on site %s already covered by a later round", site_id)
            return state.view
        else:
            task = asyncio.get_running_loop().create_task(
                self._run(site_id, state, trigger), name=f"recompute:{site_id}"
            )
            state.task = task

        writer = trigger is RefreshTrigger.MUTATION
        if writer:
            state.writers += 1
        try:
            await asyncio.wait({task})
        finally:
            if writer:
                state.writers -= 1
            self._evict_idle()
        return state.view

    def attach(self, site_id: str) -> SummaryView:
        """Register a viewer of ``site_id``."""

        state = self._touch(site_id)
        state.viewers += 1
        return state.view

    def detach(self, site_id: str) -> None:
        """Unregister a viewer; the last one leaving cancels pending work.

        A round that a writer is still waiting on keeps running so the writer
        sees its own change; the state is then left for idle eviction.
        """

        state = self._states.get(site_id)
        if state is None or state.viewers == 0:
            return
        state.viewers -= 1
        if state.viewers > 0:
            return
        if state.writers:
            LOGGER.debug(
                "Last view of site %s closed; round kept for %s waiting writer(s)", site_id, state.writers
            )
            self._evict_idle()
            return
        self._discard(site_id)

    def _discard(self, site_id: str) -> None:
        state = self._states.pop(site_id, None)
        if state is None:
            return
        state.closed = True
        state.dirty = True
        if state.task and not state.task.done():
            state.task.cancel()
            view = state.view
            view.status = SummaryStatus.STALE if view.summary else SummaryStatus.UNAVAILABLE
            view.error = "Recomputation cancelled because the site view was closed"
            LOGGER.info("Cancelled in-flight recomputation for site %s", site_id)

    def _touch(self, site_id: str) -> _SiteState:
        """Return the state of ``site_id``, creating it, and mark it most recently used."""

        state = self._states.pop(site_id, None) or _SiteState(view=SummaryView(site_id=site_id))
        self._states[site_id] = state
        return state

    def _evict_idle(self) -> None:
        limit = self.settings.idle_summary_cache_size
        idle = [site_id for site_id, state in self._states.items() if state.idle]
        for site_id in idle[: max(len(idle) - limit, 0)]:
            del self._states[site_id]
            LOGGER.debug("Evicted idle summary state of site %s", site_id)

    # ---------------------------------------------------------------- realtime
    def connect_change_feed(self) -> None:
        """Subscribe to the store's change feed."""

        if self._unsubscribe is None:
            self._unsubscribe = self.store.subscribe(self._on_change)
            LOGGER.info("Connected coordinator to ledger change feed")

    def _on_change(self, event: ChangeEvent) -> None:
        if event.table not in TRANSACTION_TABLES:
            return
        for site_id in event.site_ids:
            state = self._states.get(site_id)
            if state is None:
                continue
            state.dirty = True
            if state.viewers == 0:
                continue
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                LOGGER.debug("No running loop; site %s left marked dirty", site_id)
                continue
            refresh = loop.create_task(
                self.request_refresh(
                    site_id, RefreshTrigger.REALTIME, observed_round=state.rounds_started
                )
            )
            self._background.add(refresh)
            refresh.add_done_callback(self._background.discard)

    # ---------------------------------------------------------------- rounds
    async def _run(self, site_id: str, state: _SiteState, trigger: RefreshTrigger) -> None:
        while True:
            state.follow_up = None
            state.dirty = False
            state.rounds_started += 1
            state.view.round_count = state.rounds_started
            await self._recompute(site_id, state, trigger)
            if state.closed or state.follow_up is None:
                return
            trigger = state.follow_up
            LOGGER.debug("Running follow-up round for site %s (%s)", site_id, trigger.value)

    async def _recompute(self, site_id: str, state: _SiteState, trigger: RefreshTrigger) -> None:
        view = state.view
        if view.summary is None:
            view.status = SummaryStatus.LOADING
        timeout = self.settings.recompute_timeout_seconds
        started = time.monotonic()
        try:
            summary = await asyncio.wait_for(self.calculator.calculate(site_id), timeout=timeout)
        except asyncio.TimeoutError:
            self._mark_failed(state, f"Recomputation timed out after {timeout:g}s")
            return
        except (SummaryUnavailableError, LedgerUnavailableError) as error:
            self._mark_failed(state, str(error))
            return

        if state.closed:
            LOGGER.debug("Discarding summary for closed site %s", site_id)
            return

        view.summary = summary
        view.refreshed_at = _utcnow()
        try:
            summary.raise_for_incomplete()
        except PartialDataError as error:
            view.status = SummaryStatus.INCOMPLETE
            view.error = str(error)
            state.dirty = True
        else:
            view.status = SummaryStatus.FRESH
            view.last_complete = summary
            view.error = None
            await self._write_projection(summary)
        LOGGER.info(
            "Recomputed site %s via %s in %.3fs status=%s balance=%s",
            site_id,
            trigger.value,
            time.monotonic() - started,
            view.status.value,
            summary.total_balance,
        )

    def _mark_failed(self, state: _SiteState, reason: str) -> None:
        view = state.view
        view.error = reason
        view.status = SummaryStatus.STALE if view.summary else SummaryStatus.UNAVAILABLE
        state.dirty = True
        LOGGER.warning("Recomputation for site %s failed (%s): %s", view.site_id, view.status.value, reason)

    async def _write_projection(self, summary: BalanceSummary) -> None:
        try:
            await self.store.update_site_projection(
                summary.site_id,
                funds=summary.total_balance,  # type: ignore[arg-type]
                total_funds=summary.total_funds,  # type: ignore[arg-type]
            )
        except LedgerUnavailableError as error:
            LOGGER.warning("Could not refresh cached funds for site %s: %s", summary.site_id, error)

    async def close(self) -> None:
        """Cancel outstanding work and leave the change feed."""

        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        pending: List["asyncio.Task"] = list(self._background)
        for state in self._states.values():
            state.closed = True
            if state.task and not state.task.done():
                pending.append(state.task)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        self._states.clear()
        LOGGER.debug("RefreshCoordinator closed (%s task(s) cancelled)", len(pending))


class ViewerSession:
    """One client's open site views and tab visibility."""

    def __init__(
        self,
        coordinator: RefreshCoordinator,
        *,
        session_id: str = "default",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.coordinator = coordinator
        self.session_id = session_id
        self.settings = coordinator.settings
        self.open_sites: Set[str] = set()
        self._clock = clock
        self._hidden_since: Optional[float] = None

    async def open_site(self, site_id: str) -> SummaryView:
        """Mount a site view and compute its summary."""

        if site_id not in self.open_sites:
            self.open_sites.add(site_id)
            self.coordinator.attach(site_id)
        return await self.coordinator.request_refresh(site_id, RefreshTrigger.MOUNT)

    def close_site(self, site_id: str) -> None:
        """Unmount a site view."""

        if site_id in self.open_sites:
            self.open_sites.discard(site_id)
            self.coordinator.detach(site_id)

    async def refresh(self, site_id: str) -> SummaryView:
        """Manual refresh; always recomputes."""

        return await self.coordinator.request_refresh(site_id, RefreshTrigger.MANUAL)

    def hidden(self) -> None:
        if self._hidden_since is None:
            self._hidden_since = self._clock()

    async def visible(self) -> List[SummaryView]:
        """Handle the session returning to the foreground.

        Returns the refreshed views, or an empty list when the background
        period was too short to matter.
        """

        if self._hidden_since is None:
            return []
        elapsed = self._clock() - self._hidden_since
        self._hidden_since = None
        if elapsed < self.settings.visibility_ignore_below_seconds:
            LOGGER.debug("Session %s back after %.3fs; ignored", self.session_id, elapsed)
            return []
        if elapsed <= self.settings.visibility_refresh_after_seconds:
            LOGGER.debug("Session %s back after %.1fs; summaries still current", self.session_id, elapsed)
            return []
        LOGGER.info(
            "Session %s back after %.1fs; refreshing %s site(s)",
            self.session_id,
            elapsed,
            len(self.open_sites),
        )
        views = await asyncio.gather(
            *(
                self.coordinator.request_refresh(site_id, RefreshTrigger.VISIBILITY)
                for site_id in sorted(self.open_sites)
            )
        )
        return list(views)

    def close(self) -> None:
        for site_id in list(self.open_sites):
            self.close_site(site_id)
