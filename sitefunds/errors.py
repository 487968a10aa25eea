"""Mini README: Exception hierarchy shared by the ledger and balance packages.

Structure:
    * SiteFundsError - common base class.
    * LedgerUnavailableError / TransientFetchError - backend access failures.
    * PartialDataError / SummaryUnavailableError - recomputation outcomes.
    * ConflictingWriteError - a mutation raced another writer.
    * LedgerPermissionError - the acting role may not perform a mutation.
    * RecordNotFoundError - lookups for unknown identifiers.

Plain input validation keeps using ``ValueError`` so dataclass coercion reads
the same as the rest of the code base.
"""

from __future__ import annotations

from typing import Iterable, Tuple


class SiteFundsError(Exception):
    """Base class for all service specific failures."""


class LedgerUnavailableError(SiteFundsError):
    """The ledger backend could not be reached or refused the request."""


class TransientFetchError(LedgerUnavailableError):
    """A single sub-query kept failing after its bounded retries."""

    def __init__(self, component: str, attempts: int, cause: BaseException) -> None:
        super().__init__(f"Fetching {component} failed after {attempts} attempt(s): {cause}")
        self.component = component
        self.attempts = attempts
        self.cause = cause


class PartialDataError(SiteFundsError):
    """Some sub-queries of a recomputation failed while others succeeded."""

    def __init__(self, site_id: str, missing: Iterable[str], *, fields: Iterable[str] = ()) -> None:
        self.site_id = site_id
        self.missing: Tuple[str, ...] = tuple(missing)
        self.fields: Tuple[str, ...] = tuple(fields)
        message = f"Summary for site {site_id} is incomplete; unavailable: {', '.join(self.missing)}"
        if self.fields:
            message += f" (fields: {', '.join(self.fields)})"
        super().__init__(message)


class SummaryUnavailableError(SiteFundsError):
    """No part of a site's summary could be computed."""

    def __init__(self, site_id: str, reason: str) -> None:
        super().__init__(f"Summary for site {site_id} is unavailable: {reason}")
        self.site_id = site_id
        self.reason = reason


class ConflictingWriteError(SiteFundsError):
    """A mutation targeted a row that changed or vanished concurrently."""


class LedgerPermissionError(SiteFundsError):
    """The acting user's role does not allow the requested mutation."""


class RecordNotFoundError(SiteFundsError, KeyError):
    """Lookup of an unknown record identifier."""

    def __str__(self) -> str:
        return str(self.args[0]) if self.args else "Record not found"
