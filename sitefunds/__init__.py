"""Mini README: Core package initializer for the Site Funds service.

Site Funds tracks the money moving through construction sites: funds
received from head office or peer supervisors, expenses, advances, vendor
invoices and supervisor-to-supervisor transfers. The ``ledger`` package
holds the records and the store, ``balance`` derives and refreshes each
site's balance summary, and ``interface`` exposes both over HTTP.
"""

from .logging_utils import get_logger

__all__ = ["get_logger"]
