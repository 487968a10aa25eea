"""Mini README: Interactive interfaces (web/CLI) for Site Funds.

Exports the FastAPI application factory. The Typer launcher in
``main_site_funds.py`` at the repository root drives it through uvicorn.
"""

from .web_app import create_application

__all__ = ["create_application"]
