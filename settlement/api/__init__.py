"""
HTTP surface — FastAPI app over SettlementService.

    from settlement.api import create_app

    app = create_app()

Run with ``uvicorn --factory settlement.api:create_app`` or ``python -m settlement``.
"""

from settlement.api._app import REQUEST_ID_HEADER, create_app
from settlement.api._errors import STATUS_CODES, error_response, install_error_handlers
from settlement.api._routes import router

__all__ = (
    "create_app",
    "router",
    "error_response",
    "install_error_handlers",
    "STATUS_CODES",
    "REQUEST_ID_HEADER",
)
