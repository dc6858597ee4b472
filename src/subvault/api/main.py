# SubVault: HTTP Backend
#
# FastAPI app factory. Each app owns exactly one VaultManager and one
# ApiSession (on app.state); nothing is kept in module globals.

import logging
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core import EventSeverity, EventType, Settings, get_audit_logger, load_settings
from ..vault import FileBlobStore, VaultManager
from .security import ApiSession
from .vault_routes import router as vault_router

logger = logging.getLogger(__name__)


def create_app(
    settings: Optional[Settings] = None,
    manager: Optional[VaultManager] = None,
) -> FastAPI:
    """
    Build the HTTP app.

    Args:
        settings: Runtime settings (default: load_settings())
        manager: Pre-built vault manager (default: file-backed manager
            at settings.vault_file)
    """
    settings = settings or load_settings()
    if manager is None:
        manager = VaultManager(
            store=FileBlobStore(settings.vault_file),
            max_unlock_backoff=settings.max_unlock_backoff,
        )

    app = FastAPI(
        title="SubVault API",
        description="Encrypted vault for credentials and subscriptions",
        version=__version__,
    )

    # Local UI origins only
    app.add_middleware(
        CORSMiddleware,
        allow_origins=[
            f"http://localhost:{settings.port}", f"http://127.0.0.1:{settings.port}",
            "http://localhost:3000", "http://127.0.0.1:3000",
        ],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.vault_manager = manager
    app.state.session = ApiSession()

    app.include_router(vault_router)

    @app.on_event("shutdown")
    def _lock_on_shutdown():
        app.state.vault_manager.lock()
        app.state.session.close()

    return app


def start_api_server(settings: Optional[Settings] = None):
    """Run the API with uvicorn until interrupted."""
    settings = settings or load_settings()
    app = create_app(settings)

    get_audit_logger().log_event(
        event_type=EventType.SYSTEM_START,
        severity=EventSeverity.INFO,
        message="SubVault API starting",
        details={"host": settings.host, "port": settings.port, "vault_file": str(settings.vault_file)}
    )
    logger.info("Starting SubVault API on %s:%s", settings.host, settings.port)

    uvicorn.run(app, host=settings.host, port=settings.port, log_level="info")
