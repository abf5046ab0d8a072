"""
Main FastAPI server with modular router architecture.

The server owns a DependencyContainer and exposes it to the routers
through ``app.dependency_overrides``.
"""

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI

from .. import __version__
from ..config import AppConfig, get_settings
from .dependencies import DependencyContainer, get_container
from .errors import register_exception_handlers
from .routers import admin, gallery, generation, mint, payment_tracking
from .security import RequestLoggingMiddleware, SecurityHeadersMiddleware, setup_cors_middleware

logger = logging.getLogger(__name__)


class GeopletAPIServer:
    """API server for voucher issuance, generation staging, gallery and outreach."""

    def __init__(self, container: DependencyContainer):
        self.container = container
        self._start_time = datetime.now()

        self.app = FastAPI(
            title="Geoplet API",
            description="Mint vouchers, generation storage and admin outreach for Geoplets",
            version=__version__,
            lifespan=self._lifespan,
        )

        register_exception_handlers(self.app)
        self._setup_middleware()
        self._setup_dependency_overrides()
        self._setup_routers()

    @asynccontextmanager
    async def _lifespan(self, app: FastAPI):
        await self.container.startup()
        logger.info(f"Geoplet API started ({self.container.config.environment})")
        try:
            yield
        finally:
            await self.container.shutdown()
            logger.info("Geoplet API stopped")

    def _setup_middleware(self):
        """Configure security headers, request logging and CORS."""
        self.app.add_middleware(SecurityHeadersMiddleware)
        self.app.add_middleware(RequestLoggingMiddleware)
        setup_cors_middleware(self.app, self.container.config.security.cors_origins)

    def _setup_dependency_overrides(self):
        """Set up dependency injection overrides for routers."""
        self.app.dependency_overrides[get_container] = lambda: self.container

    def _setup_routers(self):
        """Include all modular routers."""
        self.app.include_router(mint.router)
        self.app.include_router(generation.router)
        self.app.include_router(payment_tracking.router)
        self.app.include_router(gallery.router)
        self.app.include_router(admin.router)

        @self.app.get("/health")
        async def root_health_check():
            """Root-level health check endpoint for Docker containers."""
            return {
                "status": "healthy",
                "timestamp": datetime.now().isoformat(),
                "uptime_seconds": (datetime.now() - self._start_time).total_seconds(),
                "service": "geoplet_api",
                "services": self.container.get_health_status(),
            }


def create_api_server(
    config: Optional[AppConfig] = None, container: Optional[DependencyContainer] = None
) -> FastAPI:
    """Factory function to create the API server."""
    if container is None:
        container = DependencyContainer.from_settings(config or get_settings())
    server = GeopletAPIServer(container)
    return server.app
