"""
Funds Transfer API Application Factory
"""

from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI
import uvicorn

from .auth import TransferSystem, get_transfer_system, set_transfer_system
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .users import router as users_router
from ..config import get_config
from ..logging_config import setup_logging
from ..seed import seed_demo_data
from .. import __version__


API_PREFIX = "/api/v1"


@asynccontextmanager
async def lifespan(app: FastAPI):
    system = get_transfer_system()
    if system.config.seed_demo_data:
        seed_demo_data(system)
    yield


def create_app(system: Optional[TransferSystem] = None) -> FastAPI:
    """Create and configure the FastAPI application"""
    config = system.config if system else get_config()
    setup_logging(config.log_level, config.log_format)
    if system is not None:
        set_transfer_system(system)

    app = FastAPI(
        title="Funds Transfer API",
        description="Account-to-account transfers with transaction search",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan
    )

    # Include routers
    app.include_router(users_router, prefix=f"{API_PREFIX}/auth", tags=["Auth"])
    app.include_router(accounts_router, prefix=f"{API_PREFIX}/accounts", tags=["Accounts"])
    app.include_router(transactions_router, prefix=f"{API_PREFIX}/transactions", tags=["Transactions"])

    # Health check endpoint
    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return {
            "status": "healthy",
            "service": "funds_transfer_api",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    def get_api_info():
        """Get API information"""
        return {
            "name": "Funds Transfer API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "login": f"{API_PREFIX}/auth/login",
                "accounts": f"{API_PREFIX}/accounts",
                "transfer": f"{API_PREFIX}/transactions/transfer",
                "search": f"{API_PREFIX}/transactions/search",
            }
        }

    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server"""
    config = get_config()
    uvicorn.run(
        "funds_transfer.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        log_level=config.log_level.lower()
    )
