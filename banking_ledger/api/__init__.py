"""
Banking Ledger API Application Factory
"""

import uuid
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..config import get_config
from ..logging_config import correlation_context, setup_logging
from .errors import register_error_handlers, success
from .accounts import router as accounts_router
from .transactions import router as transactions_router
from .transfers import router as transfers_router
from .statements import router as statements_router


CORRELATION_HEADER = "X-Correlation-Id"


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Banking Ledger API",
        description="Accounts, double-entry ledger and atomic idempotent transfers",
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc"
    )

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or str(uuid.uuid4())
        with correlation_context(correlation_id):
            response = await call_next(request)
        response.headers[CORRELATION_HEADER] = correlation_id
        return response

    register_error_handlers(app)

    app.include_router(accounts_router, prefix="/accounts", tags=["Accounts"])
    app.include_router(transactions_router, tags=["Transactions"])
    app.include_router(transfers_router, prefix="/transfers", tags=["Transfers"])
    app.include_router(statements_router, tags=["Statements"])

    @app.get("/health")
    def health_check():
        """Health check endpoint"""
        return success({
            "status": "healthy",
            "service": "banking_ledger_api",
            "version": __version__
        })

    return app


app = create_app()


def run_server(host: Optional[str] = None, port: Optional[int] = None, debug: bool = False):
    """Run the FastAPI server with settings from configuration"""
    config = get_config()
    setup_logging(config.log_level, fmt=config.log_format, log_file=config.log_file)
    uvicorn.run(
        "banking_ledger.api:app",
        host=host or config.api_host,
        port=port or config.api_port,
        reload=debug,
        workers=None if debug else config.api_workers,
        log_level=config.log_level.lower()
    )
