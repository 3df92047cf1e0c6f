"""
Qard Fund API Application Factory
"""

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .dependencies import FundSystem, get_fund_system
from .members import router as members_router
from .payments import router as payments_router
from .loans import router as loans_router
from .receipts import router as receipts_router
from .loan_requests import router as loan_requests_router
from .fund import router as fund_router
from .. import __version__
from ..config import get_config
from ..exceptions import (
    BusinessRuleError, FundError, InconsistentStateError, NotFoundError,
    StaleStateError, StoreError, ValidationError
)
from ..logging_config import get_logger, log_action, setup_logging

logger = get_logger("qard.api")


# Most specific class wins when an error matches several entries
ERROR_STATUS_CODES = {
    ValidationError: 422,
    BusinessRuleError: 409,
    NotFoundError: 404,
    StaleStateError: 409,
    StoreError: 503,
    InconsistentStateError: 500,
    FundError: 400,
}


def status_code_for(error: FundError) -> int:
    for cls in type(error).__mro__:
        if cls in ERROR_STATUS_CODES:
            return ERROR_STATUS_CODES[cls]
    return 400


async def fund_error_handler(request: Request, exc: FundError) -> JSONResponse:
    status_code = status_code_for(exc)
    body = {"error": exc.error_code, "message": exc.message}

    if isinstance(exc, InconsistentStateError):
        body["completed_steps"] = exc.completed_steps
        body["failed_step"] = exc.failed_step
    elif isinstance(exc, StoreError):
        body["retry"] = True

    if status_code >= 500:
        log_action(logger, "error", f"{request.method} {request.url.path} failed: {exc.message}",
                   action="request_failed", resource=request.url.path,
                   extra={"error_code": exc.error_code})
    return JSONResponse(status_code=status_code, content=body)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application"""
    app = FastAPI(
        title="Qard Fund API",
        description="Mutual interest-free lending fund: members, deposits, loans and installments",
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

    app.add_exception_handler(FundError, fund_error_handler)

    # Include routers
    app.include_router(members_router, prefix="/members", tags=["Members"])
    app.include_router(payments_router, prefix="/payments", tags=["Payments"])
    app.include_router(loans_router, prefix="/loans", tags=["Loans"])
    app.include_router(receipts_router, prefix="/receipts", tags=["Receipts"])
    app.include_router(loan_requests_router, prefix="/loan-requests", tags=["Loan Requests"])
    app.include_router(fund_router, prefix="/fund", tags=["Fund"])

    # Health check endpoint
    @app.get("/health")
    def health_check(system: FundSystem = Depends(get_fund_system)):
        """Health check endpoint"""
        store_ok = system.store_healthy()
        return {
            "status": "healthy" if store_ok else "degraded",
            "service": "qard_fund_api",
            "store": "ok" if store_ok else "unreachable",
            "version": __version__
        }

    # Root endpoint
    @app.get("/")
    async def get_api_info():
        """Get API information"""
        return {
            "name": "Qard Fund API",
            "version": __version__,
            "endpoints": {
                "docs": "/docs",
                "health": "/health",
                "members": "/members",
                "payments": "/payments",
                "loans": "/loans",
                "receipts": "/receipts",
                "loan-requests": "/loan-requests",
                "fund": "/fund",
            }
        }

    return app


def run_server(host: str = None, port: int = None, debug: bool = False):
    """Run the FastAPI server"""
    settings = get_config()
    setup_logging(settings.log_level, log_format=settings.log_format,
                  log_file=settings.log_file)

    workers = None if debug else settings.api_workers
    # Each worker process would keep its own in-memory ledger
    if not settings.store_url and workers and workers > 1:
        logger.warning(f"Ignoring api_workers={workers}: the in-memory store "
                       f"needs a single worker, set store_url to scale out")
        workers = 1

    uvicorn.run(
        "qard_fund.api:app",
        host=host or settings.api_host,
        port=port or settings.api_port,
        reload=debug,
        workers=workers,
        log_level=settings.log_level.lower()
    )


app = create_app()
