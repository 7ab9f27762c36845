"""
AI Tool Store API

Wires the credit ledger into a FastAPI app. The ledger store is constructed
here (or injected by the caller) and handed down explicitly; there is no
module-level database handle.

Run with:
    uvicorn server:app --host 0.0.0.0 --port 8001
"""
from contextlib import asynccontextmanager
from fastapi import FastAPI, APIRouter, Request
from fastapi.responses import JSONResponse
from starlette.middleware.cors import CORSMiddleware
from dotenv import load_dotenv
from pathlib import Path
from typing import Optional
import os
import logging

from credit_ledger.config import MAX_TRANSACTION_ATTEMPTS
from credit_ledger.engine import TransactionEngine
from credit_ledger.errors import LedgerError
from credit_ledger.ledger_service import LedgerService
from credit_ledger.routes import credit_router
from credit_ledger.store import InMemoryLedgerStore, LedgerStore, utcnow
from credit_ledger.tool_service import ToolExecutionService
from utils.environment import ENVIRONMENT, get_ledger_backend, get_max_attempts

ROOT_DIR = Path(__file__).parent
load_dotenv(ROOT_DIR / '.env')

logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)


def build_ledger_store() -> LedgerStore:
    """Store selected by LEDGER_BACKEND."""
    backend = get_ledger_backend()

    if backend == "memory":
        logger.warning("Using in-memory ledger store - balances are lost on restart")
        return InMemoryLedgerStore()

    from database import create_mongo_client, get_db_name
    from credit_ledger.mongo_store import MongoLedgerStore

    return MongoLedgerStore(create_mongo_client(), get_db_name())


def attach_ledger(app: FastAPI, store: LedgerStore, clock=utcnow, runner=None):
    engine = TransactionEngine(store, max_attempts=get_max_attempts(MAX_TRANSACTION_ATTEMPTS))
    ledger_service = LedgerService(engine, clock=clock)

    app.state.ledger_store = store
    app.state.ledger_service = ledger_service
    app.state.tool_service = ToolExecutionService(ledger_service, runner=runner)


def create_app(ledger_store: Optional[LedgerStore] = None, clock=utcnow, runner=None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not hasattr(app.state, "ledger_service"):
            attach_ledger(app, build_ledger_store(), clock=clock, runner=runner)
        logger.info(f"Ledger store ready: {app.state.ledger_store.name} (environment={ENVIRONMENT})")
        yield
        await app.state.ledger_store.close()

    app = FastAPI(title="AI Tool Store - Credit Ledger API", lifespan=lifespan)

    api_router = APIRouter(prefix="/api")

    @api_router.get("/health")
    async def health(request: Request):
        store = request.app.state.ledger_store
        healthy = await store.ping()
        return {
            "status": "healthy" if healthy else "degraded",
            "environment": ENVIRONMENT,
            "ledger_backend": store.name
        }

    api_router.include_router(credit_router)
    app.include_router(api_router)

    app.add_middleware(
        CORSMiddleware,
        allow_credentials=True,
        allow_origins=os.environ.get('CORS_ORIGINS', '*').split(','),
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(LedgerError)
    async def ledger_error_handler(request: Request, exc: LedgerError):
        if exc.http_status >= 500:
            logger.error(f"Ledger error on {request.url.path}: {exc.error_code} - {exc.message}")
        return JSONResponse(status_code=exc.http_status, content=exc.to_dict())

    if ledger_store is not None:
        attach_ledger(app, ledger_store, clock=clock, runner=runner)

    return app


app = create_app()
