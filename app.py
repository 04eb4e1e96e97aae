from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from core.logger import setup_logging
from core.errors import register_error_handlers
from db.session import SessionLocal, engine
from models.base import Base

# Import all models to register them with SQLAlchemy BEFORE any queries
from models.company import ClientCompany
from models.document import Document, DocumentProcessingJob, DocumentOCRResult, DocumentParsedData, DocumentRiskFeatures
from models.invoice import Invoice, InvoiceLine
from models.risk import RiskRule, DocumentRiskScore, ClientCompanyRiskScore, RiskScoreHistory, RiskAlert, TenantRiskSettings
from models.sync_state import SyncState
from models.transaction import Transaction, TransactionLine

from controllers.companies import router as companies_router
from controllers.dashboard import router as dashboard_router
from controllers.documents import router as documents_router
from controllers.health import router as health_router
from controllers.invoices import router as invoices_router
from controllers.risk import router as risk_router
from controllers.sync import router as sync_router

from services.container import rules, scheduler


setup_logging()

app = FastAPI(title="Financial Risk Analyzer (Documents + Rules + Fraud + Sync)")

# --- CORS middleware ---
app.add_middleware(
    CORSMiddleware,
    allow_origins=[
        "http://localhost:3000",
        "http://127.0.0.1:3000",
        "http://localhost:3001",
        "http://127.0.0.1:3001",
    ],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

register_error_handlers(app)

# --- DB tables ---
Base.metadata.create_all(bind=engine)

# --- Routers ---
app.include_router(health_router)
app.include_router(companies_router)
app.include_router(documents_router)
app.include_router(invoices_router)
app.include_router(risk_router)
app.include_router(dashboard_router)
app.include_router(sync_router)

# --- Internal TTL cache store (in-memory) ---
# keys are tenant-prefixed: helpers.tenant_prefix(tenant_id) + name
app.state.ttl_cache = {}  # dict[str, (expires_at, data)]


@app.on_event("startup")
async def on_startup():
    db = SessionLocal()
    try:
        rules.ensure_default_rules(db)
    finally:
        db.close()

    # Start background worker (document jobs + accounting sync) if enabled
    await scheduler.start()


@app.on_event("shutdown")
async def on_shutdown():
    await scheduler.stop()
