import logging
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .db import init_db
from .routers import auth, kyc, reports
from .settings import settings

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


app = FastAPI(title=settings.APP_NAME, version="1.0.0")


# CORS (frontend KYC + dashboard)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_list(),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


app.include_router(auth.router)
app.include_router(kyc.router)
app.include_router(reports.router)


@app.get("/")
def root():
    return {"service": settings.APP_NAME, "status": "ok"}


@app.get("/health")
def health():
    return {"status": "OK", "timestamp": datetime.now(timezone.utc).isoformat()}


@app.on_event("startup")
def on_startup():
    """
    Em produção as tabelas devem vir do Alembic:
      alembic upgrade head && uvicorn kyc_backend.main:app --host 0.0.0.0 --port $PORT
    `init_db` só cria o que faltar e garante o utilizador admin.
    """
    init_db()
    if not settings.IP2LOCATION_API_KEY:
        logger.warning("IP2LOCATION_API_KEY not set, risk analysis will use the local fallback")
    logger.info(f"{settings.APP_NAME} started")
