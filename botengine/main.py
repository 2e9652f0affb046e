from fastapi import Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.orm import Session

from botengine.config import settings
from botengine.database import Base, engine, get_db
from botengine.logging_config import get_logger, setup_logging
from botengine.models import BotSession, DynamicMenu, LegacyMenu, WhatsAppInstance
from botengine.routers import admin, intercept, webhook

setup_logging(settings.log_level)
logger = get_logger("main")

app = FastAPI(
    title="Bot Engine API",
    description="Menu-driven chatbot interception and session engine for WhatsApp",
    version="0.1.0",
)

cors_origins = [origin.strip() for origin in settings.cors_allow_origins.split(",") if origin.strip()]
if not cors_origins:
    cors_origins = ["*"]

app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins,
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(intercept.router)
app.include_router(webhook.router)
app.include_router(admin.router)


@app.on_event("startup")
async def create_local_schema() -> None:
    # Production schema is managed by migrations; only local SQLite gets auto-created tables.
    if settings.database_url.startswith("sqlite"):
        Base.metadata.create_all(bind=engine)
        logger.info("Local schema created")


@app.get("/health")
async def health():
    return {"status": "ok"}


@app.get("/db-check")
def db_check(db: Session = Depends(get_db)):
    return {
        "status": "ok",
        "sessions": db.query(BotSession).count(),
        "dynamic_menus": db.query(DynamicMenu).count(),
        "legacy_menus": db.query(LegacyMenu).count(),
        "instances": db.query(WhatsAppInstance).count(),
    }
