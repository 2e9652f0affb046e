import os

os.environ["DATABASE_URL"] = "sqlite://"

import uuid
from datetime import datetime, timezone
from unittest.mock import Mock, patch

import httpx
import pytest
from fastapi.testclient import TestClient

import botengine.models  # noqa: F401  registers tables on Base
from botengine.database import Base, SessionLocal, engine, get_db
from botengine.main import app
from botengine.models import BotEngineConfig, DynamicMenu, WhatsAppInstance
from botengine.services.intercept_service import dedup_cache

REAL_ASYNC_CLIENT = httpx.AsyncClient


def mock_async_client(handler):
    """Factory usable in place of ``httpx.AsyncClient`` that routes requests to ``handler``."""

    def factory(*args, **kwargs):
        kwargs["transport"] = httpx.MockTransport(handler)
        return REAL_ASYNC_CLIENT(*args, **kwargs)

    return factory


@pytest.fixture
def db_session():
    """Mock database session."""
    return Mock()


@pytest.fixture
def db():
    """In-memory SQLite session with a fresh schema."""
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def client(db):
    app.dependency_overrides[get_db] = lambda: db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _clear_dedup_cache():
    dedup_cache.clear()
    yield
    dedup_cache.clear()


@pytest.fixture
def tenant_id():
    return uuid.uuid4()


@pytest.fixture
def now():
    return datetime(2025, 3, 10, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def bot_config(db, tenant_id):
    """Enabled bot for the test tenant; the bot is opt-in per tenant."""
    config = BotEngineConfig(tenant_id=tenant_id, is_enabled=True)
    db.add(config)
    db.commit()
    return config


@pytest.fixture
def menu_tree(db, tenant_id):
    """Root menu MAIN with a PLANOS submenu, a message option and a link option."""
    root = DynamicMenu(
        tenant_id=tenant_id,
        menu_key="MAIN",
        title="Menu principal",
        is_root=True,
        header_message="Bem-vindo à loja!",
        show_back_button=False,
    )
    db.add(root)
    db.flush()

    planos = DynamicMenu(
        tenant_id=tenant_id,
        parent_menu_id=root.id,
        menu_key="PLANOS",
        title="Planos",
        emoji="📋",
        menu_type="submenu",
        display_order=1,
        header_message="Nossos planos:",
    )
    suporte = DynamicMenu(
        tenant_id=tenant_id,
        parent_menu_id=root.id,
        menu_key="SUPORTE_MSG",
        title="Suporte",
        menu_type="message",
        target_message="Fale com a gente pelo e-mail suporte@example.com",
        display_order=2,
    )
    site = DynamicMenu(
        tenant_id=tenant_id,
        parent_menu_id=root.id,
        menu_key="SITE",
        title="Site",
        menu_type="link",
        target_url="https://example.com",
        display_order=3,
    )
    db.add_all([planos, suporte, site])
    db.flush()

    db.add_all(
        [
            DynamicMenu(
                tenant_id=tenant_id,
                parent_menu_id=planos.id,
                menu_key="BASICO",
                title="Básico",
                menu_type="message",
                target_message="Plano básico: R$ 30,00",
                display_order=1,
            ),
            DynamicMenu(
                tenant_id=tenant_id,
                parent_menu_id=planos.id,
                menu_key="PREMIUM",
                title="Premium",
                menu_type="message",
                target_message="Plano premium: R$ 50,00",
                display_order=2,
            ),
        ]
    )
    db.commit()
    return root


@pytest.fixture
def instance(db, tenant_id):
    row = WhatsAppInstance(
        tenant_id=tenant_id,
        instance_name="loja-principal",
        original_instance_name="loja",
        connected_phone="5511888887777",
        is_connected=True,
    )
    db.add(row)
    db.commit()
    return row


@pytest.fixture
def mock_http():
    """Patch ``httpx.AsyncClient`` at ``target`` so requests go to ``handler``."""

    def _patch(target: str, handler):
        return patch(target, mock_async_client(handler))

    return _patch
