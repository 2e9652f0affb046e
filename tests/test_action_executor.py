import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal

import httpx
import pytest

from botengine.models import Plan, TrialIntegrationConfig
from botengine.services.action_executor import (
    NO_PLANS_MESSAGE,
    extract_by_path,
    fetch_plan_list,
    generate_password,
    generate_trial,
    normalize_phone_with_country_code,
    parse_expiration,
)

CONTACT = "5511999999999"


@pytest.fixture
def trial_config(db, tenant_id):
    config = TrialIntegrationConfig(
        tenant_id=tenant_id,
        endpoint_url="https://painel.example.com/api/trial",
        api_key="secret",
        username_prefix="teste",
        test_counter=6,
        map_login_path="data.username",
        map_password_path="data.password",
        map_dns_path="data.dns",
        map_expiration_path="data.expiresAtFormatted",
    )
    db.add(config)
    db.commit()
    return config


@pytest.fixture
def run_trial(db, tenant_id, now, mock_http):
    def _run(handler):
        with mock_http("botengine.services.action_executor.httpx.AsyncClient", handler):
            return asyncio.run(generate_trial(db, tenant_id, CONTACT, "tv", "Samsung", now=now))

    return _run


def _ok(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={})


class TestHelpers:
    def test_extract_by_path(self):
        data = {"data": {"user": {"login": "x"}, "list": [{"a": 1}]}}
        assert extract_by_path(data, "data.user.login") == "x"
        assert extract_by_path(data, "data.list.0.a") == 1
        assert extract_by_path(data, "data.missing.login") is None
        assert extract_by_path(data, None) is None

    def test_parse_expiration(self):
        assert parse_expiration("15/03/2025 18:30") == datetime(2025, 3, 15, 18, 30, tzinfo=timezone.utc)
        assert parse_expiration("15/03/2025") == datetime(2025, 3, 15, 12, 0, tzinfo=timezone.utc)
        assert parse_expiration("2025-03-15T18:30:00Z") == datetime(2025, 3, 15, 18, 30, tzinfo=timezone.utc)
        assert parse_expiration("31/02/2025") is None
        assert parse_expiration("amanhã") is None

    def test_phone_country_code(self):
        assert normalize_phone_with_country_code("11999999999") == "5511999999999"
        assert normalize_phone_with_country_code("5511999999999") == "5511999999999"
        assert normalize_phone_with_country_code("123") is None

    def test_generate_password(self):
        password = generate_password()
        assert len(password) == 8
        assert password.isalnum()


class TestGenerateTrial:
    def test_success(self, db, run_trial, trial_config):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["request"] = request
            return httpx.Response(
                200,
                json={
                    "data": {
                        "username": "teste7",
                        "password": "p4ss",
                        "dns": "http://dns.example.com",
                        "expiresAtFormatted": "10/03/2025 14:00",
                    }
                },
            )

        result = run_trial(handler)

        assert result.ok is True
        assert result.value.username == "teste7"
        assert result.value.password == "p4ss"
        assert result.value.dns == "http://dns.example.com"
        assert result.value.format_expiration() == "10/03/2025 14:00"
        assert result.value.client_name == "Teste7 - teste7"

        request = captured["request"]
        body = json.loads(request.content)
        assert request.headers["Authorization"] == "Bearer secret"
        assert body["username"] == "teste7"
        assert body["phone"] == CONTACT
        assert body["device_info"] == "Samsung"
        db.refresh(trial_config)
        assert trial_config.test_counter == 7

    def test_defaults_when_provider_omits_fields(self, db, run_trial, trial_config):
        result = run_trial(lambda request: httpx.Response(200, json={"ok": True}))

        assert result.ok is True
        assert result.value.username == "teste7"
        assert len(result.value.password) == 8
        assert result.value.dns is None
        assert result.value.expires_at == datetime(2025, 3, 10, 14, 0, tzinfo=timezone.utc)

    def test_each_call_reserves_a_new_counter(self, db, run_trial, trial_config):
        first = run_trial(_ok)
        second = run_trial(_ok)
        assert (first.value.username, second.value.username) == ("teste7", "teste8")

    def test_not_configured(self, db, tenant_id, now):
        result = asyncio.run(generate_trial(db, tenant_id, CONTACT, "tv", now=now))
        assert result.ok is False
        assert result.error_code == "not_configured"

    def test_provider_error(self, db, run_trial, trial_config):
        result = run_trial(lambda request: httpx.Response(500, text="down"))
        assert result.error_code == "provider_error"

    def test_timeout(self, db, run_trial, trial_config):
        def handler(request):
            raise httpx.ReadTimeout("slow", request=request)

        assert run_trial(handler).error_code == "timeout"

    def test_network_error(self, db, run_trial, trial_config):
        def handler(request):
            raise httpx.ConnectError("refused", request=request)

        assert run_trial(handler).error_code == "http_error"

    def test_invalid_json(self, db, run_trial, trial_config):
        result = run_trial(lambda request: httpx.Response(200, text="<html>"))
        assert result.error_code == "invalid_response"


class TestPlanList:
    def test_formats_cheapest_first(self, db, tenant_id):
        db.add_all(
            [
                Plan(tenant_id=tenant_id, name="Anual", price=Decimal("250.00"), duration_days=365),
                Plan(tenant_id=tenant_id, name="Mensal", price=Decimal("29.90"), duration_days=30, description="1 tela"),
                Plan(tenant_id=tenant_id, name="Antigo", price=Decimal("10.00"), is_active=False),
            ]
        )
        db.commit()

        assert fetch_plan_list(db, tenant_id) == (
            "• *Mensal* - R$ 29,90 (30 dias)\n  1 tela\n• *Anual* - R$ 250,00 (365 dias)"
        )

    def test_no_plans(self, db, tenant_id):
        assert fetch_plan_list(db, tenant_id) == NO_PLANS_MESSAGE
