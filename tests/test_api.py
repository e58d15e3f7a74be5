from __future__ import annotations

import os
from decimal import Decimal
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite://")

from freight_rules.api.main import app  # noqa: E402
from freight_rules.api.routes import get_repository  # noqa: E402
from freight_rules.db import get_engine  # noqa: E402
from freight_rules.rules.errors import LookupFailure  # noqa: E402
from freight_rules.rules.repository import InMemoryRuleRepository  # noqa: E402
from freight_rules.rules.types import (  # noqa: E402
    AcceptanceRule,
    RuleScope,
    SurchargeArticleMap,
    SurchargeRule,
    TransformRule,
)
from freight_rules.settings import settings  # noqa: E402

RULES = [
    AcceptanceRule(
        id=10,
        carrier_id=1,
        scope=RuleScope.build(vehicle_categories=["truck"]),
        max_height_cm=270,
        soft_max_height_cm=300,
        soft_height_requires_approval=True,
        effective_from=None,
    ),
    TransformRule.from_record(
        id=20, carrier_id=1, transform_code="OVERWIDTH_LM_RECALC",
        params={"trigger_width_gt_cm": 250, "divisor_cm": 200},
    ),
    SurchargeRule.from_record(
        id=30, carrier_id=1, event_code="DOC_FEE", name="Documentation", calc_mode="FLAT", params={"amount": 50}
    ),
    SurchargeArticleMap(id=40, carrier_id=1, event_code="DOC_FEE", article_id=9001),
]


@pytest.fixture()
def client():
    app.dependency_overrides[get_repository] = lambda: InMemoryRuleRepository(RULES)
    yield TestClient(app)
    app.dependency_overrides.clear()


def test_evaluate_returns_full_payload(client: TestClient) -> None:
    resp = client.post(
        "/api/v1/carrier-rules/evaluate",
        json={
            "carrier_id": 1,
            "port_id": 12,
            "category": "truck",
            "length_cm": 600,
            "width_cm": 300,
            "height_cm": 285,
            "weight_kg": 12000,
            "on": "2025-06-01",
        },
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["acceptance_status"] == "ALLOWED_UPON_REQUEST"
    assert body["approvals_required"] == ["soft_height_approval"]
    assert body["acceptance_rule_id"] == 10
    assert Decimal(body["base_lm"]) == Decimal("7.2")
    assert Decimal(body["chargeable_lm"]) == Decimal("9")
    assert body["applied_transform_rule_id"] == 20
    assert body["transform_reason"] == "Overwidth: width 300cm exceeds trigger 250cm"
    assert body["evaluated_on"] == "2025-06-01"
    assert len(body["quote_line_drafts"]) == 1
    draft = body["quote_line_drafts"][0]
    assert draft["article_id"] == 9001
    assert Decimal(draft["amount_override"]) == Decimal("50")


def test_evaluate_rejects_negative_dimensions(client: TestClient) -> None:
    resp = client.post(
        "/api/v1/carrier-rules/evaluate",
        json={"carrier_id": 1, "length_cm": -1, "width_cm": 200},
    )

    assert resp.status_code == 422


def test_lookup_failure_maps_to_503() -> None:
    repository = MagicMock()
    repository.port_group_ids_for_port.return_value = frozenset()
    repository.category_groups.return_value = []
    repository.fetch_active_candidates.side_effect = LookupFailure("acceptance", 1)
    app.dependency_overrides[get_repository] = lambda: repository
    try:
        resp = TestClient(app).post(
            "/api/v1/carrier-rules/evaluate",
            json={"carrier_id": 1, "category": "truck", "length_cm": 400, "width_cm": 200},
        )
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 503
    assert "kind=acceptance" in resp.json()["detail"]


def test_bad_calc_mode_maps_to_500() -> None:
    broken = SurchargeRule(id=99, carrier_id=1, event_code="X", name="Broken", calc_mode="BOGUS")
    app.dependency_overrides[get_repository] = lambda: InMemoryRuleRepository([broken])
    try:
        resp = TestClient(app).post(
            "/api/v1/carrier-rules/evaluate",
            json={"carrier_id": 1, "category": "truck", "length_cm": 400, "width_cm": 200},
        )
    finally:
        app.dependency_overrides.clear()

    assert resp.status_code == 500
    assert resp.json()["detail"].startswith("rule 99:")


def test_max_dimensions(client: TestClient) -> None:
    resp = client.get(
        "/api/v1/carrier-rules/max-dimensions",
        params={"carrier_id": 1, "commodity_type": "LM Cargo", "on": "2025-06-01"},
    )

    assert resp.status_code == 200
    body = resp.json()
    assert body["rule_id"] == 10
    assert body["vehicle_category"] == "truck"
    assert Decimal(body["max_height_cm"]) == Decimal("270")


def test_max_dimensions_not_found(client: TestClient) -> None:
    resp = client.get(
        "/api/v1/carrier-rules/max-dimensions",
        params={"carrier_id": 1, "commodity_type": "Motorcycle"},
    )

    assert resp.status_code == 404


def test_health_reports_file_source(monkeypatch) -> None:
    monkeypatch.setattr(settings, "rules_path", "/srv/rules.json")

    body = TestClient(app).get("/health").json()

    assert body["ok"] is True
    assert body["rules_source"] == "file"


def test_health_checks_database(monkeypatch) -> None:
    monkeypatch.setattr(settings, "rules_path", None)
    monkeypatch.setattr(settings, "database_url", "sqlite://")
    get_engine.cache_clear()
    try:
        body = TestClient(app).get("/health").json()
    finally:
        get_engine.cache_clear()

    assert body["rules_source"] == "database"
    assert body["db_ok"] is True
