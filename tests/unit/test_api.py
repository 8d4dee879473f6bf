from __future__ import annotations

import threading
import time
from collections.abc import Callable
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from fastapi.testclient import TestClient

from agenda_workflow.core.engine import PlanningEngine
from agenda_workflow.llm.provider import LLMError
from agenda_workflow.server import router
from agenda_workflow.server.app import create_app
from conftest import GOOD_AGENDA, FakeLLM, agenda_item

USER = {"X-User-Id": "u1"}


@pytest.fixture
def client(make_engine: Callable[..., PlanningEngine], fake_llm: FakeLLM) -> TestClient:
    return TestClient(create_app(engine=make_engine(fake_llm)))


def _execute(client: TestClient, **body: object) -> dict:
    payload = {"slug": "planmyday", "target_date": "2025-03-12", **body}
    resp = client.post("/api/workflows/execute", json=payload, headers=USER)
    assert resp.status_code == 200, resp.text
    return resp.json()


def test_health(client: TestClient) -> None:
    health = client.get("/api/health").json()

    assert health["status"] == "ok"
    assert "version" in health


def test_user_header_is_required(client: TestClient) -> None:
    resp = client.get("/api/workflows")

    assert resp.status_code == 401


def test_execute_and_approve(client: TestClient) -> None:
    started = _execute(client)
    execution_id = started["execution"]["id"]

    assert started["execution"]["status"] == "awaiting_user"
    assert started["proposal"]["aggregate_score"] == 100.0

    fetched = client.get(f"/api/workflows/executions/{execution_id}", headers=USER).json()
    assert fetched["execution"]["id"] == execution_id

    approved = client.post(
        f"/api/workflows/executions/{execution_id}",
        json={"action": "approve"},
        headers=USER,
    )
    assert approved.status_code == 200
    assert approved.json()["execution"]["status"] == "completed"

    again = client.post(
        f"/api/workflows/executions/{execution_id}",
        json={"action": "approve"},
        headers=USER,
    )
    assert again.status_code == 409
    assert again.json()["error"]["code"] == "state_conflict"


def test_execution_is_scoped_to_user(client: TestClient) -> None:
    execution_id = _execute(client)["execution"]["id"]

    resp = client.get(f"/api/workflows/executions/{execution_id}", headers={"X-User-Id": "u2"})

    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "not_found"


def test_blocked_approval_returns_422(make_engine: Callable[..., PlanningEngine]) -> None:
    agenda = {"agenda": [*GOOD_AGENDA["agenda"], agenda_item("09:30", "10:30", "Call", "work")]}
    client = TestClient(create_app(engine=make_engine(FakeLLM(default=agenda))))
    execution_id = _execute(client)["execution"]["id"]

    resp = client.post(
        f"/api/workflows/executions/{execution_id}",
        json={"action": "approve"},
        headers=USER,
    )

    assert resp.status_code == 422
    body = resp.json()
    assert body["error"]["code"] == "hard_constraint_blocked"
    assert [r["name"] for r in body["error"]["blocking"]] == ["No double booking"]
    assert body["execution"]["status"] == "awaiting_user"


def test_synthesis_failure_returns_502(make_engine: Callable[..., PlanningEngine]) -> None:
    client = TestClient(create_app(engine=make_engine(FakeLLM(default=LLMError("down")))))

    resp = client.post("/api/workflows/execute", json={"slug": "planmyday"}, headers=USER)

    assert resp.status_code == 502
    assert resp.json()["execution"]["status"] == "failed"


def test_execute_requires_workflow_reference(client: TestClient) -> None:
    resp = client.post("/api/workflows/execute", json={}, headers=USER)

    assert resp.status_code == 422


def test_cancel(client: TestClient) -> None:
    execution_id = _execute(client)["execution"]["id"]

    resp = client.delete(f"/api/workflows/executions/{execution_id}", headers=USER)

    assert resp.status_code == 200
    assert resp.json()["execution"]["status"] == "cancelled"


def test_workflows_and_rubrics(client: TestClient) -> None:
    created = client.post(
        "/api/workflows",
        json={"name": "Focus day", "slug": "focus", "enabled_integrations": ["calendar"]},
        headers=USER,
    )
    assert created.status_code == 201
    assert created.json()["is_system"] is False

    dup = client.post("/api/workflows", json={"name": "Again", "slug": "focus"}, headers=USER)
    assert dup.status_code == 409

    seeded = client.get("/api/workflows/planmyday/rubrics", headers=USER).json()
    assert len(seeded) == 11

    rule = {"type": "count_bounds", "min_items": 3, "max_items": 12}
    added = client.post(
        "/api/workflows/focus/rubrics",
        json={"category": "time", "name": "Sane item count", "validation_rule": rule},
        headers=USER,
    )
    assert added.status_code == 201
    assert added.json()["validation_rule"]["type"] == "count_bounds"

    bad = client.post(
        "/api/workflows/focus/rubrics",
        json={"category": "x", "name": "Mystery", "validation_rule": {"type": "custom"}},
        headers=USER,
    )
    assert bad.status_code == 422

    listed = client.get("/api/workflows", headers=USER).json()
    assert sorted(w["slug"] for w in listed) == ["focus", "planmyday"]


def test_unknown_workflow_returns_404(client: TestClient) -> None:
    resp = client.get("/api/workflows/nope/rubrics", headers=USER)

    assert resp.status_code == 404


def test_missing_llm_credentials_return_503(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("AGENDA_LLM_API_KEY", raising=False)

    client = TestClient(create_app())
    resp = client.get("/api/workflows", headers=USER)

    assert resp.status_code == 503


def test_lazy_engine_is_built_once_under_concurrency(monkeypatch: pytest.MonkeyPatch) -> None:
    built: list[object] = []

    def slow_engine() -> object:
        time.sleep(0.05)
        engine = object()
        built.append(engine)
        return engine

    monkeypatch.setattr(router, "PlanningEngine", slow_engine)
    app = create_app()
    request: Any = SimpleNamespace(app=app)
    barrier = threading.Barrier(4, timeout=10)
    seen: list[object] = []
    lock = threading.Lock()

    def resolve() -> None:
        barrier.wait()
        engine = router._engine(request)
        with lock:
            seen.append(engine)

    threads = [threading.Thread(target=resolve) for _ in range(4)]
    for t in threads:
        t.start()
    for t in threads:
        t.join(timeout=10)

    assert len(built) == 1
    assert seen == built * 4
    assert app.state.engine is built[0]
