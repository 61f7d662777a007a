"""Tests for the staff API.

Covers:
- X-User-Id required; viewer resolved through the directory
- Listing, detail, creation and transitions mapped to HTTP codes
  (403 not permitted, 409 invalid/stale, 404 missing, 422 invalid, 503 store)
- Live request stream subscription lifecycle
- Active protocols, PIC preview, PIC monthly schedule with visibility
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from unittest.mock import AsyncMock, patch

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from src.db.engine import get_session
from src.models.enums import RequestKind, RequestStatus
from src.models.protocol import Protocol
from src.models.service_request import ServiceRequest
from src.portal.deps import current_viewer
from src.portal.web import router
from src.routing.resolver import build_resolver
from src.schemas.directory import Viewer
from src.schemas.requests import StatusSummary
from src.workflow.feed import REQUEST_EVENTS, sse_message
from src.workflow.fsm import InvalidTransitionError, TransitionNotPermittedError
from src.workflow.service import RequestNotFoundError, RequestWriteError, StaleRequestError

ENGINEER = Viewer(id="e1", department="ENGINEERING", display_name="Therese Lim")
SALES = Viewer(id="u1", department="SALES", display_name="Maria Santos")

NOW = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

# ── Helpers ──────────────────────────────────────────────────────────


def _make_request(
    status: RequestStatus = RequestStatus.PENDING,
    submitted_by: str = "u1",
    pic: str = "Patrick",
    day: int = 10,
) -> ServiceRequest:
    return ServiceRequest(
        id=uuid.uuid4(),
        kind=RequestKind.SITE_VISIT.value,
        submitted_by=submitted_by,
        department="SALES",
        protocols=["site visit"],
        pic=pic,
        status=status.value,
        client="ACME",
        address="1 Main St",
        appointment_date=datetime(2026, 3, day, 8, 0, tzinfo=timezone.utc),
        details={},
        revision=1,
        created_at=NOW,
        updated_at=NOW,
    )


def _make_client(viewer: Viewer) -> TestClient:
    app = FastAPI()
    app.include_router(router)

    async def fake_session():
        yield AsyncMock()

    async def fake_viewer():
        return viewer

    app.dependency_overrides[get_session] = fake_session
    app.dependency_overrides[current_viewer] = fake_viewer
    return TestClient(app)


@pytest.fixture
def sales_client():
    return _make_client(SALES)


@pytest.fixture
def engineer_client():
    return _make_client(ENGINEER)


# ── Viewer resolution ────────────────────────────────────────────────


class TestViewerHeader:
    def test_401_without_header(self):
        app = FastAPI()
        app.include_router(router)

        async def fake_session():
            yield AsyncMock()

        app.dependency_overrides[get_session] = fake_session
        resp = TestClient(app).get("/api/requests")
        assert resp.status_code == 401

    def test_header_resolved_through_directory(self):
        app = FastAPI()
        app.include_router(router)

        async def fake_session():
            yield AsyncMock()

        app.dependency_overrides[get_session] = fake_session
        with (
            patch("src.portal.deps.directory_service.resolve_viewer", new_callable=AsyncMock) as mock_resolve,
            patch("src.portal.web.request_service.list_visible", new_callable=AsyncMock) as mock_list,
        ):
            mock_resolve.return_value = Viewer.fallback("u7")
            mock_list.return_value = []
            resp = TestClient(app).get("/api/requests", headers={"X-User-Id": "u7"})

        assert resp.status_code == 200
        mock_resolve.assert_awaited_once_with("u7")
        assert mock_list.call_args[0][1].degraded is True


# ── Requests ─────────────────────────────────────────────────────────


class TestListAndDetail:
    def test_list_includes_allowed_actions(self, engineer_client):
        with patch("src.portal.web.request_service.list_visible", new_callable=AsyncMock) as mock_list:
            mock_list.return_value = [_make_request(), _make_request(RequestStatus.CONFIRMED)]
            resp = engineer_client.get("/api/requests", params={"status": "pending", "search": "acme"})

        assert resp.status_code == 200
        body = resp.json()
        assert [r["allowed_actions"] for r in body] == [["confirm"], []]
        assert mock_list.call_args.kwargs["status"] == "pending"
        assert mock_list.call_args.kwargs["search"] == "acme"

    def test_unknown_status_filter(self, sales_client):
        resp = sales_client.get("/api/requests", params={"status": "archived"})
        assert resp.status_code == 422
        assert "Unknown request status" in resp.json()["detail"]

    def test_detail_not_found(self, sales_client):
        with patch("src.portal.web.request_service.get_visible", new_callable=AsyncMock) as mock_get:
            mock_get.side_effect = RequestNotFoundError("nope")
            resp = sales_client.get(f"/api/requests/{uuid.uuid4()}")
        assert resp.status_code == 404

    def test_summary(self, sales_client):
        with patch("src.portal.web.request_service.status_summary", new_callable=AsyncMock) as mock_summary:
            mock_summary.return_value = StatusSummary(PENDING=2, CONFIRMED=1)
            resp = sales_client.get("/api/requests/summary")

        assert resp.status_code == 200
        assert resp.json() == {"PENDING": 2, "CONFIRMED": 1, "COMPLETED": 0}


class TestCreate:
    def test_created(self, sales_client):
        with patch("src.portal.web.request_service.create_request", new_callable=AsyncMock) as mock_create:
            mock_create.return_value = _make_request()
            resp = sales_client.post("/api/requests", json={
                "kind": "site_visit",
                "protocols": ["site visit"],
                "client": "ACME",
                "address": "1 Main St",
                "appointment_date": "2026-03-10T08:00:00+00:00",
            })

        assert resp.status_code == 201
        assert resp.json()["pic"] == "Patrick"
        payload = mock_create.call_args[0][2]
        assert payload.kind == RequestKind.SITE_VISIT

    def test_invalid_kind(self, sales_client):
        resp = sales_client.post("/api/requests", json={"kind": "repair", "protocols": ["x"]})
        assert resp.status_code == 422

    def test_store_failure(self, sales_client):
        with patch("src.portal.web.request_service.create_request", new_callable=AsyncMock) as mock_create:
            mock_create.side_effect = RequestWriteError("Could not save the request")
            resp = sales_client.post("/api/requests", json={"protocols": ["site visit"]})
        assert resp.status_code == 503
        assert resp.json()["detail"] == "Could not save the request"


async def _snapshot_only(feed, is_disconnected):
    yield sse_message("snapshot", feed.snapshot())


class TestLiveStream:
    def test_stream_starts_with_visible_requests(self, sales_client):
        mine = _make_request(submitted_by="u1")
        with (
            patch("src.portal.web.subscribe") as mock_subscribe,
            patch("src.portal.web.unsubscribe") as mock_unsubscribe,
            patch("src.portal.web.sse_events", _snapshot_only),
            patch("src.portal.web.request_service.list_visible", new_callable=AsyncMock) as mock_list,
        ):
            mock_list.return_value = [mine]
            resp = sales_client.get("/api/requests/stream")

        assert resp.status_code == 200
        assert resp.headers["content-type"].startswith("text/event-stream")
        assert resp.text.startswith("event: snapshot\n")
        assert str(mine.id) in resp.text

        handler, event_types = mock_subscribe.call_args[0]
        assert event_types == REQUEST_EVENTS
        mock_unsubscribe.assert_called_once_with(handler)

    def test_failed_load_drops_subscription(self, sales_client):
        with (
            patch("src.portal.web.subscribe") as mock_subscribe,
            patch("src.portal.web.unsubscribe") as mock_unsubscribe,
            patch("src.portal.web.request_service.list_visible", new_callable=AsyncMock) as mock_list,
        ):
            mock_list.side_effect = RuntimeError("database gone")
            with pytest.raises(RuntimeError):
                sales_client.get("/api/requests/stream")

        mock_unsubscribe.assert_called_once_with(mock_subscribe.call_args[0][0])


class TestTransitions:
    def test_confirm(self, engineer_client):
        confirmed = _make_request(RequestStatus.CONFIRMED)
        confirmed.confirmation_notes = "Checked onsite"
        with patch("src.portal.web.request_service.confirm", new_callable=AsyncMock) as mock_confirm:
            mock_confirm.return_value = confirmed
            resp = engineer_client.post(f"/api/requests/{confirmed.id}/confirm", json={"notes": "Checked onsite"})

        assert resp.status_code == 200
        assert resp.json()["status"] == "CONFIRMED"
        assert mock_confirm.call_args[0][3] == "Checked onsite"

    @pytest.mark.parametrize(
        ("error", "code"),
        [
            (TransitionNotPermittedError("sales may not confirm"), 403),
            (InvalidTransitionError("already confirmed"), 409),
            (StaleRequestError("no longer PENDING"), 409),
            (RequestNotFoundError("missing"), 404),
            (RequestWriteError("store down"), 503),
        ],
    )
    def test_confirm_errors(self, sales_client, error, code):
        with patch("src.portal.web.request_service.confirm", new_callable=AsyncMock) as mock_confirm:
            mock_confirm.side_effect = error
            resp = sales_client.post(f"/api/requests/{uuid.uuid4()}/confirm", json={"notes": "x"})
        assert resp.status_code == code

    def test_complete(self, sales_client):
        with patch("src.portal.web.request_service.complete", new_callable=AsyncMock) as mock_complete:
            mock_complete.return_value = _make_request(RequestStatus.COMPLETED)
            resp = sales_client.post(f"/api/requests/{uuid.uuid4()}/complete")

        assert resp.status_code == 200
        assert resp.json()["allowed_actions"] == []


# ── Protocols and PICs ───────────────────────────────────────────────


class TestProtocolsAndPics:
    def test_active_protocols(self, sales_client):
        protocol = Protocol(
            id=uuid.uuid4(), uid="PRT-1234", label="DIAlux", description=None,
            pics=["Therese"], is_active=True, created_at=NOW, updated_at=NOW,
        )
        with patch("src.portal.web.registry_service.list_protocols", new_callable=AsyncMock) as mock_list:
            mock_list.return_value = [protocol]
            resp = sales_client.get("/api/protocols")

        assert resp.status_code == 200
        assert resp.json()[0]["uid"] == "PRT-1234"
        assert mock_list.call_args.kwargs["active_only"] is True

    def test_resolve_preview(self, sales_client):
        with patch("src.portal.web.request_service.explain_pic", new_callable=AsyncMock) as mock_explain:
            mock_explain.return_value = build_resolver().explain({"costing"})
            resp = sales_client.post("/api/pic/resolve", json={"selected_types": ["costing"]})

        assert resp.json() == {
            "pic": "Mark / Karl",
            "engineers": ["Mark", "Karl"],
            "rule": "costing-pair",
            "is_default": False,
        }

    def test_resolve_empty_selection(self, sales_client):
        with patch("src.portal.web.request_service.explain_pic", new_callable=AsyncMock) as mock_explain:
            mock_explain.side_effect = lambda db, selected, team: build_resolver().explain(selected, team)
            resp = sales_client.post("/api/pic/resolve", json={"selected_types": []})
        assert resp.status_code == 422

    def test_schedule_hides_foreign_visits(self, sales_client):
        own = _make_request(submitted_by="u1", pic="Omar", day=3)
        foreign = _make_request(submitted_by="u2", pic="Omar", day=12)
        with patch("src.portal.web.request_service.pic_schedule", new_callable=AsyncMock) as mock_schedule:
            mock_schedule.return_value = [own, foreign]
            resp = sales_client.get("/api/pics/Omar/schedule", params={"year": 2026, "month": 3})

        body = resp.json()
        assert resp.status_code == 200
        assert body["busy_days"] == ["2026-03-03", "2026-03-12"]
        assert [v["id"] for v in body["visits"]] == [str(own.id)]

    def test_schedule_month_validated(self, sales_client):
        resp = sales_client.get("/api/pics/Omar/schedule", params={"year": 2026, "month": 13})
        assert resp.status_code == 422
