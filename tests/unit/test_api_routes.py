"""
Unit tests for the milestone API routes.

The service is replaced through FastAPI dependency overrides; these tests
cover request parsing, the acting-user header and error mapping.
"""
import pytest
from unittest.mock import AsyncMock, MagicMock
from fastapi.testclient import TestClient

from pipetrak.main import app
from pipetrak.milestones.exceptions import (
    AtomicBatchRejectedError,
    NotFoundError,
    TemporalPolicyError,
    TransactionConflictError,
)
from pipetrak.services.milestone_service import get_milestone_service

HEADERS = {"X-User-Id": "foreman-1"}


@pytest.fixture
def mock_service():
    service = MagicMock()
    service.update_milestone = AsyncMock(return_value={"milestone": {"id": "c1:Receive"}, "component": None})
    service.bulk_update = AsyncMock(return_value={"transaction_id": "bulk_1_abcdef12", "successful": 1})
    service.preview_bulk = AsyncMock(return_value={"total_updates": 1})
    service.get_progress = AsyncMock(return_value={"transaction_id": "bulk_1_abcdef12", "current": 1})
    service.resolve_conflict = AsyncMock(return_value={"strategy": "accept_server"})
    service.undo_transaction = AsyncMock(return_value={"undone": 2})
    service.list_transactions = AsyncMock(return_value=[])
    service.list_component_milestones = AsyncMock(return_value={"id": "c1", "milestones": []})
    service.recent_activity = AsyncMock(return_value={"items": [], "total": 0})
    service.project_stats = AsyncMock(return_value={"project_id": "proj-1"})
    return service


@pytest.fixture
def client(mock_service):
    app.dependency_overrides[get_milestone_service] = lambda: mock_service
    yield TestClient(app)
    app.dependency_overrides.clear()


UPDATE_BODY = {
    "componentId": "c1",
    "milestoneName": "Receive",
    "value": {"kind": "discrete", "completed": True},
}


class TestUpdateRoute:

    def test_update_parses_camel_case(self, client, mock_service):
        response = client.patch("/api/pipetrak/milestones/update", json=UPDATE_BODY, headers=HEADERS)

        assert response.status_code == 200
        update, actor_id = mock_service.update_milestone.await_args.args
        assert update.component_id == "c1"
        assert update.value.completed is True
        assert actor_id == "foreman-1"

    def test_missing_user_header(self, client):
        response = client.patch("/api/pipetrak/milestones/update", json=UPDATE_BODY)

        assert response.status_code == 401

    def test_unknown_value_kind_rejected(self, client):
        body = {**UPDATE_BODY, "value": {"kind": "binary", "completed": True}}

        response = client.patch("/api/pipetrak/milestones/update", json=body, headers=HEADERS)

        assert response.status_code == 422

    def test_percentage_out_of_range_rejected(self, client):
        body = {**UPDATE_BODY, "value": {"kind": "percentage", "value": 120}}

        response = client.patch("/api/pipetrak/milestones/update", json=body, headers=HEADERS)

        assert response.status_code == 422

    def test_engine_error_mapped(self, client, mock_service):
        mock_service.update_milestone.side_effect = TemporalPolicyError(
            "Effective date 2026-03-12 is in the future"
        )

        response = client.patch("/api/pipetrak/milestones/update", json=UPDATE_BODY, headers=HEADERS)

        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "TEMPORAL_POLICY"


class TestBulkRoutes:

    def test_bulk_options_and_metadata(self, client, mock_service):
        body = {
            "updates": [UPDATE_BODY],
            "options": {"validateOnly": True, "batchSize": 25},
            "metadata": {"transactionId": "bulk_1_abcdef12"},
        }

        response = client.post("/api/pipetrak/milestones/bulk-update", json=body, headers=HEADERS)

        assert response.status_code == 200
        kwargs = mock_service.bulk_update.await_args.kwargs
        assert kwargs["options"].validate_only is True
        assert kwargs["options"].batch_size == 25
        assert kwargs["transaction_id"] == "bulk_1_abcdef12"

    def test_batch_size_over_limit(self, client):
        body = {"updates": [UPDATE_BODY], "options": {"batchSize": 10000}}

        response = client.post("/api/pipetrak/milestones/bulk-update", json=body, headers=HEADERS)

        assert response.status_code == 422

    def test_empty_updates_rejected(self, client):
        response = client.post("/api/pipetrak/milestones/bulk-update", json={"updates": []}, headers=HEADERS)

        assert response.status_code == 422

    def test_atomic_rejection_is_conflict(self, client, mock_service):
        mock_service.bulk_update.side_effect = AtomicBatchRejectedError(
            "1 of 1 updates failed validation; nothing was applied",
            [{"index": 0, "code": "NOT_FOUND"}],
        )

        response = client.post(
            "/api/pipetrak/milestones/bulk-update",
            json={"updates": [UPDATE_BODY], "options": {"atomic": True}},
            headers=HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["detail"]["details"]["invalid"][0]["code"] == "NOT_FOUND"

    def test_reused_transaction_id_is_conflict(self, client, mock_service):
        mock_service.bulk_update.side_effect = TransactionConflictError(
            "Transaction id bulk_1_abcdef12 is already in use"
        )

        response = client.post(
            "/api/pipetrak/milestones/bulk-update",
            json={"updates": [UPDATE_BODY], "metadata": {"transactionId": "bulk_1_abcdef12"}},
            headers=HEADERS,
        )

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "TRANSACTION_EXISTS"

    def test_preview(self, client, mock_service):
        response = client.post(
            "/api/pipetrak/milestones/preview-bulk", json={"updates": [UPDATE_BODY]}, headers=HEADERS
        )

        assert response.status_code == 200
        assert response.json() == {"total_updates": 1}

    def test_progress(self, client, mock_service):
        response = client.get("/api/pipetrak/milestones/progress/bulk_1_abcdef12", headers=HEADERS)

        assert response.status_code == 200
        mock_service.get_progress.assert_awaited_once_with("bulk_1_abcdef12")


class TestConflictAndUndoRoutes:

    def test_resolve_conflict(self, client, mock_service):
        body = {"milestoneId": "c1:Receive", "strategy": "accept_server"}

        response = client.post("/api/pipetrak/milestones/resolve-conflict", json=body, headers=HEADERS)

        assert response.status_code == 200
        request = mock_service.resolve_conflict.await_args.args[0]
        assert request.milestone_id == "c1:Receive"

    def test_undo_not_found(self, client, mock_service):
        mock_service.undo_transaction.side_effect = NotFoundError("Transaction bulk_1_abcdef12 not found")

        response = client.post("/api/pipetrak/milestones/undo/bulk_1_abcdef12", headers=HEADERS)

        assert response.status_code == 404

    def test_transactions(self, client, mock_service):
        response = client.get("/api/pipetrak/milestones/transactions?limit=5", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"transactions": []}
        mock_service.list_transactions.assert_awaited_once_with("foreman-1", limit=5)


class TestReadRoutes:

    def test_component(self, client):
        response = client.get("/api/pipetrak/milestones/component/c1", headers=HEADERS)

        assert response.status_code == 200

    def test_recent(self, client, mock_service):
        response = client.get("/api/pipetrak/milestones/recent/proj-1?limit=10&offset=20", headers=HEADERS)

        assert response.status_code == 200
        mock_service.recent_activity.assert_awaited_once_with("proj-1", "foreman-1", limit=10, offset=20)

    def test_stats(self, client):
        response = client.get("/api/pipetrak/milestones/stats/proj-1", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"project_id": "proj-1"}
