"""Tests for the reconciliation API client."""

import json
import tempfile
from pathlib import Path

import pytest
import requests
import responses

from suitewaste_sync.errors import (
    BatchRejectedError,
    SyncAuthError,
    SyncClientError,
    TransportError,
)
from suitewaste_sync.models import LedgerDraft, PendingLedgerRecord, RecordKind
from suitewaste_sync.sync.background_retry import BackgroundRetryAgent
from suitewaste_sync.sync.client import SyncApiClient
from suitewaste_sync.sync.retry import RetryConfig

API_URL = "http://sync.test/api"
LEDGER_URL = f"{API_URL}/sync/ledger"
TRANSACTIONS_URL = f"{API_URL}/sync/transactions"

NO_WAIT = RetryConfig(max_retries=2, base_delay=0, jitter=False)


def ledger_record(record_id: str) -> PendingLedgerRecord:
    return PendingLedgerRecord.from_draft(
        LedgerDraft(id=record_id, supplier_id="sup-1", material_type="Copper", weight_kg=12.5)
    )


class TestSyncApiClient:
    """Tests for SyncApiClient."""

    def setup_method(self):
        """Set up test fixtures."""
        self.client = SyncApiClient(
            api_url=API_URL,
            token="test-token",
            device_id="scale-01",
            retry_config=NO_WAIT,
        )

    def teardown_method(self):
        """Clean up."""
        self.client.close()

    def test_get_headers_with_token(self):
        """Test headers include authorization when token is set."""
        headers = self.client._get_headers()

        assert headers["Authorization"] == "Bearer test-token"
        assert headers["X-Device-ID"] == "scale-01"
        assert headers["Content-Type"] == "application/json"

    def test_get_headers_without_token(self):
        """Test headers without credentials."""
        client = SyncApiClient(api_url=API_URL)
        headers = client._get_headers()

        assert "Authorization" not in headers
        assert "X-Device-ID" not in headers
        client.close()

    @responses.activate
    def test_submit_ledger_sends_batch_and_parses_result(self):
        """Test the ledger envelope and the per-record result."""
        responses.add(
            responses.POST,
            LEDGER_URL,
            json={
                "success": True,
                "data": {
                    "syncedIds": ["L1"],
                    "errors": [{"id": "L2", "success": False, "error": "weight_kg: invalid"}],
                },
            },
            status=200,
        )

        outcome = self.client.submit_ledger([ledger_record("L1"), ledger_record("L2")])

        sent = json.loads(responses.calls[0].request.body)
        assert [r["id"] for r in sent["pendingEntries"]] == ["L1", "L2"]
        assert sent["pendingEntries"][0]["material_type"] == "Copper"
        assert outcome.kind == RecordKind.LEDGER
        assert outcome.submitted == 2
        assert outcome.confirmed_ids == ["L1"]
        assert outcome.failures == [("L2", "weight_kg: invalid")]

    @responses.activate
    def test_submit_transactions_uses_transaction_key(self):
        """Test the transactions endpoint and batch key."""
        responses.add(
            responses.POST,
            TRANSACTIONS_URL,
            json={"success": True, "data": {"syncedIds": [], "errors": []}},
        )

        self.client.submit_transactions([ledger_record("T1")])

        sent = json.loads(responses.calls[0].request.body)
        assert "pendingTransactions" in sent

    @responses.activate
    def test_empty_batch_is_rejected_locally(self):
        """Test that an empty batch never reaches the server."""
        with pytest.raises(BatchRejectedError, match="pendingEntries"):
            self.client.submit(RecordKind.LEDGER, [])

        assert len(responses.calls) == 0

    @responses.activate
    def test_bad_request_raises_rejected(self):
        """Test that a 400 envelope is a batch rejection, not retried."""
        responses.add(
            responses.POST,
            LEDGER_URL,
            json={"success": False, "error": "pendingEntries must be a non-empty array"},
            status=400,
        )

        with pytest.raises(BatchRejectedError) as exc_info:
            self.client.submit_ledger([ledger_record("L1")])

        assert exc_info.value.status_code == 400
        assert len(responses.calls) == 1

    @responses.activate
    def test_connection_error_raises_transport_error(self):
        """Test that connection failures are retried then reported."""
        responses.add(
            responses.POST,
            LEDGER_URL,
            body=requests.exceptions.ConnectionError("network down"),
        )

        with pytest.raises(TransportError, match="Cannot connect"):
            self.client.submit_ledger([ledger_record("L1")])

        assert len(responses.calls) == 3

    @responses.activate
    def test_server_error_is_retried(self):
        """Test that a 5xx followed by success returns the success."""
        responses.add(responses.POST, LEDGER_URL, status=503)
        responses.add(
            responses.POST,
            LEDGER_URL,
            json={"success": True, "data": {"syncedIds": ["L1"], "errors": []}},
        )

        outcome = self.client.submit_ledger([ledger_record("L1")])

        assert outcome.confirmed_ids == ["L1"]
        assert len(responses.calls) == 2

    @responses.activate
    def test_unauthorized_raises_auth_error(self):
        """Test that 401 is not retried."""
        responses.add(responses.POST, LEDGER_URL, status=401)

        with pytest.raises(SyncAuthError):
            self.client.submit_ledger([ledger_record("L1")])

        assert len(responses.calls) == 1

    @responses.activate
    def test_invalid_json_is_a_client_error(self):
        """Test that a non-JSON body is reported, not treated as success."""
        responses.add(responses.POST, LEDGER_URL, body="<html>", status=200)

        with pytest.raises(SyncClientError, match="Invalid JSON"):
            self.client.submit_ledger([ledger_record("L1")])

    @responses.activate
    def test_is_reachable_true(self):
        """Test is_reachable when the health endpoint answers."""
        responses.add(
            responses.GET,
            f"{API_URL}/health",
            json={"success": True, "data": {"status": "ok"}},
        )

        assert self.client.is_reachable() is True

    @responses.activate
    def test_is_reachable_false(self):
        """Test is_reachable when the server cannot be reached."""
        responses.add(
            responses.GET,
            f"{API_URL}/health",
            body=requests.exceptions.ConnectionError("network down"),
        )

        assert self.client.is_reachable() is False
        assert len(responses.calls) == 1

    @responses.activate
    def test_non_object_body_is_a_client_error(self):
        """Test that a JSON array reply is reported, not crashed on."""
        responses.add(responses.POST, LEDGER_URL, json=["unexpected"], status=200)

        with pytest.raises(SyncClientError, match="expected an object"):
            self.client.submit_ledger([ledger_record("L1")])

    @responses.activate
    def test_non_object_data_is_a_client_error(self):
        """Test that a scalar ``data`` member is reported."""
        responses.add(responses.POST, LEDGER_URL, json={"success": True, "data": 7})

        with pytest.raises(SyncClientError, match="expected an object"):
            self.client.submit_ledger([ledger_record("L1")])

    @responses.activate
    def test_non_list_synced_ids_is_a_client_error(self):
        """Test that a mistyped result member is reported."""
        responses.add(
            responses.POST,
            LEDGER_URL,
            json={"success": True, "data": {"syncedIds": "L1", "errors": []}},
        )

        with pytest.raises(SyncClientError, match="expected lists"):
            self.client.submit_ledger([ledger_record("L1")])

    @responses.activate
    def test_malformed_error_entries_are_skipped(self):
        """Test that non-object error entries do not hide valid ones."""
        responses.add(
            responses.POST,
            LEDGER_URL,
            json={
                "success": True,
                "data": {
                    "syncedIds": ["L1"],
                    "errors": ["oops", {"id": "L2", "success": False, "error": "bad weight"}],
                },
            },
        )

        outcome = self.client.submit_ledger([ledger_record("L1"), ledger_record("L2")])

        assert outcome.confirmed_ids == ["L1"]
        assert outcome.failures == [("L2", "bad weight")]

    def test_set_credentials(self):
        """Test updating credentials."""
        self.client.set_credentials("new-token", "scale-02")

        assert self.client.token == "new-token"
        assert self.client._get_headers()["X-Device-ID"] == "scale-02"


class TestClientDeferral:
    """Tests for handing failed submissions to the background retry agent."""

    def setup_method(self):
        """Set up test fixtures."""
        self.temp_dir = tempfile.mkdtemp()
        self.agent = BackgroundRetryAgent(db_path=Path(self.temp_dir) / "retry.db")
        self.client = SyncApiClient(
            api_url=API_URL,
            retry_config=RetryConfig(max_retries=0, base_delay=0, jitter=False),
            retry_agent=self.agent,
        )

    def teardown_method(self):
        """Clean up."""
        self.client.close()
        self.agent.close()

    @responses.activate
    def test_failed_sync_post_is_deferred(self):
        """Test that a failed submission is stored for replay."""
        responses.add(
            responses.POST,
            LEDGER_URL,
            body=requests.exceptions.ConnectionError("network down"),
        )

        with pytest.raises(TransportError):
            self.client.submit_ledger([ledger_record("L1")])

        deferred = self.agent.pending()
        assert len(deferred) == 1
        assert deferred[0].url == LEDGER_URL
        assert deferred[0].body["pendingEntries"][0]["id"] == "L1"

    @responses.activate
    def test_failed_sync_post_timeout_is_deferred(self):
        """Test that a timed-out submission is stored for replay."""
        responses.add(
            responses.POST,
            LEDGER_URL,
            body=requests.exceptions.Timeout("read timed out"),
        )

        with pytest.raises(TransportError, match="timed out"):
            self.client.submit_ledger([ledger_record("L1")])

        assert self.agent.size() == 1

    @responses.activate
    def test_server_error_is_not_deferred(self):
        """Test that a 5xx answer is not replayed in the background."""
        responses.add(responses.POST, LEDGER_URL, status=503)

        with pytest.raises(TransportError, match="Server error: 503"):
            self.client.submit_ledger([ledger_record("L1")])

        assert self.agent.size() == 0

    @responses.activate
    def test_rejected_post_is_not_deferred(self):
        """Test that only transport failures are deferred."""
        responses.add(
            responses.POST,
            LEDGER_URL,
            json={"success": False, "error": "bad"},
            status=400,
        )

        with pytest.raises(BatchRejectedError):
            self.client.submit_ledger([ledger_record("L1")])

        assert self.agent.size() == 0

    @responses.activate
    def test_failed_get_is_not_deferred(self):
        """Test that reads are never deferred."""
        responses.add(
            responses.GET,
            f"{API_URL}/health",
            body=requests.exceptions.ConnectionError("network down"),
        )

        assert self.client.is_reachable() is False
        assert self.agent.size() == 0
