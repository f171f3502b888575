"""Tests for the HTTP API (webui.py).

Covers: API key enforcement, the manual update endpoint, status endpoints,
check triggering, the daemon worker and Socket.IO events.
"""

import threading
from unittest.mock import MagicMock, patch

import pytest
from kubernetes.client.exceptions import ApiException

import webui as webui_mod
from kium import Settings, __version__
from kube_api import ContainerNotFound, WorkloadKind

API_KEY = "test-key"
AUTH = {"X-API-Key": API_KEY}


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest.fixture()
def mock_cluster():
    cluster = MagicMock()
    cluster.set_image.return_value = "Updated deployment default/web (container: app) with image nginx:1.25.3"
    return cluster


@pytest.fixture()
def app_client(mock_cluster):
    """Flask test client with a mock cluster and updater wired in."""
    webui_mod.init(Settings(api_key=API_KEY, interval=3600), mock_cluster)
    webui_mod.updater = MagicMock()
    webui_mod.updater.check_and_update.return_value = []
    webui_mod.is_checking = False
    webui_mod.daemon_running = False
    webui_mod.last_check_time = None
    webui_mod.last_updates = []

    webui_mod.app.config["TESTING"] = True
    with webui_mod.app.test_client() as client:
        yield client

    # Cleanup
    webui_mod.daemon_running = False
    webui_mod.daemon_stop_event.set()
    webui_mod.init(Settings(), None)


@pytest.fixture()
def socketio_client(app_client):
    """Flask-SocketIO test client presenting the API key."""
    client = webui_mod.socketio.test_client(webui_mod.app, headers=AUTH)
    yield client
    if client.is_connected():
        client.disconnect()


# ===========================================================================
# TestApiKey
# ===========================================================================

class TestApiKey:
    def test_missing_key_rejected(self, app_client):
        resp = app_client.get("/api/status")
        assert resp.status_code == 401

    def test_wrong_key_rejected(self, app_client):
        resp = app_client.get("/api/v1/update", headers={"X-API-Key": "nope"},
                              query_string={"namespace": "default", "name": "web", "image": "nginx:1"})
        assert resp.status_code == 401
        webui_mod.cluster.set_image.assert_not_called()

    def test_valid_key(self, app_client):
        assert app_client.get("/api/status", headers=AUTH).status_code == 200

    def test_healthz_is_public(self, app_client):
        resp = app_client.get("/healthz")
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "ok"}

    def test_empty_configured_key_accepts_missing_header(self, app_client):
        webui_mod.settings.api_key = ""
        assert app_client.get("/api/status").status_code == 200
        assert app_client.get("/api/status", headers={"X-API-Key": "x"}).status_code == 401


# ===========================================================================
# TestUpdateEndpoint
# ===========================================================================

class TestUpdateEndpoint:
    URL = "/api/v1/update"

    def _get(self, client, **params):
        return client.get(self.URL, headers=AUTH, query_string=params)

    def test_success(self, app_client, mock_cluster):
        resp = self._get(app_client, namespace="default", name="web", image="nginx:1.25.3")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["message"] == mock_cluster.set_image.return_value
        assert data["details"] == "Updated deployment default/web with image nginx:1.25.3"
        mock_cluster.set_image.assert_called_once_with(
            WorkloadKind.DEPLOYMENT, "default", "web", "", "nginx:1.25.3")

    def test_already_up_to_date(self, app_client, mock_cluster):
        mock_cluster.set_image.return_value = (
            "Image nginx:1.25.3 is already up to date for deployment default/web (container: app)")
        resp = self._get(app_client, namespace="default", name="web", image="nginx:1.25.3")

        assert resp.status_code == 200
        data = resp.get_json()
        assert data["message"] == mock_cluster.set_image.return_value
        assert not data["details"].startswith("Updated")
        assert data["details"] == "No change to deployment default/web, image nginx:1.25.3 already set"

    def test_service_alias_and_kind(self, app_client, mock_cluster):
        resp = self._get(app_client, namespace="data", service="db", kind="StatefulSet",
                         container="postgres", image="postgres:16")
        assert resp.status_code == 200
        mock_cluster.set_image.assert_called_once_with(
            WorkloadKind.STATEFULSET, "data", "db", "postgres", "postgres:16")

    @pytest.mark.parametrize("params", [
        {},
        {"namespace": "default", "name": "web"},
        {"namespace": "default", "image": "nginx:1"},
        {"name": "web", "image": "nginx:1"},
        {"namespace": " ", "name": "web", "image": "nginx:1"},
    ])
    def test_missing_params(self, app_client, mock_cluster, params):
        resp = self._get(app_client, **params)
        assert resp.status_code == 400
        assert "required" in resp.get_json()["error"]
        mock_cluster.set_image.assert_not_called()

    def test_bad_kind(self, app_client, mock_cluster):
        resp = self._get(app_client, namespace="default", name="web", image="nginx:1", kind="cronjob")
        assert resp.status_code == 400
        mock_cluster.set_image.assert_not_called()

    def test_invalid_image(self, app_client, mock_cluster):
        resp = self._get(app_client, namespace="default", name="web", image="Not:Valid:Image")
        assert resp.status_code == 400
        mock_cluster.set_image.assert_not_called()

    def test_container_not_found(self, app_client, mock_cluster):
        mock_cluster.set_image.side_effect = ContainerNotFound("container x not found in deployment")
        resp = self._get(app_client, namespace="default", name="web", container="x", image="nginx:1")
        assert resp.status_code == 404
        assert "not found" in resp.get_json()["error"]

    @pytest.mark.parametrize("status,expected", [(404, 404), (409, 409), (403, 500), (500, 500)])
    def test_api_errors(self, app_client, mock_cluster, status, expected):
        mock_cluster.set_image.side_effect = ApiException(status=status, reason="Boom")
        resp = self._get(app_client, namespace="default", name="web", image="nginx:1")
        assert resp.status_code == expected
        assert resp.get_json()["error"] == "Boom"

    def test_unexpected_error(self, app_client, mock_cluster):
        mock_cluster.set_image.side_effect = RuntimeError("kaput")
        resp = self._get(app_client, namespace="default", name="web", image="nginx:1")
        assert resp.status_code == 500
        assert resp.get_json() == {"error": "kaput"}

    def test_no_cluster(self, app_client):
        webui_mod.cluster = None
        resp = self._get(app_client, namespace="default", name="web", image="nginx:1")
        assert resp.status_code == 503


# ===========================================================================
# TestStatusEndpoints
# ===========================================================================

class TestStatusEndpoints:
    def test_get_status(self, app_client):
        resp = app_client.get("/api/status", headers=AUTH)
        data = resp.get_json()
        assert data["cluster_loaded"] is True
        assert data["is_checking"] is False
        assert data["daemon_running"] is False
        assert data["interval"] == 3600
        assert data["last_check"] is None

    def test_get_version(self, app_client):
        resp = app_client.get("/api/version", headers=AUTH)
        assert resp.status_code == 200
        assert resp.get_json()["version"] == __version__

    def test_get_updates(self, app_client):
        webui_mod.last_updates = [{"name": "web"}]
        resp = app_client.get("/api/updates", headers=AUTH)
        assert resp.get_json()["updates"] == [{"name": "web"}]


# ===========================================================================
# TestCheck
# ===========================================================================

class TestCheck:
    def test_trigger_check(self, app_client):
        with patch("webui.threading.Thread") as thread:
            resp = app_client.post("/api/v1/check", headers=AUTH)
        assert resp.status_code == 200
        assert resp.get_json() == {"status": "started"}
        thread.assert_called_once_with(target=webui_mod.run_check)
        thread.return_value.start.assert_called_once()

    def test_check_in_progress(self, app_client):
        webui_mod.is_checking = True
        resp = app_client.post("/api/v1/check", headers=AUTH)
        assert resp.status_code == 409

    def test_run_check_records_results(self, app_client):
        updates = [{"kind": "deployment", "name": "web"}]
        webui_mod.updater.check_and_update.return_value = updates

        with patch.object(webui_mod.socketio, "emit") as emit:
            webui_mod.run_check()

        assert webui_mod.last_updates == updates
        assert webui_mod.last_check_time is not None
        assert webui_mod.is_checking is False
        events = [call[0][0] for call in emit.call_args_list]
        assert events == ["status_update", "check_complete", "status_update"]

    def test_run_check_progress_forwarded(self, app_client):
        def fake_check(progress_callback):
            progress_callback("update_found", {"name": "web"})
            return []

        webui_mod.updater.check_and_update.side_effect = fake_check
        with patch.object(webui_mod.socketio, "emit") as emit:
            webui_mod.run_check()

        emit.assert_any_call("check_progress", {"event": "update_found", "data": {"name": "web"}},
                             namespace="/")

    def test_run_check_failure(self, app_client):
        webui_mod.updater.check_and_update.side_effect = RuntimeError("boom")
        with patch.object(webui_mod.socketio, "emit") as emit:
            webui_mod.run_check()

        emit.assert_any_call("check_error", {"error": "boom"}, namespace="/")
        assert webui_mod.is_checking is False

    def test_run_check_skipped_while_checking(self, app_client):
        with webui_mod.check_lock:
            webui_mod.run_check()
        webui_mod.updater.check_and_update.assert_not_called()

    def test_concurrent_run_checks_run_one_pass(self, app_client):
        started = threading.Event()
        release = threading.Event()

        def slow_check(progress_callback):
            started.set()
            release.wait(timeout=5)
            return []

        webui_mod.updater.check_and_update.side_effect = slow_check
        with patch.object(webui_mod.socketio, "emit"):
            first = threading.Thread(target=webui_mod.run_check)
            first.start()
            assert started.wait(timeout=5)
            webui_mod.run_check()
            release.set()
            first.join(timeout=5)

        assert webui_mod.updater.check_and_update.call_count == 1
        assert not webui_mod.check_lock.locked()


# ===========================================================================
# TestDaemon
# ===========================================================================

class TestDaemon:
    def test_worker_stops_on_event(self, app_client):
        webui_mod.daemon_running = True
        webui_mod.daemon_stop_event.clear()

        def stop():
            webui_mod.daemon_stop_event.set()

        with patch("webui.run_check", side_effect=stop) as run_check:
            webui_mod.daemon_worker(0.01)

        run_check.assert_called_once()
        assert webui_mod.daemon_running is False

    def test_start_and_stop(self, app_client):
        started = threading.Event()

        def check():
            started.set()

        with patch("webui.run_check", side_effect=check):
            assert webui_mod.start_daemon() is True
            assert webui_mod.start_daemon() is False
            assert started.wait(timeout=5)
            webui_mod.stop_daemon()

        assert webui_mod.daemon_running is False
        assert not webui_mod.daemon_thread.is_alive()

    def test_no_daemon_without_updater(self, app_client):
        webui_mod.updater = None
        assert webui_mod.start_daemon() is False


# ===========================================================================
# TestSocketIO
# ===========================================================================

class TestSocketIO:
    def test_connect_emits_status(self, socketio_client):
        received = socketio_client.get_received()
        event_names = [msg["name"] for msg in received]
        assert "connected" in event_names
        assert "status_update" in event_names

    def test_connect_with_auth_payload(self, app_client):
        client = webui_mod.socketio.test_client(webui_mod.app, auth={"api_key": API_KEY})
        assert client.is_connected()
        client.disconnect()

    def test_connect_rejected_without_key(self, app_client):
        client = webui_mod.socketio.test_client(webui_mod.app)
        assert not client.is_connected()
