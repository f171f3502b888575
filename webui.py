#!/usr/bin/env python3
"""
HTTP API for the Kubernetes Image Update Manager

Serves the manual image-update endpoint, status endpoints and live
progress events, and runs the background reconciliation daemon.
"""

import hmac
import logging
import os
import sys
import threading
import traceback
from datetime import datetime
from functools import wraps
from typing import Any, Dict, List, Optional

from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit
from kubernetes.client.exceptions import ApiException

from image_ref import InvalidReference, parse
from kium import ImageUpdater, Settings, __version__, apply_timezone, load_settings, setup_logging
from kube_api import ClusterClient, ClusterConfigError, ContainerNotFound, WorkloadKind

app = Flask(__name__)
socketio = SocketIO(app)

# Global variables
settings = Settings()
cluster: Optional[ClusterClient] = None
updater: Optional[ImageUpdater] = None
daemon_thread: Optional[threading.Thread] = None
daemon_stop_event = threading.Event()
last_check_time: Optional[datetime] = None
last_updates: List[Dict[str, Any]] = []
is_checking = False
check_lock = threading.Lock()
daemon_running = False

logger = logging.getLogger('kium.webui')

# Paths reachable without an API key
PUBLIC_PATHS = ('/healthz',)


def _check_api_key(api_key: Optional[str]) -> bool:
    """Verify the API key using constant-time comparison."""
    return hmac.compare_digest((api_key or '').encode(), settings.api_key.encode())


@app.before_request
def require_api_key():
    """Enforce the X-API-Key header on every request except health checks."""
    if request.path in PUBLIC_PATHS:
        return None
    if _check_api_key(request.headers.get('X-API-Key')):
        return None
    return jsonify({'error': 'Invalid API key'}), 401


def require_cluster(f):
    """Decorator to check the cluster client is available before executing route."""
    @wraps(f)
    def decorated(*args, **kwargs):
        if not cluster:
            return jsonify({'error': 'Cluster client not loaded'}), 503
        return f(*args, **kwargs)
    return decorated


def run_check():
    """Run a single reconciliation pass, streaming progress to clients."""
    global is_checking, last_check_time, last_updates

    if not updater or not check_lock.acquire(blocking=False):
        return

    is_checking = True
    socketio.emit('status_update', {'checking': True}, namespace='/')

    def progress_callback(event_type, data):
        """Emit progress updates to connected clients."""
        socketio.emit('check_progress', {
            'event': event_type,
            'data': data
        }, namespace='/')

    try:
        updates = updater.check_and_update(progress_callback=progress_callback)
        last_updates = updates
        last_check_time = datetime.now()
        socketio.emit('check_complete', {
            'updates': updates,
            'timestamp': last_check_time.isoformat()
        }, namespace='/')
    except Exception as e:
        tb = traceback.format_exc()
        logger.error(f"Check failed: {e}\n{tb}")
        socketio.emit('check_error', {'error': str(e)}, namespace='/')
    finally:
        is_checking = False
        check_lock.release()
        socketio.emit('status_update', {'checking': False}, namespace='/')


def daemon_worker(interval):
    """Background worker running a pass every *interval* seconds."""
    global daemon_running

    logger.info(f"Daemon started (interval={interval:g}s)")
    while daemon_running:
        try:
            run_check()
        except Exception as e:
            logger.error(f"Daemon check cycle failed unexpectedly: {e}\n{traceback.format_exc()}")
        # Wait with efficient interruption support
        if daemon_stop_event.wait(timeout=interval):
            break
    daemon_running = False
    logger.info("Daemon stopped")


def start_daemon() -> bool:
    """Start the background daemon; False if it is running or there is no updater."""
    global daemon_running, daemon_thread

    if daemon_running or not updater:
        return False
    daemon_running = True
    daemon_stop_event.clear()
    daemon_thread = threading.Thread(target=daemon_worker, args=(settings.interval,), daemon=True)
    daemon_thread.start()
    return True


def stop_daemon(timeout: float = 5) -> None:
    """Signal the daemon to stop; a running pass is allowed to finish."""
    global daemon_running

    daemon_running = False
    daemon_stop_event.set()
    if daemon_thread:
        daemon_thread.join(timeout=timeout)


def init(new_settings: Settings, new_cluster: Optional[ClusterClient]) -> None:
    """Install settings and cluster access, building the updater."""
    global settings, cluster, updater
    settings = new_settings
    cluster = new_cluster
    updater = ImageUpdater(settings, cluster) if cluster else None


@app.route('/healthz')
def healthz():
    return jsonify({'status': 'ok'})


@app.route('/api/status')
def api_status():
    """Get current status."""
    return jsonify({
        'cluster_loaded': cluster is not None,
        'updater_enabled': settings.updater_enabled,
        'dry_run': settings.dry_run,
        'is_checking': is_checking,
        'daemon_running': daemon_running,
        'interval': settings.interval,
        'allowed_namespaces': settings.allowed_namespaces,
        'last_check': last_check_time.isoformat() if last_check_time else None,
    })


@app.route('/api/version')
def api_version():
    """Get application version."""
    return jsonify({'version': __version__})


@app.route('/api/updates')
def api_updates():
    """Get results of the last pass."""
    return jsonify({
        'last_check': last_check_time.isoformat() if last_check_time else None,
        'updates': last_updates
    })


@app.route('/api/v1/check', methods=['POST'])
@require_cluster
def api_check():
    """Trigger a reconciliation pass in the background."""
    if is_checking:
        return jsonify({'error': 'Check already in progress'}), 409

    threading.Thread(target=run_check).start()
    return jsonify({'status': 'started'})


@app.route('/api/v1/update')
@require_cluster
def api_update_image():
    """Set a workload container's image directly, bypassing update policies."""
    namespace = request.args.get('namespace', '').strip()
    name = (request.args.get('name') or request.args.get('service') or '').strip()
    container = request.args.get('container', '').strip()
    kind_value = (request.args.get('kind') or WorkloadKind.DEPLOYMENT.value).strip().lower()
    image = request.args.get('image', '').strip()

    if not namespace or not name or not image:
        return jsonify({'error': 'namespace, name, and image are required'}), 400

    try:
        kind = WorkloadKind(kind_value)
    except ValueError:
        return jsonify({'error': 'kind must be one of: deployment, statefulset, daemonset'}), 400

    try:
        parse(image)
    except InvalidReference as e:
        return jsonify({'error': str(e)}), 400

    try:
        result = cluster.set_image(kind, namespace, name, container, image)
    except ContainerNotFound as e:
        logger.error(f"Failed to update {kind.value} {namespace}/{name}: {e}")
        return jsonify({'error': str(e)}), 404
    except ApiException as e:
        logger.error(f"Failed to update {kind.value} {namespace}/{name}: {e.reason}")
        status = e.status if e.status in (404, 409) else 500
        return jsonify({'error': e.reason or str(e), 'status': e.status}), status
    except Exception as e:
        logger.error(f"Failed to update {kind.value} {namespace}/{name}: {e}")
        return jsonify({'error': str(e)}), 500

    if 'already up to date' in result:
        details = f"No change to {kind.value} {namespace}/{name}, image {image} already set"
    else:
        details = f"Updated {kind.value} {namespace}/{name} with image {image}"
    return jsonify({'message': result, 'details': details})


@socketio.on('connect')
def handle_connect(auth=None):
    """Handle client connection, rejecting clients without the API key."""
    api_key = request.headers.get('X-API-Key')
    if not api_key and isinstance(auth, dict):
        api_key = auth.get('api_key')
    if not _check_api_key(api_key):
        return False  # Reject connection

    emit('connected', {'status': 'Connected to image updater'})

    # Send current status
    emit('status_update', {
        'checking': is_checking,
        'daemon_running': daemon_running,
        'last_check': last_check_time.isoformat() if last_check_time else None
    })


def main():
    try:
        new_settings = load_settings(os.environ.get('CONFIG_FILE'))
    except Exception as e:
        logging.error(f"Invalid configuration: {e}")
        sys.exit(1)

    apply_timezone(new_settings.log_timezone)
    setup_logging(new_settings.log_level)

    try:
        new_cluster = ClusterClient.from_settings(new_settings.kubeconfig)
    except ClusterConfigError as e:
        logger.error(f"Cannot start: {e}")
        sys.exit(1)

    init(new_settings, new_cluster)
    if not settings.api_key:
        logger.warning("API_KEY is empty, the update API accepts unauthenticated requests")

    if settings.updater_enabled:
        logger.info("Auto-updater is enabled")
        start_daemon()
    else:
        logger.info("Auto-updater is disabled, only API service will be available")

    logger.info(f"Starting server on :{settings.api_port}")
    try:
        socketio.run(app, host='0.0.0.0', port=settings.api_port, allow_unsafe_werkzeug=True)
    finally:
        stop_daemon()


if __name__ == '__main__':
    main()
