"""Registry credential lookup from image pull secrets.

Walks a workload's pull secrets in order and returns the first credentials
stored for the image's registry.  Every failure degrades to anonymous
access: registries that need no authentication must stay reachable even
when secret lookup is noisy.
"""

import base64
import binascii
import json
import logging
from typing import Any, Dict, List, Optional

from image_ref import DEFAULT_REGISTRY, is_docker_hub
from registry_api import Credentials

logger = logging.getLogger(__name__)

DOCKER_CONFIG_JSON_TYPE = "kubernetes.io/dockerconfigjson"
DOCKER_CONFIG_JSON_KEY = ".dockerconfigjson"


def normalize_host(key: str) -> str:
    """Reduce an ``auths`` key such as ``https://index.docker.io/v1/`` to a host."""
    host = key.strip()
    if "://" in host:
        host = host.split("://", 1)[1]
    host = host.split("/", 1)[0].lower()
    if is_docker_hub(host):
        return DEFAULT_REGISTRY
    return host


def find_auth_entry(auths: Dict[str, Any], registry: str) -> Optional[Dict[str, Any]]:
    """Return the auths entry for *registry*, exact key first, then by host."""
    if registry in auths:
        return auths[registry]
    wanted = normalize_host(registry)
    for key, entry in auths.items():
        if normalize_host(key) == wanted:
            return entry
    return None


def credentials_from_entry(entry: Dict[str, Any]) -> Credentials:
    """Extract username/password, preferring the base64 ``auth`` composite.

    Raises ValueError if ``auth`` is not valid base64.
    """
    username = entry.get("username") or ""
    password = entry.get("password") or ""
    auth = entry.get("auth")
    if auth:
        try:
            decoded = base64.b64decode(auth, validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError) as e:
            raise ValueError(f"invalid auth field: {e}")
        if ":" in decoded:
            username, password = decoded.split(":", 1)
    return Credentials(username, password)


class CredentialResolver:
    """Resolves registry credentials from a namespace's pull secrets."""

    def __init__(self, cluster):
        """
        Args:
            cluster: object with ``get_secret(namespace, name)`` (a ClusterClient)
        """
        self.cluster = cluster

    def _load_auths(self, namespace: str, secret_name: str) -> Optional[Dict[str, Any]]:
        try:
            secret = self.cluster.get_secret(namespace, secret_name)
        except Exception as e:
            logger.debug(f"Failed to get secret {secret_name} in namespace {namespace}, skipping: {e}")
            return None

        if secret.type != DOCKER_CONFIG_JSON_TYPE:
            logger.debug(f"Secret {secret_name} is not of type {DOCKER_CONFIG_JSON_TYPE}, skipping")
            return None

        data = (secret.data or {}).get(DOCKER_CONFIG_JSON_KEY)
        if not data:
            logger.warning(f"Secret {secret_name} does not contain {DOCKER_CONFIG_JSON_KEY} key, skipping")
            return None

        try:
            document = json.loads(base64.b64decode(data).decode("utf-8"))
        except (binascii.Error, UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning(f"Failed to decode docker config from secret {secret_name}, skipping: {e}")
            return None

        auths = document.get("auths") if isinstance(document, dict) else None
        if not isinstance(auths, dict):
            logger.debug(f"No 'auths' section in secret {secret_name}")
            return None
        return auths

    def resolve(self, registry: str, secret_names: List[str], namespace: str) -> Credentials:
        """Return the first matching credentials, or anonymous ones.

        Args:
            registry: Registry host of the image (e.g. 'ghcr.io')
            secret_names: Pull secret names, in the order they are tried
            namespace: Namespace the secrets live in

        Returns:
            Credentials (anonymous when nothing matches); never raises
        """
        for secret_name in secret_names or []:
            auths = self._load_auths(namespace, secret_name)
            if not auths:
                continue

            entry = find_auth_entry(auths, registry)
            if not isinstance(entry, dict):
                continue

            try:
                credentials = credentials_from_entry(entry)
            except ValueError as e:
                logger.warning(f"Failed to decode auth from secret {secret_name} "
                               f"for registry {registry}, skipping: {e}")
                continue

            logger.debug(f"Found credentials for registry {registry} in secret {secret_name}")
            return credentials

        logger.debug(f"No credentials found for registry {registry} in provided secrets, "
                     f"using anonymous access")
        return Credentials.anonymous()
