"""Docker Registry HTTP API v2 client.

Lists tags and resolves manifest digests for an image reference, handling
the token (Bearer) and Basic authentication challenges registries answer
with.  One client is created per set of credentials; apart from a token
cache it holds no state.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional, Tuple

import requests

from image_ref import ImageReference, is_docker_hub, parse

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30
MANIFEST_ACCEPT_HEADER = (
    "application/vnd.docker.distribution.manifest.list.v2+json,"
    "application/vnd.docker.distribution.manifest.v2+json,"
    "application/vnd.oci.image.index.v1+json,"
    "application/vnd.oci.image.manifest.v1+json"
)

# index.docker.io is the canonical name, the API itself lives here
DOCKER_HUB_API_HOST = "registry-1.docker.io"


class RegistryError(Exception):
    """Error talking to a container registry."""

    def __init__(self, status: int, message: str):
        self.status = status
        self.message = message
        super().__init__(f"Registry error {status}: {message}")


@dataclass(frozen=True)
class Credentials:
    """Registry credentials; empty username and password mean anonymous."""
    username: str = ""
    password: str = ""

    @classmethod
    def anonymous(cls) -> "Credentials":
        return cls()

    @property
    def is_anonymous(self) -> bool:
        return not (self.username and self.password)

    def __repr__(self) -> str:
        # Never leak the password into logs
        return f"Credentials(username={self.username!r})"


def _json_object(response: requests.Response, what: str) -> Dict:
    """Decode a JSON object body, raising RegistryError for anything else."""
    try:
        data = response.json()
    except ValueError as e:
        raise RegistryError(response.status_code, f"invalid JSON in {what}: {e}") from e
    if not isinstance(data, dict):
        raise RegistryError(response.status_code,
                            f"unexpected {type(data).__name__} in {what}")
    return data


def api_base_url(registry: str) -> str:
    """Return the scheme://host base URL for a registry's v2 API."""
    host = DOCKER_HUB_API_HOST if is_docker_hub(registry) else registry
    hostname = host.rsplit(':', 1)[0] if not host.startswith('[') else host
    insecure = (
        hostname in ("localhost", "127.0.0.1", "[::1]")
        or hostname.startswith("127.")
        or hostname.endswith(".local")
        or hostname.endswith(".localhost")
    )
    return f"{'http' if insecure else 'https'}://{host}"


def parse_auth_challenge(header: Optional[str]) -> Tuple[str, Dict[str, str]]:
    """Parse a WWW-Authenticate header into (scheme, params)."""
    if not header:
        return "", {}
    scheme, _, params_str = header.partition(" ")

    params = {}
    for part in params_str.split(","):
        if "=" not in part:
            continue
        key, value = part.split("=", 1)
        params[key.strip()] = value.strip().strip('"')

    return scheme.lower(), params


class RegistryClient:
    """Client for a registry's v2 API, authenticated with one set of credentials."""

    def __init__(self, credentials: Optional[Credentials] = None,
                 timeout: int = REQUEST_TIMEOUT,
                 session: Optional[requests.Session] = None):
        self.credentials = credentials or Credentials.anonymous()
        self.timeout = timeout
        self.session = session or requests.Session()
        self._tokens: Dict[str, str] = {}

    def _basic_auth(self) -> Optional[Tuple[str, str]]:
        if self.credentials.is_anonymous:
            return None
        return (self.credentials.username, self.credentials.password)

    def _get_token(self, params: Dict[str, str], repository: str) -> str:
        """Request a bearer token from the challenge's realm."""
        realm = params.get("realm")
        if not realm:
            raise RegistryError(401, "Bearer challenge without realm")

        query = {"scope": params.get("scope", f"repository:{repository}:pull")}
        if params.get("service"):
            query["service"] = params["service"]

        try:
            response = self.session.get(realm, params=query, auth=self._basic_auth(),
                                        timeout=self.timeout)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 401
            raise RegistryError(status, f"token request to {realm} failed: {e}") from e
        except requests.RequestException as e:
            raise RegistryError(0, f"token request to {realm} failed: {e}") from e

        data = _json_object(response, f"token response from {realm}")
        token = data.get("token") or data.get("access_token")
        if not token:
            raise RegistryError(401, f"no token returned by {realm}")
        return token

    def _request(self, method: str, url: str, repository: str,
                 headers: Optional[Dict[str, str]] = None) -> requests.Response:
        """Send a request, answering one authentication challenge if needed."""
        headers = dict(headers or {})
        token = self._tokens.get(repository)
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = self.session.request(method, url, headers=headers, timeout=self.timeout)

            if response.status_code == 401:
                scheme, params = parse_auth_challenge(response.headers.get("WWW-Authenticate"))
                if scheme == "bearer":
                    token = self._get_token(params, repository)
                    self._tokens[repository] = token
                    headers["Authorization"] = f"Bearer {token}"
                    response = self.session.request(method, url, headers=headers,
                                                    timeout=self.timeout)
                elif scheme == "basic" and not self.credentials.is_anonymous:
                    headers.pop("Authorization", None)
                    response = self.session.request(method, url, headers=headers,
                                                    auth=self._basic_auth(),
                                                    timeout=self.timeout)
        except requests.RequestException as e:
            raise RegistryError(0, f"{method} {url} failed: {e}") from e

        if response.status_code >= 400:
            raise RegistryError(response.status_code,
                                f"{method} {url}: {response.text.strip()[:200]}")
        return response

    def list_tags(self, image: str) -> List[str]:
        """List every tag of the image's repository, following pagination."""
        ref = image if isinstance(image, ImageReference) else parse(image)
        base = api_base_url(ref.registry)
        url = f"{base}/v2/{ref.repository}/tags/list"

        tags: List[str] = []
        while url:
            response = self._request("GET", url, ref.repository)
            page = _json_object(response, f"tag list of {ref.context}")
            page_tags = page.get("tags") or []
            if not isinstance(page_tags, list):
                raise RegistryError(response.status_code,
                                    f"tag list of {ref.context} is not a list")
            tags.extend(page_tags)

            next_link = response.links.get("next", {}).get("url")
            if next_link and next_link.startswith("/"):
                next_link = base + next_link
            url = next_link

        logger.debug(f"Found {len(tags)} tags for {ref.context}")
        return tags

    def get_digest(self, image: str) -> str:
        """Return the manifest digest the reference currently resolves to."""
        ref = image if isinstance(image, ImageReference) else parse(image)
        url = f"{api_base_url(ref.registry)}/v2/{ref.repository}/manifests/{ref.identifier}"
        headers = {"Accept": MANIFEST_ACCEPT_HEADER}

        response = self._request("HEAD", url, ref.repository, headers)
        digest = response.headers.get("Docker-Content-Digest")
        if digest:
            return digest

        # Some registries omit the header on HEAD; hash the manifest instead
        response = self._request("GET", url, ref.repository, headers)
        digest = response.headers.get("Docker-Content-Digest")
        if digest:
            return digest
        return "sha256:" + hashlib.sha256(response.content).hexdigest()
