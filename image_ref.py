"""Container image reference parsing.

Parses ``[registry/]repository[:tag|@digest]`` strings into their parts and
formats them back.  Normalisation follows the usual Docker conventions: the
public registry is ``index.docker.io`` (``docker.io`` is an alias) and
single-component repositories on it live in the implicit ``library/``
namespace.
"""

import re
from dataclasses import dataclass
from typing import Optional

DEFAULT_REGISTRY = "index.docker.io"
DEFAULT_NAMESPACE = "library"
DEFAULT_TAG = "latest"

# Names the public registry is known by
DOCKER_HUB_ALIASES = ("docker.io", "index.docker.io", "registry-1.docker.io")

_REGISTRY_RE = re.compile(r"^(?:[a-zA-Z0-9](?:[a-zA-Z0-9.-]*[a-zA-Z0-9])?|\[[0-9a-fA-F:]+\])(?::[0-9]+)?$")
_COMPONENT_RE = re.compile(r"^[a-z0-9]+(?:(?:[._]|__|-+)[a-z0-9]+)*$")
_TAG_RE = re.compile(r"^[\w][\w.-]{0,127}$")
_DIGEST_RE = re.compile(r"^[a-z0-9]+(?:[.+_-][a-z0-9]+)*:[a-zA-Z0-9=_-]+$")


class InvalidReference(ValueError):
    """Raised when an image string is not a valid reference."""


@dataclass(frozen=True)
class ImageReference:
    """A parsed image reference.  Exactly one of tag/digest is set."""
    registry: str
    repository: str
    tag: Optional[str] = None
    digest: Optional[str] = None

    @property
    def context(self) -> str:
        """``registry/repository`` without tag or digest."""
        return f"{self.registry}/{self.repository}"

    @property
    def identifier(self) -> str:
        """The digest if the reference is digest-addressed, else the tag."""
        return self.digest or self.tag or DEFAULT_TAG

    def with_tag(self, tag: str) -> "ImageReference":
        return ImageReference(self.registry, self.repository, tag=tag)

    def with_digest(self, digest: str) -> "ImageReference":
        return ImageReference(self.registry, self.repository, digest=digest)

    def __str__(self) -> str:
        return format_reference(self)


def _split_registry(name: str):
    """Split a name into (registry, remainder) using the Docker heuristics."""
    if '/' in name:
        first, rest = name.split('/', 1)
        # Registry indicators: contains '.', has a port ':', or is localhost
        if '.' in first or ':' in first or first == 'localhost':
            return first, rest
    return DEFAULT_REGISTRY, name


def parse(image: str) -> ImageReference:
    """Parse an image string.

    Args:
        image: Reference such as ``nginx``, ``ghcr.io/org/app:v1`` or
            ``repo@sha256:...``

    Returns:
        Normalised ImageReference

    Raises:
        InvalidReference: if the string does not follow the reference grammar
    """
    if not isinstance(image, str) or not image.strip():
        raise InvalidReference("image reference is empty")
    if image != image.strip():
        raise InvalidReference(f"image reference {image!r} has surrounding whitespace")

    name = image
    tag = None
    digest = None

    if '@' in name:
        name, digest = name.split('@', 1)
        if not _DIGEST_RE.match(digest):
            raise InvalidReference(f"invalid digest {digest!r} in {image!r}")

    # Tag separator only counts after the last slash (registry:port otherwise)
    last_colon = name.rfind(':')
    if last_colon > name.rfind('/'):
        name, tag = name[:last_colon], name[last_colon + 1:]
        if not _TAG_RE.match(tag):
            raise InvalidReference(f"invalid tag {tag!r} in {image!r}")

    registry, repository = _split_registry(name)
    if not _REGISTRY_RE.match(registry):
        raise InvalidReference(f"invalid registry {registry!r} in {image!r}")
    if registry in ("docker.io", "index.docker.io"):
        registry = DEFAULT_REGISTRY

    if not repository:
        raise InvalidReference(f"missing repository in {image!r}")
    for component in repository.split('/'):
        if not _COMPONENT_RE.match(component):
            raise InvalidReference(f"invalid repository name {repository!r} in {image!r}")

    if registry == DEFAULT_REGISTRY and '/' not in repository:
        repository = f"{DEFAULT_NAMESPACE}/{repository}"

    if digest:
        # Digest-addressed: any tag alongside it is dropped
        return ImageReference(registry, repository, digest=digest)
    return ImageReference(registry, repository, tag=tag or DEFAULT_TAG)


def format_reference(ref: ImageReference, tag: Optional[str] = None,
                     digest: Optional[str] = None) -> str:
    """Build ``registry/repository@digest`` or ``registry/repository:tag``.

    Overrides take precedence over the reference's own tag/digest; a digest
    (override or own) always wins over a tag.
    """
    if digest:
        return f"{ref.context}@{digest}"
    if tag:
        return f"{ref.context}:{tag}"
    if ref.digest:
        return f"{ref.context}@{ref.digest}"
    return f"{ref.context}:{ref.tag or DEFAULT_TAG}"


def is_docker_hub(registry: str) -> bool:
    return registry in DOCKER_HUB_ALIASES
