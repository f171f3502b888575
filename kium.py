#!/usr/bin/env python3
"""
Kubernetes Image Update Manager

Periodically checks the containers of annotated Deployments, StatefulSets
and DaemonSets against their registries and rolls them forward according
to a per-workload update policy (release, alphabetical, digest or latest).
"""

__version__ = "1.0.0"

import argparse
import json
import logging
import os
import re
import signal
import sys
import threading
import time
import traceback
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field, replace
from typing import Any, Callable, Dict, List, Optional

import jsonschema
import requests
from kubernetes.client import V1ObjectMeta
from kubernetes.client.exceptions import ApiException

from credentials import CredentialResolver
from image_ref import InvalidReference, format_reference, parse
from kube_api import (
    PULL_ALWAYS, RESTART_ANNOTATION, ClusterClient, ClusterConfigError,
    WorkloadKind, restart_timestamp,
)
from registry_api import REQUEST_TIMEOUT, RegistryClient, RegistryError
from tag_utils import (
    REGEXP_PREFIX, InvalidFilterPattern, filter_by_regex, regex_from_spec,
    sort_alphabetical_descending, sort_version_descending,
)

IS_WINDOWS = os.name == 'nt'

# Apply TZ from environment (default UTC) before any logging is configured
os.environ.setdefault('TZ', os.environ.get('LOG_TIMEZONE', 'UTC'))
if not IS_WINDOWS:
    time.tzset()


# Constants
ANNOTATION_PREFIX = "image-updater.k8s.io/"
ANNOTATION_ENABLED = ANNOTATION_PREFIX + "enabled"
ANNOTATION_MODE = ANNOTATION_PREFIX + "mode"
ANNOTATION_CONTAINER = ANNOTATION_PREFIX + "container"
ANNOTATION_ALLOW_TAGS = ANNOTATION_PREFIX + "allow-tags"
ANNOTATION_LAST_DIGEST = ANNOTATION_PREFIX + "last-digest"

MODE_RELEASE = "release"
MODE_ALPHABETICAL = "alphabetical"
MODE_NAME = "name"
MODE_DIGEST = "digest"
MODE_LATEST = "latest"
MODES = (MODE_RELEASE, MODE_ALPHABETICAL, MODE_NAME, MODE_DIGEST, MODE_LATEST)

DEFAULT_MODE = MODE_RELEASE
DEFAULT_DIGEST_TAG = "latest"
DEFAULT_INTERVAL = "5m"

# Kinds in the order a pass visits them
WORKLOAD_KINDS = (WorkloadKind.DEPLOYMENT, WorkloadKind.STATEFULSET, WorkloadKind.DAEMONSET)

# Configuration schema
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "api_port": {"type": "integer", "minimum": 1, "maximum": 65535},
        "api_key": {"type": "string"},
        "kubeconfig": {"type": "string"},
        "log_level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR"]
        },
        "log_timezone": {"type": "string"},
        "updater_enabled": {"type": "boolean"},
        "interval": {"type": ["string", "integer"]},
        "allowed_namespaces": {
            "type": "array",
            "items": {"type": "string"}
        },
        "dry_run": {"type": "boolean"},
        "max_workers": {"type": "integer", "minimum": 1}
    },
    "additionalProperties": False
}

_DURATION_PART_RE = re.compile(r"(\d+(?:\.\d*)?|\.\d+)(ns|us|µs|ms|s|m|h)")
_DURATION_UNITS = {
    "ns": 1e-9, "us": 1e-6, "µs": 1e-6, "ms": 1e-3,
    "s": 1.0, "m": 60.0, "h": 3600.0,
}


def parse_duration(value) -> float:
    """Parse a duration such as ``5m``, ``1h30m``, ``45s`` or ``300`` into seconds.

    Raises ValueError for malformed or non-positive durations.
    """
    if isinstance(value, bool):
        raise ValueError(f"Invalid duration: {value!r}")
    if isinstance(value, (int, float)):
        seconds = float(value)
    else:
        text = str(value).strip()
        if re.fullmatch(r"\d+(?:\.\d+)?", text):
            seconds = float(text)
        else:
            pos = 0
            seconds = 0.0
            for match in _DURATION_PART_RE.finditer(text):
                if match.start() != pos:
                    break
                seconds += float(match.group(1)) * _DURATION_UNITS[match.group(2)]
                pos = match.end()
            if pos != len(text) or not text:
                raise ValueError(f"Invalid duration: {value!r}")
    if seconds <= 0:
        raise ValueError(f"Duration must be positive: {value!r}")
    return seconds


def _parse_bool(value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in ('true', '1', 'yes', 'on'):
        return True
    if lowered in ('false', '0', 'no', 'off', ''):
        return False
    raise ValueError(f"Invalid boolean: {value!r}")


def _split_namespaces(value: str) -> List[str]:
    return [ns.strip() for ns in value.split(',') if ns.strip()]


@dataclass
class Settings:
    """Process configuration, passed explicitly to the components that need it."""
    api_port: int = 8080
    api_key: str = ""
    kubeconfig: str = ""
    log_level: str = "INFO"
    log_timezone: str = "UTC"
    updater_enabled: bool = True
    interval: float = parse_duration(DEFAULT_INTERVAL)
    allowed_namespaces: List[str] = field(default_factory=list)
    dry_run: bool = False
    max_workers: int = 1

    def namespace_allowed(self, namespace: str) -> bool:
        return not self.allowed_namespaces or namespace in self.allowed_namespaces


# Environment variable -> (setting, converter)
ENV_SETTINGS = {
    'API_PORT': ('api_port', int),
    'API_KEY': ('api_key', str),
    'KUBECONFIG': ('kubeconfig', str),
    'LOG_LEVEL': ('log_level', str),
    'LOG_TIMEZONE': ('log_timezone', str),
    'UPDATER_ENABLED': ('updater_enabled', _parse_bool),
    'IMAGE_UPDATE_INTERVAL': ('interval', parse_duration),
    'ALLOWED_NAMESPACES': ('allowed_namespaces', _split_namespaces),
    'DRY_RUN': ('dry_run', _parse_bool),
    'MAX_WORKERS': ('max_workers', int),
}


def load_settings(config_file: Optional[str] = None,
                  env: Optional[Dict[str, str]] = None,
                  **overrides) -> Settings:
    """Build Settings from defaults, a JSON config file, the environment and overrides.

    Args:
        config_file: Optional path to a JSON config file validated against CONFIG_SCHEMA
        env: Environment mapping (defaults to os.environ)
        **overrides: Highest-precedence values (e.g. from CLI flags); None is ignored

    Raises:
        FileNotFoundError, json.JSONDecodeError, jsonschema.ValidationError, ValueError
    """
    env = os.environ if env is None else env
    values: Dict[str, Any] = {}

    if config_file:
        with open(config_file, 'r') as f:
            data = json.load(f)
        jsonschema.validate(data, CONFIG_SCHEMA)
        values.update(data)
        if 'interval' in values:
            values['interval'] = parse_duration(values['interval'])

    for var, (name, convert) in ENV_SETTINGS.items():
        raw = env.get(var)
        if raw is None or (raw == '' and name not in ('api_key', 'allowed_namespaces')):
            continue
        try:
            values[name] = convert(raw)
        except ValueError as e:
            raise ValueError(f"Invalid value for {var}: {e}")

    for name, value in overrides.items():
        if value is None:
            continue
        values[name] = parse_duration(value) if name == 'interval' else value

    settings = Settings(**values)
    settings.log_level = settings.log_level.upper()
    if settings.max_workers < 1:
        raise ValueError("max_workers must be at least 1")
    return settings


def apply_timezone(tz: str) -> None:
    """Switch the process timezone used for log timestamps."""
    if tz and os.environ.get('TZ') != tz:
        os.environ['TZ'] = tz
        if not IS_WINDOWS:
            time.tzset()


def setup_logging(level: str = "INFO") -> logging.Logger:
    """Setup the 'kium' logger; module loggers propagate into it."""
    logger = logging.getLogger('kium')
    numeric = getattr(logging, level.upper(), None)
    if not isinstance(numeric, int):
        numeric = logging.INFO
    logger.setLevel(numeric)
    logger.propagate = False

    handler = next((h for h in logger.handlers if type(h) is logging.StreamHandler), None)
    if handler is None:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S %Z'
        )
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # Library modules log under their own names; route them to the same handler
    for name in ('credentials', 'registry_api', 'kube_api', 'image_ref', 'tag_utils'):
        module_logger = logging.getLogger(name)
        module_logger.setLevel(numeric)
        module_logger.propagate = False
        module_logger.handlers = [handler]

    if numeric != getattr(logging, level.upper(), None):
        logger.warning(f"Invalid log level {level}, using INFO")

    return logger


@dataclass(frozen=True)
class UpdatePolicy:
    """Update policy of one workload, read fresh from its annotations every pass."""
    enabled: bool = False
    mode: str = DEFAULT_MODE
    container_filter: Optional[str] = None
    allow_tags_spec: Optional[str] = None
    secret_refs: tuple = ()
    last_digest: Optional[str] = None

    @classmethod
    def from_metadata(cls, annotations: Optional[Dict[str, str]],
                      labels: Optional[Dict[str, str]] = None,
                      secret_refs=()) -> "UpdatePolicy":
        annotations = annotations or {}
        labels = labels or {}
        enabled = (annotations.get(ANNOTATION_ENABLED) == "true"
                   or labels.get(ANNOTATION_ENABLED) == "true")
        return cls(
            enabled=enabled,
            mode=(annotations.get(ANNOTATION_MODE) or DEFAULT_MODE).strip(),
            container_filter=annotations.get(ANNOTATION_CONTAINER) or None,
            allow_tags_spec=annotations.get(ANNOTATION_ALLOW_TAGS) or None,
            secret_refs=tuple(secret_refs),
            last_digest=annotations.get(ANNOTATION_LAST_DIGEST) or None,
        )

    @classmethod
    def from_workload(cls, obj) -> "UpdatePolicy":
        """Derive the policy of a workload object (Deployment/StatefulSet/DaemonSet)."""
        pod_spec = obj.spec.template.spec
        secret_refs = [s.name for s in (pod_spec.image_pull_secrets or []) if s.name]
        return cls.from_metadata(obj.metadata.annotations, obj.metadata.labels, secret_refs)

    @property
    def digest_tag(self) -> str:
        """Tag watched in digest mode: a literal allow-tags value, else 'latest'."""
        if self.allow_tags_spec and not self.allow_tags_spec.startswith(REGEXP_PREFIX):
            return self.allow_tags_spec
        return DEFAULT_DIGEST_TAG


@dataclass(frozen=True)
class Mutations:
    """Changes the evaluator wants applied to one container's workload."""
    new_image: Optional[str] = None
    last_digest: Optional[str] = None
    restarted_at: Optional[str] = None

    @property
    def update_needed(self) -> bool:
        return bool(self.new_image or self.last_digest or self.restarted_at)


NO_CHANGE = Mutations()


class UpdateEvaluator:
    """Decides, for one container and its policy, what should change."""

    def __init__(self, resolver: CredentialResolver,
                 registry_factory: Callable[..., RegistryClient] = RegistryClient,
                 timeout: int = REQUEST_TIMEOUT):
        self.resolver = resolver
        self.registry_factory = registry_factory
        self.timeout = timeout
        self.logger = logging.getLogger('kium.evaluator')

    def evaluate(self, container, policy: UpdatePolicy, namespace: str) -> Mutations:
        """Evaluate one container.

        Args:
            container: object with ``name``, ``image`` and ``image_pull_policy``
            policy: Policy snapshot of the owning workload
            namespace: Namespace of the workload (for pull secrets)

        Returns:
            Mutations to apply; NO_CHANGE when nothing needs to happen

        Raises:
            InvalidReference, InvalidFilterPattern: malformed image or allow-tags
            RegistryError: the registry could not be queried
        """
        if not policy.enabled:
            self.logger.debug(f"Auto-update not enabled for container {container.name}")
            return NO_CHANGE

        if policy.container_filter and policy.container_filter != container.name:
            self.logger.debug(f"Container {container.name} does not match target "
                              f"container {policy.container_filter}")
            return NO_CHANGE

        mode = policy.mode
        if mode not in MODES:
            self.logger.warning(f"Unknown update mode: {mode}")
            return NO_CHANGE

        ref = parse(container.image)
        credentials = self.resolver.resolve(ref.registry, list(policy.secret_refs), namespace)
        registry = self.registry_factory(credentials, timeout=self.timeout)

        self.logger.debug(f"Using update mode {mode} for container {container.name}")

        if mode == MODE_LATEST:
            return self._check_latest(container, ref, registry, policy)
        if mode == MODE_DIGEST:
            return self._check_digest(ref, registry, policy)
        if mode in (MODE_ALPHABETICAL, MODE_NAME):
            return self._check_tags(ref, registry, policy, sort_alphabetical_descending)
        return self._check_tags(ref, registry, policy, sort_version_descending)

    def _check_tags(self, ref, registry, policy: UpdatePolicy, order) -> Mutations:
        """release/alphabetical: move to the top tag of the ordered, filtered list."""
        tags = registry.list_tags(ref)
        self.logger.debug(f"Found {len(tags)} tags for image {ref.context}")

        pattern = regex_from_spec(policy.allow_tags_spec)
        filtered = filter_by_regex(tags, pattern)
        if pattern:
            self.logger.debug(f"Filtered {len(tags)} tags to {len(filtered)} with regex: {pattern}")

        ordered = order(filtered)
        if ordered and ordered[0] != ref.tag:
            self.logger.debug(f"Current tag: {ref.tag}, Latest tag: {ordered[0]}")
            return Mutations(new_image=format_reference(ref, tag=ordered[0]))
        return NO_CHANGE

    def _check_digest(self, ref, registry, policy: UpdatePolicy) -> Mutations:
        """digest: pin the image to the digest the watched tag points at."""
        watched = ref.with_tag(policy.digest_tag)
        new_digest = registry.get_digest(watched)
        self.logger.debug(f"Checking digest for {watched}. Current digest: {ref.digest}, "
                          f"New digest from registry: {new_digest}")
        if new_digest != ref.digest:
            # Digest-addressed result; the tag is not preserved
            return Mutations(new_image=format_reference(ref, digest=new_digest))
        return NO_CHANGE

    def _check_latest(self, container, ref, registry, policy: UpdatePolicy) -> Mutations:
        """latest: restart when the digest behind an unchanged image string moves."""
        if container.image_pull_policy != PULL_ALWAYS:
            self.logger.warning(f"Container {container.name} is in latest mode but "
                                f"imagePullPolicy is not Always, skipping update")
            return NO_CHANGE

        new_digest = registry.get_digest(ref)
        if not policy.last_digest:
            # First observation: record the digest without a restart
            self.logger.debug(f"First time seeing image {container.image}, storing digest {new_digest}")
            return Mutations(last_digest=new_digest)

        if new_digest != policy.last_digest:
            self.logger.info(f"New digest detected for {container.image}: "
                             f"{policy.last_digest} -> {new_digest}")
            return Mutations(last_digest=new_digest, restarted_at=restart_timestamp())
        return NO_CHANGE


def apply_mutations(obj, container, mutations: Mutations) -> None:
    """Apply evaluator output to the in-memory workload object."""
    if mutations.new_image:
        container.image = mutations.new_image
    if mutations.last_digest:
        if obj.metadata.annotations is None:
            obj.metadata.annotations = {}
        obj.metadata.annotations[ANNOTATION_LAST_DIGEST] = mutations.last_digest
    if mutations.restarted_at:
        template = obj.spec.template
        if template.metadata is None:
            template.metadata = V1ObjectMeta()
        if template.metadata.annotations is None:
            template.metadata.annotations = {}
        template.metadata.annotations[RESTART_ANNOTATION] = mutations.restarted_at


class ImageUpdater:
    """Runs reconciliation passes over every enabled workload in the cluster."""

    def __init__(self, settings: Settings, cluster: ClusterClient,
                 evaluator: Optional[UpdateEvaluator] = None):
        """
        Initialize the updater.

        Args:
            settings: Process configuration
            cluster: Cluster access (list/replace workloads, read secrets)
            evaluator: Policy evaluator; built from the cluster's secrets by default
        """
        self.settings = settings
        self.cluster = cluster
        self.evaluator = evaluator or UpdateEvaluator(CredentialResolver(cluster))
        self.logger = logging.getLogger('kium')

    @property
    def dry_run(self) -> bool:
        return self.settings.dry_run

    def is_selected(self, obj) -> bool:
        """Whether a workload takes part in the pass at all."""
        meta = obj.metadata
        annotations = meta.annotations or {}
        labels = meta.labels or {}
        if annotations.get(ANNOTATION_ENABLED) != "true" and labels.get(ANNOTATION_ENABLED) != "true":
            self.logger.debug(f"{meta.namespace}/{meta.name} is not enabled for auto-update")
            return False
        if not self.settings.namespace_allowed(meta.namespace):
            self.logger.debug(f"{meta.namespace}/{meta.name} skipped: namespace not allowed")
            return False
        return True

    def _evaluate_container(self, kind: WorkloadKind, obj, container,
                            policy: UpdatePolicy, progress_callback=None) -> Optional[Mutations]:
        """Evaluate one container, confining any failure to it."""
        meta = obj.metadata
        where = f"{container.name} in {kind.value} {meta.namespace}/{meta.name}"
        try:
            return self.evaluator.evaluate(container, policy, meta.namespace)
        except (InvalidReference, InvalidFilterPattern) as e:
            self.logger.warning(f"Skipping container {where}: {e}")
            error = str(e)
        except (RegistryError, ApiException, requests.RequestException) as e:
            self.logger.error(f"Failed to update container {where}: {e}")
            error = str(e)
        except Exception as e:
            self.logger.error(f"Unexpected error checking container {where}: {e}\n"
                              f"{traceback.format_exc()}")
            error = str(e)

        if progress_callback:
            progress_callback('check_error', {
                'kind': kind.value, 'namespace': meta.namespace,
                'name': meta.name, 'container': container.name, 'error': error,
            })
        return None

    def reconcile_workload(self, kind: WorkloadKind, obj,
                           progress_callback=None) -> List[Dict[str, Any]]:
        """Evaluate every container of one workload and write it back once if changed."""
        meta = obj.metadata
        self.logger.debug(f"Checking {kind.value} {meta.namespace}/{meta.name}")
        if progress_callback:
            progress_callback('checking_workload', {
                'kind': kind.value, 'namespace': meta.namespace, 'name': meta.name,
            })

        policy = UpdatePolicy.from_workload(obj)
        updates = []

        for container in obj.spec.template.spec.containers or []:
            mutations = self._evaluate_container(kind, obj, container, policy, progress_callback)
            if not mutations or not mutations.update_needed:
                continue

            old_image = container.image
            apply_mutations(obj, container, mutations)
            if mutations.last_digest:
                # Later containers must see the digest recorded by this one
                policy = replace(policy, last_digest=mutations.last_digest)

            if mutations.new_image:
                self.logger.info(f"Updating image for container {container.name} "
                                 f"from {old_image} to {mutations.new_image}")
            update_info = {
                'kind': kind.value,
                'namespace': meta.namespace,
                'name': meta.name,
                'container': container.name,
                'mode': policy.mode,
                'old_image': old_image,
                'new_image': container.image,
                'restart': bool(mutations.restarted_at),
                'last_digest': mutations.last_digest,
            }
            updates.append(update_info)
            self.logger.info(f"Container {container.name} in {kind.value} "
                             f"{meta.namespace}/{meta.name} needs update")
            if progress_callback:
                progress_callback('update_found', update_info)

        if not updates:
            self.logger.debug(f"No updates needed for {kind.value} {meta.namespace}/{meta.name}")
            return updates

        if self.dry_run:
            self.logger.info(f"[DRY RUN] Would update {kind.value} {meta.namespace}/{meta.name}")
            for update in updates:
                update['applied'] = False
            return updates

        self.logger.info(f"Updating {kind.value} {meta.namespace}/{meta.name}")
        try:
            self.cluster.replace_workload(kind, obj)
        except Exception as e:
            if isinstance(e, ApiException) and e.status == 409:
                self.logger.error(f"Failed to update {kind.value} {meta.namespace}/{meta.name}: "
                                  f"object changed concurrently, retrying next cycle")
            else:
                self.logger.error(f"Failed to update {kind.value} {meta.namespace}/{meta.name}: {e}")
            if progress_callback:
                progress_callback('write_error', {
                    'kind': kind.value, 'namespace': meta.namespace,
                    'name': meta.name, 'error': str(e),
                })
            for update in updates:
                update['applied'] = False
            return updates

        for update in updates:
            update['applied'] = True
        return updates

    def check_and_update(self, progress_callback=None) -> List[Dict[str, Any]]:
        """Run one full reconciliation pass.

        Args:
            progress_callback: Optional function(event_type, data) called for progress updates

        Returns:
            One dict per container that needed an update
        """
        if self.dry_run:
            self.logger.info("=== DRY RUN MODE ===")
        self.logger.debug("Starting periodic check for image updates")

        updates_found: List[Dict[str, Any]] = []
        for kind in WORKLOAD_KINDS:
            try:
                objects = self.cluster.list_workloads(kind)
            except Exception as e:
                self.logger.error(f"Failed to list {kind.value}s: {e}")
                if progress_callback:
                    progress_callback('check_error', {'kind': kind.value, 'error': str(e)})
                continue
            self.logger.debug(f"Found {len(objects)} {kind.value}s in total")

            selected = [obj for obj in objects if self.is_selected(obj)]

            if self.settings.max_workers > 1 and len(selected) > 1:
                max_workers = min(self.settings.max_workers, len(selected))
                with ThreadPoolExecutor(max_workers=max_workers) as executor:
                    futures = [executor.submit(self.reconcile_workload, kind, obj, progress_callback)
                               for obj in selected]
                    for future in futures:
                        updates_found.extend(future.result())
            else:
                for obj in selected:
                    updates_found.extend(self.reconcile_workload(kind, obj, progress_callback))

        # Summary
        if updates_found:
            self.logger.info("=== Update Summary ===")
            for update in updates_found:
                self.logger.info(
                    f"{update['kind']} {update['namespace']}/{update['name']} "
                    f"[{update['container']}]: {update['old_image']} -> {update['new_image']}"
                    + (" (restart)" if update['restart'] else "")
                )
        else:
            self.logger.info("No updates found")
        self.logger.debug("Completed periodic check for image updates")

        return updates_found

    def run_forever(self, stop_event: threading.Event, progress_callback=None) -> None:
        """Run passes back to back, waiting the configured interval in between.

        A pass always runs to completion; once *stop_event* is set no new
        pass is started.
        """
        self.logger.info(f"Running in daemon mode, checking every {self.settings.interval:g} seconds")
        while not stop_event.is_set():
            try:
                self.check_and_update(progress_callback)
            except Exception as e:
                self.logger.error(f"Error during update check: {e}")
            self.logger.debug(f"Sleeping for {self.settings.interval:g} seconds...")
            if stop_event.wait(timeout=self.settings.interval):
                break
        self.logger.info("Updater stopped")


def main():
    parser = argparse.ArgumentParser(
        description='Kubernetes image updater driven by workload annotations'
    )
    parser.add_argument(
        '--config',
        default=os.environ.get('CONFIG_FILE'),
        help='Path to an optional JSON configuration file (env: CONFIG_FILE)'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        default=None,
        help='Show what would be done without writing to the cluster (env: DRY_RUN)'
    )
    parser.add_argument(
        '--daemon',
        action='store_true',
        default=os.environ.get('DAEMON', '').lower() == 'true',
        help='Run continuously, checking at intervals (env: DAEMON)'
    )
    parser.add_argument(
        '--interval',
        help='Check interval when running as daemon, e.g. 5m or 300 (env: IMAGE_UPDATE_INTERVAL, default: 5m)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        help='Logging level (env: LOG_LEVEL, default: INFO)'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')

    args = parser.parse_args()

    try:
        settings = load_settings(
            args.config,
            dry_run=args.dry_run,
            interval=args.interval,
            log_level=args.log_level,
        )
        apply_timezone(settings.log_timezone)
        logger = setup_logging(settings.log_level)

        cluster = ClusterClient.from_settings(settings.kubeconfig)
        updater = ImageUpdater(settings, cluster)

        if not args.daemon:
            updater.check_and_update()
            return

        if not settings.updater_enabled:
            logger.info("Auto-updater is disabled, nothing to do")
            return

        stop_event = threading.Event()
        signal.signal(signal.SIGTERM, lambda signum, frame: stop_event.set())
        try:
            updater.run_forever(stop_event)
        except KeyboardInterrupt:
            logger.info("Exiting...")
            stop_event.set()

    except ClusterConfigError as e:
        logging.error(f"Cannot start: {e}")
        sys.exit(1)
    except Exception as e:
        logging.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == '__main__':
    main()
