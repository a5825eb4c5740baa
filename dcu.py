#!/usr/bin/env python3
"""
Docker Compose service updater

Updates only the compose services whose running container was started
from an image that is no longer what the declared image reference
resolves to after a fresh pull.  Up-to-date services are left alone;
stale ones get a stop / remove / start cycle.  Services are processed
in parallel with a small concurrency ceiling so the daemon is not
flooded with pulls.
"""

__version__ = "1.0.0"

import argparse
import json
import logging
import os
import sys
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import jsonschema

from compose_project import ComposeError, ComposeProject, compose_file_exists
from docker_api import DockerAPIError, DockerClient

logger = logging.getLogger('dcu')

# Constants
DEFAULT_COMPOSE_FILE = "docker-compose.yml"
DEFAULT_CONCURRENCY = 3
DEFAULT_TAG = "latest"
DOCKER_HUB_PREFIXES = ("docker.io/", "index.docker.io/", "registry-1.docker.io/")
CI_ENV_VARS = (
    "CI", "CONTINUOUS_INTEGRATION", "BUILD_NUMBER", "JENKINS_URL",
    "TRAVIS", "CIRCLECI", "GITHUB_ACTIONS", "GITLAB_CI", "BUILDKITE",
)
RESTART_STEPS = ("stop", "remove", "start")

# Verdicts
NOT_RUNNING = "not_running"
UP_TO_DATE = "up_to_date"
STALE = "stale"

# Outcome actions
ACTION_NONE = "none"
ACTION_RESTARTED = "restarted"
ACTION_FAILED = "failed"

# Configuration schema
CONFIG_SCHEMA = {
    "type": "object",
    "properties": {
        "compose_file": {"type": "string"},
        "services": {
            "type": "array",
            "items": {"type": "string", "minLength": 1}
        },
        "build": {
            "type": "array",
            "items": {"type": "string", "minLength": 1}
        },
        "show_warnings": {"type": "boolean"},
        "non_interactive": {"type": "boolean"},
        "dry_run": {"type": "boolean"},
        "concurrency": {"type": "integer", "minimum": 1},
        "log_level": {
            "type": "string",
            "enum": ["DEBUG", "INFO", "WARNING", "ERROR"]
        }
    },
    "additionalProperties": False
}


# ── Errors ────────────────────────────────────────────────────────

class DcUpdateError(Exception):
    """Base class for dc-update errors."""


class ManifestError(DcUpdateError):
    """Service unknown to the compose file, or declared without an image."""


class RuntimeUnavailable(DcUpdateError):
    """The Docker daemon or the docker CLI cannot be reached."""


class NotFoundError(DcUpdateError):
    """A container or image the runtime was asked about does not exist."""


class DockerRuntimeError(DcUpdateError):
    """The runtime was reachable but refused or failed an operation."""


class StepFailure(DcUpdateError):
    """One step of the stop / remove / start cycle failed."""

    def __init__(self, service: str, step: str, cause: Exception):
        self.service = service
        self.step = step
        self.cause = cause
        super().__init__(f"failed to {step} container {service}: {cause}")


class AggregateFailure(DcUpdateError):
    """One or more services failed during a run."""

    def __init__(self, failures: List['UpdateOutcome']):
        self.failures = list(failures)
        names = ", ".join(o.service for o in self.failures)
        super().__init__(f"{len(self.failures)} service(s) failed to update: {names}")

    @property
    def first(self) -> Optional['UpdateOutcome']:
        return self.failures[0] if self.failures else None


# ── Identities and references ─────────────────────────────────────

def normalize_identity(identity: Optional[str]) -> str:
    """Strip the hash-scheme prefix so ``sha256:abc`` and ``abc`` compare equal."""
    if not identity:
        return ""
    identity = identity.strip().lower()
    scheme, sep, digest = identity.partition(':')
    if sep and scheme.isalnum() and '/' not in scheme:
        return digest
    return identity


def normalize_reference(reference: str) -> str:
    """Canonical form of an image reference for cache keys.

    Drops Docker Hub registry prefixes and the implicit ``library/``
    namespace, and adds ``:latest`` when neither a tag nor a digest is
    given, so ``nginx`` and ``docker.io/library/nginx:latest`` are the
    same key.  A tag written beside a digest is dropped.
    """
    ref = reference.strip()
    for prefix in DOCKER_HUB_PREFIXES:
        if ref.startswith(prefix):
            ref = ref[len(prefix):]
            break
    if ref.startswith('library/') and ref.count('/') == 1:
        ref = ref[len('library/'):]

    if '@' in ref:
        # The daemon records ``name@digest``; a tag beside a digest is ignored.
        name, digest = ref.split('@', 1)
        if name.rfind(':') > name.rfind('/'):
            name = name[:name.rfind(':')]
        return f"{name}@{digest}"

    # Only a colon after the last slash is a tag; earlier ones are ports.
    if ref.rfind(':') <= ref.rfind('/'):
        ref = f"{ref}:{DEFAULT_TAG}"
    return ref


@dataclass(frozen=True)
class ContainerDescriptor:
    """What the core needs to know about a running container."""
    id: str
    image_id: str


@dataclass(frozen=True)
class KnownImage:
    """A locally known image and every reference that points at it."""
    identity: str
    references: Tuple[str, ...] = ()


# ── Verdicts and outcomes ─────────────────────────────────────────

@dataclass(frozen=True)
class StalenessVerdict:
    """Point-in-time comparison of a service's running and target image."""
    kind: str
    current: str = ""
    target: str = ""

    def __post_init__(self):
        if self.kind not in (NOT_RUNNING, UP_TO_DATE, STALE):
            raise ValueError(f"Unknown verdict: {self.kind!r}")
        if self.kind == STALE and (not self.current or not self.target
                                   or self.current == self.target):
            raise ValueError("A stale verdict needs two different, non-empty identities")

    @classmethod
    def not_running(cls) -> 'StalenessVerdict':
        return cls(NOT_RUNNING)

    @classmethod
    def up_to_date(cls, current: str = "", target: str = "") -> 'StalenessVerdict':
        return cls(UP_TO_DATE, current, target)

    @classmethod
    def stale(cls, current: str, target: str) -> 'StalenessVerdict':
        return cls(STALE, current, target)

    @property
    def is_stale(self) -> bool:
        return self.kind == STALE

    def __str__(self) -> str:
        if self.is_stale:
            return f"stale ({self.current[:12]} -> {self.target[:12]})"
        return self.kind.replace('_', ' ')


@dataclass
class UpdateOutcome:
    """Terminal result of one service's orchestration."""
    service: str
    verdict: Optional[StalenessVerdict]
    action: str
    error: Optional[Exception] = None

    @property
    def failed(self) -> bool:
        return self.action == ACTION_FAILED


@dataclass
class RunReport:
    """All outcomes of a run, keyed by service name."""
    outcomes: Dict[str, UpdateOutcome] = field(default_factory=dict)
    overall_error: Optional[AggregateFailure] = None

    @property
    def ok(self) -> bool:
        return self.overall_error is None

    @property
    def restarted(self) -> List[str]:
        return [s for s, o in self.outcomes.items() if o.action == ACTION_RESTARTED]

    @property
    def failures(self) -> List[UpdateOutcome]:
        return self.overall_error.failures if self.overall_error else []


# ── Identity cache ────────────────────────────────────────────────

class ImageIdentityCache:
    """Memoizes image and container lookups against the runtime driver.

    The image index is built from one full listing of local images and
    swapped in whole under ``_image_lock``; ``invalidate_images()`` drops
    it so the next lookup rebuilds it.  Lookups never see a partially
    built index, and a lookup that starts after an invalidation always
    sees a listing taken after it.

    Container descriptors are cached for the lifetime of the cache.  A
    container only changes image by being replaced, which gives it a new
    id.
    """

    def __init__(self, runtime):
        self.runtime = runtime
        self._image_lock = threading.Lock()
        self._images: Optional[Tuple[Dict[str, str], Dict[str, str]]] = None
        self._container_lock = threading.Lock()
        self._containers: Dict[str, ContainerDescriptor] = {}

    def _build_image_index(self) -> Tuple[Dict[str, str], Dict[str, str]]:
        by_reference: Dict[str, str] = {}
        by_identity: Dict[str, str] = {}
        for image in self.runtime.list_known_images():
            identity = normalize_identity(image.identity)
            if not identity:
                continue
            by_identity[identity] = identity
            for reference in image.references:
                by_reference[normalize_reference(reference)] = identity
        logger.debug(
            f"Indexed {len(by_identity)} local image(s) under {len(by_reference)} reference(s)"
        )
        return by_reference, by_identity

    def image_identity(self, reference: str) -> Optional[str]:
        """Identity the reference (or image id) resolves to locally, or None."""
        if not reference:
            return None
        with self._image_lock:
            if self._images is None:
                self._images = self._build_image_index()
            by_reference, by_identity = self._images
        identity = by_reference.get(normalize_reference(reference))
        if identity is None:
            identity = by_identity.get(normalize_identity(reference))
        return identity

    def invalidate_images(self) -> None:
        """Forget the image index; call after anything that changes local images."""
        with self._image_lock:
            self._images = None

    def container_descriptor(self, ref: str) -> ContainerDescriptor:
        """Cached inspection of a container; raises NotFoundError if it is gone."""
        with self._container_lock:
            cached = self._containers.get(ref)
        if cached is not None:
            return cached
        descriptor = self.runtime.inspect_container(ref)
        with self._container_lock:
            return self._containers.setdefault(ref, descriptor)


# ── Staleness resolution ──────────────────────────────────────────

class StalenessResolver:
    """Decides whether a service's running container is behind its image reference."""

    def __init__(self, runtime, manifest, cache: ImageIdentityCache):
        self.runtime = runtime
        self.manifest = manifest
        self.cache = cache

    def resolve(self, service: str) -> StalenessVerdict:
        """Pull the declared image and compare it with the running container.

        Pulling comes first so that images published since the last run
        are seen.  The current identity is read off the container itself,
        because the tag it was started from may already point elsewhere.
        Runtime errors propagate; an unresolvable target never yields a
        stale verdict.
        """
        container_ref = self.runtime.current_container_ref(service)
        if not container_ref:
            return StalenessVerdict.not_running()

        reference = self.manifest.declared_image_reference(service)
        if not reference:
            raise ManifestError(f"service '{service}' does not declare an image")

        try:
            descriptor = self.cache.container_descriptor(container_ref)
        except NotFoundError:
            logger.debug(f"Container {container_ref[:12]} of {service} disappeared")
            return StalenessVerdict.not_running()
        current = (self.cache.image_identity(descriptor.image_id)
                   or normalize_identity(descriptor.image_id))

        try:
            self.runtime.pull(reference)
        finally:
            self.cache.invalidate_images()

        target = self.cache.image_identity(reference)
        if not target:
            logger.debug(f"{reference} does not resolve locally after pull, treating {service} as current")
            return StalenessVerdict.up_to_date(current, "")
        if not current:
            logger.debug(f"No image identity for the running {service} container, treating it as current")
            return StalenessVerdict.up_to_date("", target)
        if current == target:
            return StalenessVerdict.up_to_date(current, target)
        return StalenessVerdict.stale(current, target)


def restart_service(runtime, service: str) -> None:
    """Stop, remove and start *service*, stopping at the first failed step.

    Nothing is rolled back; a failure leaves the service in whatever
    state the last successful step produced.
    """
    for step in RESTART_STEPS:
        logger.debug(f"{step} {service}")
        try:
            getattr(runtime, step)(service)
        except Exception as e:
            raise StepFailure(service, step, e) from e


# ── Orchestration ─────────────────────────────────────────────────

class ServiceUpdater:
    """Runs the per-service update state machine across many services."""

    def __init__(self, runtime, manifest, concurrency: int = DEFAULT_CONCURRENCY,
                 show_warnings: bool = False, dry_run: bool = False,
                 progress_callback: Optional[Callable[[str, Dict[str, Any]], None]] = None,
                 cache: Optional[ImageIdentityCache] = None):
        """
        Args:
            runtime: Runtime driver (container lookup, images, pull, lifecycle)
            manifest: Manifest collaborator (service existence, declared image)
            concurrency: Maximum number of services processed at once
            show_warnings: Report services that are not running
            dry_run: Detect stale services but do not restart them
            progress_callback: Optional function(event_type, data) called for progress updates
            cache: Shared identity cache; a fresh one is created if omitted
        """
        if concurrency < 1:
            raise ValueError(f"concurrency must be at least 1, got {concurrency}")
        self.runtime = runtime
        self.manifest = manifest
        self.concurrency = concurrency
        self.show_warnings = show_warnings
        self.dry_run = dry_run
        self.progress_callback = progress_callback
        self.cache = cache if cache is not None else ImageIdentityCache(runtime)
        self.resolver = StalenessResolver(runtime, manifest, self.cache)

    def _emit(self, event: str, **data: Any) -> None:
        if not self.progress_callback:
            return
        try:
            self.progress_callback(event, data)
        except Exception as e:
            logger.debug(f"Progress callback failed on {event}: {e}")

    def _failed(self, service: str, verdict: Optional[StalenessVerdict],
                error: Exception) -> UpdateOutcome:
        logger.error(f"Error updating {service}: {error}")
        self._emit('failed', service=service, verdict=verdict, error=error)
        return UpdateOutcome(service, verdict, ACTION_FAILED, error)

    def update_service(self, service: str) -> UpdateOutcome:
        """Validate, resolve and, if stale, restart one service.

        Always returns an outcome; errors end up in ``outcome.error``.
        """
        self._emit('checking', service=service)

        try:
            exists = self.manifest.service_exists(service)
        except Exception as e:
            return self._failed(service, None, e)
        if not exists:
            return self._failed(
                service, None,
                ManifestError(f"service '{service}' does not exist in docker-compose file"))

        try:
            verdict = self.resolver.resolve(service)
        except Exception as e:
            return self._failed(service, None, e)

        if verdict.kind == NOT_RUNNING:
            if self.show_warnings:
                logger.warning(f"{service} is not running")
            else:
                logger.debug(f"{service} is not running")
            self._emit('not_running', service=service, verdict=verdict,
                       show_warnings=self.show_warnings)
            return UpdateOutcome(service, verdict, ACTION_NONE)

        if verdict.kind == UP_TO_DATE:
            logger.info(f"{service} is already up to date")
            self._emit('up_to_date', service=service, verdict=verdict)
            return UpdateOutcome(service, verdict, ACTION_NONE)

        if self.dry_run:
            logger.info(f"[DRY RUN] Would restart {service}: {verdict}")
            self._emit('would_restart', service=service, verdict=verdict)
            return UpdateOutcome(service, verdict, ACTION_NONE)

        logger.info(f"Restarting {service}: {verdict}")
        self._emit('restarting', service=service, verdict=verdict)
        try:
            restart_service(self.runtime, service)
        except StepFailure as e:
            return self._failed(service, verdict, e)

        logger.info(f"Updated {service}")
        self._emit('restarted', service=service, verdict=verdict)
        return UpdateOutcome(service, verdict, ACTION_RESTARTED)

    def run_update(self, services: Iterable[str]) -> RunReport:
        """Update every service with at most ``concurrency`` in flight.

        One service failing never stops the others.  The report carries an
        AggregateFailure listing every failed outcome, in submission order.
        """
        services = list(dict.fromkeys(services))
        outcomes: Dict[str, UpdateOutcome] = {}
        outcomes_lock = threading.Lock()

        def work(service: str) -> None:
            outcome = self.update_service(service)
            with outcomes_lock:
                outcomes[service] = outcome

        if services:
            max_workers = min(self.concurrency, len(services))
            with ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix='dcu') as executor:
                futures = {executor.submit(work, s): s for s in services}
                for future in as_completed(futures):
                    service = futures[future]
                    try:
                        future.result()
                    except Exception as e:
                        with outcomes_lock:
                            outcomes[service] = UpdateOutcome(service, None, ACTION_FAILED, e)

        ordered = {s: outcomes[s] for s in services}
        failures = [o for o in ordered.values() if o.failed]
        report = RunReport(ordered, AggregateFailure(failures) if failures else None)

        restarted = len(report.restarted)
        if failures:
            logger.warning(
                f"Update summary: {restarted} restarted, {len(failures)} failed, "
                f"{len(services)} total"
            )
        else:
            logger.info(f"Update summary: {restarted} restarted, {len(services)} total")
        return report


def run_update(runtime, manifest, service_names: Iterable[str],
               concurrency_ceiling: int = DEFAULT_CONCURRENCY,
               show_warnings: bool = False, **kwargs) -> RunReport:
    """Update *service_names* and return the run report."""
    updater = ServiceUpdater(runtime, manifest, concurrency=concurrency_ceiling,
                             show_warnings=show_warnings, **kwargs)
    return updater.run_update(service_names)


# ── Docker binding ────────────────────────────────────────────────

@contextmanager
def _driver_errors(action: str):
    """Translate socket, API and CLI errors into dc-update errors."""
    try:
        yield
    except DockerAPIError as e:
        if e.status == 404:
            raise NotFoundError(f"{action}: {e.message}") from e
        raise DockerRuntimeError(f"{action}: {e.message}") from e
    except ComposeError as e:
        raise DockerRuntimeError(f"{action}: {e}") from e
    except OSError as e:
        raise RuntimeUnavailable(f"{action}: {e}") from e


class DockerComposeRuntime:
    """Runtime driver backed by the Docker Engine API and ``docker compose``."""

    def __init__(self, client: DockerClient, project: ComposeProject):
        self.client = client
        self.project = project

    def current_container_ref(self, service: str) -> str:
        with _driver_errors(f"failed to get container ID for {service}"):
            return self.project.current_container_ref(service)

    def inspect_container(self, ref: str) -> ContainerDescriptor:
        with _driver_errors(f"failed to inspect container {ref[:12]}"):
            info = self.client.inspect_container(ref)
        return ContainerDescriptor(id=info.get('Id', ref),
                                   image_id=normalize_identity(info.get('Image', '')))

    def list_known_images(self) -> List[KnownImage]:
        with _driver_errors("failed to list images"):
            api_images = self.client.list_images()
        images = []
        for img in api_images:
            references = [r for r in (img.get('RepoTags') or []) + (img.get('RepoDigests') or [])
                          if r and not r.startswith('<none>')]
            images.append(KnownImage(identity=img.get('Id', ''), references=tuple(references)))
        return images

    def pull(self, reference: str) -> None:
        with _driver_errors(f"failed to pull {reference}"):
            self.project.pull_image(reference)

    def stop(self, service: str) -> None:
        with _driver_errors(f"failed to stop {service}"):
            self.project.stop(service)

    def remove(self, service: str) -> None:
        with _driver_errors(f"failed to remove {service}"):
            self.project.remove(service)

    def start(self, service: str) -> None:
        with _driver_errors(f"failed to start {service}"):
            self.project.start(service)


class ComposeManifest:
    """Manifest view of a compose project."""

    def __init__(self, project: ComposeProject):
        self.project = project

    def service_names(self) -> List[str]:
        with _driver_errors("failed to get service list"):
            return self.project.service_names()

    def service_exists(self, service: str) -> bool:
        return service in self.service_names()

    def declared_image_reference(self, service: str) -> Optional[str]:
        with _driver_errors(f"failed to get image name for {service}"):
            return self.project.declared_image_reference(service)


# ── CLI ───────────────────────────────────────────────────────────

def is_interactive_terminal() -> bool:
    """True when both stdout and stderr are TTYs and no CI variable is set."""
    if not (sys.stdout.isatty() and sys.stderr.isatty()):
        return False
    return not any(os.environ.get(var) for var in CI_ENV_VARS)


class StatusPrinter:
    """Progress callback printing one status line per service event."""

    def __init__(self, interactive: bool = False, stream=None):
        self.interactive = interactive
        self.stream = stream if stream is not None else sys.stdout
        self._lock = threading.Lock()

    def _print(self, line: str) -> None:
        with self._lock:
            print(line, file=self.stream, flush=True)

    def __call__(self, event: str, data: Dict[str, Any]) -> None:
        service = data.get('service', '')
        if event == 'checking':
            if self.interactive:
                self._print(f"⏳ Updating {service}")
        elif event == 'not_running':
            if data.get('show_warnings'):
                self._print(f"⚠️  {service} is not running")
        elif event == 'up_to_date':
            self._print(f"✅ {service} is already up to date")
        elif event == 'would_restart':
            self._print(f"🔎 {service} would be updated (dry run)")
        elif event == 'restarting':
            if self.interactive:
                self._print(f"⏳ Updating and restarting {service}")
        elif event == 'restarted':
            self._print(f"✅ Updated {service}")
        elif event == 'failed':
            error = data.get('error')
            if isinstance(error, StepFailure):
                self._print(f"❌ Failed to restart {service}: {error}")
            else:
                self._print(f"❌ Failed to update {service}: {error}")


def setup_logging(level: str) -> logging.Logger:
    """Setup logging configuration."""
    log = logging.getLogger('dcu')
    log.setLevel(getattr(logging, level.upper()))
    log.propagate = False

    if not log.handlers:
        handler = logging.StreamHandler()
        formatter = logging.Formatter(
            '%(asctime)s - [%(name)s] - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S %Z'
        )
        handler.setFormatter(formatter)
        log.addHandler(handler)

    # compose_project/docker_api log under their module names
    for name in ('compose_project', 'docker_api'):
        child = logging.getLogger(name)
        child.setLevel(log.level)
        child.propagate = False
        if not child.handlers:
            for handler in log.handlers:
                child.addHandler(handler)

    return log


def load_config(config_file: str) -> Dict[str, Any]:
    """Load and validate the optional JSON configuration file."""
    try:
        with open(config_file, 'r') as f:
            config = json.load(f)
        jsonschema.validate(config, CONFIG_SCHEMA)
        return config
    except FileNotFoundError:
        logger.error(f"Config file {config_file} not found")
        raise
    except json.JSONDecodeError as e:
        logger.error(f"Error parsing config file: {e}")
        raise
    except jsonschema.ValidationError as e:
        logger.error(f"Configuration validation failed: {e.message}")
        raise


def _env_flag(name: str) -> Optional[bool]:
    value = os.environ.get(name)
    if value is None or value == '':
        return None
    return value.lower() in ('1', 'true', 'yes')


def _pick(cli_value, config: Dict[str, Any], key: str, default):
    if cli_value is not None:
        return cli_value
    return config.get(key, default)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='dc-update',
        description='Update docker-compose services whose images have changed, '
                    'restarting only the containers that need it.'
    )
    parser.add_argument(
        'services',
        nargs='*',
        metavar='SERVICE',
        help='Services to update (default: every service in the compose file)'
    )
    parser.add_argument(
        '-f', '--file',
        default=os.environ.get('COMPOSE_FILE') or None,
        help=f'Path to docker-compose file (env: COMPOSE_FILE, default: {DEFAULT_COMPOSE_FILE})'
    )
    parser.add_argument(
        '-b', '--build',
        action='append',
        metavar='SERVICE',
        help='Service to build before updating. Can be given multiple times'
    )
    parser.add_argument(
        '--show-warnings',
        action='store_true',
        default=_env_flag('SHOW_WARNINGS'),
        help="Show warnings for services that aren't running (env: SHOW_WARNINGS)"
    )
    parser.add_argument(
        '-n', '--non-interactive',
        action='store_true',
        default=None,
        help='Plain output without progress lines'
    )
    parser.add_argument(
        '-j', '--concurrency',
        type=int,
        default=os.environ.get('DCU_CONCURRENCY') or None,
        help=f'Services updated at once (env: DCU_CONCURRENCY, default: {DEFAULT_CONCURRENCY})'
    )
    parser.add_argument(
        '--dry-run',
        action='store_true',
        default=_env_flag('DRY_RUN'),
        help='Pull and compare, but do not restart anything (env: DRY_RUN)'
    )
    parser.add_argument(
        '--config',
        default=os.environ.get('DCU_CONFIG') or None,
        help='Optional JSON configuration file (env: DCU_CONFIG)'
    )
    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=os.environ.get('LOG_LEVEL') or None,
        help='Logging level (env: LOG_LEVEL, default: WARNING)'
    )
    parser.add_argument('--version', action='version', version=f'%(prog)s {__version__}')
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    config: Dict[str, Any] = {}
    if args.config:
        setup_logging(args.log_level or 'WARNING')
        try:
            config = load_config(args.config)
        except (OSError, json.JSONDecodeError, jsonschema.ValidationError) as e:
            print(f"❌ Invalid configuration: {e}", file=sys.stderr)
            return 1

    setup_logging(_pick(args.log_level, config, 'log_level', 'WARNING'))

    compose_file = _pick(args.file, config, 'compose_file', DEFAULT_COMPOSE_FILE)
    services = args.services or config.get('services') or []
    build = args.build or config.get('build') or []
    show_warnings = bool(_pick(args.show_warnings, config, 'show_warnings', False))
    dry_run = bool(_pick(args.dry_run, config, 'dry_run', False))
    non_interactive = bool(_pick(args.non_interactive, config, 'non_interactive', False))
    concurrency = _pick(args.concurrency, config, 'concurrency', DEFAULT_CONCURRENCY)
    if concurrency < 1:
        print(f"❌ Concurrency must be at least 1, got {concurrency}", file=sys.stderr)
        return 1

    if not compose_file_exists(compose_file):
        print(f"❌ docker-compose file does not exist: {compose_file}", file=sys.stderr)
        return 1

    client = DockerClient()
    try:
        with _driver_errors("Docker daemon is not responding - is Docker running?"):
            if not client.ping():
                raise RuntimeUnavailable("Docker daemon did not answer ping")
    except DcUpdateError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    project = ComposeProject(compose_file)
    runtime = DockerComposeRuntime(client, project)
    manifest = ComposeManifest(project)

    try:
        if not services:
            services = manifest.service_names()
        if build:
            print(f"Building containers: {', '.join(build)}")
            with _driver_errors("failed to build containers"):
                project.build(build)
    except DcUpdateError as e:
        print(f"❌ {e}", file=sys.stderr)
        return 1

    if dry_run:
        logger.info("=== DRY RUN MODE ===")

    printer = StatusPrinter(interactive=not non_interactive and is_interactive_terminal())
    report = run_update(runtime, manifest, services, concurrency_ceiling=concurrency,
                        show_warnings=show_warnings, dry_run=dry_run,
                        progress_callback=printer)

    if not report.ok:
        for outcome in report.failures:
            print(f"Error updating {outcome.service}: {outcome.error}", file=sys.stderr)
        return 1
    return 0


if __name__ == '__main__':
    sys.exit(main())
