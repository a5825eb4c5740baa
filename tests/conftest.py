"""Shared fixtures for dc-update tests."""

import logging
import threading
import time

import pytest

from dcu import ContainerDescriptor, KnownImage, NotFoundError

# ---------------------------------------------------------------------------
# Identities used across the tests (hex digests, scheme prefix included
# where the Docker API would include it)
# ---------------------------------------------------------------------------

OLD_WEB = "sha256:" + "abc123" + "0" * 58
NEW_WEB = "sha256:" + "def456" + "0" * 58
DB_IMAGE = "sha256:" + "0db000" + "0" * 58


def bare(identity: str) -> str:
    """Identity without its hash-scheme prefix."""
    return identity.split(':', 1)[1]


# ---------------------------------------------------------------------------
# Fake runtime driver + manifest
# ---------------------------------------------------------------------------

class FakeRuntime:
    """In-memory stand-in for the Docker daemon and compose CLI.

    * ``declared``: service -> declared image reference (the manifest)
    * ``containers``: service -> running container id
    * ``container_images``: container id -> image identity it was started from
    * ``images``: local image identity -> set of references pointing at it
    * ``remote``: reference -> identity a pull of that reference produces

    Every call is appended to ``calls`` as a tuple.  ``fail`` maps a call
    tuple to the exception that call should raise.
    """

    def __init__(self, pull_delay: float = 0.0):
        self.declared = {}
        self.containers = {}
        self.container_images = {}
        self.images = {}
        self.remote = {}
        self.calls = []
        self.fail = {}
        self.pull_delay = pull_delay
        self.pulls_in_flight = 0
        self.max_pulls_in_flight = 0
        self._lock = threading.RLock()
        self._next_container = 0

    # -- setup helpers --

    def add_service(self, service, reference, running_identity=None, local=True):
        """Declare *service*; if *running_identity* is given, run a container from it."""
        self.declared[service] = reference
        if running_identity is not None:
            if local:
                self.tag(reference, running_identity)
            self._run_container(service, running_identity)

    def publish(self, reference, identity):
        """Make a pull of *reference* produce *identity*."""
        self.remote[reference] = identity

    def tag(self, reference, identity):
        with self._lock:
            for refs in self.images.values():
                refs.discard(reference)
            self.images.setdefault(identity, set()).add(reference)

    def _run_container(self, service, identity):
        with self._lock:
            self._next_container += 1
            container_id = f"{service}-container-{self._next_container}"
            self.containers[service] = container_id
            self.container_images[container_id] = identity
            return container_id

    def _record(self, *call):
        with self._lock:
            self.calls.append(call)
            exc = self.fail.get(call)
        if exc is not None:
            raise exc

    def calls_for(self, service):
        return [c for c in self.calls if len(c) > 1 and c[1] == service]

    def lifecycle_calls(self, service):
        return [c[0] for c in self.calls_for(service) if c[0] in ('stop', 'remove', 'start')]

    # -- runtime driver --

    def current_container_ref(self, service):
        self._record('current_container_ref', service)
        return self.containers.get(service, "")

    def inspect_container(self, ref):
        self._record('inspect_container', ref)
        with self._lock:
            if ref not in self.container_images:
                raise NotFoundError(f"no such container: {ref}")
            return ContainerDescriptor(ref, self.container_images[ref])

    def list_known_images(self):
        self._record('list_known_images')
        with self._lock:
            return [KnownImage(identity, tuple(sorted(refs)))
                    for identity, refs in self.images.items()]

    def pull(self, reference):
        with self._lock:
            self.pulls_in_flight += 1
            self.max_pulls_in_flight = max(self.max_pulls_in_flight, self.pulls_in_flight)
        try:
            self._record('pull', reference)
            if self.pull_delay:
                time.sleep(self.pull_delay)
            if reference in self.remote:
                self.tag(reference, self.remote[reference])
        finally:
            with self._lock:
                self.pulls_in_flight -= 1

    def stop(self, service):
        self._record('stop', service)

    def remove(self, service):
        self._record('remove', service)
        with self._lock:
            self.containers.pop(service, None)

    def start(self, service):
        self._record('start', service)
        reference = self.declared[service]
        with self._lock:
            identity = next((i for i, refs in self.images.items() if reference in refs), None)
        self._run_container(service, identity)

    # -- manifest --

    def service_exists(self, service):
        self._record('service_exists', service)
        return service in self.declared

    def declared_image_reference(self, service):
        self._record('declared_image_reference', service)
        return self.declared.get(service)


@pytest.fixture
def runtime():
    return FakeRuntime()


@pytest.fixture
def web_stale(runtime):
    """``web`` runs abc123 while ``myapp/web:latest`` now resolves to def456."""
    runtime.add_service("web", "myapp/web:latest", OLD_WEB)
    runtime.publish("myapp/web:latest", NEW_WEB)
    return runtime


@pytest.fixture
def recorder():
    """Progress callback that records (event, data) pairs."""
    events = []
    lock = threading.Lock()

    def callback(event, data):
        with lock:
            events.append((event, data))

    callback.events = events
    return callback


@pytest.fixture(autouse=True)
def _reset_loggers():
    """Drop handlers main() attaches so later tests don't write to closed streams."""
    yield
    for name in ('dcu', 'compose_project', 'docker_api'):
        log = logging.getLogger(name)
        for handler in list(log.handlers):
            log.removeHandler(handler)
        log.setLevel(logging.NOTSET)
        log.propagate = True
