"""Thin wrapper around the ``docker compose`` CLI for one compose file.

Provides the service-level view dc-update needs: which services the file
declares, which image each one asks for, which container is currently
running it, the stop/remove/start/build lifecycle commands, and image
pulls through the docker CLI, which reads the user's registry credentials.
"""

import logging
import os
import subprocess
import threading
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

logger = logging.getLogger(__name__)

COMMAND_TIMEOUT = 600


class ComposeError(Exception):
    """A ``docker compose`` invocation failed."""

    def __init__(self, command: List[str], returncode: int, stderr: str = ""):
        self.command = command
        self.returncode = returncode
        self.stderr = (stderr or "").strip()
        detail = self.stderr or f"exit status {returncode}"
        super().__init__(f"'{' '.join(command)}' failed: {detail}")


class ComposeProject:
    """A compose file and the directory it is run from."""

    def __init__(self, compose_file: str, executable: str = "docker"):
        path = Path(compose_file).resolve()
        self.compose_file = path.name
        self.working_dir = str(path.parent)
        self.executable = executable
        self._config: Optional[Dict[str, Any]] = None
        self._config_lock = threading.Lock()

    def _base_command(self) -> List[str]:
        return [self.executable, "compose", "-f", self.compose_file]

    def _run(self, *args: str) -> str:
        """Run a compose subcommand and return its stdout."""
        return self._exec(self._base_command() + list(args))

    def _exec(self, cmd: List[str]) -> str:
        """Run *cmd* from the project directory and return its stdout.

        Raises ComposeError on a non-zero exit.  A missing ``docker``
        binary surfaces as FileNotFoundError.
        """
        logger.debug("Running %s (cwd=%s)", " ".join(cmd), self.working_dir)
        try:
            result = subprocess.run(
                cmd,
                cwd=self.working_dir,
                capture_output=True,
                text=True,
                check=True,
                timeout=COMMAND_TIMEOUT,
            )
        except subprocess.CalledProcessError as e:
            raise ComposeError(cmd, e.returncode, e.stderr) from e
        except subprocess.TimeoutExpired as e:
            raise ComposeError(cmd, -1, f"timed out after {e.timeout}s") from e
        return result.stdout

    # ── Manifest ─────────────────────────────────────────────────

    def service_names(self) -> List[str]:
        """Services declared in the compose file, in declaration order."""
        output = self._run("config", "--services")
        return [line.strip() for line in output.splitlines() if line.strip()]

    def service_exists(self, service: str) -> bool:
        return service in self.service_names()

    def config(self) -> Dict[str, Any]:
        """Fully resolved compose config, parsed once per project."""
        with self._config_lock:
            if self._config is None:
                parsed = yaml.safe_load(self._run("config")) or {}
                if not isinstance(parsed, dict):
                    raise ComposeError(self._base_command() + ["config"], 0,
                                       "config output is not a mapping")
                self._config = parsed
            return self._config

    def declared_image_reference(self, service: str) -> Optional[str]:
        """Image reference the compose file declares for *service*.

        Returns None for build-only services without an ``image`` key.
        """
        services = self.config().get("services") or {}
        definition = services.get(service)
        if definition is None:
            return None
        image = definition.get("image")
        return str(image).strip() if image else None

    # ── Runtime state ────────────────────────────────────────────

    def current_container_ref(self, service: str) -> str:
        """ID of the service's running container, or "" if none."""
        output = self._run("ps", "-q", service)
        ids = [line.strip() for line in output.splitlines() if line.strip()]
        if len(ids) > 1:
            logger.debug("Service %s has %d containers, using %s", service, len(ids), ids[0])
        return ids[0] if ids else ""

    # ── Lifecycle ────────────────────────────────────────────────

    def stop(self, service: str) -> None:
        self._run("stop", service)

    def remove(self, service: str) -> None:
        self._run("rm", "-f", service)

    def start(self, service: str) -> None:
        self._run("up", "-d", service)

    def pull_image(self, reference: str) -> None:
        """Pull *reference* with the docker CLI so registry logins apply."""
        self._exec([self.executable, "pull", "--quiet", reference])

    def build(self, services: List[str]) -> None:
        """Rebuild *services* with fresh base images."""
        self._run("build", "--pull", *services)


def compose_file_exists(compose_file: str) -> bool:
    return os.path.isfile(compose_file)
