"""
Suite Runner
============
Runs the project's test suite so that it leaves a structured report behind.

BOUNDARY RULES (CRITICAL):
    - Runner ONLY executes the suite.
    - Runner NEVER parses the report — that is the Report Parser's job.
    - Runner NEVER edits code — that is the worker's job.
    - A non-zero exit code is normal (tests failed); only the report decides.

Backends:
    - local  : subprocess in the workspace directory
    - docker : one ephemeral container per run, workspace mounted at
               /workspace, container destroyed afterwards

Stale reports are deleted before every run, so a runner that crashes before
writing a report is detected as ReportUnavailable instead of silently
re-reading the previous run's results.
"""
import os
import time
import logging
import subprocess
from dataclasses import dataclass, field
from typing import Optional

import docker
from docker.errors import APIError, ContainerError, ImageNotFound

from repair_orchestrator.core.config import (
    DOCKER_IMAGE,
    TEST_COMMAND,
    TEST_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)


@dataclass
class SuiteRunResult:
    """
    Structured output from a single suite execution.

    Fields
    ------
    exit_code : int
        Process exit code (-1 when the infrastructure failed).
    full_log : str
        Combined stdout + stderr.
    log_excerpt : str
        First + last lines of the log, for operator display.
    execution_time_seconds : float
        Wall clock duration.
    report_path : str
        Absolute host path where the report is expected.
    environment_metadata : dict
        Backend details: image, container id, timeout applied.
    error : str | None
        Infrastructure error message (not test failures).
    """
    exit_code: int = -1
    full_log: str = ""
    log_excerpt: str = ""
    execution_time_seconds: float = 0.0
    report_path: str = ""
    environment_metadata: dict = field(default_factory=dict)
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Log Excerpt Helper
# ---------------------------------------------------------------------------
_EXCERPT_HEAD_LINES = 30
_EXCERPT_TAIL_LINES = 30


def create_log_excerpt(full_log: str,
                       head: int = _EXCERPT_HEAD_LINES,
                       tail: int = _EXCERPT_TAIL_LINES) -> str:
    """Abbreviated log showing the first and last N lines."""
    lines = full_log.splitlines()
    total = len(lines)

    if total <= head + tail:
        return full_log

    omitted = total - head - tail
    return "\n".join(
        lines[:head]
        + [f"\n... ({omitted} lines omitted) ...\n"]
        + lines[-tail:]
    )


def _clear_stale_report(report_path: str) -> None:
    if os.path.exists(report_path):
        os.remove(report_path)
        logger.debug("Removed stale report %s", report_path)
    os.makedirs(os.path.dirname(report_path) or ".", exist_ok=True)


class SuiteRunner:
    """Base class for suite runner backends."""

    def __init__(
        self,
        workspace_path: str,
        report_path: str,
        command: str = TEST_COMMAND,
        timeout_seconds: Optional[int] = TEST_TIMEOUT_SECONDS,
    ) -> None:
        self.workspace_path = os.path.abspath(workspace_path)
        self.report_path = (
            report_path if os.path.isabs(report_path)
            else os.path.join(self.workspace_path, report_path)
        )
        self.command = command
        self.timeout_seconds = timeout_seconds

    def run(self) -> SuiteRunResult:
        raise NotImplementedError


# ---------------------------------------------------------------------------
# Local subprocess backend
# ---------------------------------------------------------------------------
class LocalSuiteRunner(SuiteRunner):
    """Runs the suite command with the workspace as working directory."""

    def run(self) -> SuiteRunResult:
        result = SuiteRunResult(report_path=self.report_path)
        start_time = time.monotonic()
        _clear_stale_report(self.report_path)

        logger.info("Running suite | cmd=%s | cwd=%s", self.command, self.workspace_path)
        try:
            proc = subprocess.run(
                self.command,
                shell=True,
                cwd=self.workspace_path,
                capture_output=True,
                text=True,
                timeout=self.timeout_seconds,
                env={**os.environ, "CI": "true"},
            )
            result.exit_code = proc.returncode
            result.full_log = (proc.stdout or "") + (proc.stderr or "")
        except subprocess.TimeoutExpired as e:
            result.error = f"Suite run exceeded {self.timeout_seconds}s"
            output = e.stdout or ""
            result.full_log = output.decode("utf-8", errors="replace") if isinstance(output, bytes) else output
            logger.error(result.error)
        except OSError as e:
            result.error = f"Could not start suite command: {e}"
            logger.error(result.error)

        result.execution_time_seconds = round(time.monotonic() - start_time, 3)
        result.log_excerpt = create_log_excerpt(result.full_log)
        result.environment_metadata = {"backend": "local", "timeout_applied": self.timeout_seconds}

        logger.info(
            "Suite run complete | exit=%d | time=%.2fs",
            result.exit_code, result.execution_time_seconds,
        )
        return result


# ---------------------------------------------------------------------------
# Docker sandbox backend
# ---------------------------------------------------------------------------
_MEMORY_LIMIT = "2g"
_CPU_COUNT = 2


class DockerSuiteRunner(SuiteRunner):
    """Runs the suite inside an ephemeral container with the workspace mounted."""

    def __init__(self, *args, docker_image: str = DOCKER_IMAGE, **kwargs) -> None:
        super().__init__(*args, **kwargs)
        self.docker_image = docker_image

    def run(self) -> SuiteRunResult:
        result = SuiteRunResult(report_path=self.report_path)
        start_time = time.monotonic()
        _clear_stale_report(self.report_path)

        container = None
        try:
            client = docker.from_env()
            logger.info(
                "Starting container | image=%s | cmd=%s | timeout=%s",
                self.docker_image, self.command, self.timeout_seconds,
            )
            container = client.containers.run(
                image=self.docker_image,
                command=["bash", "-c", self.command],
                volumes={self.workspace_path: {"bind": "/workspace", "mode": "rw"}},
                environment={"CI": "true"},
                working_dir="/workspace",
                mem_limit=_MEMORY_LIMIT,
                nano_cpus=_CPU_COUNT * 1_000_000_000,
                name=f"repair-suite-{int(time.time() * 1000)}",
                labels={"project": "repair-orchestrator", "role": "suite"},
                detach=True,
            )

            wait_result = container.wait(timeout=self.timeout_seconds)
            result.exit_code = wait_result.get("StatusCode", -1)
            log_bytes = container.logs(stdout=True, stderr=True)
            result.full_log = log_bytes.decode("utf-8", errors="replace")
            result.environment_metadata = {
                "backend": "docker",
                "image": self.docker_image,
                "container_id": container.short_id,
                "timeout_applied": self.timeout_seconds,
            }

        except ImageNotFound:
            result.error = f"Docker image '{self.docker_image}' not found"
            logger.error(result.error)

        except ContainerError as e:
            result.error = f"Container execution error: {e}"
            result.exit_code = getattr(e, "exit_status", -1)
            result.full_log = str(e)
            logger.error(result.error)

        except APIError as e:
            result.error = f"Docker API error: {e}"
            logger.error(result.error)

        except Exception as e:
            # Wait timeouts surface as transport errors; the missing report decides
            result.error = f"Unexpected runner error: {type(e).__name__}: {e}"
            logger.exception(result.error)

        finally:
            if container is not None:
                try:
                    container.remove(force=True)
                    logger.info("Container %s destroyed", container.short_id)
                except APIError:
                    logger.warning("Failed to remove container", exc_info=True)

        result.execution_time_seconds = round(time.monotonic() - start_time, 3)
        result.log_excerpt = create_log_excerpt(result.full_log)

        logger.info(
            "Suite run complete | exit=%d | time=%.2fs | image=%s",
            result.exit_code, result.execution_time_seconds, self.docker_image,
        )
        return result


def build_suite_runner(
    backend: str,
    workspace_path: str,
    report_path: str,
    command: str = TEST_COMMAND,
    docker_image: str = DOCKER_IMAGE,
) -> SuiteRunner:
    """Create the runner for ``backend`` ("local" or "docker")."""
    if backend == "docker":
        return DockerSuiteRunner(workspace_path, report_path, command=command, docker_image=docker_image)
    if backend == "local":
        return LocalSuiteRunner(workspace_path, report_path, command=command)
    raise ValueError(f"Unknown runner backend {backend!r}")
