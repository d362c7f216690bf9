"""
Configuration
=============
Loads environment variables from .env file using python-dotenv, then lets an
optional YAML settings file override the per-run knobs.

Environment Variables:
    RETRY_BUDGET            — Max repair attempts per session (default: 5)
    CONCURRENCY_CAP         — Max independent workers running at once (default: 4)
    NO_PROGRESS_THRESHOLD   — Consecutive unchanged attempts tolerated (default: 1)
    COUPLE_BY_FEATURE_AREA  — Couple failures sharing a feature area (default: false)
    WORKER_MODEL_TIER       — Opaque tier forwarded to every worker (default: standard)
    WORKER_ENDPOINT         — HTTP endpoint of the worker runtime
    TEST_COMMAND            — Shell command that runs the suite and writes the report
    REPORT_PATH             — Workspace-relative path of the structured report
    RUNNER_BACKEND          — "local" (subprocess) or "docker" (sandbox container)
    SESSION_DIR             — Directory holding persisted sessions
    TRACE_ENABLED           — Write worker inputs/outputs to the trace log (default: false)

Settings File:
    REPAIR_CONFIG_FILE (default: repair.yml) may hold any of the lowercase keys
    of OrchestratorSettings. Values in the file win over the environment.
"""
import os
import logging
from dataclasses import dataclass, fields, replace
from typing import Optional

import yaml
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


# Loop policy
RETRY_BUDGET = int(os.getenv("RETRY_BUDGET", 5))
CONCURRENCY_CAP = int(os.getenv("CONCURRENCY_CAP", 4))
NO_PROGRESS_THRESHOLD = int(os.getenv("NO_PROGRESS_THRESHOLD", 1))
COUPLE_BY_FEATURE_AREA = _env_bool("COUPLE_BY_FEATURE_AREA")
PRIOR_SUMMARY_LIMIT = int(os.getenv("PRIOR_SUMMARY_LIMIT", 3))

# Worker runtime
WORKER_MODEL_TIER = os.getenv("WORKER_MODEL_TIER", "standard")
WORKER_ENDPOINT = os.getenv("WORKER_ENDPOINT", "http://127.0.0.1:8700/repair")
WORKER_TIMEOUT_SECONDS = float(os.getenv("WORKER_TIMEOUT_SECONDS", 600))
WORKER_API_KEY = os.getenv("WORKER_API_KEY")

# Max characters of a single source artifact shipped to a worker
MAX_ARTIFACT_CHARS = int(os.getenv("MAX_ARTIFACT_CHARS", 20000))

# Test runner
WORKSPACE_PATH = os.getenv("WORKSPACE_PATH", ".")
TEST_COMMAND = os.getenv("TEST_COMMAND", "pytest --junitxml=.repair/report.xml")
REPORT_PATH = os.getenv("REPORT_PATH", ".repair/report.xml")
RUNNER_BACKEND = os.getenv("RUNNER_BACKEND", "local")
DOCKER_IMAGE = os.getenv("DOCKER_IMAGE", "python:3.11-slim")

# Execution timeout in seconds for a single suite run (None = wait forever)
_raw_timeout = os.getenv("TEST_TIMEOUT_SECONDS")
TEST_TIMEOUT_SECONDS: Optional[int] = int(_raw_timeout) if _raw_timeout else None

# Persistence and side channels
SESSION_DIR = os.getenv("SESSION_DIR", ".repair/sessions")
RESULTS_PATH = os.getenv("RESULTS_PATH", ".repair/results.json")
TRACE_ENABLED = _env_bool("TRACE_ENABLED")
TRACE_DIR = os.getenv("TRACE_DIR", ".repair/trace")

REPAIR_CONFIG_FILE = os.getenv("REPAIR_CONFIG_FILE", "repair.yml")


@dataclass(frozen=True)
class OrchestratorSettings:
    """Per-run knobs, resolved from the environment and the settings file."""
    retry_budget: int = RETRY_BUDGET
    concurrency_cap: int = CONCURRENCY_CAP
    no_progress_threshold: int = NO_PROGRESS_THRESHOLD
    couple_by_feature_area: bool = COUPLE_BY_FEATURE_AREA
    prior_summary_limit: int = PRIOR_SUMMARY_LIMIT
    model_tier: str = WORKER_MODEL_TIER
    workspace_path: str = WORKSPACE_PATH
    test_command: str = TEST_COMMAND
    report_path: str = REPORT_PATH
    runner_backend: str = RUNNER_BACKEND
    docker_image: str = DOCKER_IMAGE
    session_dir: str = SESSION_DIR
    results_path: str = RESULTS_PATH
    trace_enabled: bool = TRACE_ENABLED
    trace_dir: str = TRACE_DIR


def load_settings(path: Optional[str] = None, **overrides) -> OrchestratorSettings:
    """
    Build OrchestratorSettings from defaults, the YAML file and explicit overrides.

    Unknown keys in the file are ignored with a warning. A missing file is
    not an error; an unreadable one is.
    """
    settings = OrchestratorSettings()
    config_path = path or REPAIR_CONFIG_FILE
    known = {f.name for f in fields(OrchestratorSettings)}

    if config_path and os.path.exists(config_path):
        with open(config_path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Settings file {config_path} must contain a mapping")
        unknown = sorted(set(data) - known)
        if unknown:
            logger.warning("Ignoring unknown settings in %s: %s", config_path, ", ".join(unknown))
        settings = replace(settings, **{k: v for k, v in data.items() if k in known})
        logger.info("Loaded settings from %s", config_path)

    explicit = {k: v for k, v in overrides.items() if v is not None and k in known}
    if explicit:
        settings = replace(settings, **explicit)

    if settings.retry_budget < 1:
        raise ValueError("retry_budget must be >= 1")
    if settings.concurrency_cap < 1:
        raise ValueError("concurrency_cap must be >= 1")
    if settings.no_progress_threshold < 1:
        raise ValueError("no_progress_threshold must be >= 1")
    return settings
