"""Configuration resolution — explicit values > env vars > defaults."""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

DEFAULT_MAX_XML_SIZE = 500 * 1024 * 1024
DEFAULT_MAX_MESSAGE_SIZE = 10 * 1024 * 1024
DEFAULT_MAX_CONCURRENCY = 4
DEFAULT_VALIDATION_TIMEOUT = 30 * 60.0

DEFAULT_CRITICAL_TYPES = frozenset({"checksum_mismatch", "structure_violation"})

_SIZE_UNITS = {
    "": 1,
    "B": 1,
    "KB": 1024,
    "MB": 1024**2,
    "GB": 1024**3,
}


def parse_size(value: str | int) -> int:
    """Parse a human size string like ``500MB`` or ``1.5GB`` into bytes."""
    if isinstance(value, int):
        return value
    match = re.fullmatch(r"\s*([0-9]+(?:\.[0-9]+)?)\s*([KMG]?B?)\s*", value.upper())
    if not match:
        raise ValueError(f"invalid size: {value!r}")
    number, unit = match.groups()
    if unit in ("K", "M", "G"):
        unit += "B"
    return int(float(number) * _SIZE_UNITS[unit])


def _env_bool(name: str) -> bool | None:
    raw = os.environ.get(name)
    if raw is None or raw.strip() == "":
        return None
    return raw.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class ValidationOptions:
    """Options for a repository validation run.

    Config precedence: explicit dict values > env vars > defaults.

    Environment variables:
    - PHONEARCHIVE_PARALLEL: run phases 2-5 concurrently
    - PHONEARCHIVE_EARLY_TERMINATION: stop at the first critical violation
    - PHONEARCHIVE_MAX_CONCURRENCY: worker pool size
    - PHONEARCHIVE_VALIDATION_TIMEOUT: seconds before the run is abandoned
    """

    parallel: bool = True
    early_termination: bool = False
    max_concurrency: int = DEFAULT_MAX_CONCURRENCY
    timeout: float | None = DEFAULT_VALIDATION_TIMEOUT
    progress_callback: Callable[[str, float], None] | None = None
    critical_types: frozenset[str] = DEFAULT_CRITICAL_TYPES

    def __post_init__(self):
        if self.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.critical_types = frozenset(str(t) for t in self.critical_types)

    @classmethod
    def from_dict(cls, data: dict) -> ValidationOptions:
        config = cls()

        env_parallel = _env_bool("PHONEARCHIVE_PARALLEL")
        if env_parallel is not None:
            config.parallel = env_parallel
        env_early = _env_bool("PHONEARCHIVE_EARLY_TERMINATION")
        if env_early is not None:
            config.early_termination = env_early
        env_workers = os.environ.get("PHONEARCHIVE_MAX_CONCURRENCY")
        if env_workers:
            config.max_concurrency = int(env_workers)
        env_timeout = os.environ.get("PHONEARCHIVE_VALIDATION_TIMEOUT")
        if env_timeout:
            config.timeout = float(env_timeout)

        for key in (
            "parallel",
            "early_termination",
            "max_concurrency",
            "timeout",
            "progress_callback",
        ):
            if key in data and data[key] is not None:
                setattr(config, key, data[key])
        if data.get("critical_types") is not None:
            config.critical_types = frozenset(str(t) for t in data["critical_types"])

        if config.max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        return config


@dataclass
class ImportOptions:
    """Options for an import run.

    Environment variables:
    - PHONEARCHIVE_MAX_XML_SIZE: per-file size limit, e.g. ``500MB``
    - PHONEARCHIVE_LOG_DIR: directory for JSONL run logs
    """

    repo_root: Path = field(default_factory=Path.cwd)
    paths: list[Path] = field(default_factory=list)
    dry_run: bool = False
    filter: str | None = None  # "calls", "sms" or None for both
    max_xml_size: int = DEFAULT_MAX_XML_SIZE
    max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE
    log_dir: Path | None = None
    verbosity: int = 0

    @classmethod
    def from_dict(cls, data: dict) -> ImportOptions:
        config = cls()

        env_size = os.environ.get("PHONEARCHIVE_MAX_XML_SIZE")
        if env_size:
            config.max_xml_size = parse_size(env_size)
        env_log_dir = os.environ.get("PHONEARCHIVE_LOG_DIR")
        if env_log_dir:
            config.log_dir = Path(env_log_dir)

        if "repo_root" in data:
            config.repo_root = Path(data["repo_root"])
        if "paths" in data:
            config.paths = [Path(p) for p in data["paths"]]
        if "dry_run" in data:
            config.dry_run = bool(data["dry_run"])
        if "filter" in data:
            config.filter = data["filter"]
        if data.get("max_xml_size") is not None:
            config.max_xml_size = parse_size(data["max_xml_size"])
        if data.get("max_message_size") is not None:
            config.max_message_size = parse_size(data["max_message_size"])
        if data.get("log_dir") is not None:
            config.log_dir = Path(data["log_dir"])
        if "verbosity" in data:
            config.verbosity = int(data["verbosity"])

        if config.filter not in (None, "calls", "sms"):
            raise ValueError(f"invalid filter: {config.filter!r} (expected 'calls' or 'sms')")
        return config
