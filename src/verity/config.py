"""TOML config loading for verity.toml."""

from __future__ import annotations

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

CONFIG_NAME = "verity.toml"


@dataclass
class CheckConfig:
    warnings_as_errors: bool = False


@dataclass
class VerifyConfig:
    witness_search_bound: int = 64
    max_case_splits: int = 4
    evaluation_fuel: int = 20_000
    unknown_is_error: bool = False


@dataclass
class RunConfig:
    workers: int = 1


@dataclass
class VerityConfig:
    check: CheckConfig = field(default_factory=CheckConfig)
    verify: VerifyConfig = field(default_factory=VerifyConfig)
    run: RunConfig = field(default_factory=RunConfig)


def find_config(start_path: Path | None = None) -> Path:
    """Walk up directories to find verity.toml. Raises FileNotFoundError."""
    path = (start_path or Path.cwd()).resolve()
    if path.is_file():
        path = path.parent
    while True:
        candidate = path / CONFIG_NAME
        if candidate.exists():
            return candidate
        parent = path.parent
        if parent == path:
            raise FileNotFoundError(f"No {CONFIG_NAME} found in any parent directory")
        path = parent


def load_config(path: Path) -> VerityConfig:
    """Parse a verity.toml file into a VerityConfig. Raises ValueError on bad values."""
    with open(path, "rb") as f:
        data = tomllib.load(f)

    config = VerityConfig()

    if "check" in data:
        chk = data["check"]
        config.check = CheckConfig(
            warnings_as_errors=chk.get("warnings_as_errors", False),
        )

    if "verify" in data:
        ver = data["verify"]
        config.verify = VerifyConfig(
            witness_search_bound=ver.get("witness_search_bound", 64),
            max_case_splits=ver.get("max_case_splits", 4),
            evaluation_fuel=ver.get("evaluation_fuel", 20_000),
            unknown_is_error=ver.get("unknown_is_error", False),
        )

    if "run" in data:
        config.run = RunConfig(workers=data["run"].get("workers", 1))

    _validate(config)
    return config


def _validate(config: VerityConfig) -> None:
    limits = {
        "verify.witness_search_bound": (config.verify.witness_search_bound, 0),
        "verify.max_case_splits": (config.verify.max_case_splits, 0),
        "verify.evaluation_fuel": (config.verify.evaluation_fuel, 1),
        "run.workers": (config.run.workers, 1),
    }
    for key, (value, minimum) in limits.items():
        if not isinstance(value, int) or isinstance(value, bool) or value < minimum:
            raise ValueError(f"{key} must be an integer >= {minimum}, got {value!r}")
    flags = {
        "check.warnings_as_errors": config.check.warnings_as_errors,
        "verify.unknown_is_error": config.verify.unknown_is_error,
    }
    for key, value in flags.items():
        if not isinstance(value, bool):
            raise ValueError(f"{key} must be true or false, got {value!r}")


def load_or_default(start_path: Path | None = None) -> VerityConfig:
    """The nearest verity.toml, or defaults when there is none."""
    try:
        return load_config(find_config(start_path))
    except FileNotFoundError:
        return VerityConfig()
