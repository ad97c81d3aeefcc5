"""
Configuration module for generation sessions.

This module provides configuration loading and validation for the targets of
a generation session: their overwrite defaults, clean behavior and output
directories, plus the workspace roots used to attribute generated files.
"""
# [CTX:PBI-1:1-7:CFG]

from dataclasses import dataclass, field
from pathlib import Path, PurePosixPath
from typing import Any

import yaml

from .errors import ConfigValidationError
from .registry import DEFAULT_TARGET_NAME


def _require_mapping(value: Any, what: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ConfigValidationError(f"{what} must be a mapping, got {type(value).__name__}")
    return value


@dataclass
class TargetConfig:
    """Configuration for a single target."""

    name: str
    default_overwrite: bool = False
    clean: bool = False
    output_dir: str | None = None  # relative to the session base directory

    @classmethod
    def from_dict(cls, name: str, data: dict[str, Any] | None) -> "TargetConfig":
        """Create TargetConfig from dictionary."""
        data = data or {}
        _require_mapping(data, f"Target {name}")
        return cls(
            name=name,
            default_overwrite=data.get("default_overwrite", False),
            clean=data.get("clean", False),
            output_dir=data.get("output_dir"),
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert TargetConfig to dictionary (without the name key)."""
        result: dict[str, Any] = {
            "default_overwrite": self.default_overwrite,
            "clean": self.clean,
        }
        if self.output_dir is not None:
            result["output_dir"] = self.output_dir
        return result


def _default_target() -> TargetConfig:
    return TargetConfig(name=DEFAULT_TARGET_NAME, default_overwrite=True)


@dataclass
class GeneratorConfig:
    """Configuration for one generation session."""

    workspace_roots: list[str] = field(default_factory=list)
    max_concurrency: int = 4
    default_target: TargetConfig = field(default_factory=_default_target)
    targets: dict[str, TargetConfig] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "GeneratorConfig":
        """Create GeneratorConfig from dictionary."""
        default_data = {"default_overwrite": True}
        default_data.update(_require_mapping(data.get("default_target") or {}, "default_target"))
        targets_data = _require_mapping(data.get("targets") or {}, "targets")
        roots = data.get("workspace_roots") or []
        if not isinstance(roots, list):
            raise ConfigValidationError("workspace_roots must be a list")
        targets = {
            str(name): TargetConfig.from_dict(str(name), config)
            for name, config in targets_data.items()
        }
        return cls(
            workspace_roots=[str(root) for root in roots],
            max_concurrency=data.get("max_concurrency", 4),
            default_target=TargetConfig.from_dict(DEFAULT_TARGET_NAME, default_data),
            targets=targets,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert GeneratorConfig to dictionary."""
        return {
            "workspace_roots": list(self.workspace_roots),
            "max_concurrency": self.max_concurrency,
            "default_target": self.default_target.to_dict(),
            "targets": {name: target.to_dict() for name, target in self.targets.items()},
        }

    def all_targets(self) -> list[TargetConfig]:
        """Default target first, then configured targets in file order."""
        return [self.default_target, *self.targets.values()]

    def get_target(self, name: str | None) -> TargetConfig | None:
        """Get configuration for a specific target (None selects the default)."""
        if not name or name == DEFAULT_TARGET_NAME:
            return self.default_target
        return self.targets.get(name)


DEFAULT_CONFIG_PATH = Path(__file__).parents[3] / "config" / "generation.yml"


def load_config(config_path: str | Path | None = None) -> GeneratorConfig:
    """
    Load generation configuration from YAML file.

    Args:
        config_path: Path to config file. If None, uses default location.

    Returns:
        GeneratorConfig with target configurations

    Raises:
        yaml.YAMLError: If config file is invalid YAML
        ConfigValidationError: If config validation fails
    """
    config_path = DEFAULT_CONFIG_PATH if config_path is None else Path(config_path)

    if not config_path.exists():
        # Return default config if file doesn't exist
        return GeneratorConfig()

    with open(config_path, "r", encoding="utf-8") as f:
        data = yaml.safe_load(f)

    if not data:
        return GeneratorConfig()

    if not isinstance(data, dict):
        raise ConfigValidationError(f"Config file {config_path} must contain a mapping")

    config = GeneratorConfig.from_dict(data)
    validate_config(config)
    return config


def _overlapping(first: str, second: str) -> bool:
    a = PurePosixPath(Path(first).as_posix())
    b = PurePosixPath(Path(second).as_posix())
    return a == b or a in b.parents or b in a.parents


def validate_config(config: GeneratorConfig) -> None:
    """
    Validate configuration.

    Args:
        config: Configuration to validate

    Raises:
        ConfigValidationError: If configuration is invalid
    """
    if not isinstance(config.max_concurrency, int) or config.max_concurrency <= 0:
        raise ConfigValidationError("max_concurrency must be a positive integer")

    for name, target in config.targets.items():
        if not name:
            raise ConfigValidationError("Target names must not be empty")
        if name == DEFAULT_TARGET_NAME:
            raise ConfigValidationError(
                f"Target name {DEFAULT_TARGET_NAME} is reserved; use default_target instead"
            )

    targets = config.all_targets()
    for target in targets:
        for flag in ("default_overwrite", "clean"):
            if not isinstance(getattr(target, flag), bool):
                raise ConfigValidationError(f"Target {target.name} {flag} must be true or false")
        if target.output_dir is not None and not isinstance(target.output_dir, str):
            raise ConfigValidationError(f"Target {target.name} output_dir must be a string")

    # A clean target deletes everything else under its output directory
    for index, target in enumerate(targets):
        for other in targets[index + 1:]:
            if target.output_dir is None or other.output_dir is None:
                continue
            if not (target.clean or other.clean):
                continue
            if _overlapping(target.output_dir, other.output_dir):
                raise ConfigValidationError(
                    f"Targets {target.name} and {other.name} share output directory "
                    f"{target.output_dir!r} / {other.output_dir!r}; "
                    f"a clean target requires a dedicated output directory"
                )
