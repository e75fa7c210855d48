"""
Configuration for pixelkernel.

Holds the plugin settings dataclass, its environment overrides,
and the one-time logging setup for the ``pixelkernel`` logger.
"""

from __future__ import annotations

import logging
import os
import sys
from dataclasses import dataclass, field

from pixelkernel.exceptions import InvalidConfigurationError

BACKEND_NAMES = ("auto", "cuda", "cpu")

ENV_PREFIX = "PIXELKERNEL_"
ENV_LOG_LEVEL = f"{ENV_PREFIX}LOG_LEVEL"

_LOG_FORMAT = "[pixelkernel] %(levelname)s %(name)s: %(message)s"


@dataclass
class PluginConfig:
    """Settings for kernel preparation and frame transforms."""

    kernel_resource: str = "invert_kernel"
    entry_point: str = "invert"
    block_size: int = 16
    device_id: int = 0
    backend: str = "auto"  # auto, cuda, cpu
    compile_options: tuple[str, ...] = field(default_factory=tuple)
    square_grid: bool = False

    def validate(self) -> PluginConfig:
        """
        Check the settings.

        Returns:
            This config, for chaining.

        Raises:
            InvalidConfigurationError: If a setting is out of range.
        """
        if self.block_size <= 0:
            raise InvalidConfigurationError("block_size", self.block_size, "must be positive")
        if self.device_id < 0:
            raise InvalidConfigurationError("device_id", self.device_id, "must be non-negative")
        if self.backend not in BACKEND_NAMES:
            raise InvalidConfigurationError(
                "backend", self.backend, f"must be one of {list(BACKEND_NAMES)}"
            )
        if not self.entry_point:
            raise InvalidConfigurationError("entry_point", self.entry_point, "must not be empty")
        if not self.kernel_resource:
            raise InvalidConfigurationError(
                "kernel_resource", self.kernel_resource, "must not be empty"
            )
        return self

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> PluginConfig:
        """
        Build a config from ``PIXELKERNEL_*`` environment variables.

        Recognised variables: ``KERNEL_RESOURCE``, ``ENTRY_POINT``,
        ``BLOCK_SIZE``, ``DEVICE``, ``BACKEND``, ``COMPILE_OPTIONS``
        (whitespace separated) and ``SQUARE_GRID``.

        Args:
            environ: Mapping to read from (defaults to ``os.environ``).

        Returns:
            A validated PluginConfig.
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str) -> str | None:
            value = env.get(f"{ENV_PREFIX}{name}")
            return value.strip() if value is not None else None

        return cls(
            kernel_resource=get("KERNEL_RESOURCE") or defaults.kernel_resource,
            entry_point=get("ENTRY_POINT") or defaults.entry_point,
            block_size=_parse_int("BLOCK_SIZE", get("BLOCK_SIZE"), defaults.block_size),
            device_id=_parse_int("DEVICE", get("DEVICE"), defaults.device_id),
            backend=(get("BACKEND") or defaults.backend).lower(),
            compile_options=tuple((get("COMPILE_OPTIONS") or "").split()),
            square_grid=(get("SQUARE_GRID") or "0").lower() in ("1", "true", "yes"),
        ).validate()


def _parse_int(name: str, raw: str | None, default: int) -> int:
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError as e:
        raise InvalidConfigurationError(f"{ENV_PREFIX}{name}", raw, "must be an integer") from e


_logging_configured = False


def configure_logging(level: int | str | None = None) -> logging.Logger:
    """
    Attach a stderr handler to the ``pixelkernel`` logger once.

    The level defaults to ``PIXELKERNEL_LOG_LEVEL`` and falls back to WARNING.
    A handler is only added if none is present, so host applications
    can install their own.

    Args:
        level: Explicit level name or number.

    Returns:
        The package logger.
    """
    global _logging_configured

    root = logging.getLogger("pixelkernel")
    if level is None:
        env_val = os.environ.get(ENV_LOG_LEVEL, "").strip().upper()
        level = getattr(logging, env_val, logging.WARNING)
    root.setLevel(level)

    if not _logging_configured:
        if not root.handlers:
            handler = logging.StreamHandler(sys.stderr)
            handler.setFormatter(logging.Formatter(_LOG_FORMAT))
            root.addHandler(handler)
        _logging_configured = True

    return root
