"""
Backend implementations for pixelkernel.
"""

from __future__ import annotations

import logging

from pixelkernel.backends.base import (
    Backend,
    BackendType,
    DeviceAllocation,
    DeviceCallResult,
    LaunchConfig,
)
from pixelkernel.backends.cpu import CPUBackend
from pixelkernel.backends.cuda import CUDABackend
from pixelkernel.exceptions import BackendNotAvailableError, InvalidConfigurationError

logger = logging.getLogger(__name__)

__all__ = [
    "Backend",
    "BackendType",
    "CPUBackend",
    "CUDABackend",
    "DeviceAllocation",
    "DeviceCallResult",
    "LaunchConfig",
    "get_backend",
]


def get_backend(name: str = "auto", device_id: int = 0) -> Backend:
    """
    Create a backend by name.

    Args:
        name: ``"cuda"``, ``"cpu"`` or ``"auto"`` (CUDA when a device is
            visible, CPU otherwise).
        device_id: Device to bind a CUDA backend to.

    Returns:
        An uninitialized backend.

    Raises:
        BackendNotAvailableError: If ``"cuda"`` is requested without a device.
        InvalidConfigurationError: If the name is unknown.
    """
    if name == "cpu":
        return CPUBackend(device_id)

    if name in ("cuda", "auto"):
        backend = CUDABackend(device_id)
        if backend.is_available:
            return backend
        if name == "cuda":
            raise BackendNotAvailableError("CUDA", "no CUDA device found or CuPy not installed")
        logger.info("CUDA not available, falling back to CPU backend")
        return CPUBackend(device_id)

    raise InvalidConfigurationError("backend", name, "must be one of ['auto', 'cuda', 'cpu']")
