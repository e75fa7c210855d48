"""
Scoped accelerator context.

Acquires the device for a backend when opened and releases it when
closed, so that the process-wide context has an explicit lifetime.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pixelkernel.exceptions import BackendNotAvailableError

if TYPE_CHECKING:
    from pixelkernel.backends.base import Backend, BackendType

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class DeviceProperties:
    """Summary of the device behind a context."""

    device_id: int
    backend_type: BackendType
    device_count: int
    free_memory: int
    total_memory: int

    @property
    def total_memory_gb(self) -> float:
        """Get total memory in GB."""
        return self.total_memory / (1024**3)


class DeviceContext:
    """
    Explicitly scoped device context.

    Example:
        >>> with DeviceContext(get_backend("auto")) as ctx:
        ...     compiler = KernelCompiler(ctx.backend)
    """

    def __init__(self, backend: Backend) -> None:
        """
        Initialize the context wrapper. Nothing is acquired until ``open``.

        Args:
            backend: Backend whose device this context owns.
        """
        self._backend = backend
        self._open = False
        self._closed = False

    @property
    def is_open(self) -> bool:
        """Whether the context is currently acquired."""
        return self._open

    @property
    def backend(self) -> Backend:
        """
        Get the backend, which is only usable while the context is open.

        Raises:
            BackendNotAvailableError: If the context is not open.
        """
        if not self._open:
            state = "closed" if self._closed else "not opened"
            raise BackendNotAvailableError(self._backend.backend_type.name, f"context is {state}")
        return self._backend

    def open(self) -> DeviceContext:
        """Acquire the device. Opening an open context does nothing."""
        if self._open:
            return self
        if self._closed:
            raise BackendNotAvailableError(
                self._backend.backend_type.name, "context cannot be reopened"
            )

        self._backend.initialize()
        self._open = True
        logger.debug(f"Opened {self._backend.backend_type.name} context")
        return self

    def close(self) -> None:
        """Release the device. Closing a closed context does nothing."""
        if not self._open:
            self._closed = True
            return

        try:
            self._backend.shutdown()
        finally:
            self._open = False
            self._closed = True
        logger.debug(f"Closed {self._backend.backend_type.name} context")

    def properties(self) -> DeviceProperties:
        """Describe the device behind this context."""
        backend = self.backend
        mem = backend.get_memory_info()
        return DeviceProperties(
            device_id=backend.device_id,
            backend_type=backend.backend_type,
            device_count=backend.device_count,
            free_memory=mem["free"],
            total_memory=mem["total"],
        )

    def __enter__(self) -> DeviceContext:
        return self.open()

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        """String representation."""
        return f"DeviceContext(backend={self._backend.backend_type.name}, open={self._open})"
