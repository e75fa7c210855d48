"""
Transient device buffer with scoped lifetime.

A DeviceBuffer is allocated on entry to a ``with`` block and always
released on exit, whether the block finished or raised.
"""

from __future__ import annotations

import logging
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

import numpy as np

from pixelkernel.exceptions import BufferStateError

if TYPE_CHECKING:
    from types import TracebackType

    from numpy.typing import DTypeLike, NDArray

    from pixelkernel.backends.base import Backend, DeviceAllocation, DeviceCallResult

logger = logging.getLogger(__name__)


class BufferState(Enum):
    """State of a device buffer."""

    ABSENT = auto()
    ALLOCATED = auto()
    FREED = auto()


class DeviceBuffer:
    """
    Device allocation sized to a host pixel buffer.

    Example:
        >>> with DeviceBuffer(backend, pixels.nbytes, pixels.dtype) as buf:
        ...     buf.upload(pixels).unwrap()
        ...     ...
        ...     buf.download(pixels).unwrap()
    """

    def __init__(
        self,
        backend: Backend,
        nbytes: int,
        dtype: DTypeLike = np.uint32,
        *,
        record: list[DeviceCallResult] | None = None,
    ) -> None:
        """
        Initialize a device buffer. Nothing is allocated until ``allocate``.

        Args:
            backend: Backend that owns the memory.
            nbytes: Size of the allocation in bytes.
            dtype: Element type used for the kernel-facing view.
            record: List that every device call result is appended to.
        """
        self._backend = backend
        self._nbytes = nbytes
        self._dtype = np.dtype(dtype)
        self._state = BufferState.ABSENT
        self._allocation: DeviceAllocation | None = None
        self._record = record

    @property
    def state(self) -> BufferState:
        """Get the current buffer state."""
        return self._state

    @property
    def nbytes(self) -> int:
        """Get the allocation size in bytes."""
        return self._nbytes

    @property
    def dtype(self) -> np.dtype[Any]:
        """Get the element type."""
        return self._dtype

    @property
    def array(self) -> Any:
        """
        Backend-native view of the allocation, passed to kernels.

        Raises:
            BufferStateError: If the buffer is not allocated.
        """
        return self._require_allocated("access").array

    def allocate(self) -> DeviceCallResult:
        """
        Allocate the device memory.

        Raises:
            BufferStateError: If the buffer was already allocated.
        """
        if self._state != BufferState.ABSENT:
            raise BufferStateError(self._state.name, "allocate")

        result = self._backend.allocate(self._nbytes, self._dtype)
        self._track(result)
        if result.success:
            self._allocation = result.value
            self._state = BufferState.ALLOCATED
        return result

    def upload(self, host: NDArray[Any]) -> DeviceCallResult:
        """Copy ``host`` into the device buffer."""
        allocation = self._require_allocated("upload to")
        return self._track(self._backend.copy_to_device(allocation, host))

    def download(self, host: NDArray[Any]) -> DeviceCallResult:
        """Copy the device buffer into ``host``, overwriting it."""
        allocation = self._require_allocated("download from")
        return self._track(self._backend.copy_to_host(host, allocation))

    def free(self) -> DeviceCallResult | None:
        """
        Release the device memory.

        Returns:
            The free result, or None if nothing was allocated.
        """
        if self._allocation is None:
            return None

        result = self._backend.free(self._allocation)
        self._track(result)
        if result.success:
            self._allocation = None
            self._state = BufferState.FREED
        return result

    def _track(self, result: DeviceCallResult) -> DeviceCallResult:
        if self._record is not None:
            self._record.append(result)
        return result

    def _require_allocated(self, operation: str) -> DeviceAllocation:
        if self._state != BufferState.ALLOCATED or self._allocation is None:
            raise BufferStateError(self._state.name, operation)
        return self._allocation

    def __enter__(self) -> DeviceBuffer:
        self.allocate().unwrap()
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        result = self.free()
        if result is None or result.success:
            return
        if exc is not None:
            # the in-flight exception propagates
            logger.error(f"Failed to free device buffer after error: {result.error}")
            return
        result.unwrap()

    def __repr__(self) -> str:
        """String representation."""
        return f"DeviceBuffer(nbytes={self._nbytes}, dtype={self._dtype}, state={self._state.name})"
