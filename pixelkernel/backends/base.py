"""
Backend base classes and interfaces.

Defines the abstract interface that all backends must implement.
Every call that crosses into the accelerator returns a
DeviceCallResult instead of raising, so callers can see exactly
which step of a transform failed.
"""

from __future__ import annotations

import logging
import time
from abc import ABC, abstractmethod
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from enum import Enum, auto
from typing import TYPE_CHECKING, Any

import numpy as np

from pixelkernel.exceptions import DeviceError

if TYPE_CHECKING:
    from numpy.typing import DTypeLike, NDArray

logger = logging.getLogger(__name__)


class BackendType(Enum):
    """Type of compute backend."""

    CPU = auto()
    CUDA = auto()


@dataclass
class DeviceCallResult:
    """Result of a single accelerator call."""

    operation: str
    success: bool
    execution_time_ms: float
    value: Any = None
    error: Exception | None = None

    def unwrap(self) -> Any:
        """
        Return the call's value, or raise if the call failed.

        Raises:
            DeviceError: If the call did not succeed.
        """
        if not self.success:
            raise DeviceError(self.operation, self.error) from self.error
        return self.value


@dataclass(frozen=True)
class LaunchConfig:
    """Grid and block dimensions for a kernel launch."""

    grid: tuple[int, int, int]
    block: tuple[int, int, int]

    @property
    def total_threads(self) -> int:
        """Number of work items the launch will run."""
        gx, gy, gz = self.grid
        bx, by, bz = self.block
        return gx * gy * gz * bx * by * bz


@dataclass
class DeviceAllocation:
    """
    A raw device allocation.

    ``array`` is a backend-native typed view over the allocation and is
    what gets passed to kernels. It is cleared when the allocation is freed.
    """

    nbytes: int
    dtype: np.dtype[Any]
    array: Any = None
    pointer: int = 0

    @property
    def is_live(self) -> bool:
        """Whether the allocation has not been freed yet."""
        return self.array is not None


class Backend(ABC):
    """
    Abstract base class for compute backends.

    Subclasses implement the raw ``_`` methods, which raise on failure.
    The public methods wrap them into DeviceCallResult objects and keep
    track of live allocations.
    """

    def __init__(self, device_id: int = 0) -> None:
        self._device_id = device_id
        self._initialized = False
        self._live_allocations = 0

    @property
    @abstractmethod
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        ...

    @property
    @abstractmethod
    def is_available(self) -> bool:
        """Check if this backend is available."""
        ...

    @property
    @abstractmethod
    def device_count(self) -> int:
        """Get the number of available devices."""
        ...

    @property
    @abstractmethod
    def source_suffix(self) -> str:
        """File suffix of kernel sources this backend compiles."""
        ...

    @property
    def device_id(self) -> int:
        """Get the device ID this backend was created for."""
        return self._device_id

    @property
    def is_initialized(self) -> bool:
        """Whether ``initialize`` has run without a matching ``shutdown``."""
        return self._initialized

    @property
    def live_allocations(self) -> int:
        """Number of device allocations not yet freed."""
        return self._live_allocations

    @abstractmethod
    def initialize(self) -> None:
        """Acquire the process-wide device context."""
        ...

    @abstractmethod
    def shutdown(self) -> None:
        """Release the device context and everything loaded into it."""
        ...

    @abstractmethod
    def compile(
        self,
        source: str,
        entry_point: str,
        options: Sequence[str] = (),
    ) -> tuple[Callable[..., Any], str]:
        """
        Compile kernel source and look up an entry point.

        Args:
            source: Kernel source text.
            entry_point: Name of the function to retrieve.
            options: Compiler flags.

        Returns:
            The invocable kernel and the (possibly empty) compilation log.

        Raises:
            KernelCompilationError: If compilation or lookup fails.
        """
        ...

    @abstractmethod
    def get_memory_info(self) -> dict[str, int]:
        """Get free/total/used device memory in bytes."""
        ...

    @abstractmethod
    def _allocate(self, nbytes: int, dtype: np.dtype[Any]) -> DeviceAllocation: ...

    @abstractmethod
    def _free(self, allocation: DeviceAllocation) -> None: ...

    @abstractmethod
    def _copy_to_device(self, allocation: DeviceAllocation, host: NDArray[Any]) -> None: ...

    @abstractmethod
    def _copy_to_host(self, host: NDArray[Any], allocation: DeviceAllocation) -> None: ...

    @abstractmethod
    def _launch(
        self,
        kernel: Callable[..., Any],
        config: LaunchConfig,
        args: tuple[Any, ...],
    ) -> None: ...

    @abstractmethod
    def _synchronize(self) -> None: ...

    def allocate(self, nbytes: int, dtype: DTypeLike = np.uint32) -> DeviceCallResult:
        """
        Allocate ``nbytes`` of device memory viewed as ``dtype``.

        Returns:
            Result whose value is a DeviceAllocation.
        """
        result = self._call("allocate", self._allocate, nbytes, np.dtype(dtype))
        if result.success:
            self._live_allocations += 1
        return result

    def free(self, allocation: DeviceAllocation) -> DeviceCallResult:
        """Release a device allocation."""
        result = self._call("free", self._free, allocation)
        if result.success:
            allocation.array = None
            allocation.pointer = 0
            self._live_allocations -= 1
        return result

    def copy_to_device(
        self,
        allocation: DeviceAllocation,
        host: NDArray[Any],
    ) -> DeviceCallResult:
        """Copy a host array into a device allocation."""
        return self._call("copy_to_device", self._copy_to_device, allocation, host)

    def copy_to_host(
        self,
        host: NDArray[Any],
        allocation: DeviceAllocation,
    ) -> DeviceCallResult:
        """Copy a device allocation back into a host array, in place."""
        return self._call("copy_to_host", self._copy_to_host, host, allocation)

    def launch(
        self,
        kernel: Callable[..., Any],
        config: LaunchConfig,
        args: tuple[Any, ...],
    ) -> DeviceCallResult:
        """Launch a kernel over ``config``'s grid."""
        return self._call("launch", self._launch, kernel, config, args)

    def synchronize(self) -> DeviceCallResult:
        """Block until all queued device work has completed."""
        return self._call("synchronize", self._synchronize)

    def _call(self, operation: str, func: Callable[..., Any], *args: Any) -> DeviceCallResult:
        start_time = time.perf_counter()
        try:
            value = func(*args)
        except Exception as e:
            elapsed = (time.perf_counter() - start_time) * 1000
            logger.debug(f"{operation} failed after {elapsed:.3f}ms: {e}")
            return DeviceCallResult(
                operation=operation,
                success=False,
                execution_time_ms=elapsed,
                error=e,
            )

        return DeviceCallResult(
            operation=operation,
            success=True,
            execution_time_ms=(time.perf_counter() - start_time) * 1000,
            value=value,
        )
