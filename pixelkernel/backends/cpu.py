"""
CPU backend for pixelkernel.

Runs kernels written in Python on the host, JIT-compiled with Numba.
Useful for testing and development without GPU.

A CPU kernel is a per-work-item function::

    def invert(block_idx, block_dim, thread_idx, pixels, width, height):
        ...

where the first three arguments are ``(x, y, z)`` tuples. A launch visits
every work item of the grid, including items past the image edge, the
same way a GPU would.
"""

from __future__ import annotations

import logging
import warnings
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np
from numba import njit, types

from pixelkernel.backends.base import Backend, BackendType, DeviceAllocation, LaunchConfig
from pixelkernel.exceptions import KernelCompilationError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)

_INDEX = types.UniTuple(types.int64, 3)

# (block_idx, block_dim, thread_idx, pixels, width, height) for each pixel dtype
KERNEL_SIGNATURES = tuple(
    (_INDEX, _INDEX, _INDEX, pixel_type[::1], types.int32, types.int32)
    for pixel_type in (types.uint32, types.int32)
)


class CPUBackend(Backend):
    """
    CPU backend implementation.

    Device memory is plain NumPy memory and kernels are Numba-compiled
    Python functions. Provides full API compatibility for testing without GPU.

    Example:
        >>> backend = CPUBackend()
        >>> kernel, log = backend.compile(source, "invert")
        >>> allocation = backend.allocate(pixels.nbytes, pixels.dtype).unwrap()
    """

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CPU

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return True  # CPU is always available

    @property
    def device_count(self) -> int:
        """Get the number of available devices."""
        return 1  # CPU counts as 1 device

    @property
    def source_suffix(self) -> str:
        """CPU kernels are Python source."""
        return ".py"

    def initialize(self) -> None:
        """Mark the backend as ready (nothing to acquire on the host)."""
        self._initialized = True

    def shutdown(self) -> None:
        """Mark the backend as released."""
        self._initialized = False

    def compile(
        self,
        source: str,
        entry_point: str,
        options: Sequence[str] = (),
    ) -> tuple[Callable[..., Any], str]:
        """
        Compile Python kernel source and JIT the entry point.

        Kernel sources are trusted bundled resources: they are executed
        to obtain the entry point. The entry point is then compiled for
        every signature in ``KERNEL_SIGNATURES`` so that typing errors
        surface here rather than at launch. Warnings raised while
        compiling the source (for example ``SyntaxWarning``) are returned
        as the compilation log.

        Args:
            source: Python source defining the entry point.
            entry_point: Name of the kernel function.
            options: ``--use_fast_math`` enables Numba fastmath; other
                flags are ignored.

        Returns:
            The Numba dispatcher and the compilation log.

        Raises:
            KernelCompilationError: If the source does not compile or
                does not define the entry point, or if Numba cannot
                compile the entry point.
        """
        filename = f"<kernel {entry_point}>"
        namespace: dict[str, Any] = {}

        with warnings.catch_warnings(record=True) as caught:
            warnings.simplefilter("always")
            try:
                code = compile(source, filename, "exec")
                exec(code, namespace)
            except Exception as e:
                raise KernelCompilationError(entry_point, e, _format_log(caught)) from e

        log = _format_log(caught)
        func = namespace.get(entry_point)
        if not callable(func):
            raise KernelCompilationError(
                entry_point,
                LookupError(f"entry point '{entry_point}' is not defined"),
                log,
            )

        dispatcher = njit(fastmath="--use_fast_math" in options)(func)
        try:
            for signature in KERNEL_SIGNATURES:
                dispatcher.compile(signature)
        except Exception as e:
            raise KernelCompilationError(entry_point, e, log) from e

        logger.debug(f"Compiled CPU kernel '{entry_point}'")
        return dispatcher, log

    def get_memory_info(self) -> dict[str, int]:
        """Host memory is not tracked."""
        return {"free": 0, "total": 0, "used": 0}

    def _allocate(self, nbytes: int, dtype: np.dtype[Any]) -> DeviceAllocation:
        if nbytes % dtype.itemsize:
            raise ValueError(f"{nbytes} bytes is not a whole number of {dtype} elements")
        array = np.empty(nbytes // dtype.itemsize, dtype=dtype)
        return DeviceAllocation(
            nbytes=nbytes,
            dtype=dtype,
            array=array,
            pointer=array.ctypes.data,
        )

    def _free(self, allocation: DeviceAllocation) -> None:
        # NumPy handles garbage collection
        pass

    def _copy_to_device(self, allocation: DeviceAllocation, host: NDArray[Any]) -> None:
        np.copyto(allocation.array, host, casting="no")

    def _copy_to_host(self, host: NDArray[Any], allocation: DeviceAllocation) -> None:
        np.copyto(host, allocation.array, casting="no")

    def _launch(
        self,
        kernel: Callable[..., Any],
        config: LaunchConfig,
        args: tuple[Any, ...],
    ) -> None:
        gx, gy, gz = config.grid
        bx, by, bz = config.block
        blocks = [(x, y, z) for z in range(gz) for y in range(gy) for x in range(gx)]
        threads = [(x, y, z) for z in range(bz) for y in range(by) for x in range(bx)]

        for block_idx in blocks:
            for thread_idx in threads:
                kernel(block_idx, config.block, thread_idx, *args)

    def _synchronize(self) -> None:
        # CPU launches are synchronous
        pass

    def __repr__(self) -> str:
        """String representation."""
        return f"CPUBackend(available=True, live_allocations={self.live_allocations})"


def _format_log(caught: list[warnings.WarningMessage]) -> str:
    return "\n".join(
        f"{w.filename}:{w.lineno}: {w.category.__name__}: {w.message}" for w in caught
    )
