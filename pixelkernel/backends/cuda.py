"""
CUDA backend for pixelkernel.

Compiles CUDA C source at runtime with NVRTC and runs it through CuPy.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Sequence
from typing import TYPE_CHECKING, Any

import numpy as np

from pixelkernel.backends.base import Backend, BackendType, DeviceAllocation, LaunchConfig
from pixelkernel.exceptions import BackendNotAvailableError, KernelCompilationError

if TYPE_CHECKING:
    from numpy.typing import NDArray

logger = logging.getLogger(__name__)


def _check_cuda_available() -> bool:
    """Check if CUDA is available."""
    try:
        import cupy as cp

        return cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        return False
    except Exception:
        return False


class CUDABackend(Backend):
    """
    CUDA backend implementation using CuPy.

    Kernel sources are compiled with NVRTC into PTX, which is loaded
    into a module that lives until ``shutdown``. Device buffers are raw
    ``cudaMalloc`` allocations so that each one is released exactly
    when ``free`` is called.

    Example:
        >>> backend = CUDABackend()
        >>> if backend.is_available:
        ...     backend.initialize()
        ...     kernel, log = backend.compile(source, "invert")
    """

    def __init__(self, device_id: int = 0) -> None:
        """
        Initialize the CUDA backend.

        Args:
            device_id: CUDA device ID to use.
        """
        super().__init__(device_id)
        self._cuda_available = _check_cuda_available()
        self._cp: Any = None
        self._modules: list[Any] = []

    @property
    def backend_type(self) -> BackendType:
        """Get the backend type."""
        return BackendType.CUDA

    @property
    def is_available(self) -> bool:
        """Check if this backend is available."""
        return self._cuda_available

    @property
    def device_count(self) -> int:
        """Get the number of available CUDA devices."""
        if not self._cuda_available:
            return 0

        import cupy as cp

        return cp.cuda.runtime.getDeviceCount()

    @property
    def source_suffix(self) -> str:
        """CUDA kernels are CUDA C source."""
        return ".cu"

    def initialize(self) -> None:
        """
        Select the device and make its context current.

        Raises:
            BackendNotAvailableError: If CuPy or the device is missing.
        """
        if self._initialized:
            return
        if not self._cuda_available:
            raise BackendNotAvailableError("CUDA", "no CUDA device found or CuPy not installed")

        import cupy as cp

        count = cp.cuda.runtime.getDeviceCount()
        if self._device_id >= count:
            raise BackendNotAvailableError(
                "CUDA",
                f"device {self._device_id} requested but only {count} present",
            )

        cp.cuda.Device(self._device_id).use()
        self._cp = cp
        self._initialized = True

        props = cp.cuda.runtime.getDeviceProperties(self._device_id)
        name = props["name"].decode() if isinstance(props["name"], bytes) else props["name"]
        logger.info(f"CUDA backend initialized on device {self._device_id} ({name})")

    def shutdown(self) -> None:
        """Unload compiled modules and return cached memory to the driver."""
        if not self._initialized:
            return

        self._cp.cuda.Stream.null.synchronize()
        self._modules.clear()
        self._cp.get_default_memory_pool().free_all_blocks()
        self._initialized = False
        logger.info(f"CUDA backend on device {self._device_id} shut down")

    def compile(
        self,
        source: str,
        entry_point: str,
        options: Sequence[str] = (),
    ) -> tuple[Callable[..., Any], str]:
        """
        Compile CUDA C source with NVRTC and load the entry point.

        The entry point must be declared ``extern "C"`` so its name is not
        mangled. If no ``-arch``/``--gpu-architecture`` flag is given, the
        current device's compute capability is targeted.

        Args:
            source: CUDA C source code.
            entry_point: Name of the ``__global__`` function.
            options: NVRTC options.

        Returns:
            The CuPy function and the NVRTC program log.

        Raises:
            KernelCompilationError: If compilation or loading fails.
        """
        cp = self._require_initialized()
        from cupy.cuda import function, nvrtc

        opts = list(options)
        if not any(o.startswith(("-arch", "--gpu-architecture")) for o in opts):
            capability = cp.cuda.Device(self._device_id).compute_capability
            opts.append(f"--gpu-architecture=compute_{capability}")

        prog = nvrtc.createProgram(source, f"{entry_point}.cu", (), ())
        try:
            try:
                nvrtc.compileProgram(prog, opts)
            except nvrtc.NVRTCError as e:
                log = nvrtc.getProgramLog(prog).strip()
                raise KernelCompilationError(entry_point, e, log) from e
            log = nvrtc.getProgramLog(prog).strip()
            ptx = nvrtc.getPTX(prog)
        finally:
            nvrtc.destroyProgram(prog)

        module = function.Module()
        try:
            module.load(ptx)
            kernel = module.get_function(entry_point)
        except Exception as e:
            raise KernelCompilationError(entry_point, e, log) from e

        self._modules.append(module)
        return kernel, log

    def get_memory_info(self) -> dict[str, int]:
        """
        Get GPU memory information.

        Returns:
            Dictionary with free and total memory in bytes.
        """
        if not self._cuda_available:
            return {"free": 0, "total": 0, "used": 0}

        import cupy as cp

        mem_info = cp.cuda.runtime.memGetInfo()
        return {
            "free": mem_info[0],
            "total": mem_info[1],
            "used": mem_info[1] - mem_info[0],
        }

    def _require_initialized(self) -> Any:
        if not self._initialized:
            raise BackendNotAvailableError("CUDA", "backend has not been initialized")
        return self._cp

    def _allocate(self, nbytes: int, dtype: np.dtype[Any]) -> DeviceAllocation:
        cp = self._require_initialized()
        if nbytes % dtype.itemsize:
            raise ValueError(f"{nbytes} bytes is not a whole number of {dtype} elements")

        pointer = cp.cuda.runtime.malloc(nbytes)
        memory = cp.cuda.UnownedMemory(pointer, nbytes, None, self._device_id)
        array = cp.ndarray(
            (nbytes // dtype.itemsize,),
            dtype=dtype,
            memptr=cp.cuda.MemoryPointer(memory, 0),
        )
        return DeviceAllocation(nbytes=nbytes, dtype=dtype, array=array, pointer=pointer)

    def _free(self, allocation: DeviceAllocation) -> None:
        cp = self._require_initialized()
        cp.cuda.runtime.free(allocation.pointer)

    def _copy_to_device(self, allocation: DeviceAllocation, host: NDArray[Any]) -> None:
        allocation.array.set(host)

    def _copy_to_host(self, host: NDArray[Any], allocation: DeviceAllocation) -> None:
        allocation.array.get(out=host)

    def _launch(
        self,
        kernel: Callable[..., Any],
        config: LaunchConfig,
        args: tuple[Any, ...],
    ) -> None:
        kernel(config.grid, config.block, args)

    def _synchronize(self) -> None:
        cp = self._require_initialized()
        cp.cuda.Stream.null.synchronize()

    def __repr__(self) -> str:
        """String representation."""
        if self._cuda_available:
            mem = self.get_memory_info()
            return (
                f"CUDABackend(device={self._device_id}, "
                f"devices={self.device_count}, "
                f"memory_free={mem['free'] // 1024**2}MB)"
            )
        return "CUDABackend(available=False)"
