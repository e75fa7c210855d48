"""
pixelkernel - run a runtime-compiled GPU kernel over host pixel buffers.

A minimal host-plugin adapter: kernel source is compiled once per
session (NVRTC through CuPy, or Numba on the CPU backend), then each
image is copied to the device, transformed by a 2D launch of 16x16
work-groups, and copied back in place.

Quick Start:
    >>> import numpy as np
    >>> from pixelkernel import DeviceContext, FrameTransform, KernelCompiler, get_backend
    >>>
    >>> with DeviceContext(get_backend("auto")) as ctx:
    ...     compiler = KernelCompiler(ctx.backend)
    ...     handle = compiler.compile_resource("invert_kernel", "invert")
    ...     pixels = np.array([0, 0xFFFFFFFF, 0x00FF00FF, 0xFF00FF00], dtype=np.uint32)
    ...     FrameTransform(ctx.backend, handle)(pixels, 2, 2)
"""

from pixelkernel.backends import (
    Backend,
    BackendType,
    CPUBackend,
    CUDABackend,
    DeviceCallResult,
    LaunchConfig,
    get_backend,
)
from pixelkernel.compilation import (
    CompilationOptions,
    KernelCompiler,
    KernelHandle,
    read_kernel_source,
)
from pixelkernel.config import PluginConfig, configure_logging
from pixelkernel.core import (
    BufferState,
    DeviceBuffer,
    DeviceContext,
    FrameTransform,
    TransformResult,
    compute_launch_config,
)
from pixelkernel.plugin import Capability, HostImage, ImageView, InvertPlugin

__version__ = "0.1.0"

__all__ = [
    # Version
    "__version__",
    # Backends
    "Backend",
    "BackendType",
    "CPUBackend",
    "CUDABackend",
    "DeviceCallResult",
    "LaunchConfig",
    "get_backend",
    # Kernel preparation
    "CompilationOptions",
    "KernelCompiler",
    "KernelHandle",
    "read_kernel_source",
    # Frame transform
    "BufferState",
    "DeviceBuffer",
    "DeviceContext",
    "FrameTransform",
    "TransformResult",
    "compute_launch_config",
    # Plugin
    "Capability",
    "HostImage",
    "ImageView",
    "InvertPlugin",
    # Config
    "PluginConfig",
    "configure_logging",
]
