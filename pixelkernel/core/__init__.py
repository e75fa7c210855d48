"""
Core abstractions for pixelkernel.
"""

from pixelkernel.core.context import DeviceContext, DeviceProperties
from pixelkernel.core.device_buffer import BufferState, DeviceBuffer
from pixelkernel.core.transform import (
    FrameTransform,
    TransformResult,
    compute_launch_config,
)

__all__ = [
    "DeviceContext",
    "DeviceProperties",
    "DeviceBuffer",
    "BufferState",
    "FrameTransform",
    "TransformResult",
    "compute_launch_config",
]
