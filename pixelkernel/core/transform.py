"""
Frame transform: one kernel pass over a host pixel buffer.

The buffer is copied to the device, the prepared kernel is launched
over a 2D grid of 16x16 work-groups, and the result is copied back
into the same buffer. The device allocation never outlives the call.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

import numpy as np

from pixelkernel.backends.base import DeviceCallResult, LaunchConfig
from pixelkernel.core.device_buffer import DeviceBuffer
from pixelkernel.exceptions import (
    DeviceError,
    InvalidConfigurationError,
    KernelNotPreparedError,
)

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pixelkernel.backends.base import Backend
    from pixelkernel.compilation.compiler import KernelHandle

logger = logging.getLogger(__name__)

DEFAULT_BLOCK_SIZE = 16


def _ceil_div(n: int, d: int) -> int:
    return (n + d - 1) // d


def compute_launch_config(
    width: int,
    height: int,
    block_size: int = DEFAULT_BLOCK_SIZE,
    *,
    square: bool = False,
) -> LaunchConfig:
    """
    Size a 2D launch so the grid covers the whole image.

    Args:
        width: Image width in pixels.
        height: Image height in pixels.
        block_size: Edge length of a square work-group.
        square: Use ``ceil(max(width, height) / block_size)`` on both axes
            instead of sizing each axis separately.

    Returns:
        LaunchConfig with ``grid=(gx, gy, 1)`` and ``block=(b, b, 1)``.

    Raises:
        InvalidConfigurationError: If any argument is out of range.
    """
    if block_size <= 0:
        raise InvalidConfigurationError("block_size", block_size, "must be positive")
    if width < 0 or height < 0:
        raise InvalidConfigurationError("size", (width, height), "must be non-negative")

    if square:
        side = _ceil_div(max(width, height), block_size)
        grid = (side, side, 1)
    else:
        grid = (_ceil_div(width, block_size), _ceil_div(height, block_size), 1)

    return LaunchConfig(grid=grid, block=(block_size, block_size, 1))


@dataclass
class TransformResult:
    """Outcome of one frame transform, with every device call it made."""

    width: int
    height: int
    steps: list[DeviceCallResult] = field(default_factory=list)
    error: Exception | None = None

    @property
    def success(self) -> bool:
        """Whether the transform completed and the buffer was updated."""
        return self.error is None

    @property
    def failed_step(self) -> DeviceCallResult | None:
        """The first device call that failed, if any."""
        for step in self.steps:
            if not step.success:
                return step
        return None

    @property
    def execution_time_ms(self) -> float:
        """Total time spent in device calls."""
        return sum(step.execution_time_ms for step in self.steps)

    def raise_for_error(self) -> None:
        """Re-raise the failure, if there was one."""
        if self.error is not None:
            raise self.error


class FrameTransform:
    """
    Applies a prepared kernel to host pixel buffers.

    Example:
        >>> transform = FrameTransform(backend, handle)
        >>> transform(pixels, width, height)  # pixels updated in place
    """

    def __init__(
        self,
        backend: Backend,
        kernel: KernelHandle | None = None,
        *,
        block_size: int = DEFAULT_BLOCK_SIZE,
        square_grid: bool = False,
    ) -> None:
        """
        Initialize the transform.

        Args:
            backend: Backend to run on.
            kernel: Prepared kernel; may be set later.
            block_size: Work-group edge length.
            square_grid: Size the grid from the larger image dimension.
        """
        self._backend = backend
        self.kernel = kernel
        self._block_size = block_size
        self._square_grid = square_grid

    @property
    def is_ready(self) -> bool:
        """Whether a kernel has been prepared."""
        return self.kernel is not None

    def launch_config(self, width: int, height: int) -> LaunchConfig:
        """Launch configuration this transform uses for an image size."""
        return compute_launch_config(
            width, height, self._block_size, square=self._square_grid
        )

    def apply(self, pixels: NDArray[Any], width: int, height: int) -> TransformResult:
        """
        Run the kernel over ``pixels`` and report every device call.

        Device failures are captured in the result rather than raised.
        The pixel buffer is only written by the final copy-back, so a
        failure at any earlier step leaves the buffer unchanged. The
        device buffer is released on every path.

        Raises:
            KernelNotPreparedError: If no kernel has been prepared.
            InvalidConfigurationError: If the buffer does not match the size.
        """
        if self.kernel is None:
            raise KernelNotPreparedError()
        _check_pixels(pixels, width, height)

        result = TransformResult(width=width, height=height)
        if width * height == 0:
            return result

        config = self.launch_config(width, height)
        buffer = DeviceBuffer(self._backend, pixels.nbytes, pixels.dtype, record=result.steps)

        try:
            with buffer:
                buffer.upload(pixels).unwrap()
                args = (buffer.array, np.int32(width), np.int32(height))
                self._step(result, self._backend.launch(self.kernel.kernel, config, args))
                self._step(result, self._backend.synchronize())
                buffer.download(pixels).unwrap()
        except DeviceError as e:
            result.error = e
            logger.error(f"Transform of {width}x{height} image failed: {e}")

        return result

    def run(self, pixels: NDArray[Any], width: int, height: int) -> TransformResult:
        """
        Run the kernel over ``pixels`` in place, raising on any failure.

        Raises:
            KernelNotPreparedError: If no kernel has been prepared.
            InvalidConfigurationError: If the buffer does not match the size.
            DeviceError: If any device call fails.
        """
        result = self.apply(pixels, width, height)
        result.raise_for_error()
        return result

    __call__ = run

    @staticmethod
    def _step(result: TransformResult, call: DeviceCallResult) -> None:
        result.steps.append(call)
        call.unwrap()

    def __repr__(self) -> str:
        """String representation."""
        name = self.kernel.name if self.kernel is not None else None
        return (
            f"FrameTransform(backend={self._backend.backend_type.name}, "
            f"kernel={name!r}, block_size={self._block_size})"
        )


def _check_pixels(pixels: NDArray[Any], width: int, height: int) -> None:
    if width < 0 or height < 0:
        raise InvalidConfigurationError("size", (width, height), "must be non-negative")
    if not isinstance(pixels, np.ndarray):
        raise InvalidConfigurationError("pixels", type(pixels), "must be a numpy array")
    if pixels.ndim != 1 or not pixels.flags.c_contiguous:
        raise InvalidConfigurationError("pixels", pixels.shape, "must be 1-D and contiguous")
    if pixels.dtype.kind not in "iu" or pixels.dtype.itemsize != 4:
        raise InvalidConfigurationError("pixels", pixels.dtype, "must be 32-bit integers")
    if pixels.size != width * height:
        raise InvalidConfigurationError(
            "pixels", pixels.size, f"length must equal width*height ({width * height})"
        )
