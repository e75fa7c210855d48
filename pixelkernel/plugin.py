"""
Host plugin adapter.

Implements the two-call plugin protocol of a host image application:
``setup`` prepares the device context and the kernel once, ``run``
transforms an image and asks the host to redraw it.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from enum import IntFlag
from typing import TYPE_CHECKING, Any

import numpy as np

from pixelkernel.backends import get_backend
from pixelkernel.compilation.compiler import CompilationOptions, KernelCompiler
from pixelkernel.compilation.resources import read_kernel_source
from pixelkernel.config import PluginConfig
from pixelkernel.core.context import DeviceContext
from pixelkernel.core.transform import FrameTransform
from pixelkernel.exceptions import InvalidConfigurationError, KernelCompilationError, ResourceError

if TYPE_CHECKING:
    from numpy.typing import NDArray

    from pixelkernel.backends.base import Backend
    from pixelkernel.compilation.compiler import KernelHandle
    from pixelkernel.core.transform import TransformResult

logger = logging.getLogger(__name__)

ABOUT_TITLE = "About pixelkernel..."
ABOUT_TEXT = "An example of a host image plugin that runs a runtime-compiled GPU kernel\n"


class Capability(IntFlag):
    """Pixel formats a plugin declares it supports."""

    DOES_RGB = 16


class HostImage(ABC):
    """An image owned by the host, exposing its packed RGB pixels."""

    @property
    @abstractmethod
    def pixels(self) -> NDArray[Any]:
        """Row-major packed pixels, one 32-bit integer each."""
        ...

    @property
    @abstractmethod
    def width(self) -> int: ...

    @property
    @abstractmethod
    def height(self) -> int: ...

    @abstractmethod
    def update_and_draw(self) -> None:
        """Tell the host the pixels changed."""
        ...


class MessageSink(ABC):
    """Where the plugin reports user-facing messages."""

    @abstractmethod
    def show_message(self, title: str, text: str) -> None: ...


class LogMessageSink(MessageSink):
    """Reports messages through the ``pixelkernel`` logger."""

    def show_message(self, title: str, text: str) -> None:
        if title == "Error":
            logger.error(text)
        else:
            logger.info(f"{title}: {text}")


@dataclass
class ImageView(HostImage):
    """
    Standalone HostImage backed by a NumPy array.

    Example:
        >>> view = ImageView.from_rgb(rgb)  # (h, w, 3) uint8
        >>> plugin.run(view)
        >>> inverted = view.to_rgb()
    """

    _pixels: NDArray[Any]
    _width: int
    _height: int
    on_redraw: Callable[[ImageView], None] | None = None
    redraw_count: int = 0

    def __post_init__(self) -> None:
        if self._pixels.size != self._width * self._height:
            raise InvalidConfigurationError(
                "pixels",
                self._pixels.size,
                f"length must equal width*height ({self._width * self._height})",
            )

    @property
    def pixels(self) -> NDArray[Any]:
        return self._pixels

    @property
    def width(self) -> int:
        return self._width

    @property
    def height(self) -> int:
        return self._height

    def update_and_draw(self) -> None:
        self.redraw_count += 1
        if self.on_redraw is not None:
            self.on_redraw(self)

    @classmethod
    def from_rgb(cls, rgb: NDArray[np.uint8]) -> ImageView:
        """Pack an ``(height, width, 3)`` uint8 image into 0x00RRGGBB pixels."""
        if rgb.ndim != 3 or rgb.shape[2] != 3:
            raise InvalidConfigurationError("rgb", rgb.shape, "must be (height, width, 3)")
        height, width = rgb.shape[:2]
        channels = rgb.astype(np.uint32)
        packed = (channels[..., 0] << 16) | (channels[..., 1] << 8) | channels[..., 2]
        return cls(np.ascontiguousarray(packed.reshape(-1)), width, height)

    def to_rgb(self) -> NDArray[np.uint8]:
        """Unpack the pixels into an ``(height, width, 3)`` uint8 image."""
        packed = self._pixels.view(np.uint32).reshape(self._height, self._width)
        rgb = np.empty((self._height, self._width, 3), dtype=np.uint8)
        rgb[..., 0] = (packed >> 16) & 0xFF
        rgb[..., 1] = (packed >> 8) & 0xFF
        rgb[..., 2] = packed & 0xFF
        return rgb


class InvertPlugin:
    """
    Plugin that runs a bundled kernel over RGB images.

    Example:
        >>> with InvertPlugin(PluginConfig(backend="cpu")) as plugin:
        ...     plugin.setup(None, view)
        ...     plugin.run(view)
    """

    def __init__(
        self,
        config: PluginConfig | None = None,
        *,
        backend: Backend | None = None,
        messages: MessageSink | None = None,
    ) -> None:
        """
        Initialize the plugin. No device work happens until ``setup``.

        Args:
            config: Plugin settings (defaults to PluginConfig()).
            backend: Backend to use instead of the one named in ``config``.
            messages: Sink for user-facing messages.
        """
        self._config = (config or PluginConfig()).validate()
        self._backend = backend
        self._messages = messages or LogMessageSink()
        self._context: DeviceContext | None = None
        self._transform: FrameTransform | None = None

    @property
    def config(self) -> PluginConfig:
        """Get the plugin settings."""
        return self._config

    @property
    def kernel(self) -> KernelHandle | None:
        """The prepared kernel, or None if preparation did not succeed."""
        return self._transform.kernel if self._transform is not None else None

    @property
    def context(self) -> DeviceContext | None:
        """The device context opened by ``setup``."""
        return self._context

    def setup(self, arg: str | None, image: HostImage | None) -> Capability:
        """
        Prepare the plugin for an image.

        With ``arg == "about"`` only the about message is shown. Otherwise
        the device context is opened and the kernel resource is read and
        compiled. A missing resource or a failed compilation is reported
        and leaves the plugin without a kernel.

        Args:
            arg: Optional mode argument from the host.
            image: Image the plugin will run on; pixels are taken from
                the image passed to ``run``.

        Returns:
            The pixel formats this plugin supports.

        Raises:
            BackendNotAvailableError: If the device cannot be acquired.
        """
        if arg == "about":
            self._messages.show_message(ABOUT_TITLE, ABOUT_TEXT)
            return Capability.DOES_RGB

        backend = self._open_context().backend
        self._transform = FrameTransform(
            backend,
            block_size=self._config.block_size,
            square_grid=self._config.square_grid,
        )

        try:
            source = read_kernel_source(self._config.kernel_resource, backend.source_suffix)
        except ResourceError as e:
            self._messages.show_message("Error", f"Could not read the kernel source code\n{e}")
            return Capability.DOES_RGB

        compiler = KernelCompiler(
            backend, CompilationOptions(flags=self._config.compile_options)
        )
        try:
            self._transform.kernel = compiler.compile(source, self._config.entry_point)
        except KernelCompilationError as e:
            self._messages.show_message("Error", str(e))

        return Capability.DOES_RGB

    def run(self, image: HostImage) -> TransformResult | None:
        """
        Transform ``image`` in place and ask the host to redraw it.

        Returns:
            The transform result, or None if no kernel was prepared.
        """
        result = self.execute(image.pixels, image.width, image.height)
        if result is not None:
            image.update_and_draw()
        return result

    def execute(self, pixels: NDArray[Any], width: int, height: int) -> TransformResult | None:
        """
        Run the prepared kernel over a pixel buffer.

        If no kernel was prepared this is reported and nothing is done.

        Raises:
            DeviceError: If a device call fails.
        """
        if self._transform is None or not self._transform.is_ready:
            self._messages.show_message("Error", "The kernel was not initialized")
            return None
        return self._transform.run(pixels, width, height)

    def close(self) -> None:
        """Release the device context."""
        if self._context is not None:
            self._context.close()
            self._context = None
        self._transform = None

    def _open_context(self) -> DeviceContext:
        if self._context is None:
            backend = self._backend or get_backend(self._config.backend, self._config.device_id)
            self._context = DeviceContext(backend).open()
        return self._context

    def __enter__(self) -> InvertPlugin:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        """String representation."""
        name = self.kernel.name if self.kernel is not None else None
        return f"InvertPlugin(kernel={name!r}, context={self._context!r})"
