"""
Pytest configuration and shared fixtures.
"""

from __future__ import annotations

from collections.abc import Callable, Generator
from typing import Any

import numpy as np
import pytest

from pixelkernel.backends.cpu import CPUBackend
from pixelkernel.compilation.compiler import KernelCompiler, KernelHandle
from pixelkernel.compilation.resources import read_kernel_source
from pixelkernel.plugin import MessageSink


class FailingBackend(CPUBackend):
    """CPU backend that raises inside one chosen device operation."""

    def __init__(self, fail_on: str) -> None:
        super().__init__()
        self.fail_on = fail_on

    def _fail(self, operation: str) -> None:
        if operation == self.fail_on:
            raise RuntimeError(f"simulated {operation} failure")

    def _allocate(self, nbytes: int, dtype: np.dtype[Any]) -> Any:
        self._fail("allocate")
        return super()._allocate(nbytes, dtype)

    def _free(self, allocation: Any) -> None:
        self._fail("free")
        super()._free(allocation)

    def _copy_to_device(self, allocation: Any, host: Any) -> None:
        self._fail("copy_to_device")
        super()._copy_to_device(allocation, host)

    def _copy_to_host(self, host: Any, allocation: Any) -> None:
        self._fail("copy_to_host")
        super()._copy_to_host(host, allocation)

    def _launch(self, kernel: Any, config: Any, args: Any) -> None:
        self._fail("launch")
        super()._launch(kernel, config, args)

    def _synchronize(self) -> None:
        self._fail("synchronize")
        super()._synchronize()


class RecordingSink(MessageSink):
    """Message sink that keeps every message."""

    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def show_message(self, title: str, text: str) -> None:
        self.messages.append((title, text))

    @property
    def errors(self) -> list[str]:
        return [text for title, text in self.messages if title == "Error"]


@pytest.fixture
def cpu_backend() -> Generator[CPUBackend, None, None]:
    """Provide an initialized CPU backend."""
    backend = CPUBackend()
    backend.initialize()
    yield backend
    backend.shutdown()


@pytest.fixture
def make_failing_backend() -> Callable[[str], FailingBackend]:
    """Provide a factory for backends that fail at one operation."""

    def factory(fail_on: str) -> FailingBackend:
        backend = FailingBackend(fail_on)
        backend.initialize()
        return backend

    return factory


@pytest.fixture(scope="session")
def cpu_invert_source() -> str:
    """The bundled CPU inversion kernel source."""
    return read_kernel_source("invert_kernel", ".py")


@pytest.fixture(scope="session")
def cpu_invert_handle(cpu_invert_source: str) -> KernelHandle:
    """A compiled CPU inversion kernel, shared across tests."""
    return KernelCompiler(CPUBackend()).compile(cpu_invert_source, "invert")


@pytest.fixture
def messages() -> RecordingSink:
    """Provide a recording message sink."""
    return RecordingSink()


@pytest.fixture
def sample_pixels() -> np.ndarray:
    """The 2x2 pixel buffer from the inversion scenario."""
    return np.array([0x00000000, 0xFFFFFFFF, 0x00FF00FF, 0xFF00FF00], dtype=np.uint32)


# Markers for CUDA tests
def pytest_configure(config: pytest.Config) -> None:
    """Configure custom markers."""
    config.addinivalue_line(
        "markers", "cuda: mark test as requiring CUDA"
    )
    config.addinivalue_line(
        "markers", "slow: mark test as slow running"
    )


def pytest_collection_modifyitems(
    config: pytest.Config,
    items: list[pytest.Item],
) -> None:
    """Skip CUDA tests if CUDA is not available."""
    cuda_available = False
    try:
        import cupy as cp

        cuda_available = cp.cuda.runtime.getDeviceCount() > 0
    except ImportError:
        pass
    except Exception:
        pass

    if not cuda_available:
        skip_cuda = pytest.mark.skip(reason="CUDA not available")
        for item in items:
            if "cuda" in item.keywords:
                item.add_marker(skip_cuda)
