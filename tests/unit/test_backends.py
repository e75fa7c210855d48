"""
Unit tests for compute backends.
"""

from __future__ import annotations

import numpy as np
import pytest

from pixelkernel.backends import get_backend
from pixelkernel.backends.base import BackendType, DeviceCallResult, LaunchConfig
from pixelkernel.backends.cpu import KERNEL_SIGNATURES, CPUBackend
from pixelkernel.backends.cuda import CUDABackend
from pixelkernel.compilation.resources import read_kernel_source
from pixelkernel.exceptions import (
    BackendNotAvailableError,
    DeviceError,
    InvalidConfigurationError,
    KernelCompilationError,
)


class TestDeviceCallResult:
    """Tests for DeviceCallResult."""

    def test_successful_result(self) -> None:
        """Test successful call result."""
        result = DeviceCallResult(
            operation="allocate",
            success=True,
            execution_time_ms=1.5,
            value=42,
        )

        assert result.success
        assert result.error is None
        assert result.unwrap() == 42

    def test_failed_result_unwrap_raises(self) -> None:
        """Test unwrap turns a failure into DeviceError."""
        error = RuntimeError("Test error")
        result = DeviceCallResult(
            operation="launch",
            success=False,
            execution_time_ms=0.1,
            error=error,
        )

        with pytest.raises(DeviceError) as exc_info:
            result.unwrap()

        assert exc_info.value.operation == "launch"
        assert exc_info.value.cause is error
        assert exc_info.value.__cause__ is error


class TestLaunchConfig:
    """Tests for LaunchConfig."""

    def test_total_threads(self) -> None:
        """Test work item count."""
        config = LaunchConfig(grid=(2, 3, 1), block=(16, 16, 1))

        assert config.total_threads == 2 * 3 * 256

    def test_frozen(self) -> None:
        """Test launch configs are immutable."""
        config = LaunchConfig(grid=(1, 1, 1), block=(16, 16, 1))

        with pytest.raises(AttributeError):
            config.grid = (2, 2, 1)  # type: ignore[misc]


class TestCPUBackend:
    """Tests for CPUBackend."""

    def test_backend_type(self) -> None:
        """Test backend type."""
        backend = CPUBackend()

        assert backend.backend_type == BackendType.CPU
        assert backend.is_available
        assert backend.device_count == 1
        assert backend.source_suffix == ".py"

    def test_initialize_shutdown(self) -> None:
        """Test initialization flag."""
        backend = CPUBackend()
        assert not backend.is_initialized

        backend.initialize()
        assert backend.is_initialized

        backend.shutdown()
        assert not backend.is_initialized

    def test_allocate_and_free(self, cpu_backend: CPUBackend) -> None:
        """Test allocation tracking."""
        result = cpu_backend.allocate(64, np.uint32)

        assert result.success
        assert result.operation == "allocate"
        allocation = result.value
        assert allocation.nbytes == 64
        assert allocation.array.shape == (16,)
        assert allocation.array.dtype == np.uint32
        assert cpu_backend.live_allocations == 1

        freed = cpu_backend.free(allocation)

        assert freed.success
        assert not allocation.is_live
        assert cpu_backend.live_allocations == 0

    def test_allocate_partial_element_fails(self, cpu_backend: CPUBackend) -> None:
        """Test allocation of a size that is not a whole number of elements."""
        result = cpu_backend.allocate(6, np.uint32)

        assert not result.success
        assert isinstance(result.error, ValueError)
        assert cpu_backend.live_allocations == 0

    def test_copy_round_trip(self, cpu_backend: CPUBackend) -> None:
        """Test host to device and back."""
        host = np.array([1, 2, 3, 4], dtype=np.uint32)
        allocation = cpu_backend.allocate(host.nbytes, host.dtype).unwrap()

        assert cpu_backend.copy_to_device(allocation, host).success
        out = np.zeros_like(host)
        assert cpu_backend.copy_to_host(out, allocation).success

        np.testing.assert_array_equal(out, host)
        # Device memory is a separate copy
        assert allocation.array is not host

    def test_copy_dtype_mismatch_fails(self, cpu_backend: CPUBackend) -> None:
        """Test copies never cast silently."""
        allocation = cpu_backend.allocate(16, np.uint32).unwrap()
        host = np.zeros(4, dtype=np.float32)

        result = cpu_backend.copy_to_device(allocation, host)

        assert not result.success

    def test_synchronize(self, cpu_backend: CPUBackend) -> None:
        """Test synchronize (no-op for CPU)."""
        assert cpu_backend.synchronize().success

    def test_compile_and_launch(self, cpu_backend: CPUBackend) -> None:
        """Test a compiled kernel visits every work item."""
        source = (
            "def mark(block_idx, block_dim, thread_idx, out, width, height):\n"
            "    x = block_idx[0] * block_dim[0] + thread_idx[0]\n"
            "    y = block_idx[1] * block_dim[1] + thread_idx[1]\n"
            "    if x < width and y < height:\n"
            "        out[y * width + x] = y * width + x\n"
        )
        kernel, log = cpu_backend.compile(source, "mark")
        out = np.zeros(6, dtype=np.int32)

        result = cpu_backend.launch(
            kernel,
            LaunchConfig(grid=(1, 1, 1), block=(4, 4, 1)),
            (out, np.int32(3), np.int32(2)),
        )

        assert result.success, result.error
        assert log == ""
        np.testing.assert_array_equal(out, np.arange(6))

    def test_compile_syntax_error(self, cpu_backend: CPUBackend) -> None:
        """Test invalid source fails to compile."""
        with pytest.raises(KernelCompilationError) as exc_info:
            cpu_backend.compile("def invert(:\n    pass\n", "invert")

        assert exc_info.value.kernel_name == "invert"
        assert isinstance(exc_info.value.cause, SyntaxError)

    def test_compile_missing_entry_point(self, cpu_backend: CPUBackend) -> None:
        """Test a missing entry point fails to compile."""
        with pytest.raises(KernelCompilationError) as exc_info:
            cpu_backend.compile("def other(a):\n    pass\n", "invert")

        assert isinstance(exc_info.value.cause, LookupError)

    def test_compile_typing_error(self, cpu_backend: CPUBackend) -> None:
        """Test source that parses but cannot be JIT-compiled fails at compile time."""
        source = (
            "def invert(block_idx, block_dim, thread_idx, pixels, width, height):\n"
            "    pixels[0] = undefined_name + {}\n"
        )

        with pytest.raises(KernelCompilationError) as exc_info:
            cpu_backend.compile(source, "invert")

        assert exc_info.value.kernel_name == "invert"
        assert not isinstance(exc_info.value.cause, SyntaxError)

    def test_compiled_for_pixel_types(self, cpu_backend: CPUBackend) -> None:
        """Test the kernel is compiled for both pixel types before any launch."""
        kernel, _ = cpu_backend.compile(read_kernel_source("invert_kernel", ".py"), "invert")

        assert len(kernel.signatures) == len(KERNEL_SIGNATURES)

    def test_compile_collects_warnings(self, cpu_backend: CPUBackend) -> None:
        """Test compile-time warnings become the log."""
        source = (
            'PATTERN = "\\d"\n\n'
            "def k(block_idx, block_dim, thread_idx, pixels, width, height):\n"
            "    pass\n"
        )

        kernel, log = cpu_backend.compile(source, "k")

        assert callable(kernel)
        assert "Warning" in log

    def test_launch_error_is_reported(self, cpu_backend: CPUBackend) -> None:
        """Test a kernel raising becomes a failed result."""

        def broken(block_idx, block_dim, thread_idx):  # noqa: ANN001
            raise ValueError("Test error")

        result = cpu_backend.launch(
            broken, LaunchConfig(grid=(1, 1, 1), block=(1, 1, 1)), ()
        )

        assert not result.success
        assert isinstance(result.error, ValueError)
        assert result.execution_time_ms >= 0

    def test_repr(self) -> None:
        """Test string representation."""
        repr_str = repr(CPUBackend())

        assert "CPUBackend" in repr_str
        assert "available=True" in repr_str


class TestCUDABackendWithoutDevice:
    """Tests for CUDABackend behaviour when no device is present."""

    @pytest.fixture(autouse=True)
    def no_cuda(self, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setattr("pixelkernel.backends.cuda._check_cuda_available", lambda: False)

    def test_unavailable(self) -> None:
        """Test availability and device count."""
        backend = CUDABackend()

        assert backend.backend_type == BackendType.CUDA
        assert not backend.is_available
        assert backend.device_count == 0
        assert backend.source_suffix == ".cu"
        assert repr(backend) == "CUDABackend(available=False)"

    def test_initialize_raises(self) -> None:
        """Test initialize refuses without a device."""
        with pytest.raises(BackendNotAvailableError):
            CUDABackend().initialize()

    def test_uninitialized_allocate_fails(self) -> None:
        """Test device calls before initialize are failed results."""
        result = CUDABackend().allocate(16)

        assert not result.success
        assert isinstance(result.error, BackendNotAvailableError)

    def test_get_backend_cuda_raises(self) -> None:
        """Test requesting CUDA explicitly."""
        with pytest.raises(BackendNotAvailableError):
            get_backend("cuda")

    def test_get_backend_auto_falls_back(self) -> None:
        """Test auto selection falls back to CPU."""
        assert isinstance(get_backend("auto"), CPUBackend)


class TestGetBackend:
    """Tests for get_backend."""

    def test_cpu(self) -> None:
        """Test explicit CPU selection."""
        backend = get_backend("cpu", device_id=0)

        assert isinstance(backend, CPUBackend)
        assert backend.device_id == 0

    def test_unknown(self) -> None:
        """Test an unknown name is rejected."""
        with pytest.raises(InvalidConfigurationError):
            get_backend("opencl")


@pytest.mark.cuda
class TestCUDABackend:
    """Tests for CUDABackend on a real device."""

    def test_compile_and_round_trip(self) -> None:
        """Test allocation, copies and free on the device."""
        backend = CUDABackend()
        backend.initialize()
        try:
            host = np.arange(8, dtype=np.uint32)
            allocation = backend.allocate(host.nbytes, host.dtype).unwrap()
            backend.copy_to_device(allocation, host).unwrap()
            out = np.zeros_like(host)
            backend.copy_to_host(out, allocation).unwrap()
            backend.free(allocation).unwrap()

            np.testing.assert_array_equal(out, host)
            assert backend.live_allocations == 0
        finally:
            backend.shutdown()

    def test_compile_error_has_log(self) -> None:
        """Test NVRTC failures carry the program log."""
        backend = CUDABackend()
        backend.initialize()
        try:
            with pytest.raises(KernelCompilationError) as exc_info:
                backend.compile('extern "C" __global__ void invert(int *p { }', "invert")
            assert exc_info.value.log
        finally:
            backend.shutdown()

    def test_missing_entry_point(self) -> None:
        """Test looking up a function that does not exist."""
        backend = CUDABackend()
        backend.initialize()
        try:
            with pytest.raises(KernelCompilationError):
                backend.compile('extern "C" __global__ void other(int *p) { }', "invert")
        finally:
            backend.shutdown()
