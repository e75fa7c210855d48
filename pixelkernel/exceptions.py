"""
pixelkernel exception hierarchy.

This module defines the exception types raised by pixelkernel,
one family per failure category:

- ResourceError: Kernel source resources that cannot be found or read
- CompilationError: Kernel compilation failures
- ConfigurationError: Missing kernel handles and invalid settings
- BackendError: Accelerator availability and device call failures
- BufferError: Device buffer misuse

All exceptions inherit from PixelKernelError for easy catching.
"""

from __future__ import annotations


class PixelKernelError(Exception):
    """Base exception for all pixelkernel errors."""

    pass


class ResourceError(PixelKernelError):
    """Raised when a bundled resource cannot be read."""

    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Could not read the resource '{name}': {reason}")


class ResourceNotFoundError(ResourceError):
    """Raised when a bundled resource does not exist."""

    def __init__(self, name: str) -> None:
        super().__init__(name, "resource was not found")


class CompilationError(PixelKernelError):
    """Base exception for compilation-related errors."""

    pass


class KernelCompilationError(CompilationError):
    """Raised when kernel compilation or entry point lookup fails."""

    def __init__(self, kernel_name: str, cause: Exception, log: str = "") -> None:
        self.kernel_name = kernel_name
        self.cause = cause
        self.log = log
        msg = f"Failed to compile kernel '{kernel_name}': {cause}"
        if log:
            msg += f"\nCompilation log:\n{log}"
        super().__init__(msg)


class ConfigurationError(PixelKernelError):
    """Base exception for configuration-related errors."""

    pass


class KernelNotPreparedError(ConfigurationError):
    """Raised when a transform is requested before a kernel was prepared."""

    def __init__(self) -> None:
        super().__init__("The kernel was not initialized")


class InvalidConfigurationError(ConfigurationError):
    """Raised when configuration is invalid."""

    def __init__(self, parameter: str, value: object, reason: str) -> None:
        self.parameter = parameter
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid configuration: {parameter}={value!r} - {reason}")


class BackendError(PixelKernelError):
    """Base exception for backend-related errors."""

    pass


class BackendNotAvailableError(BackendError):
    """Raised when a requested backend is not available."""

    def __init__(self, backend_name: str, reason: str) -> None:
        self.backend_name = backend_name
        self.reason = reason
        super().__init__(f"Backend '{backend_name}' is not available: {reason}")


class DeviceError(BackendError):
    """Raised when an accelerator call fails after initialization."""

    def __init__(self, operation: str, cause: Exception | None) -> None:
        self.operation = operation
        self.cause = cause
        super().__init__(f"Device operation '{operation}' failed: {cause}")


class BufferError(PixelKernelError):
    """Base exception for buffer-related errors."""

    pass


class BufferStateError(BufferError):
    """Raised when a device buffer operation is invalid for its state."""

    def __init__(self, current_state: str, operation: str) -> None:
        self.current_state = current_state
        self.operation = operation
        super().__init__(f"Cannot {operation} device buffer in state '{current_state}'")
