"""
Kernel compiler for pixelkernel.

Turns kernel source text and an entry-point name into a KernelHandle
using the compiler of the active backend (NVRTC for CUDA, Numba for CPU).
"""

from __future__ import annotations

import hashlib
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from pixelkernel.compilation.resources import read_kernel_source
from pixelkernel.exceptions import KernelCompilationError

if TYPE_CHECKING:
    from pixelkernel.backends.base import Backend, BackendType

logger = logging.getLogger(__name__)


@dataclass
class CompilationOptions:
    """Options for kernel compilation."""

    flags: tuple[str, ...] = ()
    fastmath: bool = False

    def to_flags(self) -> tuple[str, ...]:
        """Compiler flags to hand to the backend."""
        if self.fastmath and "--use_fast_math" not in self.flags:
            return (*self.flags, "--use_fast_math")
        return self.flags


@dataclass(frozen=True)
class KernelHandle:
    """A compiled kernel bound to one entry point."""

    kernel: Callable[..., Any]
    name: str
    source_hash: str
    backend_type: BackendType
    log: str = ""
    compile_time_ms: float = 0.0
    flags: tuple[str, ...] = field(default_factory=tuple)

    @property
    def has_warnings(self) -> bool:
        """Whether the compiler produced any diagnostic output."""
        return bool(self.log)


class KernelCompiler:
    """
    Compiler for accelerator kernels.

    Example:
        >>> compiler = KernelCompiler(backend)
        >>> handle = compiler.compile(source, "invert")
        >>> # Pass handle to a FrameTransform
    """

    def __init__(self, backend: Backend, options: CompilationOptions | None = None) -> None:
        """
        Initialize the kernel compiler.

        Args:
            backend: Backend whose compiler is used. Must be initialized
                before compiling for CUDA.
            options: Compilation options.
        """
        self._backend = backend
        self._options = options or CompilationOptions()

    @property
    def backend(self) -> Backend:
        """Get the backend this compiler targets."""
        return self._backend

    def compile(
        self,
        source: str,
        entry_point: str,
        *,
        options: CompilationOptions | None = None,
    ) -> KernelHandle:
        """
        Compile kernel source and retrieve the named entry point.

        A non-empty compilation log is logged as a warning and kept on the
        handle; it never fails the compilation by itself.

        Args:
            source: Kernel source text.
            entry_point: Name of the kernel function.
            options: Compilation options (uses instance options if None).

        Returns:
            KernelHandle for the entry point.

        Raises:
            KernelCompilationError: If compilation fails or the entry point
                does not exist.
        """
        opts = options or self._options
        flags = opts.to_flags()
        start_time = time.perf_counter()

        try:
            kernel, log = self._backend.compile(source, entry_point, flags)
        except KernelCompilationError as e:
            logger.error(f"Compilation of '{entry_point}' failed: {e.cause}")
            if e.log:
                logger.error(f"Program compilation log:\n{e.log}")
            raise
        except Exception as e:
            logger.error(f"Compilation of '{entry_point}' failed: {e}")
            raise KernelCompilationError(entry_point, e) from e

        compile_time = (time.perf_counter() - start_time) * 1000
        log = log.strip()
        if log:
            logger.warning(f"Program compilation log:\n{log}")
        logger.debug(f"Compiled '{entry_point}' in {compile_time:.1f}ms")

        return KernelHandle(
            kernel=kernel,
            name=entry_point,
            source_hash=self._get_source_hash(source, entry_point, flags),
            backend_type=self._backend.backend_type,
            log=log,
            compile_time_ms=compile_time,
            flags=flags,
        )

    def compile_resource(
        self,
        resource: str,
        entry_point: str,
        *,
        options: CompilationOptions | None = None,
    ) -> KernelHandle:
        """
        Read a bundled kernel resource for this backend and compile it.

        Raises:
            ResourceError: If the resource cannot be read.
            KernelCompilationError: If compilation fails.
        """
        source = read_kernel_source(resource, self._backend.source_suffix)
        return self.compile(source, entry_point, options=options)

    def _get_source_hash(self, source: str, entry_point: str, flags: tuple[str, ...]) -> str:
        """Generate a hash identifying this compilation."""
        hash_input = f"{source}|{entry_point}|{' '.join(flags)}|{self._backend.backend_type.name}"
        return hashlib.sha256(hash_input.encode()).hexdigest()[:16]

    def __repr__(self) -> str:
        """String representation."""
        return f"KernelCompiler(backend={self._backend.backend_type.name})"
