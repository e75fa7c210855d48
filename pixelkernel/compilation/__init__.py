"""
Kernel preparation: resource loading and runtime compilation.
"""

from pixelkernel.compilation.compiler import CompilationOptions, KernelCompiler, KernelHandle
from pixelkernel.compilation.resources import read_kernel_source

__all__ = [
    "CompilationOptions",
    "KernelCompiler",
    "KernelHandle",
    "read_kernel_source",
]
