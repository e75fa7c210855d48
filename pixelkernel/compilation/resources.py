"""
Kernel source resources bundled with pixelkernel.
"""

from __future__ import annotations

from importlib import resources

from pixelkernel.exceptions import ResourceError, ResourceNotFoundError

KERNEL_PACKAGE = "pixelkernel.kernels"


def read_kernel_source(name: str, suffix: str = "", package: str = KERNEL_PACKAGE) -> str:
    """
    Read a bundled kernel source file fully into memory.

    Args:
        name: Resource name, with or without its suffix.
        suffix: Suffix appended when ``name`` does not already end with it.
        package: Package that holds the resource.

    Returns:
        The source text.

    Raises:
        ResourceNotFoundError: If the resource does not exist.
        ResourceError: If it cannot be read or is empty.
    """
    filename = name if not suffix or name.endswith(suffix) else f"{name}{suffix}"
    resource = resources.files(package).joinpath(filename)

    if not resource.is_file():
        raise ResourceNotFoundError(filename)

    try:
        source = resource.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise ResourceError(filename, str(e)) from e

    if not source.strip():
        raise ResourceError(filename, "resource is empty")
    return source
