"""
pixelkernel examples.
"""

from examples.invert_image import make_test_image, run_invert_example

__all__ = [
    "make_test_image",
    "run_invert_example",
]
