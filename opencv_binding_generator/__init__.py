"""
OpenCV binding generator: turns the declarations of one OpenCV module into an
ordered sequence of render-ready descriptors and writes Python bindings for
them.
"""

__version__ = "0.1.0"
