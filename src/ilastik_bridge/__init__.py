"""
ilastik-bridge: run headless ilastik classification on in-memory image arrays.

Hands host arrays to an externally installed ilastik through HDF5 exchange
files, runs the engine as a child process, and loads its output back.
"""

__version__ = "0.1.0"
