"""Cube file I/O."""

from .hdf5 import save_cube, load_cube, describe_cube, HDF5_VERSION

__all__ = ['save_cube', 'load_cube', 'describe_cube', 'HDF5_VERSION']
