"""Core library for polctl: policy references, verification, storage and bundles."""

__version__ = "0.1.0"
