"""Errors raised by the OCI registry client."""

from __future__ import annotations

from polctl_core.errors import RegistryError


class OciError(RegistryError):
    """Base class for OCI client failures."""


class OciCommandError(OciError):
    """The ORAS CLI failed, timed out or produced unusable output."""


class OciSecurityError(OciError):
    """A reference or extracted path violated a security rule."""


class OciNotFoundError(OciCommandError):
    """The requested manifest or tag does not exist."""
