"""Builtin commands; importing this package registers them."""

from . import annotate, digest, inspect, load, policies, pull, push, rm, run, save, verify

__all__ = ["annotate", "digest", "inspect", "load", "policies", "pull", "push", "rm", "run", "save", "verify"]
