"""Error hierarchy shared by every polctl component."""

from __future__ import annotations


class PolctlError(Exception):
    """Base class for errors reported to the user."""


class InvalidReference(PolctlError):
    pass


class ConflictingVerificationInputs(PolctlError):
    pass


class InvalidVerificationConfig(PolctlError):
    pass


class DuplicateAnnotationKey(PolctlError):
    def __init__(self, key: str) -> None:
        super().__init__(f"annotation key '{key}' given more than once")
        self.key = key


class EmptyVerificationPolicy(PolctlError):
    def __init__(self, message: str = "no verification constraints were provided") -> None:
        super().__init__(message)


class VerificationFailed(PolctlError):
    def __init__(self, reason: str, *, failed_groups: tuple[str, ...] = ()) -> None:
        super().__init__(f"verification failed: {reason}")
        self.reason = reason
        self.failed_groups = failed_groups


class RegistryError(PolctlError):
    pass


class IoError(PolctlError):
    pass


class CorruptEntry(PolctlError):
    def __init__(self, name: str, expected: str, actual: str | None) -> None:
        detail = "content file missing" if actual is None else f"content hashes to {actual}"
        super().__init__(f"store entry '{name}' is corrupt: expected {expected}, {detail}")
        self.name = name
        self.expected = expected
        self.actual = actual


class UnknownPolicyName(PolctlError):
    def __init__(self, names: list[str] | tuple[str, ...]) -> None:
        super().__init__("unknown policies: " + ", ".join(names))
        self.names = tuple(names)


class CorruptBundle(PolctlError):
    pass


class EvaluationError(PolctlError):
    pass


class UnannotatedPolicy(PolctlError):
    pass


class InvalidPolicyModule(PolctlError):
    pass
