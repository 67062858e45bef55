"""Trust predicates and the AND-of-ORs verification policy."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import ClassVar, Union


class PredicateKind(str, Enum):
    PUBLIC_KEY = "publicKey"
    KEYLESS = "keyless"
    ANNOTATION = "annotation"


@dataclass(frozen=True)
class PublicKey:
    kind: ClassVar[PredicateKind] = PredicateKind.PUBLIC_KEY

    key_material: bytes
    source: str = "inline"

    def describe(self) -> str:
        return f"key {self.source}"


@dataclass(frozen=True)
class KeylessIdentity:
    kind: ClassVar[PredicateKind] = PredicateKind.KEYLESS

    fulcio_root: bytes
    rekor_key: bytes | None = None
    expected_email: str | None = None
    expected_oidc_issuer: str | None = None
    expected_github_owner: str | None = None
    expected_github_repo: str | None = None

    def describe(self) -> str:
        claims = [
            f"{label}={value}"
            for label, value in (
                ("email", self.expected_email),
                ("issuer", self.expected_oidc_issuer),
                ("github_owner", self.expected_github_owner),
                ("github_repo", self.expected_github_repo),
            )
            if value
        ]
        suffix = " with rekor" if self.rekor_key else ""
        return f"keyless({', '.join(claims) or 'any identity'}){suffix}"


@dataclass(frozen=True)
class Annotation:
    kind: ClassVar[PredicateKind] = PredicateKind.ANNOTATION

    key: str
    value: str

    def describe(self) -> str:
        return f"annotation {self.key}={self.value}"


TrustPredicate = Union[PublicKey, KeylessIdentity, Annotation]


@dataclass(frozen=True)
class AnyOf:
    """Alternatives of one predicate kind; satisfied when any one holds."""

    kind: PredicateKind
    alternatives: tuple[TrustPredicate, ...]

    def __post_init__(self) -> None:
        if not self.alternatives:
            raise ValueError("AnyOf requires at least one alternative")
        for item in self.alternatives:
            if item.kind is not self.kind:
                raise ValueError(f"{item.kind.value} predicate placed in a {self.kind.value} group")

    def describe(self) -> str:
        if len(self.alternatives) == 1:
            return self.alternatives[0].describe()
        return f"any of [{'; '.join(item.describe() for item in self.alternatives)}]"


@dataclass(frozen=True)
class VerificationPolicy:
    """Satisfied only when every group in ``all_of`` is satisfied."""

    all_of: tuple[AnyOf, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.all_of

    def groups(self, kind: PredicateKind) -> tuple[AnyOf, ...]:
        return tuple(group for group in self.all_of if group.kind is kind)

    @property
    def signer_groups(self) -> tuple[AnyOf, ...]:
        return tuple(group for group in self.all_of if group.kind is not PredicateKind.ANNOTATION)

    @property
    def annotation_groups(self) -> tuple[AnyOf, ...]:
        return self.groups(PredicateKind.ANNOTATION)
