"""Verification policy construction and evaluation."""

from .builder import VerificationInputs, build, parse_annotation
from .config_file import load_verification_config, parse_verification_config
from .engine import VerificationEngine, VerificationOutcome
from .policy import Annotation, AnyOf, KeylessIdentity, PredicateKind, PublicKey, TrustPredicate, VerificationPolicy

__all__ = [
    "Annotation",
    "AnyOf",
    "KeylessIdentity",
    "PredicateKind",
    "PublicKey",
    "TrustPredicate",
    "VerificationEngine",
    "VerificationInputs",
    "VerificationOutcome",
    "VerificationPolicy",
    "build",
    "load_verification_config",
    "parse_annotation",
    "parse_verification_config",
]
