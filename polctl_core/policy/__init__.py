from .evaluator import CommandPolicyEvaluator, PolicyEvaluator
from .metadata import (
    METADATA_SECTION,
    ExecutionMode,
    PolicyMetadata,
    annotate,
    load_metadata_file,
    read_metadata,
)

__all__ = [
    "METADATA_SECTION",
    "CommandPolicyEvaluator",
    "ExecutionMode",
    "PolicyEvaluator",
    "PolicyMetadata",
    "annotate",
    "load_metadata_file",
    "read_metadata",
]
