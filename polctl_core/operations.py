"""One orchestrator per user-facing operation.

Every function receives its store and collaborators explicitly and stops at
the first failing step. Store mutations, when any, are the final step.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from polctl_core.bundle import export_bundle, import_bundle
from polctl_core.errors import (
    CorruptEntry,
    EvaluationError,
    InvalidPolicyModule,
    InvalidReference,
    IoError,
    UnannotatedPolicy,
    UnknownPolicyName,
)
from polctl_core.policy import ExecutionMode, PolicyEvaluator, PolicyMetadata, load_metadata_file, read_metadata
from polctl_core.policy.metadata import annotate as embed_metadata
from polctl_core.references import PolicyReference, PolicyScheme, anchor, resolve
from polctl_core.sources import FetchedPolicy, PolicyFetcher, RegistryClient
from polctl_core.store import LocalStore, StoreEntry, sha256_digest
from polctl_core.store.atomic import atomic_write
from polctl_core.verification import VerificationEngine, VerificationInputs, VerificationOutcome, VerificationPolicy, build

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Collaborators:
    fetcher: PolicyFetcher
    registry: RegistryClient
    engine: VerificationEngine = field(default_factory=VerificationEngine)
    evaluator: PolicyEvaluator | None = None


@dataclass(frozen=True)
class PullResult:
    reference: PolicyReference
    digest: str
    entry: StoreEntry | None = None
    output_path: Path | None = None
    verification: VerificationOutcome | None = None


@dataclass(frozen=True)
class RunResult:
    reference: PolicyReference
    mode: ExecutionMode
    response: dict[str, Any]
    verified: bool


@dataclass(frozen=True)
class PushResult:
    reference: PolicyReference
    digest: str
    source_name: str | None = None

    @property
    def immutable_ref(self) -> str:
        return f"{self.reference.scheme.prefix}{self.reference.repository}@{self.digest}"


@dataclass(frozen=True)
class InspectResult:
    reference: PolicyReference
    digest: str
    metadata: PolicyMetadata | None
    signature_count: int | None = None


def list_policies(store: LocalStore) -> list[StoreEntry]:
    return store.list()


def pull(
    store: LocalStore,
    collab: Collaborators,
    locator: str,
    inputs: VerificationInputs | None = None,
    *,
    output_path: Path | None = None,
) -> PullResult:
    reference = _locate(collab, locator)
    policy = build(inputs) if inputs is not None and not inputs.is_empty() else None
    fetched = collab.fetcher.fetch(reference)
    outcome = _verify_fetched(collab, fetched, policy) if policy is not None else None

    if output_path is not None:
        _write_output(output_path, fetched.content)
        logger.info("pulled %s to %s", reference.name, output_path)
        return PullResult(
            reference=reference,
            digest=fetched.subject_digest,
            output_path=output_path,
            verification=outcome,
        )

    entry = store.put(reference.name, fetched.content, reference, verified=outcome is not None)
    logger.info("pulled %s digest=%s", reference.name, entry.digest)
    return PullResult(reference=reference, digest=entry.digest, entry=entry, verification=outcome)


def verify(collab: Collaborators, locator: str, inputs: VerificationInputs) -> VerificationOutcome:
    reference = _locate(collab, locator)
    policy = build(inputs)
    fetched = collab.fetcher.fetch(reference)
    return _verify_fetched(collab, fetched, policy)


def run(
    store: LocalStore,
    collab: Collaborators,
    locator: str,
    *,
    request_path: Path,
    inputs: VerificationInputs | None = None,
    settings_path: Path | None = None,
    settings_json: str | None = None,
    execution_mode: ExecutionMode | None = None,
) -> RunResult:
    if collab.evaluator is None:
        raise EvaluationError("no policy evaluator configured")
    reference = _locate(collab, locator)
    policy = build(inputs) if inputs is not None and not inputs.is_empty() else None
    request = _load_request(request_path)
    settings = _load_settings(settings_path, settings_json)

    content: bytes | None = None
    verified = False
    if policy is None:
        entry = _intact_entry(store, reference.name)
        if entry is not None:
            content = store.read(entry)
            verified = entry.verified
            logger.debug("running stored policy %s", reference.name)
    if content is None:
        fetched = collab.fetcher.fetch(reference)
        if policy is not None:
            _verify_fetched(collab, fetched, policy)
            verified = True
        content = fetched.content
        if reference.scheme is not PolicyScheme.FILE:
            store.put(reference.name, content, reference, verified=verified)

    mode = execution_mode
    if mode is None:
        metadata = read_metadata(content)
        mode = metadata.execution_mode if metadata is not None else ExecutionMode.KUBEWARDEN
    response = collab.evaluator.evaluate(content, request, settings, mode)
    return RunResult(reference=reference, mode=mode, response=response, verified=verified)


def push(
    store: LocalStore,
    collab: Collaborators,
    source: str,
    destination: str,
    *,
    force: bool = False,
) -> PushResult:
    target = resolve(destination)
    if target.scheme is not PolicyScheme.REGISTRY:
        raise InvalidReference(f"push destination '{destination}' must be a registry:// reference")

    origin = _locate(collab, source)
    entry: StoreEntry | None = None
    if origin.scheme is PolicyScheme.FILE and collab.fetcher.local_path(origin).is_file():
        content = collab.fetcher.fetch(origin).content
        stored = store.get(origin.name)
        if stored is not None and stored.digest == sha256_digest(content):
            entry = stored
    else:
        entry = store.get_verified(origin.name)
        if entry is None:
            raise UnknownPolicyName([origin.name])
        content = store.read(entry)

    metadata = read_metadata(content)
    if metadata is None and not force:
        raise UnannotatedPolicy(
            f"'{source}' carries no embedded metadata; annotate it first or push with --force"
        )
    annotations = dict(metadata.annotations) if metadata is not None else {}
    result = collab.registry.push_policy(target.oci_ref, content, annotations)
    if entry is not None:
        store.mark_pushed(entry.name, target.oci_ref)
    logger.info("pushed %s to %s digest=%s", source, target.oci_ref, result.digest)
    return PushResult(reference=target, digest=result.digest, source_name=entry.name if entry else None)


def remove(store: LocalStore, target: str, *, base_dir: Path | None = None) -> list[StoreEntry]:
    """Remove a policy by locator, or by a digest prefix that matches exactly one entry."""
    name = anchor(resolve(target), base_dir).name
    entry = store.get(name)
    if entry is None:
        matches = store.find_by_digest_prefix(target)
        if len(matches) > 1:
            raise InvalidReference(f"digest prefix '{target}' matches {len(matches)} policies")
        if not matches:
            raise UnknownPolicyName([target])
        entry = matches[0]
    store.remove(entry.name)
    return [entry]


def inspect(store: LocalStore, collab: Collaborators, locator: str) -> InspectResult:
    reference = _locate(collab, locator)
    entry = _intact_entry(store, reference.name)
    if entry is None:
        fetched = collab.fetcher.fetch(reference)
    else:
        subject = entry.digest
        if reference.scheme is PolicyScheme.REGISTRY:
            subject = collab.registry.resolve(reference.oci_ref)
        fetched = FetchedPolicy(reference=reference, content=store.read(entry), subject_digest=subject)

    signature_count: int | None = None
    if reference.scheme is PolicyScheme.REGISTRY:
        signature_count = len(collab.fetcher.signatures(fetched))
    return InspectResult(
        reference=reference,
        digest=fetched.subject_digest,
        metadata=read_metadata(fetched.content),
        signature_count=signature_count,
    )


def digest(collab: Collaborators, locator: str) -> str:
    reference = resolve(locator)
    if reference.scheme is not PolicyScheme.REGISTRY:
        raise InvalidReference(f"'{locator}' is not a registry:// reference")
    return collab.registry.resolve(reference.oci_ref)


def save(
    store: LocalStore,
    names: Iterable[str],
    output_path: Path,
    *,
    base_dir: Path | None = None,
) -> list[str]:
    """Write a bundle of ``names`` (every stored policy when empty) and return the names saved."""
    selected = [_store_name(store, name, base_dir) for name in names] or [entry.name for entry in store.list()]
    _write_output(output_path, export_bundle(store, selected))
    return selected


def load(store: LocalStore, input_path: Path) -> list[StoreEntry]:
    try:
        data = input_path.read_bytes()
    except OSError as exc:
        raise IoError(f"cannot read bundle {input_path}: {exc}") from exc
    return import_bundle(store, data)


def annotate(wasm_path: Path, metadata_path: Path, output_path: Path) -> PolicyMetadata:
    try:
        module = wasm_path.read_bytes()
    except OSError as exc:
        raise IoError(f"cannot read module {wasm_path}: {exc}") from exc
    metadata = load_metadata_file(metadata_path)
    _write_output(output_path, embed_metadata(module, metadata))
    return metadata


def _verify_fetched(collab: Collaborators, fetched: FetchedPolicy, policy: VerificationPolicy) -> VerificationOutcome:
    outcome = collab.engine.verify(
        fetched.content,
        policy,
        signatures=collab.fetcher.signatures(fetched),
        subject_digest=fetched.subject_digest,
        embedded_annotations=_embedded_annotations(fetched.content),
    )
    logger.info("verified %s: %s", fetched.reference.name, "; ".join(outcome.satisfied_groups))
    return outcome


def _embedded_annotations(content: bytes) -> Mapping[str, str]:
    try:
        metadata = read_metadata(content)
    except InvalidPolicyModule:
        logger.debug("artifact has no readable embedded metadata", exc_info=True)
        return {}
    return metadata.annotations if metadata is not None else {}


def _locate(collab: Collaborators, locator: str) -> PolicyReference:
    return anchor(resolve(locator), collab.fetcher.base_dir)


def _intact_entry(store: LocalStore, name: str) -> StoreEntry | None:
    try:
        return store.get_verified(name)
    except CorruptEntry as exc:
        logger.warning("ignoring stored copy: %s", exc)
        return None


def _store_name(store: LocalStore, name: str, base_dir: Path | None) -> str:
    candidate = anchor(resolve(name), base_dir).name
    return candidate if store.get(candidate) is not None else name


def _load_request(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise IoError(f"cannot read request {path}: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise EvaluationError(f"request {path} is not valid JSON: {exc}") from exc
    if not isinstance(payload, dict):
        raise EvaluationError(f"request {path} must be a JSON object")
    if payload.get("kind") == "AdmissionReview" and isinstance(payload.get("request"), dict):
        return payload["request"]
    return payload


def _load_settings(path: Path | None, raw_json: str | None) -> dict[str, Any]:
    if path is not None and raw_json is not None:
        raise EvaluationError("settings path and settings JSON are mutually exclusive")
    if path is not None:
        try:
            payload = yaml.safe_load(path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise IoError(f"cannot read settings {path}: {exc}") from exc
        except yaml.YAMLError as exc:
            raise EvaluationError(f"settings {path} are not valid YAML: {exc}") from exc
    elif raw_json is not None:
        try:
            payload = json.loads(raw_json)
        except json.JSONDecodeError as exc:
            raise EvaluationError(f"settings JSON is invalid: {exc}") from exc
    else:
        return {}
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise EvaluationError("policy settings must be a mapping")
    return payload


def _write_output(path: Path, data: bytes) -> None:
    try:
        atomic_write(path, data)
    except OSError as exc:
        raise IoError(f"cannot write {path}: {exc}") from exc
