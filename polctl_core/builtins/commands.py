"""Shared base class and argument helpers for builtin commands."""

from __future__ import annotations

import json
import logging
from abc import abstractmethod
from argparse import ArgumentParser
from pathlib import Path
from typing import Any, Iterable

from polctl_core.api import PolctlAbstractCommand
from polctl_core.config import PolctlHome, config_section, load_config, resolve_home, store_root, string_or_none
from polctl_core.errors import PolctlError
from polctl_core.oci import OciClient, OciClientConfig
from polctl_core.operations import Collaborators
from polctl_core.policy import CommandPolicyEvaluator
from polctl_core.sources import PolicyFetcher, load_source_config
from polctl_core.store import LocalStore
from polctl_core.verification import VerificationEngine, VerificationInputs

logger = logging.getLogger(__name__)


def add_source_arguments(parser: ArgumentParser) -> None:
    parser.add_argument(
        "--sources-path",
        help="YAML file holding source information (insecure hosts, custom CAs)",
    )
    parser.add_argument(
        "--docker-config-json-path",
        help="Docker config.json-like file with registry authentication details",
    )


def add_verification_arguments(parser: ArgumentParser) -> None:
    parser.add_argument("--verification-config-path", help="YAML verification config (exclusive with the flags below)")
    parser.add_argument("--verification-key", "-k", action="append", default=[], help="Public key path (repeatable)")
    parser.add_argument("--fulcio-cert-path", action="append", default=[], help="Fulcio certificate path (repeatable)")
    parser.add_argument("--rekor-public-key-path", help="Rekor public key path")
    parser.add_argument(
        "--verification-annotation",
        "-a",
        action="append",
        default=[],
        help="Required annotation in key=value format (repeatable)",
    )
    parser.add_argument("--cert-email", help="Email expected in the signing certificate")
    parser.add_argument("--cert-oidc-issuer", help="OIDC issuer expected in the signing certificate")
    parser.add_argument("--github-owner", help="GitHub owner expected in certificates issued to CD pipelines")
    parser.add_argument("--github-repo", help="GitHub repository expected in certificates issued to CD pipelines")


def add_format_argument(parser: ArgumentParser) -> None:
    parser.add_argument("--format", "-o", dest="output_format", choices=["text", "json"], default="text")


class _PolctlCommand(PolctlAbstractCommand):
    """Resolves home, config, store and collaborators; reports PolctlError as exit code 1."""

    def run(self, argv: Any) -> int:
        try:
            return self.execute(argv)
        except PolctlError as exc:
            print(f"[polctl:{self.name}] failed: {exc}")
            return 1
        except Exception as exc:  # pragma: no cover - defensive fallback
            logger.debug("unexpected error in %s", self.name, exc_info=True)
            print(f"[polctl:{self.name}] unexpected failure: {exc}")
            return 1

    @abstractmethod
    def execute(self, argv: Any) -> int:
        raise NotImplementedError

    @property
    def home(self) -> PolctlHome:
        return resolve_home(self.start_dir)

    @property
    def config(self) -> dict[str, Any]:
        return load_config(self.home)

    def store(self) -> LocalStore:
        return LocalStore(store_root(self.home, self.config))

    def collaborators(self, argv: Any) -> Collaborators:
        config = self.config
        sources = load_source_config(
            self._path(getattr(argv, "sources_path", None)),
            self._path(getattr(argv, "docker_config_json_path", None)),
        )
        oci = config_section(config, "oci")
        client = OciClient(
            OciClientConfig(
                timeout_seconds=float(oci.get("timeout_seconds", 30.0)),
                max_retries=int(oci.get("max_retries", 2)),
                backoff_seconds=float(oci.get("backoff_seconds", 0.2)),
                allowlist_domains=tuple(str(item) for item in oci.get("allowlist_domains", []) if str(item).strip()),
                max_artifact_size_bytes=_int_or_none(oci.get("max_artifact_size_bytes")),
                sources=sources,
            )
        )
        https = config_section(config, "https")
        evaluator = config_section(config, "evaluator")
        return Collaborators(
            fetcher=PolicyFetcher(
                client,
                sources,
                base_dir=self.start_dir,
                https_timeout=float(https.get("timeout_seconds", 30.0)),
            ),
            registry=client,
            engine=VerificationEngine(),
            evaluator=CommandPolicyEvaluator(
                evaluator.get("command"),
                timeout_seconds=float(evaluator.get("timeout_seconds", 60.0)),
            ),
        )

    def verification_inputs(self, argv: Any) -> VerificationInputs:
        return VerificationInputs(
            config_path=self._path(getattr(argv, "verification_config_path", None)),
            key_paths=self._paths(getattr(argv, "verification_key", [])),
            fulcio_cert_paths=self._paths(getattr(argv, "fulcio_cert_path", [])),
            rekor_key_path=self._path(getattr(argv, "rekor_public_key_path", None)),
            annotations=tuple(getattr(argv, "verification_annotation", []) or []),
            cert_email=string_or_none(getattr(argv, "cert_email", None)),
            cert_oidc_issuer=string_or_none(getattr(argv, "cert_oidc_issuer", None)),
            github_owner=string_or_none(getattr(argv, "github_owner", None)),
            github_repo=string_or_none(getattr(argv, "github_repo", None)),
        )

    def emit(self, argv: Any, payload: Any, lines: Iterable[str]) -> None:
        if getattr(argv, "output_format", "text") == "json":
            print(json.dumps(payload, indent=2, sort_keys=True))
            return
        for line in lines:
            print(f"[polctl:{self.name}] {line}")

    def _path(self, raw: Any) -> Path | None:
        value = string_or_none(raw)
        if value is None:
            return None
        path = Path(value).expanduser()
        return path if path.is_absolute() else (self.start_dir / path)

    def _paths(self, raw: Iterable[Any] | None) -> tuple[Path, ...]:
        return tuple(path for path in (self._path(item) for item in raw or []) if path is not None)


def _int_or_none(value: Any) -> int | None:
    if value is None or value == "":
        return None
    return int(value)
