"""Home directory layout and config.toml loading."""

from __future__ import annotations

import logging
import os
import tomllib
from dataclasses import dataclass
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

HOME_ENV = "POLCTL_HOME"
DEFAULT_HOME = "~/.polctl"


@dataclass(frozen=True)
class PolctlHome:
    root: Path

    @property
    def config_path(self) -> Path:
        return self.root / "config" / "config.toml"

    @property
    def default_store_root(self) -> Path:
        return self.root / "store"


def resolve_home(start_dir: Path | None = None) -> PolctlHome:
    raw = os.environ.get(HOME_ENV, "").strip()
    if raw:
        path = Path(raw).expanduser()
        if not path.is_absolute() and start_dir is not None:
            path = start_dir / path
        return PolctlHome(root=path.resolve())
    return PolctlHome(root=Path(DEFAULT_HOME).expanduser().resolve())


def load_config(home: PolctlHome) -> dict[str, Any]:
    config_path = home.config_path
    if not config_path.exists():
        return {}
    try:
        payload = tomllib.loads(config_path.read_text(encoding="utf-8"))
    except (OSError, tomllib.TOMLDecodeError):
        logger.warning("ignoring unreadable config file %s", config_path, exc_info=True)
        return {}
    return payload if isinstance(payload, dict) else {}


def config_section(config: dict[str, Any], name: str) -> dict[str, Any]:
    section = config.get(name)
    return section if isinstance(section, dict) else {}


def store_root(home: PolctlHome, config: dict[str, Any]) -> Path:
    raw = str(config_section(config, "store").get("root") or "").strip()
    if not raw:
        return home.default_store_root
    path = Path(raw).expanduser()
    return path if path.is_absolute() else (home.root / path)


def string_or_none(value: Any) -> str | None:
    if value is None:
        return None
    data = str(value).strip()
    return data if data else None
