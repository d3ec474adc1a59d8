"""Configuration helpers for the auction server."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Mapping

import yaml

_DEFAULT_SERVER_CONFIG = Path(__file__).resolve().parent / "server.yaml"


@dataclass(frozen=True)
class StorageConfig:
    backend: str
    options: Mapping[str, Any]


@dataclass(frozen=True)
class BiddingConfig:
    enforce_end_time: bool


@dataclass(frozen=True)
class DisplayConfig:
    default_category: str
    anonymous_label: str


@dataclass(frozen=True)
class ServerConfig:
    listen: Mapping[str, Any]
    storage: StorageConfig
    bidding: BiddingConfig
    display: DisplayConfig
    log_level: str


def _load_yaml(path: Path) -> dict[str, Any]:
    if not path.exists():
        raise FileNotFoundError(path)
    return yaml.safe_load(path.read_text()) or {}


def load_server_config(path: Path) -> ServerConfig:
    data = _load_yaml(path)
    storage = data.get("storage", {})
    bidding = data.get("bidding", {})
    display = data.get("display", {})
    logging_section = data.get("logging", {})
    return ServerConfig(
        listen=data.get("listen", {}),
        storage=StorageConfig(
            backend=str(storage.get("backend", "in_memory")),
            options=dict(storage.get("options") or {}),
        ),
        bidding=BiddingConfig(
            enforce_end_time=bool(bidding.get("enforce_end_time", False)),
        ),
        display=DisplayConfig(
            default_category=str(display.get("default_category", "Autres")),
            anonymous_label=str(display.get("anonymous_label", "Anonyme")),
        ),
        log_level=str(logging_section.get("level", "INFO")).upper(),
    )


@lru_cache(maxsize=1)
def get_server_config() -> ServerConfig:
    return load_server_config(Path(os.getenv("AUCTION_CONFIG_PATH", _DEFAULT_SERVER_CONFIG)))
