from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Mapping

from .regions import Region, RegionConfig, load_region_configs


def _float_env(source: Mapping[str, str], key: str, default: float) -> float:
    raw = (source.get(key) or "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        return default


def _int_env(source: Mapping[str, str], key: str, default: int) -> int:
    raw = (source.get(key) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _flag_env(source: Mapping[str, str], key: str) -> bool:
    return (source.get(key) or "false").strip().lower() in {"1", "true", "yes"}


@dataclass(frozen=True)
class MeekaSettings:
    db_path: str
    regions: dict[Region, RegionConfig] = field(default_factory=dict)
    refresh_delay_seconds: float = 0.5
    region_freshness_seconds: float = 1.0
    ip_lookup_url: str = "https://ipapi.co/json/"
    ip_lookup_timeout_seconds: float = 3.0
    ip_lookup_enabled: bool = True
    recent_events_limit: int = 10
    chat_timeout_seconds: float = 25.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, env: Mapping[str, str] | None = None) -> "MeekaSettings":
        source = os.environ if env is None else env
        default_db = str(Path(__file__).resolve().parents[1] / "meeka.sqlite")
        return cls(
            db_path=(source.get("MEEKA_DB_PATH") or default_db).strip(),
            regions=load_region_configs(source),
            refresh_delay_seconds=max(0.0, _float_env(source, "MEEKA_REFRESH_DELAY_SECONDS", 0.5)),
            region_freshness_seconds=max(0.0, _float_env(source, "MEEKA_REGION_FRESHNESS_SECONDS", 1.0)),
            ip_lookup_url=(source.get("MEEKA_IP_LOOKUP_URL") or "https://ipapi.co/json/").strip(),
            ip_lookup_timeout_seconds=_float_env(source, "MEEKA_IP_LOOKUP_TIMEOUT_SECONDS", 3.0),
            ip_lookup_enabled=not _flag_env(source, "MEEKA_DISABLE_IP_LOOKUP"),
            recent_events_limit=max(1, _int_env(source, "MEEKA_RECENT_EVENTS_LIMIT", 10)),
            chat_timeout_seconds=_float_env(source, "MEEKA_CHAT_TIMEOUT_SECONDS", 25.0),
            log_level=(source.get("MEEKA_LOG_LEVEL") or "INFO").strip().upper(),
        )
