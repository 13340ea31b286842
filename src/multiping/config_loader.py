from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from multiping.errors import ConfigError
from multiping.models import AddressFamily, Config, DrainPolicy


def load_config(path: Optional[str] = None) -> Config:
    data = _read_json(path) if path else {}
    try:
        return Config(
            targets=_parse_targets(data.get("targets", [])),
            family=AddressFamily(str(data.get("family", "any")).lower()),
            warning_ms=float(data.get("warning_ms", 50)),
            critical_ms=float(data.get("critical_ms", 500)),
            probe_timeout=float(data.get("probe_timeout", 1)),
            deadline=float(data.get("deadline", 10)),
            resolve_timeout=float(data.get("resolve_timeout", 2)),
            attempts=int(data.get("attempts", 5)),
            policy=DrainPolicy(str(data.get("policy", "all")).lower()),
            log_path=str(data.get("log_path")) if data.get("log_path") else None,
        )
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{path}: {exc}") from exc


def _read_json(path: str) -> Dict[str, Any]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
    except OSError as exc:
        raise ConfigError(f"cannot read config {path}: {exc.strerror or exc}") from exc
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path}: invalid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path}: expected a JSON object")
    return data


def _parse_targets(raw: List[Any]) -> List[str]:
    if isinstance(raw, str):
        raw = [raw]
    targets: List[str] = []
    for entry in raw:
        # Accept the {"name": ..., "host": ...} form as well as bare strings.
        host = entry.get("host") if isinstance(entry, dict) else entry
        if not host:
            continue
        targets.append(str(host))
    return targets
