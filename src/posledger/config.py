from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
import os
import sys


@dataclass(frozen=True)
class AppPaths:
    base_dir: Path
    db_path: Path
    logs_dir: Path


@dataclass(frozen=True)
class AppConfig:
    quota_limit: int = 5
    low_stock_threshold: int = 5
    toast_ms: int = 3000
    # Run add/delete/adjust in one unit of work instead of independent writes.
    atomic_writes: bool = False
    count_sales_toward_quota: bool = False

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> "AppConfig":
        env = os.environ if environ is None else environ
        defaults = cls()
        return cls(
            quota_limit=_env_int(env, "POSLEDGER_QUOTA_LIMIT", defaults.quota_limit),
            low_stock_threshold=_env_int(env, "POSLEDGER_LOW_STOCK", defaults.low_stock_threshold),
            toast_ms=_env_int(env, "POSLEDGER_TOAST_MS", defaults.toast_ms),
            atomic_writes=_env_flag(env, "POSLEDGER_ATOMIC_WRITES", defaults.atomic_writes),
            count_sales_toward_quota=_env_flag(env, "POSLEDGER_COUNT_SALES", defaults.count_sales_toward_quota),
        )


def _env_int(env, name: str, default: int) -> int:
    raw = str(env.get(name, "")).strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ValueError(f"{name} must be an integer, got {raw!r}") from exc


def _env_flag(env, name: str, default: bool) -> bool:
    raw = str(env.get(name, "")).strip().lower()
    if not raw:
        return default
    return raw in {"1", "true", "yes", "on"}


def _windows_appdata() -> Path:
    return Path(os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming")))


def _mac_app_support() -> Path:
    return Path.home() / "Library" / "Application Support"


def get_app_paths(app_name: str = "PosLedger") -> AppPaths:
    override = os.environ.get("POSLEDGER_HOME", "").strip()
    if override:
        base = Path(override)
    elif sys.platform.startswith("win"):
        base = _windows_appdata() / app_name
    elif sys.platform == "darwin":
        base = _mac_app_support() / app_name
    else:
        base = Path.home() / f".{app_name.lower()}"

    logs = base / "logs"
    db = base / "store.db"

    base.mkdir(parents=True, exist_ok=True)
    logs.mkdir(parents=True, exist_ok=True)

    return AppPaths(base_dir=base, db_path=db, logs_dir=logs)
