"""
Persistence configuration.

The configuration is an EasyDict tree so entries can be overridden
from the environment (``ANNOT_BACKUP__ENABLED=true``) or patched at
runtime through the facade.
"""

import logging
import os
from pathlib import Path
from typing import Dict, Optional

from easydict import EasyDict as edict

from ...utils.env import load_cfg_from_env

from .backends import (
    BackendKind,
    BackendSpec,
    DatabaseConfig,
    DurableConfig,
    RemoteConfig,
    VolatileConfig,
)

logger = logging.getLogger(__name__)

DEFAULT_STORAGE_DIR = Path.home() / ".annotation_lifecycle"

# Names used by older configurations for the same backends
BACKEND_ALIASES = {
    "localstorage": BackendKind.DURABLE,
    "file": BackendKind.DURABLE,
    "sessionstorage": BackendKind.VOLATILE,
    "memory": BackendKind.VOLATILE,
    "indexeddb": BackendKind.DATABASE,
    "sqlite": BackendKind.DATABASE,
    "server": BackendKind.REMOTE,
    "http": BackendKind.REMOTE,
}


def get_default_persistence_config() -> edict:
    return edict(
        {
            "auto_save": {
                "enabled": True,
                "interval": 30.0,  # seconds
            },
            "backend": {
                "kind": BackendKind.DURABLE.value,
                "storage_dir": str(DEFAULT_STORAGE_DIR / "store"),
                "db_path": str(DEFAULT_STORAGE_DIR / "annotations.db"),
                "table": "annotation_store",
                "endpoint": "",
                "api_key": "",
                "timeout": 10.0,
            },
            "max_storage_size": 100 * 1024 * 1024,
            "compression": False,
            "backup": {
                "enabled": False,
                "interval": 3600.0,  # seconds
                "max_backups": 5,
                "max_age_days": 30,
            },
            "retention_days": 30,
            "versioning": True,
            "max_annotations": 10000,
        }
    )


def load_persistence_config(
    overrides: Optional[dict] = None, env: Optional[Dict[str, str]] = None
) -> edict:
    """
    Build the effective configuration.

    Defaults are patched with ``overrides`` first and then with
    ``ANNOT_*`` variables from ``env`` (``os.environ`` when omitted).
    """
    cfg = get_default_persistence_config()
    if overrides:
        merge_config(cfg, overrides)
    return load_cfg_from_env(cfg, os.environ if env is None else env)


def merge_config(cfg: edict, changes: dict) -> edict:
    for key, value in changes.items():
        if isinstance(value, dict) and isinstance(cfg.get(key), dict):
            merge_config(cfg[key], value)
        else:
            cfg[key] = value
    return cfg


def parse_backend_kind(value) -> Optional[BackendKind]:
    if isinstance(value, BackendKind):
        return value
    name = str(value).strip().lower()
    try:
        return BackendKind(name)
    except ValueError:
        return BACKEND_ALIASES.get(name)


def resolve_backend_spec(cfg: edict) -> BackendSpec:
    """
    Turn the ``backend`` section into exactly one configuration variant.

    Configuration errors never fail: an unknown kind, or a remote store
    without an endpoint, falls back to the durable file store.
    """
    section = cfg.backend
    quota = int(cfg.max_storage_size or 0)
    durable = DurableConfig(root=Path(section.storage_dir).expanduser(), quota=quota)

    kind = parse_backend_kind(section.kind)
    if kind is None:
        logger.warning(
            f"Unknown storage backend {section.kind!r}, using {BackendKind.DURABLE.value}"
        )
        return durable

    if kind is BackendKind.DURABLE:
        return durable
    if kind is BackendKind.VOLATILE:
        return VolatileConfig(quota=quota)
    if kind is BackendKind.DATABASE:
        return DatabaseConfig(
            path=Path(section.db_path).expanduser(), table=section.table, quota=quota
        )

    if not section.endpoint:
        logger.warning(
            f"Remote storage selected without an endpoint, "
            f"falling back to {BackendKind.DURABLE.value}"
        )
        return durable
    return RemoteConfig(
        endpoint=section.endpoint,
        api_key=section.api_key or None,
        timeout=float(section.timeout),
    )
