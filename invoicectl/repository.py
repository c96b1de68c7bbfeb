import logging
from typing import Dict

from .config import ALLOWED_CONFIG_KEYS, DEFAULT_CONFIG

logger = logging.getLogger(__name__)


def get_config(conn) -> Dict[str, str]:
    cfg = dict(DEFAULT_CONFIG)
    cur = conn.execute("SELECT key, value FROM config")
    cfg.update({r["key"]: r["value"] for r in cur.fetchall()})
    return cfg


def set_config(conn, key: str, value: str):
    if key not in ALLOWED_CONFIG_KEYS:
        raise ValueError(f"Allowed keys: {', '.join(sorted(ALLOWED_CONFIG_KEYS))}")
    try:
        if float(value) < 0:
            raise ValueError
    except ValueError:
        raise ValueError(f"{key} must be a non-negative number, got {value!r}")
    with conn:
        conn.execute(
            "INSERT INTO config(key,value) VALUES(?,?) "
            "ON CONFLICT(key) DO UPDATE SET value=excluded.value",
            (key, str(value)),
        )


def config_number(cfg: Dict[str, str], key: str, cast=float):
    """Read a numeric config value, falling back to the default on bad input."""
    try:
        return cast(float(cfg.get(key, DEFAULT_CONFIG[key])))
    except (TypeError, ValueError):
        logger.warning("Invalid value %r for %s; using default %s", cfg.get(key), key, DEFAULT_CONFIG[key])
        return cast(DEFAULT_CONFIG[key])
