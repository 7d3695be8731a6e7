import logging
from gettext import gettext as _
from typing import Dict

from easydict import EasyDict as edict

logger = logging.getLogger(__name__)

ENV_PREFIX = "ANNOT_"

TRUTHY = ("1", "true", "yes", "on")


def coerce_value(current, value):
    """Convert a string from the environment to the type of the entry it replaces."""
    if not isinstance(value, str) or current is None:
        return value
    if isinstance(current, bool):
        return value.strip().lower() in TRUTHY
    if isinstance(current, int):
        return int(value)
    if isinstance(current, float):
        return float(value)
    return value


def load_cfg_from_env(cfg: edict, env: Dict[str, str], prefix: str = ENV_PREFIX):
    for k, v in env.items():
        if k.startswith(prefix):
            cfgkey = k[len(prefix):].lower().replace("__", ".")
            logger.warning(
                _(
                    "Changing configuration entry from environment variable: {k}={v}"
                ).format(k=cfgkey, v=v)
            )
            *parts, last = cfgkey.split(".")
            this_cfg = cfg
            for part in parts:
                if this_cfg.get(part) is None:
                    this_cfg[part] = edict()
                this_cfg = this_cfg[part]
            this_cfg[last] = coerce_value(this_cfg.get(last), v)
    return cfg
