"""Helpers shared by the subcommands."""

import logging
import os
from argparse import SUPPRESS
from gettext import gettext as _

from annotation_lifecycle.core.persistence import (
    AnnotationPersistence,
    load_persistence_config,
)
from annotation_lifecycle.core.persistence.config import merge_config

logger = logging.getLogger(__name__)


def storage_flags(parser):
    # SUPPRESS keeps a subcommand from resetting a flag given before it
    parser.add_argument(
        "--backend",
        dest="backend",
        default=SUPPRESS,
        help=_("Storage backend: durable, volatile, database or remote"),
    )
    parser.add_argument(
        "--storage-dir",
        dest="storage_dir",
        default=SUPPRESS,
        help=_("Directory of the durable file store"),
    )
    parser.add_argument(
        "--db-path",
        dest="db_path",
        default=SUPPRESS,
        help=_("SQLite file of the database store"),
    )
    parser.add_argument(
        "--endpoint",
        dest="endpoint",
        default=SUPPRESS,
        help=_("Base URL of the remote store"),
    )


def open_persistence(args) -> AnnotationPersistence:
    """
    Build a persistence engine for one CLI invocation.

    Timers stay off and every change is written synchronously, since
    the process exits right after the command.
    """
    overrides = {"backend": {}}
    for flag in ("backend", "storage_dir", "db_path", "endpoint"):
        value = getattr(args, flag, None)
        if value is not None:
            key = "kind" if flag == "backend" else flag
            overrides["backend"][key] = str(value)
    # Flags win over ANNOT_* variables
    cfg = merge_config(load_persistence_config(env=os.environ), overrides)
    cfg.auto_save.enabled = False
    cfg.backup.enabled = False
    logger.debug(_("Using storage backend {kind}").format(kind=cfg.backend.kind))
    return AnnotationPersistence(cfg, autostart=False)
