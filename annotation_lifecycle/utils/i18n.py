"""Message catalog setup for user-facing strings."""

import gettext
import logging
import os
from gettext import gettext as _
from pathlib import Path

logger = logging.getLogger(__name__)

DOMAIN = "annotation_lifecycle"
LOCALE_DIR = Path(__file__).parent.parent / "i18n"


def bind_domain(domain: str = DOMAIN, locale_dir: Path = LOCALE_DIR) -> Path:
    """Make ``domain`` the active gettext domain; ANNOT_LOCALE_DIR overrides the folder."""
    locale_dir = Path(os.environ.get("ANNOT_LOCALE_DIR") or locale_dir)
    gettext.bindtextdomain(domain, localedir=str(locale_dir))
    gettext.textdomain(domain)
    logger.debug(
        _('Loading locale data from "{locale_folder}"').format(locale_folder=locale_dir)
    )
    return locale_dir


bind_domain()
