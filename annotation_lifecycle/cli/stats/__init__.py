import json
from dataclasses import asdict
from gettext import gettext as _

COMMAND_DESCRIPTION = _("Show storage and session statistics")


def command(subparser):
    subparser.add_argument("--json", dest="as_json", action="store_true")

    def handle(args):
        from annotation_lifecycle.cli.common import open_persistence
        from annotation_lifecycle.utils.misc import format_bytes

        persistence = open_persistence(args)
        try:
            stats = persistence.get_stats()
        finally:
            persistence.dispose()

        if args.as_json:
            print(json.dumps(asdict(stats), indent=2))
            return 0

        limit = format_bytes(stats.storage_limit) if stats.storage_limit else _("unlimited")
        print(_("Sessions: {n}").format(n=stats.total_sessions))
        print(_("Annotations: {n}").format(n=stats.total_annotations))
        print(
            _("Storage: {used} of {limit}").format(
                used=format_bytes(stats.storage_used), limit=limit
            )
        )
        print(_("Last saved: {when}").format(when=stats.last_saved or _("never")))
        return 0

    return handle
