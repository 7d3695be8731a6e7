from gettext import gettext as _
from pathlib import Path

COMMAND_DESCRIPTION = _("Export a session as JSON or CSV")


def command(subparser):
    subparser.add_argument("session_id")
    subparser.add_argument(
        "-f", "--format", dest="format", choices=["json", "csv"], default="json"
    )
    subparser.add_argument(
        "-o",
        "--output",
        dest="output",
        type=Path,
        help=_("File to write, stdout when omitted"),
    )

    def handle(args):
        from annotation_lifecycle.cli.common import open_persistence

        persistence = open_persistence(args)
        try:
            try:
                data = persistence.export_session(args.session_id, args.format)
            except KeyError:
                print(_("Unknown session {session_id}").format(session_id=args.session_id))
                return 1
        finally:
            persistence.dispose()

        if args.output is None:
            print(data)
        else:
            args.output.write_text(data, encoding="utf-8")
        return 0

    return handle
