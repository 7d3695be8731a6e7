from gettext import gettext as _
from pathlib import Path

COMMAND_DESCRIPTION = _("Import an exported session as a new session")


def guess_format(path: Path, requested):
    if requested:
        return requested
    return "csv" if path.suffix.lower() == ".csv" else "json"


def command(subparser):
    subparser.add_argument("input", type=Path)
    subparser.add_argument(
        "-f",
        "--format",
        dest="format",
        choices=["json", "csv"],
        help=_("Defaults to the file extension"),
    )

    def handle(args):
        from annotation_lifecycle.cli.common import open_persistence

        data = args.input.read_text(encoding="utf-8")
        persistence = open_persistence(args)
        try:
            result = persistence.import_session(data, guess_format(args.input, args.format))
        except ValueError as e:
            print(_("Cannot import {path}: {error}").format(path=args.input, error=e))
            return 1
        finally:
            persistence.dispose()

        print(
            _("{session_id}: {imported} imported, {skipped} skipped").format(
                session_id=result.session_id,
                imported=result.imported,
                skipped=result.skipped,
            )
        )
        return 0 if result.saved else 1

    return handle
