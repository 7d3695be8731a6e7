from gettext import gettext as _

COMMAND_DESCRIPTION = _("Delete sessions older than the retention period")


def command(subparser):
    subparser.add_argument(
        "-d",
        "--retention-days",
        dest="retention_days",
        type=float,
        help=_("Override the configured retention period"),
    )

    def handle(args):
        from annotation_lifecycle.cli.common import open_persistence

        persistence = open_persistence(args)
        try:
            if args.retention_days is not None:
                persistence.update_config(retention_days=args.retention_days)
            for session_id in persistence.cleanup_old_sessions():
                print(session_id)
        finally:
            persistence.dispose()
        return 0

    return handle
