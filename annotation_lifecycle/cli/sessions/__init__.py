from gettext import gettext as _

COMMAND_DESCRIPTION = _("List, create or delete annotation sessions")


def parse_metadata(items):
    metadata = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise ValueError(_("Metadata must look like key=value, got {item}").format(item=item))
        metadata[key] = value
    return metadata


def command(subparser):
    subparser.add_argument(
        "action",
        choices=["list", "create", "delete", "clear"],
        nargs="?",
        default="list",
    )
    subparser.add_argument(
        "session_ids",
        nargs="*",
        help=_("Sessions to delete"),
    )
    subparser.add_argument(
        "-m",
        "--metadata",
        dest="metadata",
        action="append",
        help=_("key=value metadata for a new session, may be repeated"),
    )
    subparser.add_argument("-u", "--user", dest="user_id", help=_("Owner of a new session"))

    def handle(args):
        from annotation_lifecycle.cli.common import open_persistence

        try:
            metadata = parse_metadata(args.metadata)
        except ValueError as e:
            print(e)
            return 2

        persistence = open_persistence(args)
        try:
            if args.action == "create":
                session_id = persistence.create_session(metadata, user_id=args.user_id)
                print(session_id)
                return 0 if not persistence.is_dirty(session_id) else 1

            if args.action == "delete":
                failed = [s for s in args.session_ids if not persistence.delete_session(s)]
                for session_id in failed:
                    print(_("Could not delete {session_id}").format(session_id=session_id))
                return 1 if failed else 0

            if args.action == "clear":
                return 0 if persistence.clear_sessions() else 1

            for session in persistence.get_sessions():
                print(
                    f"{session.session_id}\t{len(session.records)}\t"
                    f"v{session.version}\t{session.updated_at}"
                )
            return 0
        finally:
            persistence.dispose()

    return handle
