from gettext import gettext as _

COMMAND_DESCRIPTION = _("Create, list or restore backups of all sessions")


def command(subparser):
    subparser.add_argument(
        "action", choices=["list", "create", "restore", "prune"], nargs="?", default="list"
    )
    subparser.add_argument("backup_id", nargs="?", help=_("Backup to restore"))

    def handle(args):
        from annotation_lifecycle.cli.common import open_persistence

        persistence = open_persistence(args)
        try:
            if args.action == "create":
                backup_id = persistence.create_backup()
                if backup_id is None:
                    print(_("Backup failed"))
                    return 1
                print(backup_id)
                return 0

            if args.action == "restore":
                if not args.backup_id:
                    print(_("restore needs a backup id"))
                    return 2
                return 0 if persistence.restore_backup(args.backup_id) else 1

            if args.action == "prune":
                for backup_id in persistence.backups.prune():
                    print(backup_id)
                return 0

            for backup in persistence.list_backups():
                print(
                    f"{backup.backup_id}\t{backup.reason.value}\t"
                    f"{len(backup.sessions)}\t{backup.timestamp}"
                )
            return 0
        finally:
            persistence.dispose()

    return handle
