import json

import pytest

from annotation_lifecycle.cli import main


@pytest.fixture
def store(tmp_path):
    return ["--storage-dir", str(tmp_path / "store")]


def run(capsys, argv):
    code = main(argv)
    return code, capsys.readouterr().out.strip()


def test_version(capsys):
    with pytest.raises(SystemExit) as exc:
        main(["-V"])
    assert exc.value.code == 0
    assert capsys.readouterr().out.strip()


def test_session_lifecycle(capsys, store):
    code, session_id = run(capsys, store + ["sessions", "create", "-m", "study_id=st-1"])
    assert code == 0

    code, listing = run(capsys, store + ["sessions", "list"])
    assert code == 0
    assert listing.startswith(f"{session_id}\t0\tv1")

    code, _ = run(capsys, store + ["sessions", "delete", session_id])
    assert code == 0
    assert run(capsys, store + ["sessions"]) == (0, "")


def test_bad_metadata(capsys, store):
    code, out = run(capsys, store + ["sessions", "create", "-m", "oops"])
    assert code == 2
    assert "key=value" in out


def test_flag_after_subcommand(capsys, tmp_path):
    run(capsys, ["sessions", "create", "--storage-dir", str(tmp_path)])
    assert list(tmp_path.glob("session-*.payload"))


def test_export_and_ingest(capsys, store, tmp_path):
    _, session_id = run(capsys, store + ["sessions", "create"])
    exported = tmp_path / "export.json"

    code, _ = run(capsys, store + ["export", session_id, "-o", str(exported)])
    assert code == 0
    assert json.loads(exported.read_text())["session_id"] == session_id

    code, out = run(capsys, store + ["ingest", str(exported)])
    assert code == 0
    assert "0 imported, 0 skipped" in out

    code, listing = run(capsys, store + ["sessions", "list"])
    assert len(listing.splitlines()) == 2


def test_export_unknown_session(capsys, store):
    code, out = run(capsys, store + ["export", "missing"])
    assert code == 1
    assert "missing" in out


def test_ingest_garbage(capsys, store, tmp_path):
    garbage = tmp_path / "garbage.json"
    garbage.write_text("not json")
    code, out = run(capsys, store + ["ingest", str(garbage)])
    assert code == 1


def test_backup_create_list_restore(capsys, store):
    _, session_id = run(capsys, store + ["sessions", "create"])
    code, backup_id = run(capsys, store + ["backup", "create"])
    assert code == 0

    run(capsys, store + ["sessions", "clear"])
    code, listing = run(capsys, store + ["backup", "list"])
    assert backup_id in listing
    assert "pre-clear" in listing

    assert run(capsys, store + ["backup", "restore", backup_id])[0] == 0
    _, sessions = run(capsys, store + ["sessions", "list"])
    assert session_id in sessions


def test_backup_restore_needs_id(capsys, store):
    assert run(capsys, store + ["backup", "restore"])[0] == 2


def test_sweep_keeps_recent_sessions(capsys, store):
    _, session_id = run(capsys, store + ["sessions", "create"])
    assert run(capsys, store + ["sweep", "-d", "1"]) == (0, "")
    assert session_id in run(capsys, store + ["sessions", "list"])[1]


def test_stats_json(capsys, store):
    run(capsys, store + ["sessions", "create"])
    code, out = run(capsys, store + ["stats", "--json"])
    assert code == 0
    stats = json.loads(out)
    assert stats["total_sessions"] == 1
    assert stats["auto_save_enabled"] is False
