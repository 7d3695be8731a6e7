import gettext

from annotation_lifecycle.utils.i18n import DOMAIN, bind_domain


def test_bind_domain(tmp_path, monkeypatch):
    monkeypatch.delenv("ANNOT_LOCALE_DIR", raising=False)
    assert bind_domain(locale_dir=tmp_path) == tmp_path
    assert gettext.textdomain() == DOMAIN


def test_bind_domain_env_override(tmp_path, monkeypatch):
    monkeypatch.setenv("ANNOT_LOCALE_DIR", str(tmp_path))
    assert bind_domain() == tmp_path
