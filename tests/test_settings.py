import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from settings import DATA_DIR_ENV, Settings, load_config, load_settings

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), '..'))


def test_missing_config_uses_defaults(tmp_path):
    assert load_config(str(tmp_path / "missing.toml")) == {}
    settings = load_settings(str(tmp_path / "missing.toml"), environ={})
    assert settings.data_dir == "./pageshelf-data"
    assert settings.archive_workers == 5
    assert settings.archive_timeout == 60
    assert settings.insecure is False
    assert settings.port == 8080
    assert settings.log_level == "INFO"
    assert settings.log_file is None


def test_broken_config_uses_defaults(tmp_path):
    path = tmp_path / "broken.toml"
    path.write_text("[storage\ndata_dir = ", encoding="utf-8")
    assert load_config(str(path)) == {}


def test_config_values(tmp_path):
    path = tmp_path / "config.toml"
    path.write_text(
        '[storage]\ndata_dir = "/srv/shelf"\n'
        '[archive]\nworkers = 2\ninsecure = true\n'
        '[readability]\nchar_threshold = 250\n'
        '[logging]\nlevel = "debug"\nfile = "shelf.log"\n',
        encoding="utf-8",
    )
    settings = load_settings(str(path), environ={})
    assert settings.data_dir == "/srv/shelf"
    assert settings.db_path == os.path.join("/srv/shelf", "pageshelf.db")
    assert settings.archive_options()["workers"] == 2
    assert settings.archive_options()["insecure"] is True
    assert settings.readability_options() == {"char_threshold": 250, "n_top_candidates": 5, "keep_classes": False}
    assert settings.log_level == "DEBUG"
    assert settings.log_file == "shelf.log"


def test_environment_overrides_data_dir():
    settings = Settings({"storage": {"data_dir": "/from/config"}}, environ={DATA_DIR_ENV: "/from/env"})
    assert settings.data_dir == "/from/env"


def test_shipped_config_matches_defaults():
    shipped = Settings(load_config(os.path.join(ROOT, "default_config.toml")), environ={})
    defaults = Settings({}, environ={})
    assert vars(shipped) == vars(defaults)
