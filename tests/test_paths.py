"""Tests for flexbatch.paths."""

import os

import pytest

from flexbatch import paths
from flexbatch.paths import resolve_config, resolve_db


class TestResolveConfig:
    def test_explicit_path(self, tmp_path):
        cfg = tmp_path / "flexbatch.toml"
        cfg.write_text("")
        assert resolve_config(str(cfg)) == str(cfg)

    def test_explicit_path_missing(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            resolve_config(str(tmp_path / "nope.toml"))

    def test_bare_name_in_cwd(self, tmp_path, monkeypatch):
        (tmp_path / "flexbatch.toml").write_text("")
        monkeypatch.chdir(tmp_path)
        assert resolve_config("flexbatch.toml") == str(tmp_path / "flexbatch.toml")

    def test_bare_name_in_etc(self, tmp_path, monkeypatch):
        etc = tmp_path / "etc"
        etc.mkdir()
        (etc / "flexbatch.toml").write_text("")
        monkeypatch.setattr(paths, "ETC_DIR", str(etc))
        monkeypatch.chdir(tmp_path)
        assert resolve_config("flexbatch.toml") == str(etc / "flexbatch.toml")

    def test_bare_name_missing(self, tmp_path, monkeypatch):
        monkeypatch.setattr(paths, "ETC_DIR", str(tmp_path / "etc"))
        monkeypatch.chdir(tmp_path)
        with pytest.raises(FileNotFoundError, match="not found"):
            resolve_config("flexbatch.toml")


class TestResolveDb:
    def test_dev_layout(self):
        assert resolve_db("/home/u/fb/flexbatch.toml", "fb.db") == (
            os.path.join("/home/u/fb", "data", "fb.db")
        )

    def test_production_layout(self):
        assert resolve_db("/etc/flexbatch/flexbatch.toml", "fb.db") == (
            "/var/lib/flexbatch/fb.db"
        )

    def test_absolute_db(self):
        assert resolve_db("/etc/flexbatch/flexbatch.toml", "/tmp/x.db") == "/tmp/x.db"
