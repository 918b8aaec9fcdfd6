"""
tests/test_config.py — Configuration & Store Boundary Tests
============================================================
"""

from __future__ import annotations

import pytest
from sqlalchemy.exc import OperationalError

from scrims.config import ScrimsConfig, load_config
from scrims.constants import DEFAULT_MEMBER_CACHE_THRESHOLD, DEFAULT_OWNER_ID
from scrims.database.engine import bind_params, create_db_engine, execute_query


# ---------------------------------------------------------------------------
# config.yaml
# ---------------------------------------------------------------------------
class TestLoadConfig:
    def test_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("host_guild_id: 759894401957888031\n", encoding="utf-8")

        cfg = load_config(path)
        assert cfg.host_guild_id == 759894401957888031
        assert cfg.bot_prefix == "!"
        assert cfg.serves_host is True
        assert cfg.owner_id == DEFAULT_OWNER_ID
        assert cfg.member_cache_threshold == DEFAULT_MEMBER_CACHE_THRESHOLD

    def test_overrides(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text(
            "host_guild_id: ''\n"
            "serves_host: false\n"
            "owner_id: null\n"
            "query_timeout: 2.5\n",
            encoding="utf-8",
        )
        cfg = load_config(path)
        assert cfg.host_guild_id is None
        assert cfg.serves_host is False
        assert cfg.owner_id is None
        assert cfg.query_timeout == 2.5

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError, match="config.yaml.example"):
            load_config(tmp_path / "nope.yaml")

    def test_missing_host_guild(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("bot_prefix: '?'\n", encoding="utf-8")
        with pytest.raises(KeyError):
            load_config(path)

    def test_frozen(self):
        cfg = ScrimsConfig(bot_prefix="!", host_guild_id=1)
        with pytest.raises(AttributeError):
            cfg.host_guild_id = 2


# ---------------------------------------------------------------------------
# Engine & raw queries
# ---------------------------------------------------------------------------
class TestStoreBoundary:
    def test_database_url_required(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        with pytest.raises(RuntimeError, match="DATABASE_URL"):
            create_db_engine()

    def test_bind_params(self):
        assert bind_params(["a", None, 3]) == {"p1": "a", "p2": None, "p3": 3}

    def test_execute_query_returns_dicts(self, db_engine):
        execute_query(db_engine, 'INSERT INTO "positions" ("name", "level") VALUES (:p1, :p2)', ["mod", 2])
        rows = execute_query(db_engine, 'SELECT "name", "level" FROM "positions"')
        assert rows == [{"name": "mod", "level": 2}]

    def test_execute_query_without_rows(self, db_engine):
        assert execute_query(db_engine, 'DELETE FROM "positions"') == []

    def test_errors_propagate(self, db_engine):
        with pytest.raises(OperationalError):
            execute_query(db_engine, 'SELECT * FROM "no_such_table"')
