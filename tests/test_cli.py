"""
Tests for the kvdoc command line.
"""

import json

import pytest
from typer.testing import CliRunner

from kvdoc.backend import open_session
from kvdoc.cli import app
from kvdoc.errors import ConflictError
from kvdoc.index import pointer_key_for
from kvdoc.schema import Attribute, DocumentKind, Index, unique

runner = CliRunner()

users = DocumentKind("user", attributes=[Attribute("email", str)], indexes=[unique("email")])
items = DocumentKind("item", attributes=[Attribute("rank", int)], indexes=[Index("rank")])


@pytest.fixture
def store_dir(tmp_path, monkeypatch):
    path = tmp_path / "store"
    monkeypatch.setenv("KVDOC_STORE_PATH", str(path))
    return path


@pytest.fixture
def joe(store_dir):
    with open_session(store_dir) as session:
        return session.controller.create_strict(users, {"email": "joe@example.com"})


class TestInitAndConfig:

    def test_init(self, tmp_path):
        path = tmp_path / "fresh"
        result = runner.invoke(app, ["init", "--store", str(path)])
        assert result.exit_code == 0
        assert "Store ready" in result.output
        assert (path / "kvdoc.toml").exists()
        assert (path / "documents.db").exists()

    def test_init_json(self, store_dir):
        result = runner.invoke(app, ["--json", "init"])
        assert result.exit_code == 0
        assert json.loads(result.output) == {"path": str(store_dir), "backend": "sqlite"}

    def test_config(self, store_dir):
        result = runner.invoke(app, ["--json", "config"])
        assert result.exit_code == 0
        data = json.loads(result.output)
        assert data["backend"] == "sqlite"
        assert data["database"] == str(store_dir / "documents.db")
        assert data["timeout"] == 5.0

    def test_config_text(self, store_dir):
        result = runner.invoke(app, ["config"])
        assert "backend: sqlite" in result.output


class TestGetAndKeys:

    def test_get_document(self, joe):
        result = runner.invoke(app, ["get", joe.id])
        assert result.exit_code == 0
        assert f"{joe.id}  cas={joe.cas}" in result.output
        assert 'email: "joe@example.com"' in result.output

    def test_get_json(self, joe):
        result = runner.invoke(app, ["--json", "get", joe.id])
        data = json.loads(result.output)
        assert data == {
            "key": joe.id,
            "cas": joe.cas,
            "value": {"type": "user", "email": "joe@example.com"},
        }

    def test_get_pointer(self, joe):
        key = pointer_key_for("user", "email", ["joe@example.com"])
        result = runner.invoke(app, ["get", key])
        assert result.output.strip() == f"{key} -> {joe.id}"

    def test_get_missing(self, store_dir):
        result = runner.invoke(app, ["get", "user-nope"])
        assert result.exit_code == 1
        assert "Not found: user-nope" in result.output

    def test_keys(self, joe):
        result = runner.invoke(app, ["--json", "keys"])
        assert json.loads(result.output) == sorted([joe.id, 'user#email|"joe@example.com"'])

    def test_keys_prefix(self, joe):
        result = runner.invoke(app, ["keys", "-p", "user#"])
        assert result.output.splitlines() == ['user#email|"joe@example.com"']


class TestRemove:

    def test_rm(self, joe, store_dir):
        result = runner.invoke(app, ["rm", joe.id])
        assert result.exit_code == 0
        assert f"Deleted {joe.id}" in result.output
        with open_session(store_dir) as session:
            assert session.store.get(joe.id, quiet=True) is None

    def test_rm_missing(self, store_dir):
        result = runner.invoke(app, ["rm", "user-nope"])
        assert result.exit_code == 1

    def test_rm_with_current_cas(self, joe):
        assert runner.invoke(app, ["rm", joe.id, "--cas", str(joe.cas)]).exit_code == 0

    def test_rm_with_stale_cas(self, joe):
        result = runner.invoke(app, ["rm", joe.id, "--cas", str(joe.cas ^ 1)])
        assert result.exit_code == 1
        assert isinstance(result.exception, ConflictError)


class TestNewId:

    def test_new_ids(self):
        result = runner.invoke(app, ["new-id", "user", "-n", "3"])
        ids = result.output.splitlines()
        assert len(ids) == 3
        assert len(set(ids)) == 3
        assert all(i.startswith("user-") for i in ids)

    def test_new_ids_json(self):
        result = runner.invoke(app, ["--json", "new-id", "post", "--count", "2"])
        ids = json.loads(result.output)
        assert len(ids) == 2
        assert ids[0].startswith("post-")


class TestLookup:

    def test_lookup(self, joe):
        result = runner.invoke(app, ["lookup", "user", "email", "joe@example.com"])
        assert result.exit_code == 0
        assert result.output.strip() == joe.id

    def test_lookup_json(self, joe):
        result = runner.invoke(app, ["--json", "lookup", "user", "email", "joe@example.com"])
        assert json.loads(result.output) == {
            "key": 'user#email|"joe@example.com"',
            "id": joe.id,
        }

    def test_lookup_missing(self, store_dir):
        result = runner.invoke(app, ["lookup", "user", "email", "nobody@example.com"])
        assert result.exit_code == 1
        assert "No document for" in result.output

    def test_lookup_repairs_dangling_pointer(self, joe, store_dir):
        runner.invoke(app, ["rm", joe.id])
        result = runner.invoke(app, ["lookup", "user", "email", "joe@example.com"])
        assert result.exit_code == 1
        with open_session(store_dir) as session:
            assert session.store.keys("user#") == []

    def test_lookup_json_values(self, store_dir):
        with open_session(store_dir) as session:
            item = session.controller.create_strict(items, {"rank": 3})
        result = runner.invoke(app, ["lookup", "item", "rank", "3", "--json-values"])
        assert result.output.strip() == item.id
        result = runner.invoke(app, ["lookup", "item", "rank", "3"])
        assert result.exit_code == 1

    def test_lookup_bad_json(self, store_dir):
        result = runner.invoke(app, ["lookup", "item", "rank", "{", "--json-values"])
        assert result.exit_code == 1
        assert "invalid JSON" in result.output

    def test_lookup_bad_index_name(self, store_dir):
        result = runner.invoke(app, ["lookup", "user", "em|ail", "x"])
        assert result.exit_code == 1
        assert "Invalid index name" in result.output
