"""
Tests for the command line interface. Pages are never fetched: fetch_page
and the HTTP session are patched.
"""

import json
import os
import sys
from unittest.mock import MagicMock, patch

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import pageshelf
from bookmark_store import BookmarkStore
from models import thumbnail_path

PARAGRAPH = ("Widgets are small, useful devices that people use every day, and they come in many "
             "shapes, sizes and colors. ") * 4
PAGE = f"""<html><head><title>Greatest Widgets Ever | Acme Corp</title></head><body><article>
<p>{PARAGRAPH}</p><p>{PARAGRAPH}</p><p>{PARAGRAPH}</p></article></body></html>""".encode("utf-8")


@pytest.fixture
def run(tmp_path):
    data_dir = str(tmp_path / "data")
    config = str(tmp_path / "missing.toml")

    def run(*args):
        return pageshelf.main(["--config", config, "--data-dir", data_dir] + list(args))

    run.data_dir = data_dir
    return run


def open_store(run):
    return BookmarkStore(os.path.join(run.data_dir, "pageshelf.db"))


def test_add_offline(run):
    assert run("add", "https://ex.com/a?utm_source=x&b=1", "-t", "A page", "-i", "news,Tech", "--offline") == 0
    store = open_store(run)
    bookmark = store.get_bookmark(1)
    store.close()
    assert bookmark.url == "https://ex.com/a?b=1"
    assert bookmark.title == "A page"
    assert sorted(bookmark.tag_names()) == ["news", "tech"]


def test_add_fetches_and_processes(run):
    with patch("pageshelf.fetch_page", return_value=(PAGE, "text/html")) as fetch, \
         patch("pageshelf._session", return_value=MagicMock()):
        assert run("add", "https://ex.com/widgets", "--no-archival") == 0
    fetch.assert_called_once()

    store = open_store(run)
    bookmark = store.get_bookmark(1)
    store.close()
    assert bookmark.title == "Greatest Widgets Ever"
    assert "useful devices" in bookmark.content


def test_add_duplicate_fails(run):
    assert run("add", "https://ex.com/a", "--offline") == 0
    assert run("add", "https://ex.com/a#top", "--offline") == 1


def test_add_invalid_url_fails(run):
    assert run("add", "ftp://ex.com/file", "--offline") == 1


def test_print_json(run, capsys):
    run("add", "https://ex.com/1", "-t", "One", "--offline")
    run("add", "https://ex.com/2", "-t", "Two", "--offline")
    capsys.readouterr()

    assert run("print", "2", "--json") == 0
    data = json.loads(capsys.readouterr().out)
    assert [book["title"] for book in data] == ["Two"]

    assert run("print", "0") == 1


def test_search(run, capsys):
    run("add", "https://ex.com/python", "-t", "Python tips", "-i", "dev", "--offline")
    run("add", "https://ex.com/food", "-t", "Pasta", "--offline")
    capsys.readouterr()

    assert run("search", "python") == 0
    out = capsys.readouterr().out
    assert "Python tips" in out
    assert "Pasta" not in out

    assert run("search", "--tags", "dev", "--json") == 0
    assert [book["id"] for book in json.loads(capsys.readouterr().out)] == [1]


def test_update_offline_tags(run):
    run("add", "https://ex.com/1", "-t", "One", "-i", "news,tech", "--offline")
    assert run("update", "1", "--offline", "--tags=-news,long-read", "-t", "Renamed") == 0

    store = open_store(run)
    bookmark = store.get_bookmark(1)
    store.close()
    assert sorted(bookmark.tag_names()) == ["long-read", "tech"]
    assert bookmark.title == "Renamed"


def test_update_refetches(run):
    run("add", "https://ex.com/widgets", "-t", "Old", "--offline")
    with patch("pageshelf.fetch_page", return_value=(PAGE, "text/html")), \
         patch("pageshelf._session", return_value=MagicMock()):
        assert run("update", "1", "--no-archival") == 0

    store = open_store(run)
    bookmark = store.get_bookmark(1)
    store.close()
    assert bookmark.title == "Greatest Widgets Ever"
    assert bookmark.id == 1


def test_delete_moves_side_files(run, capsys):
    for n in range(1, 6):
        run("add", f"https://ex.com/{n}", "-t", f"Page {n}", "--offline")
    for n in (2, 4, 5):
        path = thumbnail_path(run.data_dir, n)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as f:
            f.write(f"thumb {n}".encode())
    capsys.readouterr()

    assert run("delete", "2", "4", "--yes") == 0
    assert "Index 5 moved to 2" in capsys.readouterr().out

    with open(thumbnail_path(run.data_dir, 2), "rb") as f:
        assert f.read() == b"thumb 5"
    assert not os.path.exists(thumbnail_path(run.data_dir, 4))
    assert not os.path.exists(thumbnail_path(run.data_dir, 5))

    store = open_store(run)
    assert [(b.id, b.url) for b in store.get_bookmarks()] == [
        (1, "https://ex.com/1"), (2, "https://ex.com/5"), (3, "https://ex.com/3")]
    store.close()


def test_delete_all_asks_for_confirmation(run):
    run("add", "https://ex.com/1", "--offline")
    with patch("builtins.input", return_value="n"):
        assert run("delete") == 0
    store = open_store(run)
    assert len(store.get_bookmarks()) == 1
    store.close()


def test_tags_and_accounts(run, capsys):
    run("add", "https://ex.com/1", "-i", "news,tech", "--offline")
    run("add", "https://ex.com/2", "-i", "news", "--offline")
    capsys.readouterr()

    assert run("tags") == 0
    assert capsys.readouterr().out.splitlines() == ["news (2)", "tech (1)"]

    assert run("account", "add", "admin", "--password", "secret") == 0
    assert run("account", "print") == 0
    assert "- admin" in capsys.readouterr().out
    assert run("account", "delete", "admin") == 0

    store = open_store(run)
    assert store.get_accounts() == []
    store.close()


def test_serve_uses_settings(run):
    with patch("pageshelf.serve") as serve:
        assert run("serve", "--port", "9000") == 0
    settings = serve.call_args.args[0]
    assert settings.data_dir == run.data_dir
    assert serve.call_args.kwargs == {"host": None, "port": 9000}
