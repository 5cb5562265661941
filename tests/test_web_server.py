"""
Tests for the web interface, using FastAPI's TestClient.
"""

import gzip
import os
import sys
from unittest.mock import MagicMock

import lmdb
import pytest
from fastapi.testclient import TestClient

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from archive_reader import content_key, type_key
from archiver import create_archive
from bookmark_store import BookmarkStore
from models import Bookmark, Tag, archive_path, thumbnail_path
from settings import Settings
from web_server import PAGE_SIZE, create_app


@pytest.fixture
def data_dir(tmp_path):
    return str(tmp_path)


@pytest.fixture
def store(data_dir):
    settings = Settings({"storage": {"data_dir": data_dir}}, environ={})
    store = BookmarkStore(settings.db_path)
    store.create_bookmark(Bookmark(
        url="https://ex.com/python", title="Python <tips>", excerpt="Tips",
        content="list comprehensions", html="<p>list comprehensions</p>",
        tags=[Tag(name="python"), Tag(name="dev")],
    ))
    store.create_bookmark(Bookmark(url="https://ex.com/cooking", title="Cooking", tags=[Tag(name="food")]))
    yield store
    store.close()


@pytest.fixture
def client(data_dir, store):
    settings = Settings({"storage": {"data_dir": data_dir}}, environ={})
    return TestClient(create_app(settings, store=store))


def test_ui(client):
    response = client.get("/")
    assert response.status_code == 200
    assert "text/html" in response.headers["content-type"]
    assert "PageShelf" in response.text


def test_api_bookmarks(client):
    data = client.get("/api/bookmarks").json()
    assert data["page"] == 1
    assert data["maxPage"] == 1
    assert data["total"] == 2
    assert [book["id"] for book in data["bookmarks"]] == [2, 1]
    assert "content" not in data["bookmarks"][0]


def test_api_bookmarks_filters(client):
    data = client.get("/api/bookmarks", params={"keyword": "comprehensions"}).json()
    assert [book["id"] for book in data["bookmarks"]] == [1]

    data = client.get("/api/bookmarks", params={"tags": "python,dev"}).json()
    assert [book["id"] for book in data["bookmarks"]] == [1]

    data = client.get("/api/bookmarks", params={"tags": "python,food"}).json()
    assert data["bookmarks"] == []


def test_api_bookmarks_pagination(client, store):
    for n in range(PAGE_SIZE):
        store.create_bookmark(Bookmark(url=f"https://ex.com/{n}", title=f"Page {n}"))
    data = client.get("/api/bookmarks", params={"page": 2}).json()
    assert data["maxPage"] == 2
    assert len(data["bookmarks"]) == 2
    assert client.get("/api/bookmarks", params={"page": 0}).status_code == 400


def test_api_bookmark(client):
    data = client.get("/api/bookmarks/1").json()
    assert data["title"] == "Python <tips>"
    assert data["content"] == "list comprehensions"
    assert sorted(data["tags"]) == ["dev", "python"]
    assert data["hasArchive"] is False
    assert client.get("/api/bookmarks/99").status_code == 404


def test_api_tags(client):
    assert client.get("/api/tags").json() == [
        {"id": 2, "name": "dev", "nBookmarks": 1},
        {"id": 3, "name": "food", "nBookmarks": 1},
        {"id": 1, "name": "python", "nBookmarks": 1},
    ]


def test_thumbnail(client, data_dir):
    assert client.get("/bookmark/1/thumb").status_code == 404
    path = thumbnail_path(data_dir, 1)
    os.makedirs(os.path.dirname(path))
    with open(path, "wb") as f:
        f.write(b"\xff\xd8\xff fake jpeg")
    response = client.get("/bookmark/1/thumb")
    assert response.status_code == 200
    assert response.headers["content-type"] == "image/jpeg"
    assert response.content == b"\xff\xd8\xff fake jpeg"


def test_content(client):
    response = client.get("/bookmark/1/content")
    assert response.status_code == 200
    assert "<h1>Python &lt;tips&gt;</h1>" in response.text
    assert "<p>list comprehensions</p>" in response.text
    assert client.get("/bookmark/2/content").status_code == 404
    assert client.get("/bookmark/99/content").status_code == 404


def test_archive(client, data_dir):
    session = MagicMock()
    create_archive(archive_path(data_dir, 1), b"<html><body><p>archived</p></body></html>",
                   "text/html; charset=utf-8", "https://ex.com/python", session=session)

    response = client.get("/bookmark/1/archive/")
    assert response.status_code == 200
    assert response.headers["content-type"].startswith("text/html")
    assert "archived" in response.text

    response = client.get("/bookmark/1/archive/archive-root")
    assert "archived" in response.text

    assert client.get("/bookmark/1/archive/https-ex.com-missing.css").status_code == 404
    assert client.get("/bookmark/2/archive/").status_code == 404
    assert client.get("/api/bookmarks/1").json()["hasArchive"] is True


def test_corrupted_archive_is_reported(client, data_dir):
    path = archive_path(data_dir, 1)
    os.makedirs(os.path.dirname(path), exist_ok=True)
    env = lmdb.open(path, subdir=False)
    with env.begin(write=True) as txn:
        txn.put(content_key("archive-root"), gzip.compress(b"")[:10] + b"\xff" * 16)
        txn.put(type_key("archive-root"), b"text/html")
    env.close()

    response = client.get("/bookmark/1/archive/")
    assert response.status_code == 500
    assert "Corrupted resource archive-root" in response.json()["detail"]
