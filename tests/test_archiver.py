"""
Tests for the offline archiver and the archive reader.

The network is never touched: requests sessions are mocked with canned
responses keyed by URL.
"""

import gzip
import os
import sys
from unittest.mock import MagicMock

import lmdb
import pytest
import requests

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from archive_reader import ArchiveReader, content_key, type_key
from archiver import ArchiveStorage, Archiver, create_archive, create_session, USER_AGENT
from errors import NotFoundError, StorageFailedError

PAGE_URL = "https://ex.com/page"

PAGE = b"""<html><head>
<link rel="stylesheet" href="https://cdn/x.css">
<link rel="stylesheet" href="https://cdn/x.css">
<link rel="stylesheet" href="https://cdn/x.css?utm_source=y">
</head><body>
<p>Hello</p>
<img src="https://cdn/missing.png">
<iframe src="https://ex.com/embed"></iframe>
</body></html>"""

RESPONSES = {
    "https://cdn/x.css": (b"body { background: url(bg.png) }", "text/css"),
    "https://cdn/bg.png": (b"\x89PNG fake", "image/png"),
    "https://ex.com/embed": (b'<html><body><img src="inner.png"></body></html>', "text/html; charset=utf-8"),
    "https://ex.com/inner.png": (b"\x89PNG inner", "image/png"),
}


def make_session(responses=RESPONSES):
    def get(url, timeout=None, verify=True):
        response = MagicMock()
        if url in responses:
            content, content_type = responses[url]
            response.content = content
            response.headers = {"Content-Type": content_type}
            response.raise_for_status.return_value = None
        else:
            response.content = b""
            response.headers = {}
            response.raise_for_status.side_effect = requests.exceptions.HTTPError(f"404 Not Found: {url}")
        return response

    session = MagicMock()
    session.get.side_effect = get
    return session


@pytest.fixture
def archive(tmp_path):
    session = make_session()
    path = str(tmp_path / "archive" / "1")
    result = create_archive(path, PAGE, "text/html", PAGE_URL, session=session, workers=3)
    return path, result, session


def test_create_session_has_user_agent_and_retries():
    session = create_session()
    assert session.headers["User-Agent"] == USER_AGENT
    adapter = session.get_adapter("https://ex.com")
    assert adapter.max_retries.total == 3
    assert 503 in adapter.max_retries.status_forcelist


def test_user_agent_names_pageshelf_only():
    assert USER_AGENT == "PageShelf/1.0.0"
    assert "http" not in USER_AGENT
    assert create_session("MyBot/2.0").headers["User-Agent"] == "MyBot/2.0"


def test_archive_deduplicates_subresources(archive):
    path, result, session = archive
    requested = [call.args[0] for call in session.get.call_args_list]
    assert requested.count("https://cdn/x.css") == 1
    assert len(requested) == len(set(requested))

    with ArchiveReader(path) as reader:
        names = reader.names()
    assert names.count("https-cdn-x.css") == 1
    assert sorted(names) == sorted([
        "archive-root",
        "https-cdn-x.css",
        "https-cdn-bg.png",
        "https-ex.com-embed",
        "https-ex.com-inner.png",
    ])


def test_archive_result(archive):
    path, result, _ = archive
    assert result.path == path
    assert result.url == PAGE_URL
    assert result.n_downloads == 4
    assert result.errors == []
    assert len(result.warnings) == 1
    assert "https://cdn/missing.png" in result.warnings[0]
    assert result.stored[0] == "archive-root"


def test_archive_content_is_rewritten(archive):
    path, _, _ = archive
    with ArchiveReader(path) as reader:
        root, root_type = reader.read("")
        assert root_type == "text/html"
        assert b'href="https-cdn-x.css"' in root
        assert b'src="https-ex.com-embed"' in root

        css, css_type = reader.read("https-cdn-x.css")
        assert css_type == "text/css"
        assert css == b'body { background: url("https-cdn-bg.png") }'

        embed, _ = reader.read("https-ex.com-embed")
        assert b'src="https-ex.com-inner.png"' in embed

        image, image_type = reader.read("https-cdn-bg.png")
        assert image == b"\x89PNG fake"
        assert image_type == "image/png"


def test_reader_missing_resource_and_archive(archive, tmp_path):
    path, _, _ = archive
    with ArchiveReader(path) as reader:
        assert reader.has("")
        assert reader.has("https-cdn-x.css")
        assert not reader.has("https-cdn-missing.png")
        with pytest.raises(NotFoundError):
            reader.read("https-cdn-missing.png")

    with pytest.raises(NotFoundError):
        ArchiveReader(str(tmp_path / "no-such-archive"))


def test_reader_detects_corrupted_content(tmp_path):
    path = str(tmp_path / "corrupt")
    env = lmdb.open(path, subdir=False)
    with env.begin(write=True) as txn:
        txn.put(content_key("archive-root"), b"not gzip")
        txn.put(type_key("archive-root"), b"text/html")
    env.close()

    with ArchiveReader(path) as reader:
        with pytest.raises(StorageFailedError):
            reader.read("archive-root")


def test_reader_detects_corrupted_deflate_stream(tmp_path):
    path = str(tmp_path / "corrupt-deflate")
    # Valid gzip header followed by a deflate block of reserved type.
    data = gzip.compress(b"")[:10] + b"\xff" * 16
    env = lmdb.open(path, subdir=False)
    with env.begin(write=True) as txn:
        txn.put(content_key("archive-root"), data)
        txn.put(type_key("archive-root"), b"text/html")
    env.close()

    with ArchiveReader(path) as reader:
        with pytest.raises(StorageFailedError):
            reader.read("")


def test_create_archive_replaces_existing_archive(tmp_path):
    path = str(tmp_path / "archive" / "1")
    create_archive(path, b"<html><body>old</body></html>", "text/html", PAGE_URL, session=make_session({}))
    create_archive(path, b"<html><body>new</body></html>", "text/html", PAGE_URL, session=make_session({}))

    with ArchiveReader(path) as reader:
        root, _ = reader.read("")
    assert b"new" in root
    assert os.listdir(tmp_path / "archive") == ["1"]


def test_non_html_root_is_stored_raw(tmp_path):
    path = str(tmp_path / "pdf")
    result = create_archive(path, b"%PDF-1.4", "application/pdf", "https://ex.com/doc.pdf", session=make_session({}))
    assert result.n_downloads == 0
    with ArchiveReader(path) as reader:
        assert reader.read("") == (b"%PDF-1.4", "application/pdf")


def test_insecure_disables_tls_verification(tmp_path):
    session = make_session()
    storage = ArchiveStorage(str(tmp_path / "archive"))
    try:
        Archiver(storage, session=session, insecure=True).run(PAGE, "text/html", PAGE_URL)
    finally:
        storage.close()
    assert all(call.kwargs["verify"] is False for call in session.get.call_args_list)


def test_storage_never_overwrites(tmp_path):
    storage = ArchiveStorage(str(tmp_path / "archive"))
    try:
        assert storage.put("name", b"first", "text/plain") is True
        assert storage.put("name", b"second", "text/plain") is False
    finally:
        storage.close()

    with ArchiveReader(str(tmp_path / "archive")) as reader:
        assert reader.read("name") == (b"first", "text/plain")


def test_storage_grows_when_full(tmp_path):
    storage = ArchiveStorage(str(tmp_path / "archive"), map_size=64 * 1024)
    payload = os.urandom(300 * 1024)
    try:
        assert storage.put("big", payload, "application/octet-stream")
        assert storage.map_size > 64 * 1024
    finally:
        storage.close()

    with ArchiveReader(str(tmp_path / "archive")) as reader:
        content, _ = reader.read("big")
    assert content == payload
    assert gzip.decompress(gzip.compress(payload)) == content
