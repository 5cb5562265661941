# Copyright 2024 wyj
# Copyright 2025 Stephen Karl Larroque <lrq3000>
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Web interface of PageShelf.

Serves an embedded HTML/JS page for searching bookmarks, a small JSON API,
the thumbnails, the readable view of each bookmark and its offline archive.
"""

import html
import logging
import math
import os

import uvicorn
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, Response

from archive_reader import ArchiveReader
from bookmark_store import BookmarkStore
from errors import InvalidIndexError, InvalidURLError, NotFoundError, StorageFailedError
from models import archive_path, thumbnail_path

logger = logging.getLogger(__name__)

PAGE_SIZE = 30

HTML_UI = """
<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>PageShelf</title>
    <style>
        body { font-family: -apple-system, BlinkMacSystemFont, "Segoe UI", Roboto, sans-serif; margin: 0; background: #f5f5f5; color: #232323; }
        header { background: #fff; padding: 16px 24px; border-bottom: 1px solid #e5e5e5; display: flex; gap: 8px; }
        header input { flex: 1; padding: 8px 12px; font-size: 16px; border: 1px solid #ccc; border-radius: 4px; }
        header button { padding: 8px 16px; font-size: 16px; border: 0; border-radius: 4px; background: #f44336; color: #fff; cursor: pointer; }
        #meta { padding: 8px 24px; color: #777; font-size: 14px; }
        #results { display: grid; grid-template-columns: repeat(auto-fill, minmax(300px, 1fr)); gap: 16px; padding: 0 24px 24px; }
        .bookmark { background: #fff; border: 1px solid #e5e5e5; border-radius: 4px; overflow: hidden; display: flex; flex-direction: column; }
        .bookmark img { width: 100%; aspect-ratio: 3 / 2; object-fit: cover; }
        .bookmark .body { padding: 12px; flex: 1; }
        .bookmark a.title { font-weight: 600; color: #232323; text-decoration: none; }
        .bookmark p { color: #555; font-size: 14px; }
        .bookmark .tags span { display: inline-block; font-size: 12px; background: #eee; border-radius: 3px; padding: 2px 6px; margin: 2px; cursor: pointer; }
        .bookmark .links { padding: 8px 12px; border-top: 1px solid #eee; font-size: 13px; }
        .bookmark .links a { margin-right: 12px; color: #f44336; }
        #pagination { padding: 0 24px 24px; display: flex; gap: 8px; align-items: center; }
    </style>
</head>
<body>
    <header>
        <input id="keyword" type="text" placeholder="Search by keyword, or #tag" autofocus>
        <button id="search">Search</button>
    </header>
    <div id="meta"></div>
    <div id="results"></div>
    <div id="pagination">
        <button id="prev">Previous</button>
        <span id="page-info"></span>
        <button id="next">Next</button>
    </div>
    <script>
        let page = 1;
        let maxPage = 1;

        function escapeHtml(text) {
            const div = document.createElement('div');
            div.textContent = text;
            return div.innerHTML;
        }

        function parseQuery(query) {
            const tags = [];
            const words = [];
            query.split(/\\s+/).forEach(function (word) {
                if (word.startsWith('#') && word.length > 1) {
                    tags.push(word.substring(1));
                } else if (word) {
                    words.push(word);
                }
            });
            return { keyword: words.join(' '), tags: tags.join(',') };
        }

        async function load() {
            const query = parseQuery(document.getElementById('keyword').value);
            const params = new URLSearchParams({ keyword: query.keyword, tags: query.tags, page: page });
            const response = await fetch('/api/bookmarks?' + params.toString());
            if (!response.ok) {
                document.getElementById('meta').textContent = 'Search failed: ' + response.status;
                return;
            }
            const data = await response.json();
            maxPage = data.maxPage;
            document.getElementById('meta').textContent = data.total + ' bookmarks';
            document.getElementById('page-info').textContent = 'Page ' + data.page + ' / ' + Math.max(data.maxPage, 1);

            const results = document.getElementById('results');
            results.innerHTML = '';
            data.bookmarks.forEach(function (book) {
                const card = document.createElement('div');
                card.className = 'bookmark';
                let content = '';
                if (book.imageURL) {
                    content += '<img src="' + escapeHtml(book.imageURL) + '" alt="">';
                }
                content += '<div class="body"><a class="title" href="' + escapeHtml(book.url) + '" target="_blank">' + escapeHtml(book.title) + '</a>';
                content += '<p>' + escapeHtml(book.excerpt) + '</p>';
                content += '<div class="tags">' + book.tags.map(function (tag) { return '<span>#' + escapeHtml(tag) + '</span>'; }).join('') + '</div></div>';
                content += '<div class="links">';
                if (book.hasContent) {
                    content += '<a href="/bookmark/' + book.id + '/content" target="_blank">Readable</a>';
                }
                if (book.hasArchive) {
                    content += '<a href="/bookmark/' + book.id + '/archive/" target="_blank">Archive</a>';
                }
                content += '</div>';
                card.innerHTML = content;
                card.querySelectorAll('.tags span').forEach(function (span) {
                    span.addEventListener('click', function () {
                        document.getElementById('keyword').value = span.textContent;
                        page = 1;
                        load();
                    });
                });
                results.appendChild(card);
            });
        }

        document.getElementById('search').addEventListener('click', function () { page = 1; load(); });
        document.getElementById('keyword').addEventListener('keydown', function (e) {
            if (e.key === 'Enter') { page = 1; load(); }
        });
        document.getElementById('prev').addEventListener('click', function () {
            if (page > 1) { page--; load(); }
        });
        document.getElementById('next').addEventListener('click', function () {
            if (page < maxPage) { page++; load(); }
        });
        load();
    </script>
</body>
</html>
"""

CONTENT_TEMPLATE = """<!DOCTYPE html>
<html lang="{language}">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title}</title>
    <style>
        body {{ font-family: Georgia, serif; max-width: 720px; margin: 0 auto; padding: 24px; line-height: 1.6; color: #232323; }}
        img {{ max-width: 100%; height: auto; }}
        pre {{ overflow-x: auto; }}
        .meta {{ color: #777; font-family: sans-serif; font-size: 14px; }}
    </style>
</head>
<body>
    <h1>{title}</h1>
    <p class="meta"><a href="{url}">{url}</a>{author}{read_time}</p>
    <div id="content">{content}</div>
</body>
</html>
"""


def _split_tags(tags):
    return [tag.strip() for tag in (tags or "").split(",") if tag.strip()]


def _with_archive_flag(bookmark, data_dir):
    bookmark.has_archive = os.path.exists(archive_path(data_dir, bookmark.id))
    return bookmark


def render_content(bookmark):
    """Readable view of a bookmark. The stored HTML was cleaned on extraction and is inserted as is."""
    author = f" &middot; {html.escape(bookmark.author)}" if bookmark.author else ""
    read_time = ""
    if bookmark.max_read_time:
        if bookmark.min_read_time == bookmark.max_read_time:
            read_time = f" &middot; {bookmark.max_read_time} min read"
        else:
            read_time = f" &middot; {bookmark.min_read_time}-{bookmark.max_read_time} min read"
    return CONTENT_TEMPLATE.format(
        language=html.escape(bookmark.language or "en"),
        title=html.escape(bookmark.title),
        url=html.escape(bookmark.url),
        author=author,
        read_time=read_time,
        content=bookmark.html or "<p>" + html.escape(bookmark.content) + "</p>",
    )


def create_app(settings, store=None):
    """
    Build the FastAPI application.

    Parameters:
        settings (Settings): Gives the data directory.
        store (BookmarkStore, optional): Opened from settings.db_path when omitted.
    """
    data_dir = settings.data_dir
    store = store or BookmarkStore(settings.db_path)

    app = FastAPI(title="PageShelf", description="Bookmark manager with readable views and offline archives")
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.state.store = store
    app.state.data_dir = data_dir

    def get_bookmark_or_404(bookmark_id):
        try:
            return store.get_bookmark(bookmark_id)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @app.get("/", response_class=HTMLResponse)
    def serve_ui():
        return HTML_UI

    @app.get("/api/bookmarks")
    def api_bookmarks(keyword: str = "", tags: str = "", page: int = 1):
        """
        Search bookmarks, latest first, PAGE_SIZE per page.

        `tags` is a comma separated list; bookmarks must carry all of them.
        """
        if page < 1:
            raise HTTPException(status_code=400, detail="Invalid page: page >= 1")
        try:
            bookmarks = store.search_bookmarks(keyword=keyword, tags=_split_tags(tags), order_latest=True)
        except (InvalidIndexError, InvalidURLError) as e:
            raise HTTPException(status_code=400, detail=str(e))
        except StorageFailedError as e:
            logger.error(f"Search failed: {e}")
            raise HTTPException(status_code=500, detail=f"Search error: {e}")

        total = len(bookmarks)
        start = (page - 1) * PAGE_SIZE
        page_bookmarks = [_with_archive_flag(bookmark, data_dir) for bookmark in bookmarks[start:start + PAGE_SIZE]]
        return {
            "page": page,
            "maxPage": math.ceil(total / PAGE_SIZE),
            "total": total,
            "bookmarks": [bookmark.to_dict() for bookmark in page_bookmarks],
        }

    @app.get("/api/bookmarks/{bookmark_id}")
    def api_bookmark(bookmark_id: int):
        bookmark = _with_archive_flag(get_bookmark_or_404(bookmark_id), data_dir)
        return bookmark.to_dict(with_content=True)

    @app.get("/api/tags")
    def api_tags():
        return [{"id": tag.id, "name": tag.name, "nBookmarks": tag.n_bookmarks} for tag in store.get_tags()]

    @app.get("/bookmark/{bookmark_id}/thumb")
    def serve_thumbnail(bookmark_id: int):
        path = thumbnail_path(data_dir, bookmark_id)
        if not os.path.isfile(path):
            raise HTTPException(status_code=404, detail=f"Bookmark {bookmark_id} has no thumbnail")
        with open(path, "rb") as f:
            return Response(content=f.read(), media_type="image/jpeg")

    @app.get("/bookmark/{bookmark_id}/content", response_class=HTMLResponse)
    def serve_content(bookmark_id: int):
        bookmark = get_bookmark_or_404(bookmark_id)
        if not bookmark.has_content and not bookmark.html:
            raise HTTPException(status_code=404, detail=f"Bookmark {bookmark_id} has no readable content")
        return render_content(bookmark)

    @app.get("/bookmark/{bookmark_id}/archive/")
    def serve_archive_root(bookmark_id: int):
        return serve_archive(bookmark_id, "")

    @app.get("/bookmark/{bookmark_id}/archive/{name:path}")
    def serve_archive(bookmark_id: int, name: str):
        try:
            with ArchiveReader(archive_path(data_dir, bookmark_id)) as reader:
                content, content_type = reader.read(name)
        except NotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))
        except StorageFailedError as e:
            logger.error(f"Failed to read archive of bookmark {bookmark_id}: {e}")
            raise HTTPException(status_code=500, detail=str(e))
        return Response(content=content, media_type=content_type or "application/octet-stream")

    return app


def serve(settings, host=None, port=None):
    """Launch the web interface with uvicorn."""
    app = create_app(settings)
    host = host or settings.host
    port = port or settings.port
    logger.info(f"Starting PageShelf server on http://{host}:{port}")
    uvicorn.run(app, host=host, port=port)
