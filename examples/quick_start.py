#!/usr/bin/env python
# -*- coding: utf-8 -*-

"""
PageShelf Quick Start Example
"""

import sys

from bookmark_store import BookmarkStore
from models import Bookmark
from pageshelf import _session, fetch_and_process
from settings import load_settings
from url_resolver import normalize_url


def main():
    """Quick start example"""
    url = sys.argv[1] if len(sys.argv) > 1 else "https://example.com/"
    settings = load_settings()
    store = BookmarkStore(settings.db_path)

    # Step 1: Fetch, parse and archive the page
    print(f"Step 1: Process {url}")
    bookmark = Bookmark(id=store.new_id(), url=normalize_url(url), create_archive=True)
    bookmark, is_fatal, error = fetch_and_process(settings, bookmark, _session(settings))
    if is_fatal:
        print(f"Error: {error}")
        sys.exit(1)
    if error is not None:
        print(f"Warning: {error}")

    # Step 2: Save it
    print("\nStep 2: Save the bookmark")
    bookmark = store.create_bookmark(bookmark)
    print(f"{bookmark.id}. {bookmark.title} ({bookmark.min_read_time}-{bookmark.max_read_time} min)")

    # Step 3: Search it back
    print("\nStep 3: Search")
    for found in store.search_bookmarks(bookmark.title.split(" ")[0]):
        print(f"{found.id}. {found.url}")

    print("\nQuick start completed! Run `pageshelf serve` to browse your bookmarks.")


if __name__ == "__main__":
    main()
