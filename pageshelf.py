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
PageShelf command line interface.

Examples:
    pageshelf add https://example.com/article -i news,tech
    pageshelf print 1-10 --json
    pageshelf search "widgets" --tags tech
    pageshelf update 3 --tags -news,long-read
    pageshelf delete 2 4 --yes
    pageshelf serve --port 8080
"""

import argparse
import getpass
import json
import logging
import os
import sys
import threading
import webbrowser
from concurrent.futures import ThreadPoolExecutor, as_completed

from tqdm import tqdm

from bookmark_store import BookmarkStore
from errors import FetchFailedError, InvalidURLError, PageShelfError
from models import Bookmark, ProcessRequest, Tag, archive_path, thumbnail_path
from processing import create_session, fetch_page, process_bookmark
from settings import DEFAULT_CONFIG_PATH, load_settings
from url_resolver import normalize_url
from web_server import serve

logger = logging.getLogger(__name__)

UPDATE_WORKERS = 10


def setup_logging(level="INFO", log_file=None):
    """Configure the root logger, once, for the command line."""
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format='%(asctime)s - %(levelname)s - %(message)s',
        handlers=handlers,
    )


def parse_tags(value):
    return [Tag(name=name.strip()) for name in (value or "").split(",") if name.strip()]


def confirm(question, assume_yes=False):
    if assume_yes:
        return True
    answer = input(f"{question} (y/N): ")
    return answer.strip().lower() in ("y", "yes")


def print_bookmarks(bookmarks, as_json=False, index_only=False):
    if as_json:
        print(json.dumps([bookmark.to_dict() for bookmark in bookmarks], indent=2, ensure_ascii=False))
        return
    if index_only:
        print(" ".join(str(bookmark.id) for bookmark in bookmarks))
        return
    for bookmark in bookmarks:
        print(f"{bookmark.id}. {bookmark.title}")
        print(f"   {bookmark.url}")
        if bookmark.excerpt:
            print(f"   {bookmark.excerpt}")
        if bookmark.tags:
            print("   # " + " ".join(bookmark.tag_names()))
        print()


def move_side_files(data_dir, old_id, new_id):
    """Rename the thumbnail and archive of a bookmark whose id changed."""
    for path_of in (thumbnail_path, archive_path):
        src = path_of(data_dir, old_id)
        if os.path.exists(src):
            os.replace(src, path_of(data_dir, new_id))


def remove_side_files(data_dir, bookmark_id):
    for path in (thumbnail_path(data_dir, bookmark_id), archive_path(data_dir, bookmark_id)):
        if os.path.exists(path):
            os.remove(path)


def fetch_and_process(settings, bookmark, session, keep_title=False, keep_excerpt=False, log_archival=False):
    """
    Download a bookmark's page and run the processing pipeline on it.

    Returns:
        tuple: (bookmark, is_fatal, error) as process_bookmark.
    """
    try:
        content, content_type = fetch_page(bookmark.url, session=session, timeout=settings.page_timeout)
    except InvalidURLError as e:
        return bookmark, True, e
    except FetchFailedError as e:
        logger.error(str(e))
        return bookmark, False, e

    request = ProcessRequest(
        data_dir=settings.data_dir,
        bookmark=bookmark,
        content=content,
        content_type=content_type,
        keep_title=keep_title,
        keep_excerpt=keep_excerpt,
        log_archival=log_archival,
    )
    return process_bookmark(
        request,
        session=session,
        readability_options=settings.readability_options(),
        archive_options=dict(settings.archive_options(), progress=True),
        image_timeout=settings.image_timeout,
    )


def _session(settings):
    return create_session(settings.user_agent, retries=settings.retries, backoff_factor=settings.backoff_factor)


# Sub-commands

def cmd_add(args, settings, store):
    url = normalize_url(args.url)
    if store.get_bookmark_by_url(url) is not None:
        logger.error(f"URL {url} already exists")
        return 1

    title = (args.title or "").strip()
    excerpt = (args.excerpt or "").strip()
    bookmark = Bookmark(
        id=store.new_id(),
        url=url,
        title=title,
        excerpt=excerpt,
        tags=parse_tags(args.tags),
        create_archive=not args.no_archival and not args.offline,
    )

    if not args.offline:
        bookmark, is_fatal, error = fetch_and_process(
            settings, bookmark, _session(settings),
            keep_title=bool(title), keep_excerpt=bool(excerpt), log_archival=args.log_archival)
        if is_fatal:
            logger.error(f"Failed to process {url}: {error}")
            return 1
        if error is not None:
            logger.warning(f"Bookmark saved with incomplete data: {error}")

    if not bookmark.title:
        bookmark.title = url

    bookmark = store.create_bookmark(bookmark)
    print_bookmarks([bookmark])
    return 0


def cmd_print(args, settings, store):
    if args.keyword or args.tags:
        bookmarks = store.search_bookmarks(keyword=args.keyword, tags=[tag.name for tag in parse_tags(args.tags)])
        if args.indices:
            wanted = {bookmark.id for bookmark in store.get_bookmarks(args.indices)}
            bookmarks = [bookmark for bookmark in bookmarks if bookmark.id in wanted]
    else:
        bookmarks = store.get_bookmarks(args.indices)
    print_bookmarks(bookmarks, as_json=args.json, index_only=args.index_only)
    return 0


def cmd_search(args, settings, store):
    bookmarks = store.search_bookmarks(
        keyword=args.keyword,
        tags=[tag.name for tag in parse_tags(args.tags)],
        order_latest=args.latest,
    )
    if not bookmarks:
        print("No matching bookmarks found")
        return 0
    print_bookmarks(bookmarks, as_json=args.json)
    return 0


def cmd_update(args, settings, store):
    if not args.indices and not confirm("Update ALL bookmarks?", args.yes):
        print("No bookmarks updated")
        return 0

    bookmarks = store.get_bookmarks(args.indices, with_content=True)
    if not bookmarks:
        print("No matching bookmarks found")
        return 0

    title = (args.title or "").strip()
    excerpt = (args.excerpt or "").strip()
    if (title or excerpt) and len(bookmarks) > 1:
        logger.error("Title and excerpt can only be set when updating a single bookmark")
        return 1

    tags = parse_tags(args.tags)
    for bookmark in bookmarks:
        bookmark.tags = list(tags)
        bookmark.create_archive = not args.no_archival and not args.offline

    if not args.offline:
        session = _session(settings)
        processed = []
        with ThreadPoolExecutor(max_workers=UPDATE_WORKERS) as executor:
            futures = {
                executor.submit(fetch_and_process, settings, bookmark, session,
                                bool(title), bool(excerpt), args.log_archival): bookmark
                for bookmark in bookmarks
            }
            for future in tqdm(as_completed(futures), total=len(futures), desc="Updating", unit="bookmark"):
                bookmark, is_fatal, error = future.result()
                if is_fatal:
                    logger.error(f"Failed to process bookmark {bookmark.id}: {error}")
                    continue
                if error is not None:
                    logger.warning(f"Bookmark {bookmark.id} updated with incomplete data: {error}")
                processed.append(bookmark)
        bookmarks = sorted(processed, key=lambda bookmark: bookmark.id)

    for bookmark in bookmarks:
        if title:
            bookmark.title = title
        if excerpt:
            bookmark.excerpt = excerpt
        if not bookmark.title:
            bookmark.title = bookmark.url
        store.update_bookmark(bookmark)

    print_bookmarks(bookmarks)
    return 0


def cmd_delete(args, settings, store):
    if not args.indices and not confirm("Remove ALL bookmarks?", args.yes):
        print("No bookmarks deleted")
        return 0

    deleted = [bookmark.id for bookmark in store.get_bookmarks(args.indices)]
    moves = store.delete_bookmarks(args.indices)

    for bookmark_id in deleted:
        remove_side_files(settings.data_dir, bookmark_id)
    for old_id, new_id in moves:
        move_side_files(settings.data_dir, old_id, new_id)
        print(f"Index {old_id} moved to {new_id}")

    print("Bookmark(s) have been deleted")
    return 0


def cmd_open(args, settings, store):
    bookmarks = store.get_bookmarks(args.indices)
    if not bookmarks:
        print("No matching bookmarks found")
        return 0

    if args.text:
        for bookmark in store.get_bookmarks(args.indices, with_content=True):
            print(f"{bookmark.id}. {bookmark.title}\n")
            print(bookmark.content or "This bookmark has no readable content")
            print()
        return 0

    if args.archive:
        if len(bookmarks) != 1:
            logger.error("Only one archive can be opened at a time")
            return 1
        bookmark = bookmarks[0]
        if not os.path.exists(archive_path(settings.data_dir, bookmark.id)):
            logger.error(f"Bookmark {bookmark.id} has no archive")
            return 1
        host = settings.host
        port = args.port or settings.port
        url = f"http://{host}:{port}/bookmark/{bookmark.id}/archive/"
        print(f"Serving archive of bookmark {bookmark.id} at {url}")
        threading.Timer(1.0, webbrowser.open, args=(url,)).start()
        serve(settings, host=host, port=port)
        return 0

    for bookmark in bookmarks:
        webbrowser.open(bookmark.url)
    return 0


def cmd_serve(args, settings, store):
    store.close()
    serve(settings, host=args.host, port=args.port)
    return 0


def cmd_tags(args, settings, store):
    for tag in store.get_tags():
        print(f"{tag.name} ({tag.n_bookmarks})")
    return 0


def cmd_account_add(args, settings, store):
    password = args.password or getpass.getpass("Password: ")
    account = store.create_account(args.username, password)
    print(f"Account {account.username} created")
    return 0


def cmd_account_print(args, settings, store):
    for account in store.get_accounts(args.keyword):
        print(f"- {account.username}")
    return 0


def cmd_account_delete(args, settings, store):
    if not args.usernames and not confirm("Remove ALL accounts?", args.yes):
        print("No accounts deleted")
        return 0
    n_deleted = store.delete_accounts(args.usernames)
    print(f"{n_deleted} account(s) deleted")
    return 0


def parse_args(argv=None):
    parser = argparse.ArgumentParser(prog="pageshelf", description="Simple bookmark manager with readable views and offline archives")
    parser.add_argument('--config', type=str, default=DEFAULT_CONFIG_PATH, help=f'Path to the TOML configuration file (default: {DEFAULT_CONFIG_PATH})')
    parser.add_argument('--data-dir', type=str, help='Directory of the database, archives and thumbnails (overrides config and PAGESHELF_DIR)')
    parser.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
    parser.add_argument('--log-file', type=str, help='Also write logs to this file')
    subparsers = parser.add_subparsers(dest='command', required=True)

    add = subparsers.add_parser('add', help='Bookmark a URL')
    add.add_argument('url', help='URL of the page')
    add.add_argument('--title', '-t', help='Custom title')
    add.add_argument('--excerpt', '-e', help='Custom excerpt')
    add.add_argument('--tags', '-i', help='Comma separated tags')
    add.add_argument('--offline', '-o', action='store_true', help='Save the bookmark without fetching the page')
    add.add_argument('--no-archival', action='store_true', help='Do not create an offline archive')
    add.add_argument('--log-archival', action='store_true', help='Log every archived resource')
    add.set_defaults(func=cmd_add)

    print_cmd = subparsers.add_parser('print', help='Print bookmarks, by index list (e.g. 1 5-10)')
    print_cmd.add_argument('indices', nargs='*', help='Indices or ranges of bookmarks to print')
    print_cmd.add_argument('--json', '-j', action='store_true', help='Output as JSON')
    print_cmd.add_argument('--index-only', action='store_true', help='Only print the indices')
    print_cmd.add_argument('--keyword', '-s', default='', help='Only print bookmarks matching this keyword')
    print_cmd.add_argument('--tags', '-t', help='Only print bookmarks having all these comma separated tags')
    print_cmd.set_defaults(func=cmd_print)

    search = subparsers.add_parser('search', help='Search bookmarks by keyword and tags')
    search.add_argument('keyword', nargs='?', default='', help='Keyword matched against URL, title and content')
    search.add_argument('--tags', '-t', help='Comma separated tags, all required')
    search.add_argument('--latest', '-l', action='store_true', help='Newest bookmarks first')
    search.add_argument('--json', '-j', action='store_true', help='Output as JSON')
    search.set_defaults(func=cmd_search)

    update = subparsers.add_parser('update', help='Re-fetch and re-process bookmarks')
    update.add_argument('indices', nargs='*', help='Indices or ranges of bookmarks to update (all when empty)')
    update.add_argument('--title', '-t', help='New title (single bookmark only)')
    update.add_argument('--excerpt', '-e', help='New excerpt (single bookmark only)')
    update.add_argument('--tags', '-i', help='Comma separated tags to add, prefix with - to remove')
    update.add_argument('--offline', '-o', action='store_true', help='Only update fields, do not fetch the pages')
    update.add_argument('--no-archival', action='store_true', help='Do not update the offline archives')
    update.add_argument('--log-archival', action='store_true', help='Log every archived resource')
    update.add_argument('--yes', '-y', action='store_true', help='Do not ask for confirmation')
    update.set_defaults(func=cmd_update)

    delete = subparsers.add_parser('delete', help='Delete bookmarks; remaining indices are compacted')
    delete.add_argument('indices', nargs='*', help='Indices or ranges of bookmarks to delete (all when empty)')
    delete.add_argument('--yes', '-y', action='store_true', help='Do not ask for confirmation')
    delete.set_defaults(func=cmd_delete)

    open_cmd = subparsers.add_parser('open', help='Open bookmarks in the browser')
    open_cmd.add_argument('indices', nargs='*', help='Indices or ranges of bookmarks to open')
    open_cmd.add_argument('--archive', '-a', action='store_true', help='Serve and open the offline archive')
    open_cmd.add_argument('--text', '-x', action='store_true', help='Print the readable text instead')
    open_cmd.add_argument('--port', '-p', type=int, help='Port of the archive server')
    open_cmd.set_defaults(func=cmd_open)

    serve_cmd = subparsers.add_parser('serve', help='Run the web interface')
    serve_cmd.add_argument('--host', type=str, help='Address to listen on')
    serve_cmd.add_argument('--port', '-p', type=int, help='Port to listen on')
    serve_cmd.set_defaults(func=cmd_serve)

    tags = subparsers.add_parser('tags', help='List tags with their number of bookmarks')
    tags.set_defaults(func=cmd_tags)

    account = subparsers.add_parser('account', help='Manage accounts')
    account_commands = account.add_subparsers(dest='account_command', required=True)

    account_add = account_commands.add_parser('add', help='Create an account')
    account_add.add_argument('username')
    account_add.add_argument('--password', '-p', help='Password (prompted when omitted)')
    account_add.set_defaults(func=cmd_account_add)

    account_print = account_commands.add_parser('print', help='List accounts')
    account_print.add_argument('keyword', nargs='?', default='', help='Only accounts whose name contains this')
    account_print.set_defaults(func=cmd_account_print)

    account_delete = account_commands.add_parser('delete', help='Delete accounts')
    account_delete.add_argument('usernames', nargs='*', help='Accounts to delete (all when empty)')
    account_delete.add_argument('--yes', '-y', action='store_true', help='Do not ask for confirmation')
    account_delete.set_defaults(func=cmd_account_delete)

    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)

    settings = load_settings(args.config)
    if args.data_dir:
        settings.data_dir = args.data_dir
    setup_logging("DEBUG" if args.verbose else settings.log_level, args.log_file or settings.log_file)

    try:
        store = BookmarkStore(settings.db_path)
    except PageShelfError as e:
        logger.error(str(e))
        return 1

    try:
        return args.func(args, settings, store)
    except PageShelfError as e:
        logger.error(str(e))
        return 1
    finally:
        store.close()


if __name__ == "__main__":
    sys.exit(main())
