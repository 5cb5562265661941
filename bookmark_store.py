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
SQLite bookmark store with full-text search.

Bookmark ids are kept dense: after a delete, the bookmarks with the highest
ids are moved down into the freed slots, and the moves are reported so the
caller can rename the files keyed by id (thumbnails, archives).
"""

import hashlib
import hmac
import logging
import os
import secrets
import sqlite3
import threading
from contextlib import contextmanager
from datetime import datetime, timezone

from errors import (EmptyTitleError, EmptyURLError, InvalidCredentialsError, InvalidIndexError,
                    NotFoundError, StorageFailedError)
from models import Account, Bookmark, Tag

logger = logging.getLogger(__name__)

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS account (
    id INTEGER NOT NULL,
    username TEXT NOT NULL,
    password TEXT NOT NULL,
    CONSTRAINT account_PK PRIMARY KEY(id),
    CONSTRAINT account_username_UNIQUE UNIQUE(username)
);
CREATE TABLE IF NOT EXISTS bookmark (
    id INTEGER NOT NULL,
    url TEXT NOT NULL,
    title TEXT NOT NULL,
    image_url TEXT NOT NULL DEFAULT '',
    excerpt TEXT NOT NULL DEFAULT '',
    author TEXT NOT NULL DEFAULT '',
    language TEXT NOT NULL DEFAULT '',
    min_read_time INTEGER NOT NULL DEFAULT 0,
    max_read_time INTEGER NOT NULL DEFAULT 0,
    modified TEXT NOT NULL DEFAULT CURRENT_TIMESTAMP,
    CONSTRAINT bookmark_PK PRIMARY KEY(id),
    CONSTRAINT bookmark_url_UNIQUE UNIQUE(url)
);
CREATE TABLE IF NOT EXISTS tag (
    id INTEGER NOT NULL,
    name TEXT NOT NULL,
    CONSTRAINT tag_PK PRIMARY KEY(id),
    CONSTRAINT tag_name_UNIQUE UNIQUE(name)
);
CREATE TABLE IF NOT EXISTS bookmark_tag (
    bookmark_id INTEGER NOT NULL,
    tag_id INTEGER NOT NULL,
    CONSTRAINT bookmark_tag_PK PRIMARY KEY(bookmark_id, tag_id),
    CONSTRAINT bookmark_id_FK FOREIGN KEY(bookmark_id) REFERENCES bookmark(id),
    CONSTRAINT tag_id_FK FOREIGN KEY(tag_id) REFERENCES tag(id)
);
CREATE VIRTUAL TABLE IF NOT EXISTS bookmark_content USING fts4(title, content, html);
"""

BOOKMARK_COLUMNS = "id, url, title, image_url, excerpt, author, language, min_read_time, max_read_time, modified"

TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

PBKDF2_ALGORITHM = "sha256"
PBKDF2_ITERATIONS = 260000


def utc_now():
    return datetime.now(timezone.utc).strftime(TIME_FORMAT)


def normalize_tag_name(name):
    return name.strip().lower()


def parse_index_list(indices):
    """
    Convert a list of indices into bookmark ids.

    Each item is either a single index ("5") or an inclusive range ("100-200").

    Raises:
        InvalidIndexError: An item is not a number, is below 1, or is a
            range whose lower bound is above its upper bound.
    """
    result = []
    for item in indices:
        item = str(item).strip()
        if "-" not in item:
            try:
                index = int(item)
            except ValueError:
                raise InvalidIndexError(f"Index {item!r} is not valid") from None
            if index < 1:
                raise InvalidIndexError(f"Index {item!r} is not valid")
            result.append(index)
            continue

        parts = item.split("-")
        if len(parts) != 2:
            raise InvalidIndexError(f"Index range {item!r} is not valid")
        try:
            min_index, max_index = int(parts[0]), int(parts[1])
        except ValueError:
            raise InvalidIndexError(f"Index range {item!r} is not valid") from None
        if min_index < 1 or min_index > max_index:
            raise InvalidIndexError(f"Index range {item!r} is not valid")
        result.extend(range(min_index, max_index + 1))
    return result


def hash_password(password, salt=None, iterations=PBKDF2_ITERATIONS):
    """Return `pbkdf2_sha256$<iterations>$<salt>$<hex digest>`."""
    salt = salt or secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac(PBKDF2_ALGORITHM, password.encode("utf-8"), salt.encode("utf-8"), iterations)
    return f"pbkdf2_{PBKDF2_ALGORITHM}${iterations}${salt}${digest.hex()}"


def check_password(password, hashed):
    try:
        algorithm, iterations, salt, _ = hashed.split("$")
        iterations = int(iterations)
    except ValueError:
        return False
    if algorithm != f"pbkdf2_{PBKDF2_ALGORITHM}":
        return False
    return hmac.compare_digest(hash_password(password, salt, iterations), hashed)


def _fts_query(keyword):
    # Each term is quoted so FTS operators typed by the user are matched literally.
    terms = [term.replace('"', "") for term in keyword.split()]
    return " ".join(f'"{term}"' for term in terms if term)


class BookmarkStore:
    """
    Bookmarks, tags and accounts in a single SQLite file.

    The connection is shared between threads. Writes run in explicit
    transactions and are serialised by a lock.
    """

    def __init__(self, db_path):
        self.db_path = db_path
        directory = os.path.dirname(os.path.abspath(db_path))
        os.makedirs(directory, exist_ok=True)
        try:
            self.conn = sqlite3.connect(db_path, isolation_level=None, check_same_thread=False)
            self.conn.row_factory = sqlite3.Row
            self.conn.executescript(SCHEMA_SQL)
        except sqlite3.Error as e:
            raise StorageFailedError(f"Cannot open database {db_path}: {e}") from e
        self._lock = threading.RLock()
        logger.debug(f"Opened bookmark database {db_path}")

    def close(self):
        self.conn.close()

    @contextmanager
    def _transaction(self):
        with self._lock:
            try:
                self.conn.execute("BEGIN IMMEDIATE")
                yield self.conn
                self.conn.execute("COMMIT")
            except BaseException as e:
                if self.conn.in_transaction:
                    self.conn.execute("ROLLBACK")
                if isinstance(e, sqlite3.Error):
                    raise StorageFailedError(f"Database transaction failed: {e}") from e
                raise

    def _query(self, sql, args=()):
        with self._lock:
            try:
                return self.conn.execute(sql, args).fetchall()
            except sqlite3.Error as e:
                raise StorageFailedError(f"Database query failed: {e}") from e

    # Helpers used inside transactions

    def _get_or_create_tag(self, conn, name):
        row = conn.execute("SELECT id FROM tag WHERE name = ?", (name,)).fetchone()
        if row is not None:
            return row["id"]
        return conn.execute("INSERT INTO tag (name) VALUES (?)", (name,)).lastrowid

    def _load_tags(self, bookmark_id):
        rows = self._query(
            """SELECT t.id, t.name FROM bookmark_tag bt
               LEFT JOIN tag t ON bt.tag_id = t.id
               WHERE bt.bookmark_id = ? ORDER BY t.name""",
            (bookmark_id,),
        )
        return [Tag(id=row["id"], name=row["name"]) for row in rows]

    def _to_bookmarks(self, rows, with_content=False):
        bookmarks = []
        for row in rows:
            bookmark = Bookmark(**dict(row))
            bookmark.tags = self._load_tags(bookmark.id)
            content = self._query("SELECT content, html FROM bookmark_content WHERE docid = ?", (bookmark.id,))
            if content:
                bookmark.has_content = bool(content[0]["content"])
                if with_content:
                    bookmark.content = content[0]["content"] or ""
                    bookmark.html = content[0]["html"] or ""
            bookmarks.append(bookmark)
        return bookmarks

    # Bookmarks

    def new_id(self):
        rows = self._query("SELECT IFNULL(MAX(id) + 1, 1) AS id FROM bookmark")
        return rows[0]["id"]

    def create_bookmark(self, bookmark):
        """
        Insert a bookmark, its FTS row and its tags.

        A bookmark with id 0 gets the next free id. Returns the bookmark with
        its id, modified time and normalised tags filled in.

        Raises:
            EmptyURLError, EmptyTitleError: Missing URL or title.
            StorageFailedError: The insert failed (duplicate URL, ...).
        """
        if not bookmark.url:
            raise EmptyURLError("URL must not be empty")
        if not bookmark.title:
            raise EmptyTitleError("Title must not be empty")
        if not bookmark.modified:
            bookmark.modified = utc_now()

        with self._transaction() as conn:
            if not bookmark.id:
                bookmark.id = conn.execute("SELECT IFNULL(MAX(id) + 1, 1) FROM bookmark").fetchone()[0]

            conn.execute(
                f"INSERT INTO bookmark ({BOOKMARK_COLUMNS}) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (bookmark.id, bookmark.url, bookmark.title, bookmark.image_url, bookmark.excerpt,
                 bookmark.author, bookmark.language, bookmark.min_read_time, bookmark.max_read_time,
                 bookmark.modified),
            )
            conn.execute(
                "INSERT INTO bookmark_content (docid, title, content, html) VALUES (?, ?, ?, ?)",
                (bookmark.id, bookmark.title, bookmark.content, bookmark.html),
            )

            tags = []
            for tag in bookmark.tags:
                name = normalize_tag_name(tag.name)
                if not name or any(saved.name == name for saved in tags):
                    continue
                tag_id = self._get_or_create_tag(conn, name)
                conn.execute("INSERT OR IGNORE INTO bookmark_tag (tag_id, bookmark_id) VALUES (?, ?)",
                             (tag_id, bookmark.id))
                tags.append(Tag(id=tag_id, name=name))
            bookmark.tags = tags

        bookmark.has_content = bool(bookmark.content)
        logger.info(f"Saved bookmark {bookmark.id}: {bookmark.url}")
        return bookmark

    def get_bookmarks(self, indices=None, with_content=False):
        """Bookmarks whose id is in `indices` (index list syntax), all of them when empty."""
        ids = parse_index_list(indices or [])
        query = f"SELECT {BOOKMARK_COLUMNS} FROM bookmark"
        if ids:
            query += f" WHERE id IN ({','.join('?' * len(ids))})"
        query += " ORDER BY id"
        return self._to_bookmarks(self._query(query, ids), with_content)

    def get_bookmark(self, bookmark_id, with_content=True):
        rows = self._query(f"SELECT {BOOKMARK_COLUMNS} FROM bookmark WHERE id = ?", (bookmark_id,))
        if not rows:
            raise NotFoundError(f"Bookmark {bookmark_id} not found")
        return self._to_bookmarks(rows, with_content)[0]

    def get_bookmark_by_url(self, url):
        rows = self._query(f"SELECT {BOOKMARK_COLUMNS} FROM bookmark WHERE url = ?", (url,))
        if not rows:
            return None
        return self._to_bookmarks(rows)[0]

    def search_bookmarks(self, keyword="", tags=(), order_latest=False, with_content=False):
        """
        Bookmarks matching `keyword` (URL substring or full-text match on
        title or content) and carrying every tag of `tags`.
        """
        keyword = (keyword or "").strip()
        tag_names = [normalize_tag_name(tag) for tag in tags or () if normalize_tag_name(tag)]

        where = "WHERE 1"
        args = []
        query = _fts_query(keyword)
        if query:
            where += """ AND (url LIKE ? OR id IN (
                SELECT docid FROM bookmark_content
                WHERE title MATCH ? OR content MATCH ?))"""
            args += [f"%{keyword}%", query, query]
        elif keyword:
            where += " AND url LIKE ?"
            args.append(f"%{keyword}%")

        if tag_names:
            where += f""" AND id IN (
                SELECT bookmark_id FROM bookmark_tag
                WHERE tag_id IN (SELECT id FROM tag WHERE name IN ({','.join('?' * len(tag_names))}))
                GROUP BY bookmark_id HAVING COUNT(bookmark_id) >= ?)"""
            args += tag_names + [len(set(tag_names))]

        order = "DESC" if order_latest else "ASC"
        rows = self._query(f"SELECT {BOOKMARK_COLUMNS} FROM bookmark {where} ORDER BY id {order}", args)
        return self._to_bookmarks(rows, with_content)

    def update_bookmark(self, bookmark):
        """
        Save the scalar fields, content and tags of an existing bookmark.

        Tag names prefixed with `-` (or tags flagged `deleted`) are removed
        from the bookmark, the other ones added. Returns the bookmark as stored.

        Raises:
            NotFoundError: No bookmark with this id.
        """
        bookmark.modified = utc_now()

        with self._transaction() as conn:
            cursor = conn.execute(
                """UPDATE bookmark SET url = ?, title = ?, image_url = ?, excerpt = ?, author = ?,
                   language = ?, min_read_time = ?, max_read_time = ?, modified = ? WHERE id = ?""",
                (bookmark.url, bookmark.title, bookmark.image_url, bookmark.excerpt, bookmark.author,
                 bookmark.language, bookmark.min_read_time, bookmark.max_read_time, bookmark.modified,
                 bookmark.id),
            )
            if cursor.rowcount == 0:
                raise NotFoundError(f"Bookmark {bookmark.id} not found")

            conn.execute("DELETE FROM bookmark_content WHERE docid = ?", (bookmark.id,))
            conn.execute(
                "INSERT INTO bookmark_content (docid, title, content, html) VALUES (?, ?, ?, ?)",
                (bookmark.id, bookmark.title, bookmark.content, bookmark.html),
            )

            for tag in bookmark.tags:
                name = tag.name.strip()
                deleted = tag.deleted or name.startswith("-")
                name = normalize_tag_name(name.lstrip("-"))
                if not name:
                    continue

                if deleted:
                    conn.execute(
                        "DELETE FROM bookmark_tag WHERE bookmark_id = ? AND tag_id IN (SELECT id FROM tag WHERE name = ?)",
                        (bookmark.id, name),
                    )
                else:
                    tag_id = self._get_or_create_tag(conn, name)
                    conn.execute("INSERT OR IGNORE INTO bookmark_tag (tag_id, bookmark_id) VALUES (?, ?)",
                                 (tag_id, bookmark.id))

        bookmark.tags = self._load_tags(bookmark.id)
        bookmark.has_content = bool(bookmark.content)
        return bookmark

    def _move_bookmark(self, conn, old_id, new_id):
        conn.execute("UPDATE bookmark SET id = ? WHERE id = ?", (new_id, old_id))
        conn.execute("UPDATE bookmark_tag SET bookmark_id = ? WHERE bookmark_id = ?", (new_id, old_id))
        row = conn.execute("SELECT title, content, html FROM bookmark_content WHERE docid = ?", (old_id,)).fetchone()
        if row is not None:
            conn.execute("DELETE FROM bookmark_content WHERE docid = ?", (old_id,))
            conn.execute("INSERT INTO bookmark_content (docid, title, content, html) VALUES (?, ?, ?, ?)",
                         (new_id, row["title"], row["content"], row["html"]))

    def delete_bookmarks(self, indices=None):
        """
        Delete bookmarks (all of them when `indices` is empty) and compact ids.

        While a freed id is lower than the highest remaining id, the bookmark
        holding the highest id is moved down to the lowest freed id. Delete
        and compaction happen in one transaction.

        Returns:
            list: (old_id, new_id) for every bookmark that was moved.
        """
        ids = parse_index_list(indices or [])
        moves = []

        with self._transaction() as conn:
            if not ids:
                conn.execute("DELETE FROM bookmark_tag")
                conn.execute("DELETE FROM bookmark_content")
                conn.execute("DELETE FROM bookmark")
                logger.info("Deleted all bookmarks")
                return moves

            placeholders = ",".join("?" * len(ids))
            freed = sorted(row[0] for row in conn.execute(
                f"SELECT id FROM bookmark WHERE id IN ({placeholders})", ids))

            conn.execute(f"DELETE FROM bookmark WHERE id IN ({placeholders})", ids)
            conn.execute(f"DELETE FROM bookmark_tag WHERE bookmark_id IN ({placeholders})", ids)
            conn.execute(f"DELETE FROM bookmark_content WHERE docid IN ({placeholders})", ids)

            while freed:
                max_id = conn.execute("SELECT MAX(id) FROM bookmark").fetchone()[0]
                if max_id is None or freed[0] >= max_id:
                    break
                new_id = freed.pop(0)
                self._move_bookmark(conn, max_id, new_id)
                moves.append((max_id, new_id))

        logger.info(f"Deleted {len(ids)} bookmark indices, moved {len(moves)} bookmarks")
        return moves

    def get_tags(self):
        rows = self._query(
            """SELECT bt.tag_id AS id, t.name AS name, COUNT(bt.tag_id) AS n_bookmarks
               FROM bookmark_tag bt LEFT JOIN tag t ON bt.tag_id = t.id
               GROUP BY bt.tag_id ORDER BY t.name"""
        )
        return [Tag(**dict(row)) for row in rows]

    # Accounts

    def create_account(self, username, password):
        username = (username or "").strip()
        if not username:
            raise InvalidCredentialsError("Username must not be empty")
        if not password:
            raise InvalidCredentialsError("Password must not be empty")
        with self._transaction() as conn:
            account_id = conn.execute(
                "INSERT INTO account (username, password) VALUES (?, ?)",
                (username, hash_password(password)),
            ).lastrowid
        return Account(id=account_id, username=username)

    def get_account(self, username):
        rows = self._query("SELECT id, username, password FROM account WHERE username = ?", (username,))
        if not rows:
            raise NotFoundError(f"Account {username} not found")
        return Account(**dict(rows[0]))

    def get_accounts(self, keyword=""):
        query = "SELECT id, username, password FROM account"
        args = []
        if keyword:
            query += " WHERE username LIKE ?"
            args.append(f"%{keyword}%")
        query += " ORDER BY username"
        return [Account(**dict(row)) for row in self._query(query, args)]

    def delete_accounts(self, usernames=None):
        with self._transaction() as conn:
            if usernames:
                placeholders = ",".join("?" * len(usernames))
                cursor = conn.execute(f"DELETE FROM account WHERE username IN ({placeholders})", list(usernames))
            else:
                cursor = conn.execute("DELETE FROM account")
        return cursor.rowcount

    def verify_account(self, username, password):
        """Return the account when the password matches, raise InvalidCredentialsError otherwise."""
        try:
            account = self.get_account(username)
        except NotFoundError:
            raise InvalidCredentialsError("Username and password don't match") from None
        if not check_password(password, account.password):
            raise InvalidCredentialsError("Username and password don't match")
        return account
