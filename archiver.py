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
Offline archival of a page and its subresources.

The root page is rewritten first, then every subresource it references is
downloaded by a pool of worker threads. Stylesheets and embedded (iframe)
documents are rewritten in turn and their own subresources queued, so the
archive is a self-contained replica of the page.

Everything ends up in a single LMDB file. Each resource is stored under its
archival name as two keys, `<name>/content` (gzip compressed bytes) and
`<name>/type` (content-type).
"""

import gzip
import logging
import os
import re
import threading
from concurrent.futures import FIRST_COMPLETED, ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import List

import lmdb
import requests
from requests.adapters import HTTPAdapter
from tqdm import tqdm
from urllib3.util.retry import Retry

from archive_reader import content_key, type_key
from asset_scanner import process_css
from errors import FetchFailedError, StorageFailedError
from html_walker import decode_markup
from models import Resource
from subresource_extractor import process_html
from url_resolver import ROOT_ARCHIVAL_NAME

logger = logging.getLogger(__name__)

__version__ = "1.0.0"
USER_AGENT = f"PageShelf/{__version__}"

DEFAULT_WORKERS = 5
DEFAULT_TIMEOUT = 60
DEFAULT_MAP_SIZE = 10 * 1024 * 1024  # 10MB, grown on demand
DEFAULT_GROWTH_FACTOR = 2.0
MAX_RESIZE_ATTEMPTS = 5

CHARSET_RE = re.compile(r"charset=[\"']?([\w.:-]+)", re.IGNORECASE)


def create_session(user_agent=USER_AGENT, retries=3, backoff_factor=0.5):
    """requests session retrying GET on transient errors, with a fixed User-Agent."""
    session = requests.Session()
    retry_strategy = Retry(
        total=retries,
        backoff_factor=backoff_factor,
        status_forcelist=[429, 500, 502, 503, 504],
        allowed_methods=["GET"]
    )
    adapter = HTTPAdapter(max_retries=retry_strategy)
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers["User-Agent"] = user_agent
    return session


def charset_of(content_type):
    match = CHARSET_RE.search(content_type or "")
    return match.group(1) if match else None


class ArchiveStorage:
    """
    Write side of an archive file.

    Writes from several threads are serialised. When the memory map is full
    it is grown by `growth_factor` and the write retried.

    Parameters:
        path (str): Archive file to create.
        map_size (int): Initial size of the LMDB memory map in bytes.
        growth_factor (float): Growth factor applied on MapFullError.
    """

    def __init__(self, path, map_size=DEFAULT_MAP_SIZE, growth_factor=DEFAULT_GROWTH_FACTOR):
        self.path = path
        self.map_size = map_size
        self.growth_factor = growth_factor
        self._lock = threading.Lock()
        try:
            self.env = lmdb.open(path, subdir=False, map_size=map_size, max_dbs=0)
        except lmdb.Error as e:
            raise StorageFailedError(f"Cannot create archive {path}: {e}") from e

    def _resize(self):
        new_map_size = int(self.map_size * self.growth_factor)
        logger.info(f"Resizing archive {self.path} from {self.map_size/1024/1024:.1f} MB "
                    f"to {new_map_size/1024/1024:.1f} MB")
        self.env.set_mapsize(new_map_size)
        self.map_size = new_map_size

    def put(self, name, content, content_type):
        """
        Store one resource.

        Returns:
            bool: False when a resource with this name is already stored
            (it is never overwritten), True otherwise.

        Raises:
            StorageFailedError: The write failed even after growing the map.
        """
        compressed = gzip.compress(content)

        def write(txn):
            if txn.get(content_key(name)) is not None:
                return False
            txn.put(content_key(name), compressed)
            txn.put(type_key(name), (content_type or "").encode("utf-8"))
            return True

        with self._lock:
            for attempt in range(MAX_RESIZE_ATTEMPTS + 1):
                try:
                    with self.env.begin(write=True) as txn:
                        return write(txn)
                except lmdb.MapFullError:
                    if attempt == MAX_RESIZE_ATTEMPTS:
                        break
                    logger.warning(f"Archive map is full while storing {name}, attempting dynamic resize.")
                    self._resize()
                except lmdb.Error as e:
                    raise StorageFailedError(f"Failed to store {name} in {self.path}: {e}") from e

        raise StorageFailedError(f"Archive {self.path} is still full after {MAX_RESIZE_ATTEMPTS} resizes")

    def close(self):
        self.env.close()


@dataclass
class ArchiveResult:
    """Outcome of an archive job. Warnings and errors never abort the job."""
    path: str = ""
    url: str = ""
    stored: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    n_downloads: int = 0


class Archiver:
    """
    Download a page's subresources into an ArchiveStorage.

    Each absolute URL is fetched at most once per job. The job ends when no
    download is in flight and nothing is left to fetch.

    Parameters:
        storage (ArchiveStorage): Destination.
        session (requests.Session, optional): HTTP session. Defaults to create_session().
        workers (int): Number of concurrent downloads.
        timeout (float): Timeout of each subresource download, in seconds.
        insecure (bool): Skip TLS certificate verification.
        progress (bool): Show a tqdm progress bar.
        log_archival (bool): Log every stored resource at INFO level.
    """

    def __init__(self, storage, session=None, workers=DEFAULT_WORKERS, timeout=DEFAULT_TIMEOUT,
                 insecure=False, progress=False, log_archival=False):
        self.storage = storage
        self.session = session if session is not None else create_session()
        self.workers = workers
        self.timeout = timeout
        self.insecure = insecure
        self.progress = progress
        self.log_archival = log_archival

        self.seen = set()
        self._seen_lock = threading.Lock()
        self._result = None

    def _mark_seen(self, url):
        """Atomically add `url` to the seen-set. False if it was already there."""
        with self._seen_lock:
            if url in self.seen:
                return False
            self.seen.add(url)
            return True

    def _process(self, resource, content, content_type, is_root=False):
        """Rewrite `content` when it can reference other resources. Returns (content, new resources)."""
        lowered = (content_type or "").lower()
        if "text/html" in lowered and (is_root or resource.is_embed):
            markup = decode_markup(content, charset_of(content_type))
            rewritten, found = process_html(markup, resource.url)
            return rewritten.encode("utf-8"), found
        if "text/css" in lowered:
            text = decode_markup(content, charset_of(content_type))
            rewritten, found = process_css(text, resource.url)
            return rewritten.encode("utf-8"), found
        return content, []

    def _store(self, resource, content, content_type):
        if self.storage.put(resource.name, content, content_type):
            self._result.stored.append(resource.name)
            if self.log_archival:
                logger.info(f"Downloaded {resource.name}, parent: {resource.parent}")

    def _download(self, resource):
        """Worker: fetch, rewrite and store one subresource. Returns the resources it references."""
        try:
            response = self.session.get(resource.url, timeout=self.timeout, verify=not self.insecure)
            response.raise_for_status()
        except requests.exceptions.RequestException as e:
            raise FetchFailedError(f"Failed to download {resource.url}: {e}") from e

        content_type = response.headers.get("Content-Type", "")
        content, found = self._process(resource, response.content, content_type)
        self._store(resource, content, content_type)
        return found

    def run(self, content, content_type, url):
        """
        Archive a page.

        Parameters:
            content (bytes): Body of the page.
            content_type (str): Its Content-Type header.
            url (str): Absolute URL of the page.

        Returns:
            ArchiveResult

        Raises:
            StorageFailedError: The root document could not be stored.
        """
        self._result = ArchiveResult(path=self.storage.path, url=url)
        self.seen = set()
        self._mark_seen(url)

        root = Resource(url=url, name=ROOT_ARCHIVAL_NAME, parent="", is_embed=True)
        root_content, pending = self._process(root, content, content_type, is_root=True)
        self._store(root, root_content, content_type)

        bar = tqdm(total=0, desc="Archiving", unit="file", disable=not self.progress)
        try:
            with ThreadPoolExecutor(max_workers=self.workers) as executor:
                futures = {}

                def submit(resources):
                    for resource in resources:
                        if not self._mark_seen(resource.url):
                            continue
                        futures[executor.submit(self._download, resource)] = resource
                        bar.total += 1
                    bar.refresh()

                submit(pending)
                while futures:
                    done, _ = wait(futures, return_when=FIRST_COMPLETED)
                    for future in done:
                        resource = futures.pop(future)
                        bar.update(1)
                        try:
                            found = future.result()
                        except FetchFailedError as e:
                            logger.warning(str(e))
                            self._result.warnings.append(str(e))
                            continue
                        except StorageFailedError as e:
                            logger.error(str(e))
                            self._result.errors.append(str(e))
                            continue
                        except Exception as e:
                            message = f"Failed to archive {resource.url}: {e}"
                            logger.error(message)
                            self._result.errors.append(message)
                            continue
                        self._result.n_downloads += 1
                        submit(found)
        finally:
            bar.close()

        return self._result


def create_archive(path, content, content_type, url, session=None, map_size=DEFAULT_MAP_SIZE,
                   growth_factor=DEFAULT_GROWTH_FACTOR, **options):
    """
    Archive a page into the file `path`.

    The archive is built in a temporary file next to `path` and moved in
    place once complete, so an existing archive is replaced atomically.
    Extra keyword arguments are passed to Archiver.

    Returns:
        ArchiveResult
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    tmp_path = f"{path}.{os.getpid()}.{threading.get_ident()}.tmp"

    storage = ArchiveStorage(tmp_path, map_size=map_size, growth_factor=growth_factor)
    try:
        result = Archiver(storage, session=session, **options).run(content, content_type, url)
    except BaseException:
        storage.close()
        _remove_quietly(tmp_path)
        _remove_quietly(f"{tmp_path}-lock")
        raise
    storage.close()

    os.replace(tmp_path, path)
    _remove_quietly(f"{tmp_path}-lock")
    result.path = path
    logger.info(f"Archived {url} to {path}: {len(result.stored)} resources, "
                f"{len(result.warnings)} warnings, {len(result.errors)} errors")
    return result


def _remove_quietly(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
