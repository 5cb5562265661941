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

"""Read access to archive files written by archiver.create_archive()."""

import gzip
import logging
import zlib

import lmdb

from errors import NotFoundError, StorageFailedError
from url_resolver import ROOT_ARCHIVAL_NAME

logger = logging.getLogger(__name__)

CONTENT_SUFFIX = b"/content"


def content_key(name):
    return name.encode("utf-8") + CONTENT_SUFFIX


def type_key(name):
    return f"{name}/type".encode("utf-8")


class ArchiveReader:
    """
    Read-only view on an archive file.

    Several readers may open the same file at once. Use as a context manager
    or call close().
    """

    def __init__(self, path):
        self.path = path
        try:
            self.env = lmdb.open(path, subdir=False, readonly=True, lock=False)
        except lmdb.Error as e:
            raise NotFoundError(f"Cannot open archive {path}: {e}") from e
        logger.debug(f"Opened archive {path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.env.close()

    def has(self, name):
        name = name or ROOT_ARCHIVAL_NAME
        with self.env.begin() as txn:
            return txn.get(content_key(name)) is not None

    def read(self, name):
        """
        Return the stored resource `name`.

        Parameters:
            name (str): Archival name. Empty means the root page.

        Returns:
            tuple: (content bytes, content-type str)

        Raises:
            NotFoundError: No such resource in the archive.
            StorageFailedError: The stored content is corrupted.
        """
        name = name or ROOT_ARCHIVAL_NAME
        with self.env.begin() as txn:
            compressed = txn.get(content_key(name))
            content_type = txn.get(type_key(name))

        if compressed is None:
            raise NotFoundError(f"{name} not found in archive {self.path}")

        try:
            content = gzip.decompress(compressed)
        except (OSError, EOFError, zlib.error) as e:
            raise StorageFailedError(f"Corrupted resource {name} in archive {self.path}: {e}") from e
        return content, (content_type or b"").decode("utf-8")

    def names(self):
        """Archival names of every stored resource, sorted."""
        result = []
        with self.env.begin() as txn:
            for key in txn.cursor().iternext(keys=True, values=False):
                if key.endswith(CONTENT_SUFFIX):
                    result.append(key[:-len(CONTENT_SUFFIX)].decode("utf-8"))
        return result
