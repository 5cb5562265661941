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

# Domain models
import os
from dataclasses import dataclass, field
from typing import List, Optional


@dataclass
class Tag:
    id: Optional[int] = None
    name: str = ""
    n_bookmarks: int = 0
    deleted: bool = False


@dataclass
class Bookmark:
    """A saved page. `tags` entries prefixed with `-` are removals on update."""
    id: int = 0
    url: str = ""
    title: str = ""
    excerpt: str = ""
    author: str = ""
    image_url: str = ""
    language: str = ""
    content: str = ""
    html: str = ""
    min_read_time: int = 0
    max_read_time: int = 0
    modified: str = ""
    tags: List[Tag] = field(default_factory=list)
    has_content: bool = False
    has_archive: bool = False
    create_archive: bool = False

    def tag_names(self):
        return [tag.name for tag in self.tags if not tag.deleted]

    def to_dict(self, with_content=False):
        data = {
            "id": self.id,
            "url": self.url,
            "title": self.title,
            "excerpt": self.excerpt,
            "author": self.author,
            "imageURL": self.image_url,
            "language": self.language,
            "minReadTime": self.min_read_time,
            "maxReadTime": self.max_read_time,
            "modified": self.modified,
            "tags": self.tag_names(),
            "hasContent": self.has_content,
            "hasArchive": self.has_archive,
        }
        if with_content:
            data["content"] = self.content
            data["html"] = self.html
        return data


@dataclass
class Account:
    id: Optional[int] = None
    username: str = ""
    password: str = ""


@dataclass
class Resource:
    """
    One item of an offline archive.

    `url` is the absolute download URL, `name` the archival name used as the
    bucket key. `is_embed` marks iframes whose HTML has to be walked again.
    """
    url: str = ""
    name: str = ""
    parent: str = ""
    is_embed: bool = False
    content: bytes = b""
    content_type: str = ""


@dataclass
class Article:
    """Transient result of the readability engine."""
    title: str = ""
    byline: str = ""
    excerpt: str = ""
    content: str = ""
    raw_content: str = ""
    image: str = ""
    favicon: str = ""
    site_name: str = ""
    length: int = 0
    language: str = ""
    min_read_time: int = 0
    max_read_time: int = 0
    node: object = None


@dataclass
class ProcessRequest:
    data_dir: str
    bookmark: Bookmark
    content: bytes = b""
    content_type: str = ""
    keep_title: bool = False
    keep_excerpt: bool = False
    log_archival: bool = False


def thumbnail_path(data_dir, bookmark_id):
    return os.path.join(data_dir, "thumb", str(bookmark_id))


def archive_path(data_dir, bookmark_id):
    return os.path.join(data_dir, "archive", str(bookmark_id))


def thumbnail_url(bookmark_id):
    return f"/bookmark/{bookmark_id}/thumb"
