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
Exceptions raised across PageShelf.

Fatal errors (invalid URL, invalid index, bookmark id 0, failed database
transaction) are raised and abort the operation. Non-fatal errors produced
while archiving or processing a page are collected and reported next to the
successful result instead of being raised.
"""


class PageShelfError(Exception):
    """Base class for every error raised by PageShelf."""


class InvalidURLError(PageShelfError):
    """URL is empty, malformed, uses a scheme other than http(s) or has no host."""


class InvalidIndexError(PageShelfError):
    """Bookmark index list could not be parsed or has an out-of-range bound."""


class EmptyURLError(PageShelfError):
    pass


class EmptyTitleError(PageShelfError):
    pass


class NotFoundError(PageShelfError):
    """Archive resource or bookmark does not exist."""


class NoReadableContentError(PageShelfError):
    """
    Nothing article-like was found in the page.

    `article` still carries the page metadata (title, excerpt, image...)
    when it could be extracted.
    """

    def __init__(self, message="", article=None):
        super().__init__(message)
        self.article = article


class FetchFailedError(PageShelfError):
    """HTTP error, timeout, TLS or DNS failure."""


class UnsupportedContentError(PageShelfError):
    pass


class StorageFailedError(PageShelfError):
    """Database transaction or archive write failed and was rolled back."""


class InvalidCredentialsError(PageShelfError):
    pass
