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
Processing pipeline run when a bookmark is saved or updated from its source.

The fetched page is parsed once. The readability check and the article
extraction work on that tree, the archiver works on the raw bytes. Only an
invalid bookmark id and an unparsable URL are fatal: readability, thumbnail
and archival failures are logged and reported, and the bookmark is saved
with whatever could be extracted.
"""

import logging
import os
from io import BytesIO

import requests
from PIL import Image, ImageEnhance, ImageFilter, ImageOps, UnidentifiedImageError

from archiver import USER_AGENT, charset_of, create_archive, create_session
from errors import (FetchFailedError, InvalidIndexError, InvalidURLError, NoReadableContentError,
                    PageShelfError, UnsupportedContentError)
from html_walker import decode_markup, parse_html
from models import archive_path, thumbnail_path, thumbnail_url
from readability_engine import ReadabilityParser
from url_resolver import normalize_url

__all__ = ["USER_AGENT", "create_session", "fetch_page", "download_bookmark_image", "process_bookmark"]

logger = logging.getLogger(__name__)

PAGE_TIMEOUT = 20
IMAGE_TIMEOUT = 10

SUPPORTED_IMAGE_TYPES = ("image/jpeg", "image/pjpeg", "image/jpg", "image/png")
THUMBNAIL_SIZE = (600, 400)
THUMBNAIL_MIN_RATIO = 1.3
THUMBNAIL_BLUR_RADIUS = 150
THUMBNAIL_BRIGHTNESS = 1.3


def is_html(content_type):
    return "text/html" in (content_type or "").lower()


def fetch_page(url, session=None, timeout=PAGE_TIMEOUT):
    """
    Download a page.

    Returns:
        tuple: (body bytes, Content-Type header)

    Raises:
        InvalidURLError: `url` is not an absolute http(s) URL.
        FetchFailedError: Network error or HTTP error status.
    """
    normalize_url(url)
    session = session or create_session()
    try:
        response = session.get(url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise FetchFailedError(f"Failed to fetch {url}: {e}") from e
    return response.content, response.headers.get("Content-Type", "")


def _flatten(img):
    """Drop transparency by drawing the image over a white background."""
    if img.mode in ("RGBA", "LA") or (img.mode == "P" and "transparency" in img.info):
        img = img.convert("RGBA")
        background = Image.new("RGB", img.size, (255, 255, 255))
        background.paste(img, mask=img.getchannel("A"))
        return background
    return img.convert("RGB")


def make_thumbnail(img):
    """
    Return the image to store as thumbnail.

    Large landscape images are kept as they are. Anything else is shrunk to
    fit 600x400 and centered over a blurred, brightened copy of itself that
    fills the whole 600x400 area.
    """
    img = _flatten(img)
    width, height = img.size
    if width >= THUMBNAIL_SIZE[0] and height >= THUMBNAIL_SIZE[1] and width / height > THUMBNAIL_MIN_RATIO:
        return img

    background = ImageOps.fit(img, THUMBNAIL_SIZE, Image.Resampling.LANCZOS)
    background = background.filter(ImageFilter.GaussianBlur(THUMBNAIL_BLUR_RADIUS))
    background = ImageEnhance.Brightness(background).enhance(THUMBNAIL_BRIGHTNESS)

    foreground = img.copy()
    foreground.thumbnail(THUMBNAIL_SIZE, Image.Resampling.LANCZOS)
    position = (round((THUMBNAIL_SIZE[0] - foreground.width) / 2),
                round((THUMBNAIL_SIZE[1] - foreground.height) / 2))
    background.paste(foreground, position)
    return background


def download_bookmark_image(image_url, dst_path, session=None, timeout=IMAGE_TIMEOUT):
    """
    Download an image and store it as a JPEG thumbnail at `dst_path`.

    The file is written next to its destination then renamed, so readers
    never see a partial thumbnail.

    Raises:
        FetchFailedError: The image could not be downloaded.
        UnsupportedContentError: Not a JPEG or PNG image, or not decodable.
    """
    session = session or create_session()
    try:
        response = session.get(image_url, timeout=timeout)
        response.raise_for_status()
    except requests.exceptions.RequestException as e:
        raise FetchFailedError(f"Failed to download image {image_url}: {e}") from e

    content_type = response.headers.get("Content-Type", "").lower()
    if not any(image_type in content_type for image_type in SUPPORTED_IMAGE_TYPES):
        raise UnsupportedContentError(f"Unsupported image type {content_type!r}: {image_url}")

    try:
        img = Image.open(BytesIO(response.content))
        img.load()
    except (UnidentifiedImageError, OSError) as e:
        raise UnsupportedContentError(f"Failed to parse image {image_url}: {e}") from e

    thumbnail = make_thumbnail(img)

    os.makedirs(os.path.dirname(os.path.abspath(dst_path)), exist_ok=True)
    tmp_path = f"{dst_path}.{os.getpid()}.tmp"
    try:
        thumbnail.save(tmp_path, format="JPEG")
        os.replace(tmp_path, dst_path)
    except OSError:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    return dst_path


def _remove_thumbnail(path):
    try:
        os.remove(path)
    except FileNotFoundError:
        pass


def process_bookmark(request, session=None, readability_options=None, archive_options=None,
                     image_timeout=IMAGE_TIMEOUT):
    """
    Fill a bookmark from its fetched page, download its thumbnail and,
    when `bookmark.create_archive` is set, build its offline archive.

    Parameters:
        request (ProcessRequest): Bookmark plus the body and Content-Type of its page.
        session (requests.Session, optional): Session used for images and subresources.
        readability_options (dict, optional): Keyword arguments for ReadabilityParser.
        archive_options (dict, optional): Keyword arguments for create_archive.
        image_timeout (int): Timeout of the thumbnail download, in seconds.

    Returns:
        tuple: (bookmark, is_fatal, error). `error` is None on full success.
        When `is_fatal` is False the bookmark can be saved even if `error`
        is set.
    """
    book = request.bookmark
    content_type = request.content_type or ""
    content = request.content or b""

    if book.id == 0:
        return book, True, InvalidIndexError("Bookmark ID is not valid")

    session = session or create_session()
    error = None
    image_urls = []
    thumb_path = thumbnail_path(request.data_dir, book.id)

    if is_html(content_type):
        try:
            normalize_url(book.url)
        except InvalidURLError as e:
            return book, True, e

        doc = parse_html(decode_markup(content, charset_of(content_type)))
        parser = ReadabilityParser(**(readability_options or {}))
        readable = parser.is_readable(doc)

        try:
            article = parser.parse(doc, book.url)
        except NoReadableContentError as e:
            logger.warning(f"No readable content in {book.url}")
            error = e
            article = e.article
        except Exception as e:
            logger.error(f"Readability failed on {book.url}: {e}")
            error = e
            article = None

        if article is not None:
            book.author = article.byline
            book.content = article.content
            book.html = article.raw_content
            book.language = article.language
            book.min_read_time = article.min_read_time
            book.max_read_time = article.max_read_time

            if not request.keep_title or not book.title:
                book.title = article.title
            if not request.keep_excerpt or not book.excerpt:
                book.excerpt = article.excerpt

            if article.image:
                image_urls.append(article.image)
            else:
                _remove_thumbnail(thumb_path)
            if article.favicon:
                image_urls.append(article.favicon)

        if not book.title:
            book.title = book.url
        if not readable:
            book.content = ""
        book.has_content = bool(book.content)
        book.modified = ""

    for image_url in image_urls:
        try:
            download_bookmark_image(image_url, thumb_path, session=session, timeout=image_timeout)
        except (FetchFailedError, UnsupportedContentError, OSError) as e:
            logger.warning(f"Thumbnail not saved for bookmark {book.id}: {e}")
            continue
        book.image_url = thumbnail_url(book.id)
        book.modified = ""
        break

    if book.create_archive:
        options = dict(archive_options or {})
        options.setdefault("log_archival", request.log_archival)
        try:
            result = create_archive(archive_path(request.data_dir, book.id), content, content_type,
                                    book.url, session=session, **options)
        except (PageShelfError, OSError) as e:
            logger.error(f"Failed to create archive for {book.url}: {e}")
            error = error or e
        else:
            book.has_archive = True
            book.modified = ""
            if result.errors:
                logger.warning(f"Archive of {book.url} is incomplete: {len(result.errors)} errors")

    return book, False, error
