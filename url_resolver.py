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

import re
from urllib.parse import parse_qsl, quote_plus, unquote, urljoin, urlsplit, urlunsplit

from errors import InvalidURLError
from models import Resource

# Bucket name of the page the archive was created from
ROOT_ARCHIVAL_NAME = "archive-root"

HTTP_SCHEME_RE = re.compile(r"^https?://", re.IGNORECASE)
TRAILING_SLASH_RE = re.compile(r"/+$")
REPEATED_DASH_RE = re.compile(r"-+")


def _encode_query(pairs):
    """
    Encode query pairs sorted by key. Empty values are written as a bare key
    (`a&b=1`) since some servers choke on `a=&b=1`.
    """
    parts = []
    for key, value in sorted(pairs, key=lambda pair: pair[0]):
        if value:
            parts.append(f"{quote_plus(key)}={quote_plus(value)}")
        else:
            parts.append(quote_plus(key))
    return "&".join(parts)


def _split_valid(url):
    url = (url or "").strip()
    if not url:
        raise InvalidURLError("URL is empty")
    try:
        parts = urlsplit(url)
        hostname = parts.hostname
    except ValueError as e:
        raise InvalidURLError(f"URL {url} is not valid: {e}")
    if parts.scheme.lower() not in ("http", "https") or not hostname:
        raise InvalidURLError(f"URL {url} is not valid")
    return parts


def remove_utm_params(url):
    """
    Drop every query parameter whose key starts with `utm_`.

    The URL is returned untouched when it carries no such parameter.
    """
    parts = _split_valid(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(k, v) for k, v in pairs if not k.startswith("utm_")]
    if len(kept) == len(pairs):
        return url.strip()
    return urlunsplit((parts.scheme, parts.netloc, parts.path, _encode_query(kept), parts.fragment))


def normalize_url(url):
    """
    Canonical form of a bookmark URL.

    Only http(s) URLs with a host are accepted. The fragment is removed, as
    well as every `utm_*` query parameter; remaining parameters are sorted by
    key so that normalising twice gives the same string.

    Parameters:
        url (str): URL submitted by the user.

    Returns:
        str: Normalised URL.

    Raises:
        InvalidURLError: If the URL is empty, not http(s) or has no host.
    """
    parts = _split_valid(url)
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(k, v) for k, v in pairs if not k.startswith("utm_")]
    return urlunsplit((parts.scheme.lower(), parts.netloc, parts.path, _encode_query(kept), ""))


def is_absolute_url(url):
    try:
        parts = urlsplit(url)
        return bool(parts.scheme) and bool(parts.hostname)
    except ValueError:
        return False


def to_absolute_url(href, base):
    """
    Resolve `href` against `base`.

    Fragment-only references, data URIs and URLs that are already absolute
    are returned unchanged. An empty href resolves to an empty string.
    """
    if not href or not base:
        return ""
    if href.startswith("#") or href.startswith("data:"):
        return href
    if is_absolute_url(href):
        return href
    try:
        return urljoin(base, href)
    except ValueError:
        return href


def _check_archivable(url):
    url = (url or "").strip()
    if not url or url.startswith("#"):
        raise InvalidURLError(f"URL {url!r} cannot be archived")
    if ":" in url and not HTTP_SCHEME_RE.match(url):
        raise InvalidURLError(f"URL {url} is not an http(s) URL")
    return url


def archival_name(url):
    """
    Derive the archival name of an absolute URL.

    The query is unescaped first so that the name matches the URL a browser
    would have requested, then `://` becomes `/`, `?`, `#`, `/` and spaces
    become `-` and runs of `-` are collapsed.

    Example: https://ex.com/a?q=1 -> https-ex.com-a-q=1
    """
    url = TRAILING_SLASH_RE.sub("", _check_archivable(url))

    try:
        parts = urlsplit(url)
    except ValueError:
        parts = None
    if parts is not None and parts.query:
        query = unquote(parts.query)
        if query:
            url = urlunsplit((parts.scheme, parts.netloc, parts.path, query, parts.fragment))

    name = url.replace("://", "/", 1)
    for char in ("?", "#", "/", " "):
        name = name.replace(char, "-")
    return REPEATED_DASH_RE.sub("-", name)


def to_resource_url(uri, base, is_embed=False):
    """
    Turn a reference found in a page into a Resource to download.

    Parameters:
        uri (str): Reference as written in the page (may be relative).
        base (str): URL of the page containing the reference.
        is_embed (bool): True when the reference comes from an <iframe>.

    Returns:
        Resource | None: None when the reference can't be archived
        (empty, fragment only, or a non-http scheme such as data: or mailto:).
    """
    try:
        uri = _check_archivable(uri)
    except InvalidURLError:
        return None

    download_url = to_absolute_url(uri, base)
    download_url = TRAILING_SLASH_RE.sub("", download_url)
    download_url = download_url.replace(" ", "+")
    try:
        download_url = remove_utm_params(download_url)
        name = archival_name(download_url)
    except InvalidURLError:
        return None

    return Resource(url=download_url, name=name, parent=base, is_embed=is_embed)
