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
Rewrite an HTML page so that every subresource it references points to an
archival name, and collect the list of subresources to download.
"""

import logging
import re

from bs4 import BeautifulSoup

import html_walker as dom
from asset_scanner import process_css, process_js
from url_resolver import is_absolute_url, to_resource_url

logger = logging.getLogger(__name__)

META_IMAGE_RE = re.compile(r"image|thumbnail", re.IGNORECASE)

MEDIA_TAGS = ("img", "picture", "figure", "video", "audio", "source")


def _rewrite_attribute(node, attr, page_url, resources, is_embed=False):
    value = dom.get_attribute(node, attr).strip()
    if not value:
        return
    res = to_resource_url(value, page_url, is_embed=is_embed)
    if res is None:
        return
    dom.set_attribute(node, attr, res.name)
    resources.append(res)


def _rewrite_srcset(node, page_url, resources):
    srcset = dom.get_attribute(node, "srcset")
    if not srcset:
        return

    candidates = []
    for candidate in srcset.split(","):
        parts = candidate.strip().split(None, 1)
        if not parts:
            continue
        res = to_resource_url(parts[0], page_url)
        if res is not None:
            parts[0] = res.name
            resources.append(res)
        candidates.append(" ".join(parts))
    dom.set_attribute(node, "srcset", ",".join(candidates))


def _process_element(node, page_url, resources):
    name = dom.tag_name(node)

    style = dom.get_attribute(node, "style")
    if style:
        new_style, found = process_css(style, page_url)
        dom.set_attribute(node, "style", new_style)
        resources.extend(found)

    if name == "style":
        css = dom.text_content(node)
        if css.strip():
            new_css, found = process_css(css, page_url)
            dom.set_text_content(node, new_css)
            resources.extend(found)
        return

    if name == "script":
        _rewrite_attribute(node, "src", page_url, resources)
        script = dom.text_content(node)
        if script.strip():
            new_script, found = process_js(script, page_url)
            dom.set_text_content(node, new_script)
            resources.extend(found)
        return

    if name == "meta":
        kind = dom.get_attribute(node, "name") + " " + dom.get_attribute(node, "property")
        content = dom.get_attribute(node, "content").strip()
        if META_IMAGE_RE.search(kind) and is_absolute_url(content):
            _rewrite_attribute(node, "content", page_url, resources)
        return

    if name in MEDIA_TAGS:
        _rewrite_attribute(node, "src", page_url, resources)
        _rewrite_attribute(node, "poster", page_url, resources)
        _rewrite_srcset(node, page_url, resources)
    elif name == "link":
        _rewrite_attribute(node, "href", page_url, resources)
    elif name == "iframe":
        _rewrite_attribute(node, "src", page_url, resources, is_embed=True)
    elif name == "object":
        _rewrite_attribute(node, "data", page_url, resources)


def process_html(markup, page_url):
    """
    Rewrite the subresource references of an HTML page.

    Lazy images are resolved and relative links made absolute first, so the
    archived copy still points to the live site for plain hyperlinks.

    Parameters:
        markup (str | bytes | BeautifulSoup): The page, raw or already parsed.
            A parsed tree is modified in place.
        page_url (str): Absolute URL the page was loaded from.

    Returns:
        tuple: (rewritten HTML as str, list of Resource). The same URL may
        appear several times in the list.
    """
    doc = markup if isinstance(markup, BeautifulSoup) else dom.parse_html(markup)

    dom.fix_lazy_images(doc)
    dom.fix_relative_uris(doc, page_url)

    resources = []
    for node in dom.get_elements_by_tag_name(doc, "*"):
        _process_element(node, page_url, resources)

    logger.debug(f"Found {len(resources)} subresources in {page_url}")
    return dom.outer_html(doc), resources
