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
DOM helpers on top of BeautifulSoup.

Both the readability engine and the subresource extractor rewrite the parsed
page in place. These helpers give them a small, uniform vocabulary over
BeautifulSoup trees (element, text and comment nodes) so that detaching,
re-parenting and serialising nodes always goes through the same code.

Node identity matters here: BeautifulSoup compares tags structurally, so two
distinct <p> with the same text are "equal". Every lookup in this module
therefore uses `is` and never `==` or `in`.
"""

import copy
import logging
import re

import chardet
from bs4 import BeautifulSoup, Comment, NavigableString, Tag
from bs4.element import PreformattedString

from url_resolver import to_absolute_url

logger = logging.getLogger(__name__)

PARSER = "html.parser"

# Used only as a tag factory, so new elements get the same tree builder
# (void elements, whitespace handling) as parsed ones.
_factory = BeautifulSoup("", PARSER, multi_valued_attributes=None)


def parse_html(markup):
    """
    Parse an HTML document into a BeautifulSoup tree.

    Attribute values are always plain strings (no multi-valued `class` lists),
    which keeps get/set attribute symmetric.

    Parameters:
        markup (str | bytes): Raw HTML.

    Returns:
        BeautifulSoup: The document node.
    """
    if isinstance(markup, bytes):
        markup = markup.decode("utf-8", errors="replace")
    return BeautifulSoup(markup, PARSER, multi_valued_attributes=None)


def decode_markup(data, encoding=None):
    """
    Decode raw page bytes.

    The declared encoding wins when it works, then strict UTF-8, then
    whatever chardet is confident about. Undecodable bytes end up as U+FFFD.
    """
    for candidate in (encoding, "utf-8"):
        if not candidate:
            continue
        try:
            return data.decode(candidate)
        except (UnicodeDecodeError, LookupError):
            continue

    detected = chardet.detect(data[:65536])
    if detected.get("encoding") and (detected.get("confidence") or 0) > 0.7:
        try:
            return data.decode(detected["encoding"], errors="replace")
        except LookupError:
            logger.debug(f"chardet returned unknown encoding {detected['encoding']}")
    return data.decode("utf-8", errors="replace")


def ensure_body(doc):
    """
    Make sure the document has <html><head></head><body>...</body></html>.

    html.parser does not synthesise missing structure, so loose fragments are
    moved into a new <body>. Returns the <body> element.
    """
    body = doc.find("body")
    if body is not None:
        html = body.parent
        if tag_name(html) == "html" and html.find("head", recursive=False) is None:
            html.insert(0, create_element("head"))
        return body

    html = doc.find("html")
    if html is None:
        html = create_element("html")
        for node in list(doc.contents):
            if is_element(node) or is_text_node(node):
                html.append(node)
        doc.append(html)

    body = create_element("body")
    for node in list(html.contents):
        if tag_name(node) != "head":
            body.append(node)
    if html.find("head", recursive=False) is None:
        html.insert(0, create_element("head"))
    html.append(body)
    return body


def is_element(node):
    return isinstance(node, Tag) and not isinstance(node, BeautifulSoup)


def is_text_node(node):
    return isinstance(node, NavigableString) and not isinstance(node, PreformattedString)


def is_comment(node):
    return isinstance(node, Comment)


def tag_name(node):
    """Lowercase tag name, or an empty string for anything that isn't an element."""
    if is_element(node):
        return node.name.lower()
    return ""


def create_element(name):
    return _factory.new_tag(name)


def create_text_node(text):
    return NavigableString(text)


def get_elements_by_tag_name(node, name):
    """
    Return every descendant element named `name`, in document order.
    `*` matches all elements. The node itself is never included.
    """
    if not isinstance(node, Tag):
        return []
    if name == "*":
        return node.find_all(True)
    return node.find_all(name)


def get_all_nodes_with_tag(node, *names):
    result = []
    for name in names:
        result.extend(get_elements_by_tag_name(node, name))
    return result


def get_attribute(node, name):
    if not is_element(node):
        return ""
    value = node.attrs.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return value


def set_attribute(node, name, value):
    if is_element(node):
        node.attrs[name] = value


def remove_attribute(node, name):
    if is_element(node) and name in node.attrs:
        del node.attrs[name]


def has_attribute(node, name):
    return is_element(node) and name in node.attrs


def class_name(node):
    return get_attribute(node, "class").strip()


def node_id(node):
    return get_attribute(node, "id").strip()


def text_content(node):
    """Concatenation of every text node below `node` (comments excluded)."""
    if is_text_node(node):
        return str(node)
    if not isinstance(node, Tag):
        return ""
    return "".join(str(s) for s in node.descendants if is_text_node(s))


def set_text_content(node, text):
    """Replace all children of `node` with a single text node."""
    node.clear()
    node.append(create_text_node(text))


def inner_html(node):
    if not isinstance(node, Tag):
        return ""
    return node.decode_contents()


def outer_html(node):
    if isinstance(node, BeautifulSoup):
        return node.decode()
    if isinstance(node, Tag):
        return node.decode()
    if is_text_node(node):
        return node.output_ready()
    return str(node)


def child_nodes(node):
    if not isinstance(node, Tag):
        return []
    return list(node.contents)


def children(node):
    """Element children only."""
    if not isinstance(node, Tag):
        return []
    return [child for child in node.contents if is_element(child)]


def first_element_child(node):
    if not isinstance(node, Tag):
        return None
    for child in node.contents:
        if is_element(child):
            return child
    return None


def next_element_sibling(node):
    sibling = node.next_sibling
    while sibling is not None and not is_element(sibling):
        sibling = sibling.next_sibling
    return sibling


def previous_element_sibling(node):
    sibling = node.previous_sibling
    while sibling is not None and not is_element(sibling):
        sibling = sibling.previous_sibling
    return sibling


def append_child(parent, child):
    """Append `child` to `parent`, detaching it from its old parent first."""
    if child.parent is not None:
        child.extract()
    parent.append(child)
    return child


def prepend_child(parent, child):
    if child.parent is not None:
        child.extract()
    parent.insert(0, child)
    return child


def replace_child(parent, new_node, old_node):
    """
    Put `new_node` where `old_node` is inside `parent`.

    Returns:
        tuple: (new_node, old_node), mirroring the DOM API.
    """
    if old_node.parent is not parent:
        return new_node, None
    if new_node is old_node:
        return new_node, old_node
    if new_node.parent is not None:
        new_node.extract()
    old_node.replace_with(new_node)
    return new_node, old_node


def remove_node(node):
    if node.parent is not None:
        node.extract()


def clone_node(node):
    """Deep copy, detached from any tree."""
    return copy.copy(node)


def include_node(nodes, node):
    return any(item is node for item in nodes)


def index_of_node(nodes, node):
    for i, item in enumerate(nodes):
        if item is node:
            return i
    return -1


def for_each_node(nodes, fn):
    for i, node in enumerate(list(nodes)):
        fn(node, i)


def some_node(nodes, fn):
    return any(fn(node) for node in nodes)


def every_node(nodes, fn):
    return all(fn(node) for node in nodes)


def remove_nodes(nodes, filter_fn=None):
    """
    Detach every node in `nodes` for which `filter_fn` returns True
    (all of them when no filter is given). Iterates backwards so removing
    a node never affects the nodes still to be visited.
    """
    for node in reversed(list(nodes)):
        if node.parent is not None and (filter_fn is None or filter_fn(node)):
            node.extract()


def set_node_tag(node, name):
    if is_element(node):
        node.name = name


def get_node_ancestors(node, max_depth=0):
    ancestors = []
    depth = 0
    parent = node.parent
    while parent is not None:
        depth += 1
        ancestors.append(parent)
        if max_depth and depth == max_depth:
            break
        parent = parent.parent
    return ancestors


def has_ancestor_tag(node, tag, max_depth=3, filter_fn=None):
    """
    Check whether one of the ancestors of `node` (up to `max_depth` levels,
    unlimited when negative) is a `tag` element accepted by `filter_fn`.
    """
    depth = 0
    while node.parent is not None:
        if max_depth > 0 and depth > max_depth:
            return False
        parent = node.parent
        if tag_name(parent) == tag and (filter_fn is None or filter_fn(parent)):
            return True
        node = parent
        depth += 1
    return False


def iter_comments(node):
    return [d for d in node.descendants if is_comment(d)]


LAZY_IMAGE_EXT_RE = re.compile(r"(?i)\.(jpg|jpeg|png|webp)")
LAZY_SRCSET_RE = re.compile(r"(?i)\.(jpg|jpeg|png|webp)\s+\d")
LAZY_SRC_RE = re.compile(r"(?i)^\s*\S+\.(jpg|jpeg|png|webp)\S*\s*$")
B64_DATA_URL_RE = re.compile(r"(?i)^data:\s*([^\s;,]+)\s*;\s*base64\s*,")

# Base64 length of a 100 byte payload.
SMALL_B64_LENGTH = 133


def fix_lazy_images(root):
    """
    Copy lazily loaded image URLs (data-src, data-srcset...) into src/srcset
    on img, picture and figure elements, and drop tiny base64 placeholders
    when another attribute carries the real image.
    """
    for elem in get_all_nodes_with_tag(root, "img", "picture", "figure"):
        src = get_attribute(elem, "src")
        srcset = get_attribute(elem, "srcset")
        name = tag_name(elem)
        elem_class = class_name(elem)

        if src:
            match = B64_DATA_URL_RE.match(src)
            if match and match.group(1) != "image/svg+xml":
                has_other_image = any(
                    attr != "src" and LAZY_IMAGE_EXT_RE.search(str(value))
                    for attr, value in elem.attrs.items()
                )
                if has_other_image:
                    payload = src[match.end():]
                    if len(payload) < SMALL_B64_LENGTH:
                        remove_attribute(elem, "src")
                        src = ""

        if (src or (srcset and srcset != "null")) and "lazy" not in elem_class.lower():
            continue

        for attr, value in list(elem.attrs.items()):
            if attr in ("src", "srcset", "alt"):
                continue
            value = str(value)
            copy_to = ""
            if LAZY_SRCSET_RE.search(value):
                copy_to = "srcset"
            elif LAZY_SRC_RE.search(value):
                copy_to = "src"
            if not copy_to:
                continue

            if name in ("img", "picture"):
                set_attribute(elem, copy_to, value)
            elif name == "figure":
                if not get_all_nodes_with_tag(elem, "img", "picture"):
                    img = create_element("img")
                    set_attribute(img, copy_to, value)
                    append_child(elem, img)


def fix_relative_uris(root, base_url):
    """
    Rewrite relative links and media URLs below `root` to absolute ones.

    `javascript:` links are replaced by their content, since they would not
    work outside the original page.
    """
    for link in get_elements_by_tag_name(root, "a"):
        href = get_attribute(link, "href")
        if not href:
            continue
        if href.strip().lower().startswith("javascript:"):
            nodes = child_nodes(link)
            if len(nodes) == 1 and is_text_node(nodes[0]):
                replace_child(link.parent, create_text_node(text_content(link)), link)
            else:
                container = create_element("span")
                for child in nodes:
                    append_child(container, child)
                replace_child(link.parent, container, link)
        else:
            new_href = to_absolute_url(href, base_url)
            if new_href:
                set_attribute(link, "href", new_href)
            else:
                remove_attribute(link, "href")

    for media in get_all_nodes_with_tag(root, "img", "picture", "figure", "video", "audio", "source"):
        for attr in ("src", "poster"):
            value = get_attribute(media, attr)
            if value:
                set_attribute(media, attr, to_absolute_url(value, base_url))

        srcset = get_attribute(media, "srcset")
        if srcset:
            candidates = []
            for candidate in srcset.split(","):
                parts = candidate.strip().split(None, 1)
                if not parts:
                    continue
                parts[0] = to_absolute_url(parts[0], base_url)
                candidates.append(" ".join(parts))
            set_attribute(media, "srcset", ", ".join(candidates))
