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
Readability engine: isolate the article-like part of an HTML page.

The algorithm walks the page, scores paragraph-like nodes (text length, commas,
class names), propagates the scores to their ancestors, picks the best scoring
container, merges its related siblings and finally scrubs the result. When the
extracted text is too short the whole process is retried with the heuristics
relaxed one at a time.

Scores and data-table marks live in side tables keyed by node identity, so the
tree stays serialisable at any time.
"""

import html
import logging
import math
import re

from bs4 import BeautifulSoup

import html_walker as dom
from errors import InvalidURLError, NoReadableContentError
from models import Article
from read_time import detect_language, estimate_read_time
from url_resolver import is_absolute_url, to_absolute_url

logger = logging.getLogger(__name__)

UNLIKELY_CANDIDATES_RE = re.compile(
    r"-ad-|ai2html|banner|breadcrumbs|combx|comment|community|cover-wrap|disqus|extra|footer|gdpr|header|"
    r"legends|menu|related|remark|replies|rss|shoutbox|sidebar|skyscraper|social|sponsor|supplemental|"
    r"ad-break|agegate|pagination|pager|popup|yom-remote",
    re.IGNORECASE,
)
MAYBE_CANDIDATE_RE = re.compile(r"and|article|body|column|content|main|shadow", re.IGNORECASE)
POSITIVE_RE = re.compile(
    r"article|body|content|entry|hentry|h-entry|main|page|pagination|post|text|blog|story",
    re.IGNORECASE,
)
NEGATIVE_RE = re.compile(
    r"hidden|^hid$| hid$| hid |^hid |banner|combx|comment|com-|contact|foot|footer|footnote|gdpr|masthead|"
    r"media|meta|outbrain|promo|related|scroll|share|shoutbox|sidebar|skyscraper|sponsor|shopping|tags|"
    r"tool|widget",
    re.IGNORECASE,
)
BYLINE_RE = re.compile(r"byline|author|dateline|writtenby|p-author", re.IGNORECASE)
NORMALIZE_RE = re.compile(r"\s{2,}")
VIDEOS_RE = re.compile(
    r"//(www\.)?((dailymotion|youtube|youtube-nocookie|player\.vimeo|v\.qq)\.com|"
    r"(archive|upload\.wikimedia)\.org|player\.twitch\.tv)",
    re.IGNORECASE,
)
WHITESPACE_RE = re.compile(r"^\s*$")
HAS_CONTENT_RE = re.compile(r"\S$")
PROPERTY_PATTERN_RE = re.compile(
    r"\s*(dc|dcterm|og|twitter)\s*:\s*(author|creator|description|title|site_name|image\S*)\s*",
    re.IGNORECASE,
)
NAME_PATTERN_RE = re.compile(
    r"^\s*(?:(dc|dcterm|og|twitter|weibo:(article|webpage))\s*[\.:]\s*)?"
    r"(author|creator|description|title|site_name|image)\s*$",
    re.IGNORECASE,
)
TITLE_SEPARATOR_RE = re.compile(r" [\|\-\\/>»] ")
TITLE_HIERARCHY_SEP_RE = re.compile(r" [\\/>»] ")
TITLE_REMOVE_FINAL_PART_RE = re.compile(r"(.*)[\|\-\\/>»] .*")
TITLE_REMOVE_FIRST_PART_RE = re.compile(r"[^\|\-\\/>»]*[\|\-\\/>»](.*)")
TITLE_ANY_SEPARATOR_RE = re.compile(r"[\|\-\\/>»]+")
DISPLAY_NONE_RE = re.compile(r"display\s*:\s*none", re.IGNORECASE)
SENTENCE_PERIOD_RE = re.compile(r"\.( |$)")
SHARE_ELEMENTS_RE = re.compile(r"(\b|_)(share|sharedaddy)(\b|_)", re.IGNORECASE)
FAVICON_SIZE_RE = re.compile(r"(\d+)x(\d+)", re.IGNORECASE)
IMG_EXTENSIONS_RE = re.compile(r"\.(jpg|jpeg|png|webp)", re.IGNORECASE)

DIV_TO_P_ELEMS = ["a", "blockquote", "dl", "div", "img", "ol", "p", "pre", "table", "ul", "select"]
ALTER_TO_DIV_EXCEPTIONS = ("div", "article", "section", "p")
PRESENTATIONAL_ATTRIBUTES = (
    "align", "background", "bgcolor", "border", "cellpadding", "cellspacing",
    "frame", "hspace", "rules", "style", "valign", "vspace",
)
DEPRECATED_SIZE_ATTRIBUTE_ELEMS = ("table", "th", "td", "hr", "pre")
PHRASING_ELEMS = {
    "abbr", "audio", "b", "bdo", "br", "button", "cite", "code", "data",
    "datalist", "dfn", "em", "embed", "i", "img", "input", "kbd", "label",
    "mark", "math", "meter", "noscript", "object", "output", "progress", "q",
    "ruby", "samp", "script", "select", "small", "span", "strong", "sub",
    "sup", "textarea", "time", "var", "wbr",
}
DEFAULT_TAGS_TO_SCORE = ("section", "h2", "h3", "h4", "h5", "h6", "p", "td", "pre")
EMBED_TAGS = ("object", "embed", "iframe")

# Minimum number of alternative candidates sharing an ancestor with the top one.
MINIMUM_TOP_CANDIDATES = 3

# is_readable(): paragraphs shorter than this don't count, and the page is
# readable once the accumulated score passes READABLE_SCORE.
READABLE_MIN_LENGTH = 140
READABLE_SCORE = 20


def word_count(text):
    return len(text.split())


class _Attempt:
    def __init__(self, content, text_length, found_candidates):
        self.content = content
        self.text_length = text_length
        self.found_candidates = found_candidates


class ReadabilityParser:
    """
    Extract the readable content of a page.

    Parameters:
        n_top_candidates (int): Number of top candidates compared when looking
            for a common ancestor.
        char_threshold (int): Minimum text length for an extraction to be
            accepted without relaxing the heuristics.
        keep_classes (bool): Keep class attributes in the output.
        classes_to_preserve (tuple): Classes kept even when keep_classes is off.
        max_elems_to_parse (int): Refuse documents with more elements (0 = no limit).
    """

    def __init__(self, n_top_candidates=5, char_threshold=500, keep_classes=False,
                 classes_to_preserve=("page",), tags_to_score=DEFAULT_TAGS_TO_SCORE,
                 max_elems_to_parse=0):
        self.n_top_candidates = n_top_candidates
        self.char_threshold = char_threshold
        self.keep_classes = keep_classes
        self.classes_to_preserve = tuple(classes_to_preserve)
        self.tags_to_score = tuple(tags_to_score)
        self.max_elems_to_parse = max_elems_to_parse
        self._reset("")

    def _reset(self, page_url):
        self._doc = None
        self._url = page_url
        self._title = ""
        self._byline = ""
        self._attempts = []
        self._strip_unlikelys = True
        self._use_weight_classes = True
        self._clean_conditionally_enabled = True
        self._scores = {}
        self._data_tables = {}

    # Side tables

    def _set_score(self, node, score):
        self._scores[id(node)] = (node, score)

    def _has_score(self, node):
        return id(node) in self._scores

    def _get_score(self, node):
        entry = self._scores.get(id(node))
        return entry[1] if entry is not None else 0.0

    def _set_data_table(self, node, is_data_table):
        self._data_tables[id(node)] = (node, is_data_table)

    def _is_data_table(self, node):
        entry = self._data_tables.get(id(node))
        return entry is not None and entry[1]

    # Node predicates and measures

    def _get_inner_text(self, node, normalize_spaces=True):
        text = dom.text_content(node).strip()
        if normalize_spaces:
            text = NORMALIZE_RE.sub(" ", text)
        return text

    def _get_link_density(self, element):
        text_length = len(self._get_inner_text(element))
        if text_length == 0:
            return 0.0
        link_length = sum(len(self._get_inner_text(link)) for link in dom.get_elements_by_tag_name(element, "a"))
        return link_length / text_length

    def _get_class_weight(self, node):
        if not self._use_weight_classes:
            return 0

        weight = 0
        for value in (dom.class_name(node), dom.node_id(node)):
            if not value:
                continue
            if NEGATIVE_RE.search(value):
                weight -= 25
            if POSITIVE_RE.search(value):
                weight += 25
        return weight

    def _is_phrasing_content(self, node):
        if dom.is_text_node(node):
            return True
        name = dom.tag_name(node)
        if name in PHRASING_ELEMS:
            return True
        return name in ("a", "del", "ins") and all(self._is_phrasing_content(child) for child in dom.child_nodes(node))

    def _is_whitespace(self, node):
        if dom.is_text_node(node):
            return dom.text_content(node).strip() == ""
        return dom.tag_name(node) == "br"

    def _is_probably_visible(self, node):
        style = dom.get_attribute(node, "style")
        aria_hidden = dom.get_attribute(node, "aria-hidden")
        class_name = dom.get_attribute(node, "class")
        return ((not style or not DISPLAY_NONE_RE.search(style))
                and not dom.has_attribute(node, "hidden")
                and (aria_hidden != "true" or "fallback-image" in class_name))

    def _has_single_tag_inside_element(self, element, tag):
        kids = dom.children(element)
        if len(kids) != 1 or dom.tag_name(kids[0]) != tag:
            return False
        return not any(
            dom.is_text_node(node) and HAS_CONTENT_RE.search(str(node))
            for node in dom.child_nodes(element)
        )

    def _is_element_without_content(self, node):
        if not dom.is_element(node) or dom.text_content(node).strip():
            return False
        kids = dom.children(node)
        brs = dom.get_elements_by_tag_name(node, "br")
        hrs = dom.get_elements_by_tag_name(node, "hr")
        return len(kids) == 0 or len(kids) == len(brs) + len(hrs)

    def _has_child_block_element(self, element):
        return element.find(DIV_TO_P_ELEMS) is not None

    def _is_single_image(self, node):
        if dom.tag_name(node) == "img":
            return True
        kids = dom.children(node)
        if len(kids) != 1 or dom.text_content(node).strip():
            return False
        return self._is_single_image(kids[0])

    def _is_valid_byline(self, text):
        text = text.strip()
        return 0 < len(text) < 100

    def _check_byline(self, node, match_string):
        if self._byline:
            return False

        rel = dom.get_attribute(node, "rel")
        itemprop = dom.get_attribute(node, "itemprop")
        text = dom.text_content(node)
        if (rel == "author" or "author" in itemprop or BYLINE_RE.search(match_string)) and self._is_valid_byline(text):
            self._byline = " ".join(text.split())
            return True
        return False

    # Traversal

    def _next_element(self, node):
        while node is not None and not dom.is_element(node) and WHITESPACE_RE.match(dom.text_content(node)):
            node = node.next_sibling
        return node

    def _get_next_node(self, node, ignore_self_and_kids=False):
        if not ignore_self_and_kids:
            first_child = dom.first_element_child(node)
            if first_child is not None:
                return first_child

        sibling = dom.next_element_sibling(node)
        if sibling is not None:
            return sibling

        while True:
            node = node.parent
            if node is None or dom.next_element_sibling(node) is not None:
                break

        if node is not None:
            return dom.next_element_sibling(node)
        return None

    def _remove_and_get_next(self, node):
        next_node = self._get_next_node(node, True)
        dom.remove_node(node)
        return next_node

    # Document preparation

    def _unwrap_noscript_images(self, doc):
        # Placeholder <img> without any image source would otherwise be
        # swapped with the <noscript> image below.
        for img in dom.get_elements_by_tag_name(doc, "img"):
            has_source = any(
                key in ("src", "data-src", "srcset", "data-srcset") or IMG_EXTENSIONS_RE.search(str(value))
                for key, value in img.attrs.items()
            )
            if not has_source:
                dom.remove_node(img)

        for noscript in dom.get_elements_by_tag_name(doc, "noscript"):
            tmp = dom.parse_html(dom.inner_html(noscript))
            if not self._is_single_image(tmp):
                continue

            prev_element = dom.previous_element_sibling(noscript)
            if prev_element is None or not self._is_single_image(prev_element):
                continue

            prev_img = prev_element
            if dom.tag_name(prev_img) != "img":
                prev_img = dom.get_elements_by_tag_name(prev_element, "img")[0]

            new_img = dom.get_elements_by_tag_name(tmp, "img")[0]
            for key, value in list(prev_img.attrs.items()):
                if not value:
                    continue
                if key in ("src", "srcset") or IMG_EXTENSIONS_RE.search(value):
                    if dom.get_attribute(new_img, key) == value:
                        continue
                    attr_name = key
                    if dom.has_attribute(new_img, key):
                        attr_name = "data-old-" + key
                    dom.set_attribute(new_img, attr_name, value)

            dom.replace_child(prev_element.parent, dom.first_element_child(tmp), prev_element)

    def _remove_scripts(self, doc):
        dom.remove_nodes(dom.get_elements_by_tag_name(doc, "script"))
        dom.remove_nodes(dom.get_elements_by_tag_name(doc, "noscript"))

    def _replace_brs(self, elem):
        """
        Replace runs of two or more <br> with a <p> holding the phrasing
        content that follows, up to the next run.
        """
        for br in dom.get_elements_by_tag_name(elem, "br"):
            next_node = br.next_sibling
            replaced = False

            while True:
                next_node = self._next_element(next_node)
                if next_node is None or dom.tag_name(next_node) != "br":
                    break
                replaced = True
                br_sibling = next_node.next_sibling
                dom.remove_node(next_node)
                next_node = br_sibling

            if not replaced:
                continue

            p = dom.create_element("p")
            dom.replace_child(br.parent, p, br)

            next_node = p.next_sibling
            while next_node is not None:
                if dom.tag_name(next_node) == "br":
                    next_elem = self._next_element(next_node.next_sibling)
                    if next_elem is not None and dom.tag_name(next_elem) == "br":
                        break
                if not self._is_phrasing_content(next_node):
                    break
                sibling = next_node.next_sibling
                dom.append_child(p, next_node)
                next_node = sibling

            while p.contents and self._is_whitespace(p.contents[-1]):
                p.contents[-1].extract()

            if dom.tag_name(p.parent) == "p":
                dom.set_node_tag(p.parent, "div")

    def _prep_document(self):
        doc = self._doc
        dom.remove_nodes(dom.iter_comments(doc))
        dom.remove_nodes(dom.get_elements_by_tag_name(doc, "style"))

        body = doc.find("body")
        if body is not None:
            self._replace_brs(body)

        for font in dom.get_elements_by_tag_name(doc, "font"):
            dom.set_node_tag(font, "span")

    # Metadata

    def _get_article_title(self):
        doc = self._doc
        cur_title = orig_title = ""
        had_hierarchical_separators = False
        dropped_final_part = False

        titles = dom.get_elements_by_tag_name(doc, "title")
        if titles:
            orig_title = self._get_inner_text(titles[0])
            cur_title = orig_title

        if TITLE_SEPARATOR_RE.search(cur_title):
            had_hierarchical_separators = TITLE_HIERARCHY_SEP_RE.search(cur_title) is not None
            cur_title = TITLE_REMOVE_FINAL_PART_RE.sub(r"\1", orig_title)
            dropped_final_part = True
            if word_count(cur_title) < 3:
                cur_title = TITLE_REMOVE_FIRST_PART_RE.sub(r"\1", orig_title)
                dropped_final_part = False
        elif ": " in cur_title:
            headings = dom.get_all_nodes_with_tag(doc, "h1", "h2")
            trimmed = cur_title.strip()
            if not any(dom.text_content(heading).strip() == trimmed for heading in headings):
                cur_title = orig_title[orig_title.rfind(":") + 1:]
                if word_count(cur_title) < 3:
                    cur_title = orig_title[orig_title.find(":") + 1:]
                elif word_count(orig_title[:orig_title.find(":")]) > 5:
                    cur_title = orig_title
        elif len(cur_title) > 150 or len(cur_title) < 15:
            h1s = dom.get_elements_by_tag_name(doc, "h1")
            if len(h1s) == 1:
                cur_title = self._get_inner_text(h1s[0])

        cur_title = NORMALIZE_RE.sub(" ", cur_title.strip())

        # Short titles go back to the original, unless only the trailing
        # site name was dropped and a real sentence is left.
        cur_count = word_count(cur_title)
        orig_count = word_count(TITLE_ANY_SEPARATOR_RE.sub("", orig_title))
        if (cur_count <= 4
                and (not had_hierarchical_separators or cur_count != orig_count - 1)
                and not (dropped_final_part and cur_count >= 3)):
            cur_title = orig_title

        return cur_title

    def _get_article_favicon(self):
        favicon = ""
        favicon_size = -1
        for link in dom.get_elements_by_tag_name(self._doc, "link"):
            rel = dom.get_attribute(link, "rel").strip()
            link_type = dom.get_attribute(link, "type").strip()
            href = dom.get_attribute(link, "href").strip()
            sizes = dom.get_attribute(link, "sizes").strip()

            if not href or "icon" not in rel:
                continue
            if link_type != "image/png" and ".png" not in href:
                continue

            size = 0
            for location in (sizes, href):
                match = FAVICON_SIZE_RE.search(location)
                if match is None or match.group(1) != match.group(2):
                    continue
                size = int(match.group(1))
                break

            if size > favicon_size:
                favicon_size = size
                favicon = href

        return to_absolute_url(favicon, self._url)

    def _get_article_metadata(self):
        values = {}
        for element in dom.get_elements_by_tag_name(self._doc, "meta"):
            element_name = dom.get_attribute(element, "name")
            element_property = dom.get_attribute(element, "property")
            content = dom.get_attribute(element, "content")
            if not content:
                continue

            matches = []
            if element_property:
                matches = [m.group(0) for m in PROPERTY_PATTERN_RE.finditer(element_property)]
                for match in matches:
                    values["".join(match.lower().split())] = content.strip()

            if not matches and element_name and NAME_PATTERN_RE.search(element_name):
                key = "".join(element_name.lower().split()).replace(".", ":")
                values[key] = content.strip()

        def first_of(*names):
            for name in names:
                if name in values:
                    return values[name]
            return ""

        title = first_of("dc:title", "dcterm:title", "og:title", "weibo:article:title",
                         "weibo:webpage:title", "title", "twitter:title")
        if not title:
            title = self._get_article_title()

        image = first_of("og:image", "image", "twitter:image")
        if image:
            image = to_absolute_url(image, self._url)

        return {
            "title": html.unescape(title),
            "byline": html.unescape(first_of("dc:creator", "dcterm:creator", "author")),
            "excerpt": html.unescape(first_of(
                "dc:description", "dcterm:description", "og:description", "weibo:article:description",
                "weibo:webpage:description", "description", "twitter:description")),
            "site_name": html.unescape(values.get("og:site_name", "")),
            "image": image,
            "favicon": self._get_article_favicon(),
        }

    # Article cleanup

    def _clean_styles(self, root):
        stack = [root]
        while stack:
            node = stack.pop()
            name = dom.tag_name(node)
            if name == "svg":
                continue
            for attr in PRESENTATIONAL_ATTRIBUTES:
                dom.remove_attribute(node, attr)
            if name in DEPRECATED_SIZE_ATTRIBUTE_ELEMS:
                dom.remove_attribute(node, "width")
                dom.remove_attribute(node, "height")
            stack.extend(dom.children(node))

    def _clean_classes(self, root):
        for node in [root] + dom.get_elements_by_tag_name(root, "*"):
            preserved = [cls for cls in dom.class_name(node).split() if cls in self.classes_to_preserve]
            if preserved:
                dom.set_attribute(node, "class", " ".join(preserved))
            else:
                dom.remove_attribute(node, "class")

    def _get_row_and_column_count(self, table):
        rows = columns = 0
        for tr in dom.get_elements_by_tag_name(table, "tr"):
            rows += _span(dom.get_attribute(tr, "rowspan"))
            columns_in_row = sum(_span(dom.get_attribute(td, "colspan"))
                                 for td in dom.get_elements_by_tag_name(tr, "td"))
            columns = max(columns, columns_in_row)
        return rows, columns

    def _mark_data_tables(self, root):
        for table in dom.get_elements_by_tag_name(root, "table"):
            if dom.get_attribute(table, "role") == "presentation":
                self._set_data_table(table, False)
                continue
            if dom.get_attribute(table, "datatable") == "0":
                self._set_data_table(table, False)
                continue
            if dom.has_attribute(table, "summary"):
                self._set_data_table(table, True)
                continue

            captions = dom.get_elements_by_tag_name(table, "caption")
            if captions and dom.child_nodes(captions[0]):
                self._set_data_table(table, True)
                continue

            if table.find(["col", "colgroup", "tfoot", "thead", "th"]) is not None:
                self._set_data_table(table, True)
                continue

            # Nested tables are used for layout.
            if table.find("table") is not None:
                self._set_data_table(table, False)
                continue

            rows, columns = self._get_row_and_column_count(table)
            if rows >= 10 or columns > 4 or rows * columns > 10:
                self._set_data_table(table, True)

    def _has_video(self, element):
        if any(VIDEOS_RE.search(str(value)) for value in element.attrs.values()):
            return True
        return dom.tag_name(element) == "object" and VIDEOS_RE.search(dom.inner_html(element)) is not None

    def _clean(self, node, tag):
        """Remove every `tag` element below `node`, sparing embedded videos."""
        is_embed = tag in EMBED_TAGS
        dom.remove_nodes(
            dom.get_elements_by_tag_name(node, tag),
            lambda element: not (is_embed and self._has_video(element)),
        )

    def _should_clean_conditionally(self, node, tag):
        is_list = tag in ("ul", "ol")

        if tag == "table" and self._is_data_table(node):
            return False
        if dom.has_ancestor_tag(node, "table", -1, self._is_data_table):
            return False

        weight = self._get_class_weight(node)
        if weight < 0:
            return True

        if self._get_inner_text(node).count(",") >= 10:
            return False

        p = len(dom.get_elements_by_tag_name(node, "p"))
        img = len(dom.get_elements_by_tag_name(node, "img"))
        li = len(dom.get_elements_by_tag_name(node, "li")) - 100
        inputs = len(dom.get_elements_by_tag_name(node, "input"))

        embed_count = 0
        for embed in dom.get_all_nodes_with_tag(node, *EMBED_TAGS):
            if self._has_video(embed):
                return False
            embed_count += 1

        link_density = self._get_link_density(node)
        content_length = len(self._get_inner_text(node))
        in_figure = dom.has_ancestor_tag(node, "figure", 3)

        return ((img > 1 and p / img < 0.5 and not in_figure)
                or (not is_list and li > p)
                or (inputs > math.floor(p / 3))
                or (not is_list and content_length < 25 and (img == 0 or img > 2) and not in_figure)
                or (not is_list and weight < 25 and link_density > 0.2)
                or (weight >= 25 and link_density > 0.5)
                or (embed_count == 1 and content_length < 75)
                or embed_count > 1)

    def _clean_conditionally(self, element, tag):
        if not self._clean_conditionally_enabled:
            return
        dom.remove_nodes(
            dom.get_elements_by_tag_name(element, tag),
            lambda node: self._should_clean_conditionally(node, tag),
        )

    def _clean_matched_nodes(self, element, filter_fn):
        end_of_search = self._get_next_node(element, True)
        next_node = self._get_next_node(element)
        while next_node is not None and next_node is not end_of_search:
            if filter_fn(next_node, dom.class_name(next_node) + " " + dom.node_id(next_node)):
                next_node = self._remove_and_get_next(next_node)
            else:
                next_node = self._get_next_node(next_node)

    def _clean_headers(self, element):
        for tag in ("h1", "h2"):
            dom.remove_nodes(
                dom.get_elements_by_tag_name(element, tag),
                lambda header: self._get_class_weight(header) < 0,
            )

    def _prep_article(self, article_content):
        self._clean_styles(article_content)
        self._mark_data_tables(article_content)
        dom.fix_lazy_images(article_content)

        self._clean_conditionally(article_content, "form")
        self._clean_conditionally(article_content, "fieldset")
        for tag in ("object", "embed", "h1", "footer", "link", "aside"):
            self._clean(article_content, tag)

        # Share widgets, except in the top candidates themselves.
        threshold = self.char_threshold
        for top_candidate in dom.children(article_content):
            self._clean_matched_nodes(
                top_candidate,
                lambda node, match_string: (SHARE_ELEMENTS_RE.search(match_string) is not None
                                            and len(dom.text_content(node)) < threshold),
            )

        # A lone <h2> repeating the title is a header, the title is
        # extracted separately.
        h2s = dom.get_elements_by_tag_name(article_content, "h2")
        if len(h2s) == 1 and self._title:
            h2_text = dom.text_content(h2s[0])
            similar_rate = (len(h2_text) - len(self._title)) / len(self._title)
            if abs(similar_rate) < 0.5:
                if similar_rate > 0:
                    titles_match = self._title in h2_text
                else:
                    titles_match = h2_text in self._title
                if titles_match:
                    self._clean(article_content, "h2")

        for tag in ("iframe", "input", "textarea", "select", "button"):
            self._clean(article_content, tag)
        self._clean_headers(article_content)

        self._clean_conditionally(article_content, "table")
        self._clean_conditionally(article_content, "ul")
        self._clean_conditionally(article_content, "div")

        def is_empty_paragraph(p):
            media = dom.get_all_nodes_with_tag(p, "img", "embed", "object", "iframe")
            return not media and self._get_inner_text(p, False) == ""

        dom.remove_nodes(dom.get_elements_by_tag_name(article_content, "p"), is_empty_paragraph)

        for br in dom.get_elements_by_tag_name(article_content, "br"):
            next_node = self._next_element(br.next_sibling)
            if next_node is not None and dom.tag_name(next_node) == "p":
                dom.remove_node(br)

        for table in dom.get_elements_by_tag_name(article_content, "table"):
            if table.parent is None:
                continue
            tbody = table
            if self._has_single_tag_inside_element(table, "tbody"):
                tbody = dom.first_element_child(table)
            if not self._has_single_tag_inside_element(tbody, "tr"):
                continue
            row = dom.first_element_child(tbody)
            if not self._has_single_tag_inside_element(row, "td"):
                continue
            cell = dom.first_element_child(row)
            new_tag = "p" if dom.every_node(dom.child_nodes(cell), self._is_phrasing_content) else "div"
            dom.set_node_tag(cell, new_tag)
            dom.replace_child(table.parent, cell, table)

    def _post_process_content(self, article_content):
        dom.fix_relative_uris(article_content, self._url)
        if not self.keep_classes:
            self._clean_classes(article_content)

    # Main algorithm

    def _initialize_node(self, node):
        score = float(self._get_class_weight(node))
        name = dom.tag_name(node)
        if name == "div":
            score += 5
        elif name in ("pre", "td", "blockquote"):
            score += 3
        elif name == "article":
            score += 10
        elif name == "section":
            score += 8
        elif name in ("address", "ol", "ul", "dl", "dd", "dt", "li", "form"):
            score -= 3
        elif name in ("h1", "h2", "h3", "h4", "h5", "h6", "th"):
            score -= 5
        self._set_score(node, score)

    def _wrap_div_phrasing(self, node):
        # Put runs of phrasing content directly inside a <div> into <p>.
        p = None
        child = node.contents[0] if node.contents else None
        while child is not None:
            next_sibling = child.next_sibling
            if self._is_phrasing_content(child):
                if p is not None:
                    dom.append_child(p, child)
                elif not self._is_whitespace(child):
                    p = dom.create_element("p")
                    dom.replace_child(node, p, child)
                    dom.append_child(p, child)
            elif p is not None:
                while p.contents and self._is_whitespace(p.contents[-1]):
                    p.contents[-1].extract()
                p = None
            child = next_sibling

    def _collect_elements_to_score(self, doc):
        elements_to_score = []
        node = dom.first_element_child(doc)

        while node is not None:
            match_string = dom.class_name(node) + " " + dom.node_id(node)

            if not self._is_probably_visible(node):
                node = self._remove_and_get_next(node)
                continue

            if self._check_byline(node, match_string):
                node = self._remove_and_get_next(node)
                continue

            name = dom.tag_name(node)
            if self._strip_unlikelys:
                if (UNLIKELY_CANDIDATES_RE.search(match_string)
                        and not MAYBE_CANDIDATE_RE.search(match_string)
                        and not dom.has_ancestor_tag(node, "table", 3)
                        and name not in ("body", "a")):
                    node = self._remove_and_get_next(node)
                    continue

                if dom.get_attribute(node, "role") == "complementary":
                    node = self._remove_and_get_next(node)
                    continue

            if name in ("div", "section", "header", "h1", "h2", "h3", "h4", "h5", "h6") \
                    and self._is_element_without_content(node):
                node = self._remove_and_get_next(node)
                continue

            if name in self.tags_to_score:
                elements_to_score.append(node)

            if name == "div":
                self._wrap_div_phrasing(node)

                if self._has_single_tag_inside_element(node, "p") and self._get_link_density(node) < 0.25:
                    new_node = dom.children(node)[0]
                    dom.replace_child(node.parent, new_node, node)
                    node = new_node
                    elements_to_score.append(node)
                elif not self._has_child_block_element(node):
                    dom.set_node_tag(node, "p")
                    elements_to_score.append(node)

            node = self._get_next_node(node)

        return elements_to_score

    def _score_candidates(self, elements_to_score):
        candidates = []
        for element in elements_to_score:
            if element.parent is None or dom.tag_name(element.parent) == "":
                continue

            inner_text = self._get_inner_text(element)
            if len(inner_text) < 25:
                continue

            ancestors = dom.get_node_ancestors(element, 3)
            if not ancestors:
                continue

            content_score = 1
            content_score += inner_text.count(",") + inner_text.count("，")
            content_score += min(len(inner_text) // 100, 3)

            for level, ancestor in enumerate(ancestors):
                if dom.tag_name(ancestor) == "" or ancestor.parent is None or not dom.is_element(ancestor.parent):
                    continue

                if not self._has_score(ancestor):
                    self._initialize_node(ancestor)
                    candidates.append(ancestor)

                if level == 0:
                    divider = 1
                elif level == 1:
                    divider = 2
                else:
                    divider = level * 3
                self._set_score(ancestor, self._get_score(ancestor) + content_score / divider)

        # Good content has a low link density.
        for candidate in candidates:
            self._set_score(candidate, self._get_score(candidate) * (1 - self._get_link_density(candidate)))

        candidates.sort(key=self._get_score, reverse=True)
        return candidates

    def _find_top_candidate(self, page, top_candidates):
        top_candidate = top_candidates[0] if top_candidates else None

        if top_candidate is None or dom.tag_name(top_candidate) == "body":
            # Nothing stood out: use the whole body.
            top_candidate = dom.create_element("div")
            for kid in dom.child_nodes(page):
                dom.append_child(top_candidate, kid)
            dom.append_child(page, top_candidate)
            self._initialize_node(top_candidate)
            return top_candidate, True

        # Prefer an ancestor shared by several candidates scoring close to
        # the top one.
        top_score = self._get_score(top_candidate)
        alternative_ancestors = []
        for candidate in top_candidates[1:]:
            if top_score and self._get_score(candidate) / top_score >= 0.75:
                alternative_ancestors.append(dom.get_node_ancestors(candidate))

        if len(alternative_ancestors) >= MINIMUM_TOP_CANDIDATES:
            parent = top_candidate.parent
            while parent is not None and dom.tag_name(parent) != "body":
                containing = 0
                for ancestors in alternative_ancestors:
                    if containing >= MINIMUM_TOP_CANDIDATES:
                        break
                    if dom.include_node(ancestors, parent):
                        containing += 1
                if containing >= MINIMUM_TOP_CANDIDATES:
                    top_candidate = parent
                    break
                parent = parent.parent

        if not self._has_score(top_candidate):
            self._initialize_node(top_candidate)

        # A parent scoring higher than its child likely holds more content.
        parent = top_candidate.parent
        last_score = self._get_score(top_candidate)
        score_threshold = last_score / 3.0
        while parent is not None and dom.tag_name(parent) != "body":
            if not self._has_score(parent):
                parent = parent.parent
                continue
            parent_score = self._get_score(parent)
            if parent_score < score_threshold:
                break
            if parent_score > last_score:
                top_candidate = parent
                break
            last_score = parent_score
            parent = parent.parent

        # An only child is replaced by its parent so siblings can be merged.
        parent = top_candidate.parent
        while dom.is_element(parent) and dom.tag_name(parent) != "body" and len(dom.children(parent)) == 1:
            top_candidate = parent
            parent = top_candidate.parent

        if not self._has_score(top_candidate):
            self._initialize_node(top_candidate)

        return top_candidate, False

    def _gather_siblings(self, top_candidate):
        article_content = dom.create_element("div")
        top_score = self._get_score(top_candidate)
        sibling_threshold = max(10, top_score * 0.2)
        top_class = dom.class_name(top_candidate)

        for sibling in dom.children(top_candidate.parent):
            append = False
            if sibling is top_candidate:
                append = True
            else:
                bonus = 0.0
                if top_class and dom.class_name(sibling) == top_class:
                    bonus += top_score * 0.2

                if self._has_score(sibling) and self._get_score(sibling) + bonus >= sibling_threshold:
                    append = True
                elif dom.tag_name(sibling) == "p":
                    link_density = self._get_link_density(sibling)
                    content = self._get_inner_text(sibling)
                    length = len(content)
                    if length > 80 and link_density < 0.25:
                        append = True
                    elif 0 < length < 80 and link_density == 0 and SENTENCE_PERIOD_RE.search(content):
                        append = True

            if append:
                if dom.tag_name(sibling) not in ALTER_TO_DIV_EXCEPTIONS:
                    dom.set_node_tag(sibling, "div")
                dom.append_child(article_content, sibling)

        return article_content

    def _grab_article(self):
        while True:
            self._scores = {}
            self._data_tables = {}

            doc = dom.clone_node(self._doc)
            page = doc.find("body")
            if page is None:
                return None

            elements_to_score = self._collect_elements_to_score(doc)
            candidates = self._score_candidates(elements_to_score)
            top_candidates = candidates[:self.n_top_candidates]

            top_candidate, created = self._find_top_candidate(page, top_candidates)
            article_content = self._gather_siblings(top_candidate)
            self._prep_article(article_content)

            if created:
                first_child = dom.first_element_child(article_content)
                if first_child is not None and dom.tag_name(first_child) == "div":
                    dom.set_attribute(first_child, "id", "readability-page-1")
                    dom.set_attribute(first_child, "class", "page")
            else:
                div = dom.create_element("div")
                dom.set_attribute(div, "id", "readability-page-1")
                dom.set_attribute(div, "class", "page")
                for child in dom.child_nodes(article_content):
                    dom.append_child(div, child)
                dom.append_child(article_content, div)

            text_length = len(self._get_inner_text(article_content))
            if text_length >= self.char_threshold:
                return article_content

            self._attempts.append(_Attempt(article_content, text_length, bool(candidates)))
            if self._strip_unlikelys:
                self._strip_unlikelys = False
            elif self._use_weight_classes:
                self._use_weight_classes = False
            elif self._clean_conditionally_enabled:
                self._clean_conditionally_enabled = False
            else:
                break

        logger.debug(f"No attempt reached {self.char_threshold} characters, keeping the longest one")
        best = max(self._attempts, key=lambda attempt: attempt.text_length)
        # A page where no element ever held 25 characters of text has no article.
        if best.text_length == 0 or not any(attempt.found_candidates for attempt in self._attempts):
            return None
        return best.content

    def parse(self, markup, page_url):
        """
        Extract the article of a page.

        Parameters:
            markup (str | bytes | BeautifulSoup): The page. A parsed tree is
                copied, never modified.
            page_url (str): Absolute URL of the page, used to resolve links.

        Returns:
            Article: Title, byline, excerpt, cleaned HTML, text, image...

        Raises:
            InvalidURLError: `page_url` is not an absolute URL.
            NoReadableContentError: Nothing article-like was found. The
                exception carries the page metadata in `article`.
        """
        if not is_absolute_url(page_url):
            raise InvalidURLError(f"Cannot parse page with URL {page_url!r}")

        self._reset(page_url)
        if isinstance(markup, BeautifulSoup):
            self._doc = dom.clone_node(markup)
        else:
            self._doc = dom.parse_html(markup)
        dom.ensure_body(self._doc)

        if self.max_elems_to_parse > 0:
            n_tags = len(dom.get_elements_by_tag_name(self._doc, "*"))
            if n_tags > self.max_elems_to_parse:
                raise NoReadableContentError(f"Document too large: {n_tags} elements")

        self._unwrap_noscript_images(self._doc)
        self._remove_scripts(self._doc)
        self._prep_document()

        metadata = self._get_article_metadata()
        self._title = metadata["title"]

        article = Article(
            title=self._title,
            byline=metadata["byline"],
            excerpt=metadata["excerpt"],
            image=metadata["image"],
            favicon=metadata["favicon"],
            site_name=metadata["site_name"],
        )

        article_content = self._grab_article()
        if article_content is not None:
            self._post_process_content(article_content)

            if not article.excerpt:
                paragraphs = dom.get_elements_by_tag_name(article_content, "p")
                if paragraphs:
                    article.excerpt = dom.text_content(paragraphs[0]).strip()

            article.node = dom.first_element_child(article_content)
            article.raw_content = dom.inner_html(article_content)
            article.content = dom.text_content(article_content).strip()
            article.length = len(article.content)
            article.language = detect_language(article.content)
            article.min_read_time, article.max_read_time = estimate_read_time(
                article.length, article.language, len(dom.get_elements_by_tag_name(article_content, "img")))

        if not article.byline:
            article.byline = self._byline

        # Excerpts are displayed on a single line.
        article.excerpt = " ".join(article.excerpt.split())

        # Titles with undecodable bytes fall back to the page URL.
        if "\ufffd" in article.title:
            article.title = page_url
        article.byline = article.byline.replace("\ufffd", "")
        article.excerpt = article.excerpt.replace("\ufffd", "")

        if article_content is None:
            raise NoReadableContentError(f"No readable content found in {page_url}", article=article)

        logger.debug(f"Extracted {article.length} characters from {page_url}")
        return article

    def is_readable(self, markup):
        """
        Quick check of whether a page is worth running parse() on.

        Accumulates sqrt(length - 140) over visible paragraphs (and <div>
        using <br> as paragraph separators) and stops as soon as the total
        goes over 20.
        """
        doc = markup if isinstance(markup, BeautifulSoup) else dom.parse_html(markup)

        nodes = []
        seen = set()
        for node in dom.get_elements_by_tag_name(doc, "*"):
            name = dom.tag_name(node)
            if name in ("p", "pre"):
                target = node
            elif name == "br" and dom.tag_name(node.parent) == "div":
                target = node.parent
            else:
                continue
            if id(target) not in seen:
                seen.add(id(target))
                nodes.append(target)

        score = 0.0
        for node in nodes:
            if not self._is_probably_visible(node):
                continue
            match_string = dom.class_name(node) + " " + dom.node_id(node)
            if UNLIKELY_CANDIDATES_RE.search(match_string) and not MAYBE_CANDIDATE_RE.search(match_string):
                continue
            if dom.tag_name(node) == "p" and dom.has_ancestor_tag(node, "li", -1):
                continue

            length = len(dom.text_content(node).strip())
            if length < READABLE_MIN_LENGTH:
                continue
            score += math.sqrt(length - READABLE_MIN_LENGTH)
            if score > READABLE_SCORE:
                return True
        return False


def _span(value):
    try:
        span = int(value)
    except ValueError:
        return 1
    return span or 1


def from_html(markup, page_url, **options):
    """Shortcut for ReadabilityParser(**options).parse(markup, page_url)."""
    return ReadabilityParser(**options).parse(markup, page_url)


def is_readable(markup):
    return ReadabilityParser().is_readable(markup)
