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
Stylesheet and script scanners.

Both scanners walk the source token by token, leave everything that is not a
URL untouched, and replace every URL they recognise with its archival name.
They return the rewritten text together with the Resources that must be
downloaded for the archive to be complete.
"""

import mimetypes
import re
from urllib.parse import urlsplit

from url_resolver import HTTP_SCHEME_RE, to_resource_url

CSS_TOKEN_RE = re.compile(
    r"(?P<comment>/\*.*?(?:\*/|$))"
    r"|(?P<url>(?<![\w-])url\(\s*(?:\"(?:[^\"\\]|\\.)*\"|'(?:[^'\\]|\\.)*'|[^)\"'\s]*)\s*\))"
    r"|(?P<import>@import\s+(?P<import_str>\"(?:[^\"\\\n]|\\.)*\"|'(?:[^'\\\n]|\\.)*'))"
    r"|(?P<string>\"(?:[^\"\\\n]|\\.)*\"?|'(?:[^'\\\n]|\\.)*'?)"
    r"|(?P<other>[^/\"'u@]+|.)",
    re.IGNORECASE | re.DOTALL,
)
STYLE_URL_RE = re.compile(r"^url\((.+)\)$", re.IGNORECASE | re.DOTALL)
JS_CONTENT_TYPE_RE = re.compile(r"(text|application)/(java|ecma)script", re.IGNORECASE)

# After one of these, a `/` starts a regular expression literal rather than a division
JS_REGEX_PRECEDERS = set("(,=:[!&|?{};+-*%<>~^")
JS_REGEX_KEYWORDS = {"return", "typeof", "instanceof", "in", "of", "new", "delete", "void", "throw", "case", "do", "else"}


def _strip_css_url(token):
    value = STYLE_URL_RE.sub(r"\1", token.strip())
    value = value.strip()
    return value.strip("'").strip('"')


def process_css(text, base_url):
    """
    Rewrite every url(...) token of a stylesheet.

    `@import "x.css"` is treated like `@import url("x.css")`.

    Parameters:
        text (str): Stylesheet source.
        base_url (str): URL the stylesheet was loaded from.

    Returns:
        tuple: (rewritten stylesheet, list of Resource).
    """
    output = []
    resources = []

    for match in CSS_TOKEN_RE.finditer(text):
        token = match.group(0)
        kind = match.lastgroup

        if kind == "url":
            res = to_resource_url(_strip_css_url(token), base_url)
            if res is None:
                output.append(token)
                continue
            output.append(f'url("{res.name}")')
            resources.append(res)
        elif match.group("import") is not None:
            raw = match.group("import_str")
            res = to_resource_url(raw.strip("'\""), base_url)
            if res is None:
                output.append(token)
                continue
            output.append(f'@import url("{res.name}")')
            resources.append(res)
        else:
            output.append(token)

    return "".join(output), resources


def _scan_quoted(text, start, quote):
    i = start + 1
    length = len(text)
    while i < length:
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == quote or (char == "\n" and quote != "`"):
            return i + 1
        i += 1
    return length


def _scan_regex(text, start):
    i = start + 1
    length = len(text)
    in_class = False
    while i < length:
        char = text[i]
        if char == "\\":
            i += 2
            continue
        if char == "\n":
            return i
        if char == "[":
            in_class = True
        elif char == "]":
            in_class = False
        elif char == "/" and not in_class:
            i += 1
            while i < length and (text[i].isalnum() or text[i] == "_"):
                i += 1
            return i
        i += 1
    return length


def tokenize_js(text):
    """
    Split script source into (kind, text) tokens.

    Kinds are `string`, `template`, `comment`, `regex` and `other`. The split is
    lossless: joining every token text gives back the input.
    """
    tokens = []
    i = 0
    length = len(text)
    last_significant = ""
    last_word = ""
    other_start = 0

    def flush(end):
        if end > other_start:
            tokens.append(("other", text[other_start:end]))

    while i < length:
        char = text[i]
        nxt = text[i + 1] if i + 1 < length else ""

        if char in "\"'`":
            flush(i)
            end = _scan_quoted(text, i, char)
            tokens.append(("template" if char == "`" else "string", text[i:end]))
            i = other_start = end
            last_significant, last_word = char, ""
            continue

        if char == "/" and nxt == "/":
            flush(i)
            end = text.find("\n", i)
            end = length if end == -1 else end
            tokens.append(("comment", text[i:end]))
            i = other_start = end
            continue

        if char == "/" and nxt == "*":
            flush(i)
            end = text.find("*/", i + 2)
            end = length if end == -1 else end + 2
            tokens.append(("comment", text[i:end]))
            i = other_start = end
            continue

        if char == "/" and (last_significant == "" or last_significant in JS_REGEX_PRECEDERS or last_word in JS_REGEX_KEYWORDS):
            flush(i)
            end = _scan_regex(text, i)
            tokens.append(("regex", text[i:end]))
            i = other_start = end
            last_significant, last_word = "/", ""
            continue

        if char.isalnum() or char in "_$":
            start = i
            while i < length and (text[i].isalnum() or text[i] in "_$"):
                i += 1
            last_word = text[start:i]
            last_significant = last_word[-1]
            continue

        if not char.isspace():
            last_significant, last_word = char, ""
        i += 1

    flush(length)
    return tokens


def _is_archivable_type(url):
    try:
        path = urlsplit(url).path
    except ValueError:
        return False
    content_type, _ = mimetypes.guess_type(path)
    if not content_type:
        return False
    return bool(JS_CONTENT_TYPE_RE.search(content_type)) or any(
        kind in content_type for kind in ("text/css", "image/", "audio/", "video/")
    )


def process_js(text, base_url):
    """
    Rewrite URL-looking string literals of a script.

    A string is treated as a URL when it starts with `url(`, or when it starts
    with `/` or http(s):// and its path extension maps to a script, stylesheet,
    image, audio or video type. Other strings are left alone.

    Returns:
        tuple: (rewritten script, list of Resource).
    """
    output = []
    resources = []

    for kind, token in tokenize_js(text):
        if kind != "string":
            output.append(token)
            continue

        value = token.strip().strip("'").strip('"')

        if value.startswith("url("):
            res = to_resource_url(_strip_css_url(value), base_url)
            if res is None:
                output.append(token)
                continue
            output.append(f"\"url('{res.name}')\"")
        elif value.startswith("/") or HTTP_SCHEME_RE.match(value):
            res = to_resource_url(value, base_url)
            if res is None or not _is_archivable_type(res.url):
                output.append(token)
                continue
            output.append(f'"{res.name}"')
        else:
            output.append(token)
            continue

        resources.append(res)

    return "".join(output), resources
