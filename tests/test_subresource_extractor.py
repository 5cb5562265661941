"""
Tests for the HTML rewriting step of the archiver.
"""

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import html_walker as dom
from subresource_extractor import process_html

PAGE_URL = "https://ex.com/post/1"

PAGE = """<html><head>
<link rel="stylesheet" href="/css/site.css">
<style>body { background: url(bg.png) }</style>
<meta property="og:image" content="https://ex.com/og.jpg">
<meta name="description" content="https://ex.com/not-an-image">
<script src="app.js"></script>
</head><body>
<a href="/about">About</a>
<img src="pic.jpg" srcset="pic-2x.jpg 2x">
<iframe src="https://player.ex.com/v/1"></iframe>
<div style="background-image: url('/d.png')">styled</div>
<video poster="/poster.jpg"><source src="/movie.mp4"></video>
<object data="/doc.pdf"></object>
</body></html>"""


def test_process_html_collects_resources():
    html, resources = process_html(PAGE, PAGE_URL)
    names = {res.name for res in resources}
    assert names == {
        "https-ex.com-css-site.css",
        "https-ex.com-post-bg.png",
        "https-ex.com-og.jpg",
        "https-ex.com-post-app.js",
        "https-ex.com-post-pic.jpg",
        "https-ex.com-post-pic-2x.jpg",
        "https-player.ex.com-v-1",
        "https-ex.com-d.png",
        "https-ex.com-poster.jpg",
        "https-ex.com-movie.mp4",
        "https-ex.com-doc.pdf",
    }
    embeds = [res for res in resources if res.is_embed]
    assert [res.url for res in embeds] == ["https://player.ex.com/v/1"]
    assert all(res.parent == PAGE_URL for res in resources)


def test_process_html_rewrites_references():
    html, _ = process_html(PAGE, PAGE_URL)
    doc = dom.parse_html(html)

    link = dom.get_elements_by_tag_name(doc, "link")[0]
    assert dom.get_attribute(link, "href") == "https-ex.com-css-site.css"

    img = dom.get_elements_by_tag_name(doc, "img")[0]
    assert dom.get_attribute(img, "src") == "https-ex.com-post-pic.jpg"
    assert dom.get_attribute(img, "srcset") == "https-ex.com-post-pic-2x.jpg 2x"

    anchor = dom.get_elements_by_tag_name(doc, "a")[0]
    assert dom.get_attribute(anchor, "href") == "https://ex.com/about"

    metas = dom.get_elements_by_tag_name(doc, "meta")
    assert dom.get_attribute(metas[0], "content") == "https-ex.com-og.jpg"
    assert dom.get_attribute(metas[1], "content") == "https://ex.com/not-an-image"

    style = dom.get_elements_by_tag_name(doc, "style")[0]
    assert 'url("https-ex.com-post-bg.png")' in dom.text_content(style)


def test_process_html_modifies_parsed_tree_in_place():
    doc = dom.parse_html(PAGE)
    html, _ = process_html(doc, PAGE_URL)
    assert html == dom.outer_html(doc)
    assert dom.get_attribute(dom.get_elements_by_tag_name(doc, "iframe")[0], "src") == "https-player.ex.com-v-1"
