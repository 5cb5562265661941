"""
Tests for the stylesheet and script scanners.
"""

import os
import sys

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from asset_scanner import process_css, process_js, tokenize_js

CSS_URL = "https://ex.com/css/main.css"
PAGE_URL = "https://ex.com/page"


def test_process_css_rewrites_urls_and_imports():
    css = 'body { background: url("img/bg.png"); }\n@import "theme.css";\n.logo { background: url(/logo.svg) }'
    rewritten, resources = process_css(css, CSS_URL)

    assert 'url("https-ex.com-css-img-bg.png")' in rewritten
    assert '@import url("https-ex.com-css-theme.css")' in rewritten
    assert 'url("https-ex.com-logo.svg")' in rewritten
    assert [res.url for res in resources] == [
        "https://ex.com/css/img/bg.png",
        "https://ex.com/css/theme.css",
        "https://ex.com/logo.svg",
    ]
    assert all(res.parent == CSS_URL for res in resources)


def test_process_css_leaves_comments_and_data_uris():
    css = "/* url(ignored.png) */ a { background: url(data:image/png;base64,AAAA) }"
    rewritten, resources = process_css(css, CSS_URL)
    assert rewritten == css
    assert resources == []


def test_process_css_leaves_plain_text_unchanged():
    css = "h1 { font-family: 'Open Sans', sans-serif; content: \"url\"; }"
    rewritten, resources = process_css(css, CSS_URL)
    assert rewritten == css
    assert resources == []


def test_tokenize_js_is_lossless():
    source = 'var a = "x"; // comment\nvar r = /a\\/b/g; /* block */ var t = `tpl ${a}`; var d = 4 / 2;'
    tokens = tokenize_js(source)
    assert "".join(text for _, text in tokens) == source
    kinds = [kind for kind, _ in tokens]
    assert "comment" in kinds
    assert "regex" in kinds
    assert "template" in kinds


def test_process_js_rewrites_asset_strings():
    source = ('var logo = "/static/logo.png";\n'
              'var api = "/api/data";\n'
              "var lib = 'https://cdn.ex.com/app.js';\n"
              'var text = "hello/world";\n'
              'var bg = "url(\'/img/bg.png\')";')
    rewritten, resources = process_js(source, PAGE_URL)

    assert '"https-ex.com-static-logo.png"' in rewritten
    assert '"/api/data"' in rewritten
    assert '"https-cdn.ex.com-app.js"' in rewritten
    assert '"hello/world"' in rewritten
    assert "\"url('https-ex.com-img-bg.png')\"" in rewritten
    assert sorted(res.url for res in resources) == [
        "https://cdn.ex.com/app.js",
        "https://ex.com/img/bg.png",
        "https://ex.com/static/logo.png",
    ]


def test_process_js_ignores_regex_literals():
    source = 'var r = /"\\/static\\/x.png"/g;'
    rewritten, resources = process_js(source, PAGE_URL)
    assert rewritten == source
    assert resources == []
