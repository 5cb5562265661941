"""
Tests for article extraction.
"""

import os
import sys

import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

import html_walker as dom
from errors import InvalidURLError, NoReadableContentError
from readability_engine import ReadabilityParser, from_html, is_readable

SENTENCE = ("Widgets are small, useful devices that people use every day, and they come in many "
            "shapes, sizes and colors. ")
PARAGRAPH = SENTENCE * 4

ARTICLE_HTML = f"""
<html>
<head>
    <title>Greatest Widgets Ever | Acme Corp</title>
    <link rel="icon" type="image/png" sizes="32x32" href="/favicon-32.png">
    <link rel="icon" type="image/png" sizes="192x192" href="/favicon-192.png">
</head>
<body>
    <div class="sidebar"><a href="/">Home</a> <a href="/shop">Shop</a></div>
    <article>
        <p class="byline">By Jane Doe</p>
        <p>{PARAGRAPH}</p>
        <p>{PARAGRAPH}</p>
        <p>{PARAGRAPH}</p>
        <p><img src="/images/widget.jpg" alt="A widget"></p>
        <p>{PARAGRAPH}</p>
    </article>
    <div class="comments">Nice post!</div>
    <footer>Copyright Acme Corp</footer>
</body>
</html>
"""

PAGE_URL = "https://acme.example/blog/widgets"


@pytest.fixture
def article():
    return from_html(ARTICLE_HTML, PAGE_URL)


def test_title_drops_site_name(article):
    assert article.title == "Greatest Widgets Ever"


def test_content_keeps_paragraphs_and_drops_boilerplate(article):
    assert SENTENCE.strip() in article.content
    assert "Copyright" not in article.content
    assert "Nice post" not in article.content
    assert article.length == len(article.content)


def test_raw_content_is_wrapped_page(article):
    assert 'id="readability-page-1"' in article.raw_content
    assert 'class="page"' in article.raw_content
    assert 'src="https://acme.example/images/widget.jpg"' in article.raw_content


def test_metadata(article):
    assert "Jane Doe" in article.byline
    assert article.excerpt.startswith("Widgets are small")
    assert article.favicon == "https://acme.example/favicon-192.png"
    assert article.language == "eng"
    assert 0 < article.min_read_time <= article.max_read_time


def test_meta_tags_win_over_document(article):
    html = ARTICLE_HTML.replace(
        "<head>",
        '<head><meta property="og:title" content="Widgets &amp; More">'
        '<meta property="og:image" content="/cover.jpg">'
        '<meta name="description" content="All about widgets.">',
    )
    article = from_html(html, PAGE_URL)
    assert article.title == "Widgets & More"
    assert article.image == "https://acme.example/cover.jpg"
    assert article.excerpt == "All about widgets."


def test_short_page_has_no_readable_content():
    with pytest.raises(NoReadableContentError) as excinfo:
        from_html("<html><head></head><body><p>short.</p></body></html>", PAGE_URL)
    assert excinfo.value.article is not None


def test_invalid_page_url():
    with pytest.raises(InvalidURLError):
        from_html(ARTICLE_HTML, "not a url")


def test_replacement_characters_in_title_fall_back_to_url():
    html = ARTICLE_HTML.replace("Greatest Widgets Ever | Acme Corp", "Gr��test Widgets Ever")
    article = from_html(html, PAGE_URL)
    assert article.title == PAGE_URL


def test_parse_does_not_modify_parsed_tree():
    doc = dom.parse_html(ARTICLE_HTML)
    before = dom.outer_html(doc)
    ReadabilityParser().parse(doc, PAGE_URL)
    assert dom.outer_html(doc) == before


def test_parse_is_deterministic():
    first = from_html(ARTICLE_HTML, PAGE_URL)
    second = from_html(ARTICLE_HTML, PAGE_URL)
    assert first.raw_content == second.raw_content
    assert first.title == second.title


def test_is_readable():
    assert is_readable(ARTICLE_HTML)
    assert not is_readable("<html><body><p>short.</p></body></html>")
    hidden = f'<html><body><p style="display:none">{PARAGRAPH}</p><p hidden>{PARAGRAPH}</p></body></html>'
    assert not is_readable(hidden)


def test_max_elems_to_parse():
    with pytest.raises(NoReadableContentError):
        ReadabilityParser(max_elems_to_parse=3).parse(ARTICLE_HTML, PAGE_URL)


def test_page_without_head_is_extracted():
    html = f"<html><body><article><p>{PARAGRAPH}</p><p>{PARAGRAPH}</p></article></body></html>"
    article = from_html(html, PAGE_URL)
    assert SENTENCE.strip() in article.content


# Retry ladder

def test_retry_relaxes_unlikely_stripping_then_class_weights():
    html = (f"<html><head></head><body><div class=\"sidebar\">"
            f"<p>{PARAGRAPH}</p><p>{PARAGRAPH}</p><p>{PARAGRAPH}</p></div></body></html>")
    parser = ReadabilityParser()
    article = parser.parse(html, PAGE_URL)

    assert SENTENCE.strip() in article.content
    assert len(parser._attempts) == 2
    assert not parser._strip_unlikelys
    assert not parser._use_weight_classes
    assert parser._clean_conditionally_enabled


def test_longest_attempt_is_kept_when_all_attempts_are_short():
    html = f"<html><head></head><body><article><p>{SENTENCE * 2}</p></article></body></html>"
    parser = ReadabilityParser()
    article = parser.parse(html, PAGE_URL)

    assert len(parser._attempts) == 4
    assert not parser._strip_unlikelys
    assert not parser._use_weight_classes
    assert not parser._clean_conditionally_enabled
    assert SENTENCE.strip() in article.content
    assert 0 < article.length < parser.char_threshold


# Conditional cleaning

def first(markup, tag="div"):
    return dom.parse_html(markup).find(tag)


def test_negative_class_weight_is_cleaned():
    node = first(f'<div class="sidebar"><p>{PARAGRAPH}</p></div>')
    assert ReadabilityParser()._should_clean_conditionally(node, "div")


def test_many_commas_protect_link_heavy_node():
    parser = ReadabilityParser()
    linky = first('<div><a href="/a">one, two, three links</a> and more text here</div>')
    assert parser._should_clean_conditionally(linky, "div")

    commas = first('<div><a href="/a">one, two, three, four, five, six, seven, eight, nine, ten, eleven</a></div>')
    assert not parser._should_clean_conditionally(commas, "div")


def test_images_without_text_are_cleaned_outside_figures():
    parser = ReadabilityParser()
    gallery = '<div><img src="a.jpg"><img src="b.jpg"><img src="c.jpg"><p>A caption that is long enough.</p></div>'
    assert parser._should_clean_conditionally(first(gallery), "div")
    assert not parser._should_clean_conditionally(first(f"<figure>{gallery}</figure>"), "div")


def test_video_embeds_are_kept():
    parser = ReadabilityParser()
    video = first('<div><iframe src="https://www.youtube.com/embed/xyz"></iframe></div>')
    other = first('<div><iframe src="https://ads.example.com/frame"></iframe></div>')
    assert not parser._should_clean_conditionally(video, "div")
    assert parser._should_clean_conditionally(other, "div")

    doc = dom.parse_html('<div><iframe src="https://player.vimeo.com/video/1"></iframe>'
                         '<iframe src="https://ads.example.com/frame"></iframe></div>')
    parser._clean(doc, "iframe")
    frames = dom.get_elements_by_tag_name(doc, "iframe")
    assert [dom.get_attribute(frame, "src") for frame in frames] == ["https://player.vimeo.com/video/1"]


def test_data_tables_are_marked():
    doc = dom.parse_html(
        '<table id="layout" role="presentation"><tr><td>a</td></tr></table>'
        '<table id="summary" summary="Prices"><tr><td>a</td></tr></table>'
        '<table id="header"><tr><th>Head</th></tr><tr><td>a</td></tr></table>'
        '<table id="nested"><tr><td><table id="inner"><tr><td>x</td></tr></table></td></tr></table>'
        '<table id="long">' + "<tr><td>r</td></tr>" * 10 + '</table>'
        '<table id="wide"><tr>' + "<td>c</td>" * 5 + '</tr></table>'
    )
    parser = ReadabilityParser()
    parser._mark_data_tables(doc)

    marks = {table_id: parser._is_data_table(doc.find(id=table_id))
             for table_id in ("layout", "summary", "header", "nested", "inner", "long", "wide")}
    assert marks == {"layout": False, "summary": True, "header": True, "nested": False,
                     "inner": False, "long": True, "wide": True}
    assert not parser._should_clean_conditionally(doc.find(id="long"), "table")


# Article cleanup

def prepared(markup):
    parser = ReadabilityParser()
    parser._reset(PAGE_URL)
    content = first(f"<div>{markup}</div>")
    parser._prep_article(content)
    return content


def test_single_cell_table_with_phrasing_content_becomes_paragraph():
    content = prepared("<table><tr><td>This cell holds a sentence long enough to stay <b>bold</b></td></tr></table>")
    assert content.find("table") is None
    kids = dom.children(content)
    assert [dom.tag_name(kid) for kid in kids] == ["p"]
    assert dom.text_content(kids[0]) == "This cell holds a sentence long enough to stay bold"


def test_single_cell_table_with_blocks_becomes_div():
    content = prepared("<table><tr><td><div>This cell holds a block of text long enough to stay</div></td></tr></table>")
    assert content.find("table") is None
    kids = dom.children(content)
    assert [dom.tag_name(kid) for kid in kids] == ["div"]
    assert dom.tag_name(dom.first_element_child(kids[0])) == "div"


# Document preparation

def prepared_document(markup):
    parser = ReadabilityParser()
    parser._reset(PAGE_URL)
    parser._doc = dom.parse_html(markup)
    parser._prep_document()
    return parser._doc


def test_br_runs_become_paragraphs():
    doc = prepared_document(
        "<html><body><div>First line<br><br>Second part<br>still second<br><br>Third</div></body></html>")
    div = doc.find("div")
    assert [dom.text_content(p) for p in div.find_all("p")] == ["Second partstill second", "Third"]
    assert len(div.find_all("br")) == 1
    assert dom.text_content(div).startswith("First line")


def test_paragraph_holding_br_run_becomes_div():
    doc = prepared_document("<html><body><p>Intro<br><br>Inner text</p></body></html>")
    outer = dom.children(doc.find("body"))[0]
    assert dom.tag_name(outer) == "div"
    assert dom.text_content(outer.find("p")) == "Inner text"


def test_font_becomes_span():
    doc = prepared_document('<html><body><p><font color="red">Red</font> text</p></body></html>')
    assert doc.find("font") is None
    assert dom.text_content(doc.find("span")) == "Red"


def test_noscript_image_replaces_placeholder():
    parser = ReadabilityParser()
    doc = dom.parse_html('<p><img src="data:image/gif;base64,R0lGOD">'
                         '<noscript><img src="https://ex.com/real.jpg"></noscript></p>')
    parser._unwrap_noscript_images(doc)
    parser._remove_scripts(doc)

    images = dom.get_elements_by_tag_name(doc, "img")
    assert len(images) == 1
    assert dom.get_attribute(images[0], "src") == "https://ex.com/real.jpg"
    assert dom.get_attribute(images[0], "data-old-src") == "data:image/gif;base64,R0lGOD"


# Titles

def title_of(markup):
    parser = ReadabilityParser()
    parser._reset(PAGE_URL)
    parser._doc = dom.parse_html(markup)
    return parser._get_article_title()


def test_colon_title_matching_heading_is_kept():
    title = "<title>Acme: How to build widgets fast</title>"
    assert title_of(f"<html><head>{title}</head><body><h1>Acme: How to build widgets fast</h1></body></html>") \
        == "Acme: How to build widgets fast"
    assert title_of(f"<html><head>{title}</head><body></body></html>") == "How to build widgets fast"


def test_colon_title_falls_back_to_text_after_first_colon():
    html = "<html><head><title>Site: The best widgets money can buy: 2024</title></head></html>"
    assert title_of(html) == "The best widgets money can buy: 2024"


def test_colon_title_with_long_prefix_is_kept():
    html = "<html><head><title>The ten very best widget makers in town: a review of tools</title></head></html>"
    assert title_of(html) == "The ten very best widget makers in town: a review of tools"


# Siblings

def test_siblings_joining_the_top_candidate():
    doc = dom.parse_html(
        '<div id="parent"><div id="top">Main text</div>'
        f'<p>{SENTENCE}</p>'
        '<p>Short ending sentence.</p>'
        '<p>No period here</p>'
        '<p><a href="/x">Link text.</a></p></div>'
    )
    parser = ReadabilityParser()
    top = doc.find(id="top")
    parser._set_score(top, 50)

    content = parser._gather_siblings(top)
    texts = [dom.text_content(node).strip() for node in dom.children(content)]
    assert texts == ["Main text", SENTENCE.strip(), "Short ending sentence."]
