"""Tests for candidate extraction primitives."""

from src.discovery.extract import anchors_from_pairs, extract_anchors, extract_title, page_text

HTML = """
<html><head><title> Town of Example </title></head>
<body>
  <nav>
    <a href="/careers/?utm_source=nav">Careers</a>
    <a href="#main">Skip</a>
    <a href="mailto:hr@example.ca">Email HR</a>
    <a href="tel:5551234">Call</a>
    <a href="javascript:void(0)">Menu</a>
    <a href="https://other.ca/about#team">About</a>
  </nav>
  <script>var jobs = "ignored";</script>
  <p>Welcome to <b>Example</b>.</p>
</body></html>
"""


class TestExtractAnchors:
    def test_resolves_and_filters(self) -> None:
        anchors = extract_anchors(HTML, "https://example.ca/")
        assert [a.url for a in anchors] == [
            "https://example.ca/careers",
            "https://other.ca/about",
        ]
        assert anchors[0].text == "Careers"

    def test_predicate(self) -> None:
        anchors = extract_anchors(HTML, "https://example.ca/", lambda text, url: "career" in url)
        assert len(anchors) == 1

    def test_limit(self) -> None:
        html = "".join(f'<a href="/p{i}">p{i}</a>' for i in range(20))
        assert len(extract_anchors(html, "https://example.ca/", limit=5)) == 5

    def test_snippet_from_parent(self) -> None:
        anchors = extract_anchors('<li>Apply: <a href="/j">Jobs</a> today</li>', "https://e.ca/")
        assert anchors[0].snippet == "Apply: Jobs today"

    def test_empty_html(self) -> None:
        assert extract_anchors("", "https://e.ca/") == []


class TestAnchorsFromPairs:
    def test_same_contract(self) -> None:
        pairs = [("Jobs", "https://e.ca/jobs/"), ("", "mailto:x@e.ca"), ("Home", "/")]
        anchors = anchors_from_pairs(pairs, "https://e.ca/about")
        assert [a.url for a in anchors] == ["https://e.ca/jobs", "https://e.ca/"]


class TestPageText:
    def test_scripts_stripped(self) -> None:
        text = page_text(HTML)
        assert "ignored" not in text
        assert "Welcome to Example ." in text

    def test_title(self) -> None:
        assert extract_title(HTML) == "Town of Example"
        assert extract_title("<p>no title</p>") == ""
