"""HTML sanitization for stored article content."""

import bleach
from bs4 import BeautifulSoup

# Allowed HTML tags for sanitized content (safe formatting only)
ALLOWED_HTML_TAGS = [
    "b", "i", "em", "strong", "a", "p", "br", "ul", "ol", "li", "blockquote",
    "img", "h1", "h2", "h3", "h4", "code", "pre",
]
ALLOWED_HTML_ATTRIBUTES = ["href", "src", "alt", "title", "class", "target"]
ALLOWED_PROTOCOLS = ["http", "https", "mailto"]


def sanitize_html(html_content: str) -> str:
    """Strip everything but safe formatting tags from feed HTML.

    Disallowed tags are removed (their text is kept); script and style
    bodies are dropped entirely.
    """
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")
    for node in soup(["script", "style", "iframe", "object", "embed"]):
        node.decompose()

    return bleach.clean(
        str(soup),
        tags=ALLOWED_HTML_TAGS,
        attributes=ALLOWED_HTML_ATTRIBUTES,
        protocols=ALLOWED_PROTOCOLS,
        strip=True,
    )


def make_snippet(html_content: str, length: int = 150) -> str:
    """Plain-text preview: tag-stripped, whitespace-collapsed, truncated."""
    if not html_content:
        return ""
    text = " ".join(BeautifulSoup(html_content, "html.parser").get_text(" ").split())
    if len(text) <= length:
        return text
    return text[:length].rstrip() + "..."
