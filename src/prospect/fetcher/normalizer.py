"""
HTML normalisation into plain text, lightweight markdown, links, images and
page metadata.

Both fetchers feed their markup through :func:`normalize_html`; the rendered
fetcher then overrides links and images with the ones computed from the live
DOM.

PDF bodies go through :func:`normalize_pdf` instead, which reads page text
and the document information dictionary with pypdf.
"""

from __future__ import annotations

import io
import re
from dataclasses import dataclass, field
from typing import Any, Iterable, List, Mapping, Optional

from bs4 import BeautifulSoup, Tag
from pypdf import PdfReader

from prospect.protocols import PageMetadata
from prospect.utils.urls import resolve_link

PARSER = "html.parser"

_WHITESPACE = re.compile(r"\s+")
_BLANK_LINES = re.compile(r"\n{3,}")

REMOVE_TAGS = ("script", "style", "noscript", "template")
MARKDOWN_BLOCKS = ("h1", "h2", "h3", "h4", "h5", "h6", "p", "li", "pre", "blockquote")

HTML_CONTENT_TYPES = ("text/html", "application/xhtml+xml")
PDF_CONTENT_TYPES = ("application/pdf", "application/x-pdf")
PDF_MAGIC = b"%PDF-"


@dataclass
class NormalizedPage:
    text: str = ""
    markdown: str = ""
    links: List[str] = field(default_factory=list)
    images: List[str] = field(default_factory=list)
    metadata: PageMetadata = field(default_factory=PageMetadata)


def is_html(content_type: str, body: str = "") -> bool:
    """Decide whether a response should be parsed as HTML."""
    content_type = (content_type or "").lower()
    if any(kind in content_type for kind in HTML_CONTENT_TYPES):
        return True
    if content_type:
        return False
    head = body.lstrip()[:512].lower()
    return head.startswith("<!doctype html") or "<html" in head


def collapse_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def dedupe(items: Iterable[Optional[str]]) -> List[str]:
    seen = set()
    ordered = []
    for item in items:
        if item and item not in seen:
            seen.add(item)
            ordered.append(item)
    return ordered


def _meta(soup: BeautifulSoup, *selectors: str) -> Optional[str]:
    for selector in selectors:
        tag = soup.select_one(selector)
        if tag is not None:
            content = tag.get("content")
            if isinstance(content, str) and content.strip():
                return content.strip()
    return None


def extract_metadata(soup: BeautifulSoup) -> PageMetadata:
    title = None
    if soup.title and soup.title.string:
        title = collapse_whitespace(soup.title.string)
    if not title:
        title = _meta(soup, 'meta[property="og:title"]', 'meta[name="twitter:title"]')
    if not title:
        h1 = soup.find("h1")
        if h1 is not None:
            title = collapse_whitespace(h1.get_text(" ")) or None

    language = None
    html_tag = soup.find("html")
    if isinstance(html_tag, Tag) and html_tag.get("lang"):
        language = str(html_tag["lang"]).strip() or None
    if not language:
        language = _meta(soup, 'meta[http-equiv="content-language" i]', 'meta[property="og:locale"]')

    keywords_raw = _meta(soup, 'meta[name="keywords"]')
    keywords = [kw.strip() for kw in keywords_raw.split(",") if kw.strip()] if keywords_raw else []

    return PageMetadata(
        title=title,
        description=_meta(soup, 'meta[name="description"]', 'meta[property="og:description"]'),
        author=_meta(soup, 'meta[name="author"]', 'meta[property="article:author"]'),
        language=language,
        published=_meta(soup, 'meta[property="article:published_time"]', 'meta[name="date"]'),
        keywords=keywords,
    )


def _base_url(soup: BeautifulSoup, page_url: str) -> str:
    base = soup.find("base", href=True)
    if isinstance(base, Tag):
        resolved = resolve_link(str(base["href"]), page_url)
        if resolved:
            return resolved
    return page_url


def extract_links(soup: BeautifulSoup, page_url: str) -> List[str]:
    base = _base_url(soup, page_url)
    return dedupe(resolve_link(str(a["href"]), base) for a in soup.find_all("a", href=True))


def extract_images(soup: BeautifulSoup, page_url: str) -> List[str]:
    base = _base_url(soup, page_url)
    return dedupe(resolve_link(str(img["src"]), base) for img in soup.find_all("img", src=True))


def html_to_markdown(soup: BeautifulSoup) -> str:
    """Render block-level content in document order as lightweight markdown."""
    lines: List[str] = []
    body = soup.body or soup
    for element in body.find_all(MARKDOWN_BLOCKS):
        # Nested blocks are rendered by their outermost block
        if element.find_parent(MARKDOWN_BLOCKS) is not None and element.name != "li":
            continue
        name = element.name
        if name == "pre":
            code = element.get_text().strip("\n")
            if code.strip():
                lines.extend(["```", code, "```", ""])
            continue
        text = collapse_whitespace(element.get_text(" "))
        if not text:
            continue
        if name.startswith("h") and len(name) == 2:
            lines.extend([f"{'#' * int(name[1])} {text}", ""])
        elif name == "li":
            parent = element.find_parent(["ol", "ul"])
            if parent is not None and parent.name == "ol":
                position = len(element.find_previous_siblings("li")) + 1
                lines.append(f"{position}. {text}")
            else:
                lines.append(f"- {text}")
        elif name == "blockquote":
            lines.extend([f"> {text}", ""])
        else:
            lines.extend([text, ""])
    return _BLANK_LINES.sub("\n\n", "\n".join(lines)).strip()


def normalize_html(html: str, page_url: str) -> NormalizedPage:
    """Parse ``html`` once and derive every normalised view of it."""
    soup = BeautifulSoup(html, PARSER)
    metadata = extract_metadata(soup)
    links = extract_links(soup, page_url)
    images = extract_images(soup, page_url)

    for tag in soup.find_all(REMOVE_TAGS):
        tag.decompose()

    body = soup.body or soup
    text = collapse_whitespace(body.get_text(" "))
    markdown = html_to_markdown(soup)

    return NormalizedPage(text=text, markdown=markdown, links=links, images=images, metadata=metadata)


def is_pdf(content_type: str, body: bytes = b"") -> bool:
    """Decide whether a response body is a PDF document."""
    content_type = (content_type or "").lower()
    if any(kind in content_type for kind in PDF_CONTENT_TYPES):
        return True
    return body[:1024].lstrip().startswith(PDF_MAGIC)


def _pdf_value(entries: Mapping[str, Any], key: str) -> Optional[str]:
    if key not in entries:
        return None
    text = collapse_whitespace(str(entries[key]))
    return text or None


def normalize_pdf(data: bytes, max_pages: Optional[int] = None) -> NormalizedPage:
    """Extract page text and document info from a PDF body.

    Title, author and language come from the document information
    dictionary; the catalog ``/Lang`` entry is used when the info carries no
    language. Pages beyond ``max_pages`` are not read.

    Raises:
        PyPdfError: the body is not a readable PDF.
    """
    reader = PdfReader(io.BytesIO(data))
    texts = []
    for index, pdf_page in enumerate(reader.pages):
        if max_pages is not None and index >= max_pages:
            break
        page_text = (pdf_page.extract_text() or "").strip()
        if page_text:
            texts.append(page_text)

    info = reader.metadata or {}
    language = _pdf_value(info, "/Language")
    if not language:
        language = _pdf_value(reader.trailer["/Root"], "/Lang")

    markdown = "\n\n".join(texts)
    return NormalizedPage(
        text=collapse_whitespace(" ".join(texts)),
        markdown=markdown,
        metadata=PageMetadata(
            title=_pdf_value(info, "/Title"),
            description=_pdf_value(info, "/Subject"),
            author=_pdf_value(info, "/Author"),
            language=language,
            keywords=[kw.strip() for kw in (_pdf_value(info, "/Keywords") or "").split(",") if kw.strip()],
        ),
    )


def normalize_document(body: str, content_type: str, page_url: str) -> NormalizedPage:
    """Normalise any response body; non-HTML bodies are kept verbatim."""
    if is_html(content_type, body):
        return normalize_html(body, page_url)
    return NormalizedPage(text=body.strip(), markdown=body.strip())
