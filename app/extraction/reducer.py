"""
Markup reduction: strip noise, locate the main content region and flatten
it into a lightweight markdown-like text form.
"""

from __future__ import annotations

import re
from collections.abc import Sequence

from bs4 import BeautifulSoup, Comment, Doctype, NavigableString, Tag

from app.extraction.types import ReducedContent

MAIN_CONTENT_SELECTORS: tuple[str, ...] = (
    "main",
    "article",
    "#content",
    "#main",
    ".content",
    ".main",
    ".post",
    ".article",
    ".product-detail",
    ".product-info",
    ".product-description",
)

NOISE_TAGS = ("script", "style", "noscript", "iframe", "template", "svg")
PAGE_CHROME_TAGS = ("header", "footer", "nav", "aside")
HIDDEN_STYLE_REGEX = re.compile(r"display\s*:\s*none|visibility\s*:\s*hidden", re.IGNORECASE)

CONTAINER_TAGS = frozenset(
    {
        "html",
        "body",
        "div",
        "section",
        "article",
        "main",
        "form",
        "fieldset",
        "figure",
        "dl",
        "blockquote",
        "details",
    }
)
PARAGRAPH_TAGS = frozenset({"p", "dt", "dd", "figcaption", "summary", "pre", "address", "legend"})
HEADING_TAGS = {f"h{level}": level for level in range(1, 7)}


class TextDensityLocator:
    """
    Pick the block with the most non-link text.

    Candidates are div/section/article blocks holding at least
    `min_text_length` characters, scored
    `text_length * (1 - link_penalty * link_text_ratio)`. Earlier blocks win ties.
    """

    def __init__(self, *, min_text_length: int = 100, link_penalty: float = 0.5) -> None:
        self.min_text_length = min_text_length
        self.link_penalty = link_penalty

    def locate(self, soup: BeautifulSoup) -> Tag | None:
        best: Tag | None = None
        best_score = 0.0
        for block in soup.find_all(["div", "section", "article"]):
            score = self.score(block)
            if score > best_score:
                best = block
                best_score = score
        return best

    def score(self, block: Tag) -> float:
        text = _clean_text(block.get_text(" ", strip=True))
        if len(text) < self.min_text_length:
            return 0.0
        link_length = sum(len(_clean_text(link.get_text(" ", strip=True))) for link in block.find_all("a"))
        link_ratio = min(1.0, link_length / len(text))
        return len(text) * (1 - self.link_penalty * link_ratio)


class ContentReducer:
    """
    Turn raw page markup into compact text suitable for chunked extraction.
    """

    def __init__(
        self,
        *,
        selectors: Sequence[str] = MAIN_CONTENT_SELECTORS,
        density_locator: TextDensityLocator | None = None,
        parser: str = "html.parser",
    ) -> None:
        self.selectors = tuple(selectors)
        self.density_locator = density_locator or TextDensityLocator()
        self.parser = parser

    def reduce(self, markup: str) -> ReducedContent:
        soup = BeautifulSoup(markup, self.parser)
        title = None
        if soup.title is not None:
            title = _clean_text(soup.title.get_text(" ", strip=True)) or None

        self.strip_noise(soup)
        node, locator = self.locate_main_content(soup)
        text = self.to_markdown(node)
        if not text:
            text = self.to_plain_text(node)
        return ReducedContent(text=text, title=title, locator=locator, source_length=len(markup))

    def strip_noise(self, soup: BeautifulSoup) -> None:
        for comment in soup.find_all(string=lambda value: isinstance(value, Comment)):
            comment.extract()
        for tag in soup.find_all(NOISE_TAGS):
            tag.extract()
        for link in soup.find_all("link"):
            if "stylesheet" in (link.get("rel") or []):
                link.extract()
        for tag in [tag for tag in soup.find_all(True) if _is_hidden(tag)]:
            tag.extract()

    def locate_main_content(self, soup: BeautifulSoup) -> tuple[Tag, str]:
        for tag in soup.find_all(PAGE_CHROME_TAGS):
            tag.extract()

        for selector in self.selectors:
            node = soup.select_one(selector)
            if node is not None and node.get_text(strip=True):
                return node, f"selector:{selector}"

        dense = self.density_locator.locate(soup)
        if dense is not None:
            return dense, "text_density"

        return (soup.body or soup), "body"

    def to_markdown(self, node: Tag) -> str:
        blocks = self._render_blocks(node)
        return _clean_markdown("\n\n".join(block for block in blocks if block))

    @staticmethod
    def to_plain_text(node: Tag) -> str:
        lines = [_clean_text(line) for line in node.get_text("\n").splitlines()]
        return "\n".join(line for line in lines if line)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render_blocks(self, node: Tag) -> list[str]:
        blocks: list[str] = []
        inline: list[str] = []

        def flush() -> None:
            text = _clean_text("".join(inline))
            if text:
                blocks.append(text)
            inline.clear()

        for child in node.children:
            if isinstance(child, (Comment, Doctype)):
                continue
            if isinstance(child, NavigableString):
                inline.append(str(child))
                continue
            if not isinstance(child, Tag):
                continue

            name = child.name
            if name in HEADING_TAGS:
                flush()
                text = self._render_inline(child)
                if text:
                    blocks.append(f"{'#' * HEADING_TAGS[name]} {text}")
            elif name in PARAGRAPH_TAGS:
                flush()
                text = self._render_inline(child)
                if text:
                    blocks.append(text)
            elif name in ("ul", "ol"):
                flush()
                blocks.append(self._render_list(child, ordered=name == "ol"))
            elif name == "table":
                flush()
                blocks.append(self._render_table(child))
            elif name in CONTAINER_TAGS:
                flush()
                blocks.extend(self._render_blocks(child))
            else:
                inline.append(self._render_inline(child, strip=False))
        flush()
        return blocks

    def _render_inline(self, node: Tag, *, strip: bool = True) -> str:
        parts: list[str] = []
        for child in node.children:
            if isinstance(child, (Comment, Doctype)):
                continue
            if isinstance(child, NavigableString):
                parts.append(str(child))
            elif isinstance(child, Tag):
                parts.append(self._render_inline_tag(child))
        text = "".join(parts)
        return _clean_text(text) if strip else re.sub(r"\s+", " ", text)

    def _render_inline_tag(self, tag: Tag) -> str:
        if tag.name == "a":
            text = self._render_inline(tag)
            href = tag.get("href")
            if href and text and not str(href).startswith(("javascript:", "#")):
                return f" [{text}]({href}) "
            return f" {text} "
        if tag.name == "img":
            alt = _clean_text(str(tag.get("alt") or ""))
            src = tag.get("src") or tag.get("data-src")
            return f" ![{alt}]({src}) " if src else f" {alt} "
        if tag.name == "br":
            return " "
        return self._render_inline(tag, strip=False)

    def _render_list(self, node: Tag, *, ordered: bool) -> str:
        lines: list[str] = []
        for position, item in enumerate(node.find_all("li", recursive=False), start=1):
            text = self._render_inline(item)
            if not text:
                continue
            prefix = f"{position}." if ordered else "-"
            lines.append(f"{prefix} {text}")
        return "\n".join(lines)

    def _render_table(self, node: Tag) -> str:
        rows: list[str] = []
        for row in node.find_all("tr"):
            cells = [self._render_inline(cell) for cell in row.find_all(["th", "td"])]
            if any(cells):
                rows.append("| " + " | ".join(cells) + " |")
        return "\n".join(rows)


def _is_hidden(tag: Tag) -> bool:
    if tag.attrs is None:
        return False
    if tag.has_attr("hidden"):
        return True
    if str(tag.get("aria-hidden", "")).lower() == "true":
        return True
    style = tag.get("style")
    return bool(style and HIDDEN_STYLE_REGEX.search(str(style)))


def _clean_text(value: str) -> str:
    return re.sub(r"\s+", " ", value).strip()


def _clean_markdown(value: str) -> str:
    lines = [line.rstrip() for line in value.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()
