"""Body renderers for Stasis pages.

Key classes:
- MarkdownRenderer: Renders Markdown to HTML with heading anchors and
  Pygments highlighting.
- HTMLRenderer: Passes HTML bodies through unchanged.
- RendererRegistry: Picks a renderer by file type.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path

import mistune
from markupsafe import escape
from pygments import highlight
from pygments.formatters import HtmlFormatter
from pygments.lexers import get_lexer_by_name
from pygments.util import ClassNotFound

from .utils import is_html, is_markdown, strip_hashtags

MARKDOWN_PLUGINS = ["strikethrough", "footnotes", "table", "url"]


@dataclass
class Heading:
    """A heading collected while rendering, for building a table of contents.

    Attributes:
        id: Anchor ID of the heading.
        text: Heading text.
        level: Heading level (1-6).
    """

    id: str
    text: str
    level: int


def generate_heading_id(text: str) -> str:
    """Generate a URL-friendly anchor ID from heading text.

    Examples:
        >>> generate_heading_id("Hello, World!")
        'hello-world'
    """
    slug = text.lower().strip()
    slug = re.sub(r"[^\w\s-]", "", slug)
    slug = re.sub(r"[-\s]+", "-", slug)
    return slug.strip("-")


class _AnchoredRenderer(mistune.HTMLRenderer):
    """mistune renderer adding heading IDs and highlighted code blocks."""

    def __init__(self):
        super().__init__(escape=False)
        self.headings: list[Heading] = []
        self._heading_id_counts: dict[str, int] = {}

    def heading(self, text: str, level: int, **attrs) -> str:
        base_id = generate_heading_id(text)
        if base_id in self._heading_id_counts:
            self._heading_id_counts[base_id] += 1
            heading_id = f"{base_id}-{self._heading_id_counts[base_id]}"
        else:
            self._heading_id_counts[base_id] = 0
            heading_id = base_id

        self.headings.append(Heading(id=heading_id, text=text, level=level))
        return f'<h{level} id="{heading_id}">{text}</h{level}>\n'

    def block_code(self, code: str, info: str | None = None) -> str:
        if info:
            try:
                lexer = get_lexer_by_name(info.split()[0], stripall=True)
            except ClassNotFound:
                lexer = None
            if lexer is not None:
                return highlight(code, lexer, HtmlFormatter(cssclass="highlight"))
        lang_class = f' class="language-{escape(info)}"' if info else ""
        return f"<pre><code{lang_class}>{escape(code)}</code></pre>\n"


class MarkdownRenderer:
    """Renders Markdown bodies to HTML."""

    source_type = "markdown"

    def can_render(self, path: Path) -> bool:
        return is_markdown(path)

    def render(self, content: str) -> tuple[str, list[Heading]]:
        """Render Markdown content to HTML.

        Args:
            content: Markdown source, front matter already removed.

        Returns:
            Tuple of (rendered HTML, headings for the table of contents).
        """
        renderer = _AnchoredRenderer()
        markdown = mistune.create_markdown(renderer=renderer, plugins=MARKDOWN_PLUGINS)
        html = markdown(strip_hashtags(content))
        return html, renderer.headings


class HTMLRenderer:
    """Passes HTML bodies through unchanged."""

    source_type = "html"

    def can_render(self, path: Path) -> bool:
        return is_html(path)

    def render(self, content: str) -> tuple[str, list[Heading]]:
        return content, []


class RendererRegistry:
    """Registry of body renderers, checked in registration order."""

    def __init__(self):
        self._renderers: list = []
        self.register(MarkdownRenderer())
        self.register(HTMLRenderer())

    def register(self, renderer) -> None:
        """Add a renderer; it is tried after those already registered."""
        self._renderers.append(renderer)

    def get_renderer(self, path: Path):
        """Return the first renderer that can handle ``path``, or None."""
        for renderer in self._renderers:
            if renderer.can_render(path):
                return renderer
        return None


default_renderer_registry = RendererRegistry()
