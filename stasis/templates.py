"""Template rendering engine for Stasis.

Pages are wrapped in the layout found by :func:`stasis.deps.discover_layout`,
so the template the engine renders is always the one the ISG dependency
tracker hashed. A page without a layout is written as its bare body.

Templates can include partials by path (``{% include "_partials/nav.jinja" %}``)
or by bare name from the ``_partials``, ``_layouts`` and ``_templates``
folders at the site root.

Key class:
- TemplateEngine: Renders pages into their layouts.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path
from typing import Any

import structlog
from jinja2 import Environment, FileSystemLoader, select_autoescape
from markupsafe import Markup, escape

from .content import Heading, Page
from .deps import discover_layout, is_collection_index_page
from .utils import join_root_url

log = structlog.get_logger()

__all__ = ["TemplateEngine", "render_toc"]


def render_toc(page: Page) -> Markup:
    """Render a page's headings as nested ``<ul>`` lists.

    Args:
        page: Page whose ``toc`` to render.

    Returns:
        Markup-safe HTML, empty when the page has no headings.
    """
    if not page.toc:
        return Markup("")
    return _render_toc_from_headings(page.toc)


def _render_toc_from_headings(headings: list[Heading]) -> Markup:
    html_parts: list[str] = []
    level_stack: list[int] = []

    for heading in headings:
        level = heading.level

        while level_stack and level_stack[-1] > level:
            level_stack.pop()
            html_parts.append("</li></ul>")

        if level_stack and level_stack[-1] == level:
            html_parts.append("</li>")
        else:
            html_parts.append("<ul>")
            level_stack.append(level)

        html_parts.append(f'<li><a href="#{escape(heading.id)}">{escape(heading.text)}</a>')

    while level_stack:
        level_stack.pop()
        html_parts.append("</li></ul>")

    return Markup("".join(html_parts))


class TemplateEngine:
    """Template rendering engine using Jinja2.

    Attributes:
        site_dir: Directory containing pages and templates.
        data: Global site data from ``data/*.yaml``.
        env: Jinja2 environment.
        pages: All pages of the site.
        tags: Tag name to pages mapping.
    """

    def __init__(self, site_dir: Path, data: dict[str, Any], root_url: str | None = None):
        self.site_dir = site_dir
        self.data = data
        self.root_url = root_url or ""
        self.env = Environment(
            loader=FileSystemLoader(
                [
                    site_dir,
                    site_dir / "_partials",
                    site_dir / "_layouts",
                    site_dir / "_templates",
                ]
            ),
            autoescape=select_autoescape(["html", "xml", "jinja"]),
        )
        self.pages: list[Page] = []
        self.tags: dict[str, list[Page]] = {}
        self._install_globals()

    def _install_globals(self) -> None:
        self.env.globals["data"] = self.data
        self.env.globals["pages"] = self.pages
        self.env.globals["tags"] = self.tags
        self.env.globals["url_for"] = self.url_for
        self.env.globals["render_toc"] = render_toc

    def update_collections(self, pages: Iterable[Page]) -> None:
        """Expose all pages and their tag index to templates.

        Args:
            pages: Every page of the site, rebuilt or not.
        """
        self.pages = list(pages)
        self.tags = {}
        for page in self.pages:
            for tag in page.tags:
                self.tags.setdefault(tag, []).append(page)
        self.env.globals["pages"] = self.pages
        self.env.globals["tags"] = self.tags

    def url_for(self, path: str) -> str:
        """Generate a URL for a site path, prefixed with ``root_url`` if set.

        Examples:
            >>> engine.url_for("about/")  # root_url = "https://example.com"
            'https://example.com/about/'
        """
        if path.startswith(("http://", "https://", "//")):
            return path
        path = path if path.startswith("/") else f"/{path}"
        return join_root_url(self.root_url, path) if self.root_url else path

    def layout_for(self, page: Page) -> str | None:
        """Return the layout template name for a page, or None."""
        relative_path = Path(page.path).absolute().relative_to(self.site_dir.absolute())
        return discover_layout(
            relative_path,
            {"src_dir": self.site_dir},
            page.frontmatter.get("layout"),
            is_collection_index_page(page),
        )

    def render_page(self, page: Page) -> str:
        """Render a page inside its layout.

        Args:
            page: Page to render.

        Returns:
            Full HTML document, or the page body when no layout applies.
        """
        layout = self.layout_for(page)
        if layout is None:
            log.debug("layout_missing", page=str(page.path))
            return page.content

        template = self.env.get_template(layout)
        return template.render(
            page_content=Markup(page.content),
            current_page=page,
            frontmatter=page.frontmatter,
        )

    def render_string(self, template: str, context: dict[str, Any]) -> str:
        """Render a template string with the given context."""
        return self.env.from_string(template).render(**context)
