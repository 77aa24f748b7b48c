"""Content loading for Stasis.

This module discovers source files under the site directory and turns them
into :class:`Page` objects. Markdown (``.md``) and plain HTML (``.html``)
files are pages; ``.jinja`` files are templates and never pages.

Files under underscore folders (``_partials/``, ``_layouts/``) are skipped.
Files whose name starts with ``_`` are drafts and only load on request.

Key classes:
- Page: A site page with its metadata and rendered body.
- FileContentLoader: Finds page source files.
- UrlDeriver: Maps source paths to URLs.
- DefaultPageBuilder: Builds a Page from a source file.
- ContentProcessor: Loads every page of a site.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any

from .extractors import CompositeMetadataExtractor, default_metadata_extractor
from .renderers import Heading, RendererRegistry, default_renderer_registry
from .utils import is_html, is_markdown, slugify, titleize

__all__ = [
    "ContentProcessor",
    "DefaultPageBuilder",
    "FileContentLoader",
    "Heading",
    "Page",
    "UrlDeriver",
]


@dataclass
class Page:
    """A site page with all its metadata and content.

    Attributes:
        title: Human-readable title.
        body: Source body with front matter removed; hashed for the ISG cache.
        content: Rendered HTML body.
        description: Short description, usually the first paragraph.
        url: URL path, e.g. ``/posts/hello/``.
        slug: URL-friendly slug.
        tags: Front matter tags followed by hashtags found in the body.
        draft: Whether this is a draft page.
        path: Absolute path to the source file.
        folder: Folder relative to the site directory (POSIX, ``""`` at root).
        filename: Name of the source file.
        source_type: ``"markdown"`` or ``"html"``.
        frontmatter: Parsed YAML front matter.
        toc: Headings for a table of contents.
        published_at: Date taken from a ``YYYY-MM-DD-`` filename prefix.
    """

    title: str
    body: str
    content: str
    description: str
    url: str
    slug: str
    tags: list[str]
    draft: bool
    path: Path
    folder: str
    filename: str
    source_type: str
    frontmatter: dict[str, Any] = field(default_factory=dict)
    toc: list[Heading] = field(default_factory=list)
    published_at: datetime | None = None


class FileContentLoader:
    """Discovers page source files in a site directory.

    Attributes:
        site_dir: Directory containing site content.
    """

    def __init__(self, site_dir: Path):
        self.site_dir = site_dir

    def iter_files(self, include_drafts: bool = False) -> list[Path]:
        """List page source files in a stable order.

        Args:
            include_drafts: Whether to include ``_``-prefixed draft files.

        Returns:
            Sorted list of page source paths.
        """
        files: list[Path] = []
        for path in sorted(self.site_dir.rglob("*")):
            if path.is_dir():
                continue
            rel = path.relative_to(self.site_dir)
            if any(part.startswith("_") for part in rel.parts[:-1]):
                continue
            if rel.name.startswith("_") and not include_drafts:
                continue
            if is_markdown(path) or is_html(path):
                files.append(path)
        return files


class UrlDeriver:
    """Derives page URLs from source paths."""

    def derive(self, rel: Path, slug: str) -> str:
        """Derive the URL for a page.

        Examples:
            >>> UrlDeriver().derive(Path("index.md"), "index")
            '/'
            >>> UrlDeriver().derive(Path("posts/2024-01-15-hello.md"), "hello")
            '/posts/hello/'
        """
        segments = [p for p in rel.parent.parts if p not in ("", ".")]
        url_parts = segments if slug == "index" else segments + [slug]
        path = "/".join(url_parts)
        return f"/{path}/" if path else "/"


class DefaultPageBuilder:
    """Builds Page objects from source files.

    Attributes:
        site_dir: Directory containing site content.
        renderer_registry: Registry of body renderers.
        metadata_extractor: Composite metadata extractor.
        url_deriver: URL deriver instance.
    """

    def __init__(
        self,
        site_dir: Path,
        renderer_registry: RendererRegistry | None = None,
        metadata_extractor: CompositeMetadataExtractor | None = None,
    ):
        self.site_dir = site_dir
        self.renderer_registry = renderer_registry or default_renderer_registry
        self.metadata_extractor = metadata_extractor or default_metadata_extractor
        self.url_deriver = UrlDeriver()

    def build(self, path: Path, draft: bool = False) -> Page:
        """Build a Page object from a source file.

        Args:
            path: Path to the source file.
            draft: Whether this is a draft page.

        Returns:
            Page object.
        """
        path = path.absolute()
        rel = path.relative_to(self.site_dir.absolute())
        folder = rel.parent.as_posix() if rel.parent != Path(".") else ""
        raw = path.read_text(encoding="utf-8")

        metadata = self.metadata_extractor.extract(raw, path)
        frontmatter = metadata.get("frontmatter", {})
        body = metadata.get("body", raw)

        renderer = self.renderer_registry.get_renderer(path)
        if renderer:
            source_type = renderer.source_type
            content, toc = renderer.render(body)
        else:
            source_type = "unknown"
            content, toc = body, []

        slug = slugify(path.stem)
        return Page(
            title=metadata.get("title", titleize(path.name)),
            body=body,
            content=content,
            description=metadata.get("description", ""),
            url=self.url_deriver.derive(rel, slug),
            slug=slug,
            tags=self._merge_tags(frontmatter.get("tags"), metadata.get("tags", [])),
            draft=draft,
            path=path,
            folder=folder,
            filename=path.name,
            source_type=source_type,
            frontmatter=frontmatter,
            toc=toc,
            published_at=metadata.get("published_at"),
        )

    def _merge_tags(self, declared: Any, found: list[str]) -> list[str]:
        if isinstance(declared, str):
            declared = [declared]
        tags: list[str] = []
        for tag in [*(declared if isinstance(declared, list) else []), *found]:
            if isinstance(tag, str) and tag not in tags:
                tags.append(tag)
        return tags


class ContentProcessor:
    """Loads every page of a site.

    Attributes:
        site_dir: Directory containing site content.
    """

    def __init__(
        self,
        site_dir: Path,
        content_loader: FileContentLoader | None = None,
        page_builder: DefaultPageBuilder | None = None,
    ):
        self.site_dir = site_dir
        self._content_loader = content_loader or FileContentLoader(site_dir)
        self._page_builder = page_builder or DefaultPageBuilder(site_dir)

    def load(self, include_drafts: bool = False) -> list[Page]:
        """Load all content files as pages.

        Args:
            include_drafts: Whether to include draft pages.

        Returns:
            Pages in source path order.
        """
        pages: list[Page] = []
        for path in self._content_loader.iter_files(include_drafts):
            draft = path.name.startswith("_")
            pages.append(self._page_builder.build(path, draft=draft))
        return pages
