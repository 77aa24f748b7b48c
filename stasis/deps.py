"""Template dependency tracking for incremental builds.

A page's output depends on its layout template and on every partial it can
reach. Partials live in underscore folders (``_partials/``, ``_components/``,
...) at any level between the page's directory and the site root.

Layout discovery:
1. An explicit ``layout`` in front matter (``layout: blog/post`` resolves to
   ``blog/post.jinja``).
2. Otherwise walk from the page's directory up to the site root. In each
   directory, collection index pages look for ``index.jinja`` first; every
   page then looks for ``layout.jinja``.

Key functions:
- track_template_dependencies: Layout plus partials for a page.
- discover_layout: Layout resolution only (shared with the template engine).
- find_partial_dependencies: Partial discovery only.
- resolve_template_path: Direct lookup of a named template.
"""

from __future__ import annotations

import os
import re
import stat
from pathlib import Path, PurePosixPath
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from .content import Page

log = structlog.get_logger()

TEMPLATE_EXTENSION = ".jinja"
LAYOUT_TEMPLATE = f"layout{TEMPLATE_EXTENSION}"
INDEX_TEMPLATE = f"index{TEMPLATE_EXTENSION}"

# {% include "x" %}, {% extends "x" %}, {% import "x" as y %}, {% from "x" import y %}
_TEMPLATE_REF_RE = re.compile(
    r"\{%-?\s*(?:include|extends|import|from)\s+[\"']([^\"']+)[\"']"
)
_TEMPLATE_SEARCH_DIRS = ("", "_partials", "_layouts", "_templates")


class CircularDependencyError(Exception):
    """Templates include or extend each other in a cycle.

    Attributes:
        dependency_chain: Absolute template paths forming the cycle, with the
            repeated template at both ends.
    """

    def __init__(self, dependency_chain: list[str]):
        self.dependency_chain = dependency_chain
        super().__init__(
            "Circular dependency detected in templates: " + " -> ".join(dependency_chain)
        )


def _src_dir(config: dict[str, Any]) -> Path | None:
    src_dir = config.get("src_dir")
    if not src_dir:
        return None
    return Path(src_dir).absolute()


def _is_file(path: Path) -> bool:
    """Existence check that only treats "not there" as False."""
    try:
        mode = os.stat(path).st_mode
    except (FileNotFoundError, NotADirectoryError):
        return False
    return stat.S_ISREG(mode)


def _search_dirs(relative_path: str | Path) -> list[str]:
    """Directories from the page's own up to the site root, as POSIX strings."""
    parts = PurePosixPath(Path(relative_path).as_posix()).parent.parts
    parts = tuple(p for p in parts if p not in ("", "."))
    dirs = ["/".join(parts[:i]) for i in range(len(parts), 0, -1)]
    dirs.append("")
    return dirs


def is_collection_index_page(page: Page) -> bool:
    """Whether a page lists a collection (the site root or an ``index`` page)."""
    return page.url == "/" or page.slug == "index" or page.url.endswith("/index")


def discover_layout(
    relative_path: str | Path,
    config: dict[str, Any],
    explicit_layout: str | None = None,
    is_index_page: bool = False,
) -> str | None:
    """Find the layout template for a page.

    Args:
        relative_path: Page source path relative to ``src_dir``.
        config: Site config with ``src_dir``.
        explicit_layout: Layout name from front matter, if any.
        is_index_page: Probe ``index.jinja`` before ``layout.jinja``.

    Returns:
        Layout path relative to ``src_dir`` (POSIX), or None if no layout applies.
    """
    src_dir = _src_dir(config)
    if src_dir is None:
        return None

    if isinstance(explicit_layout, str) and explicit_layout:
        name = explicit_layout
        if not name.endswith(TEMPLATE_EXTENSION):
            name = f"{name}{TEMPLATE_EXTENSION}"
        if _is_file(src_dir / name):
            return PurePosixPath(name).as_posix()

    for directory in _search_dirs(relative_path):
        base = src_dir / directory if directory else src_dir
        candidates = [INDEX_TEMPLATE, LAYOUT_TEMPLATE] if is_index_page else [LAYOUT_TEMPLATE]
        for candidate in candidates:
            if _is_file(base / candidate):
                return f"{directory}/{candidate}" if directory else candidate
    return None


def track_template_dependencies(page: Page, config: dict[str, Any]) -> list[str]:
    """List every template file a page's output depends on.

    Args:
        page: Page to inspect.
        config: Site config with ``src_dir``.

    Returns:
        Absolute paths: the layout (if any) followed by all reachable partials.

    Raises:
        CircularDependencyError: If the layout's include graph has a cycle.
    """
    src_dir = _src_dir(config)
    if src_dir is None:
        log.warning("dependency_tracking_skipped", reason="src_dir missing")
        return []

    relative_path = Path(page.path).absolute().relative_to(src_dir)
    deps: list[str] = []

    layout = discover_layout(
        relative_path,
        config,
        (page.frontmatter or {}).get("layout"),
        is_collection_index_page(page),
    )
    if layout:
        layout_path = str(src_dir / layout)
        deps.append(layout_path)
        _detect_circular_dependencies(layout_path, src_dir, set(), [])

    deps.extend(find_partial_dependencies(relative_path, config))
    return deps


def find_partial_dependencies(
    relative_source_path: str | Path, config: dict[str, Any]
) -> list[str]:
    """Find partial templates reachable from a page.

    Every directory from the page's own up to the site root is scanned for
    ``*.jinja`` files under underscore folders. A directory that cannot be
    scanned is logged and skipped.

    Args:
        relative_source_path: Page source path relative to ``src_dir``.
        config: Site config with ``src_dir``.

    Returns:
        Absolute partial paths, deepest directory first, sorted within a level.
    """
    src_dir = _src_dir(config)
    if src_dir is None:
        log.warning("partial_discovery_skipped", reason="src_dir missing")
        return []

    deps: list[str] = []
    for directory in _search_dirs(relative_source_path):
        search_dir = src_dir / directory if directory else src_dir
        try:
            found = _scan_partials(search_dir)
        except FileNotFoundError:
            continue
        except OSError as exc:
            log.warning("partial_scan_failed", directory=str(search_dir), error=str(exc))
            continue
        deps.extend(found)
    return deps


def _raise_walk_error(exc: OSError) -> None:
    raise exc


def _scan_partials(search_dir: Path) -> list[str]:
    """Sorted ``*.jinja`` files under the underscore folders of ``search_dir``.

    Raises:
        OSError: If a folder cannot be listed.
    """
    with os.scandir(search_dir) as entries:
        folders = [
            entry.path
            for entry in entries
            if entry.name.startswith("_") and entry.is_dir()
        ]
    found: list[str] = []
    for folder in folders:
        for root, _dirs, files in os.walk(folder, onerror=_raise_walk_error):
            found.extend(
                os.path.join(root, name)
                for name in files
                if name.endswith(TEMPLATE_EXTENSION)
            )
    return sorted(found)


def resolve_template_path(name: str, config: dict[str, Any]) -> str | None:
    """Resolve a template name to an absolute file path.

    Args:
        name: Template name without extension, relative to ``src_dir``.
        config: Site config with ``src_dir``.

    Returns:
        Absolute path if the template exists, otherwise None.

    Raises:
        OSError: If the existence check itself fails (e.g. permission denied).
    """
    src_dir = _src_dir(config)
    if src_dir is None:
        return None
    candidate = src_dir / f"{name}{TEMPLATE_EXTENSION}"
    return str(candidate) if _is_file(candidate) else None


def _resolve_template_ref(ref: str, src_dir: Path) -> str | None:
    for folder in _TEMPLATE_SEARCH_DIRS:
        base = src_dir / folder if folder else src_dir
        for name in (ref, f"{ref}{TEMPLATE_EXTENSION}"):
            candidate = base / name
            if candidate.is_file():
                return str(candidate)
    return None


def _detect_circular_dependencies(
    template_path: str, src_dir: Path, visited: set[str], chain: list[str]
) -> None:
    """Depth-first walk of template references, raising on a cycle."""
    if template_path in chain:
        raise CircularDependencyError([*chain, template_path])
    if template_path in visited:
        return
    visited.add(template_path)

    try:
        source = Path(template_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        return
    except (OSError, UnicodeDecodeError) as exc:
        log.warning("template_read_failed", template=template_path, error=str(exc))
        return

    chain.append(template_path)
    try:
        for ref in _TEMPLATE_REF_RE.findall(source):
            resolved = _resolve_template_ref(ref, src_dir)
            if resolved:
                _detect_circular_dependencies(resolved, src_dir, visited, chain)
    finally:
        chain.pop()
