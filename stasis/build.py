"""Site building functionality for Stasis.

This module builds a static site from source files with Incremental Static
Generation: pages whose inputs are unchanged and whose TTL has not elapsed
keep their previous output, everything else is re-rendered.

Build steps:
1. Load ``stasis.yaml`` and validate its ``isg`` block.
2. Take the build lock on the cache directory.
3. Load the cache manifest (or start an empty one).
4. For each page, ask the rebuild engine; render the page if needed and
   record a fresh cache entry.
5. Merge the new entries into the manifest and save it once.

Key functions:
- build_site: Build the entire site.
- load_config: Load site configuration from stasis.yaml.
- load_data: Load site data from YAML files in the data directory.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import structlog
import yaml
from jinja2 import TemplateSyntaxError

from .content import ContentProcessor, Page
from .lock import BuildLock
from .manifest import (
    CacheEntry,
    CacheManifest,
    create_empty_manifest,
    load_cache_manifest,
    save_cache_manifest,
)
from .rebuild import (
    create_cache_entry,
    output_path_for,
    should_rebuild_page,
    update_cache_entry,
)
from .templates import TemplateEngine
from .utils import ensure_clean_dir
from .validation import ISGConfig, validate_isg_config

log = structlog.get_logger()

CONFIG_FILENAME = "stasis.yaml"

DEFAULT_CONFIG: dict[str, Any] = {
    "src_dir": "site",
    "output_dir": "output",
    "cache_dir": ".stasis",
    "root_url": "",
    "isg": None,
}


class BuildError(Exception):
    """Error during site build with file context.

    Attributes:
        source_path: Path to the source file that caused the error.
        message: Human-readable error message.
        original_error: The original exception that was caught.
    """

    def __init__(
        self,
        source_path: Path,
        message: str,
        original_error: Exception | None = None,
    ):
        self.source_path = source_path
        self.message = message
        self.original_error = original_error
        super().__init__(f"{source_path}: {message}")


@dataclass
class BuildResult:
    """Result of a site build operation.

    Attributes:
        pages: All pages of the site.
        output_dir: Directory the site was built into.
        data: Global site data.
        rendered: Pages rendered in this build.
        cached: Pages whose previous output was kept.
    """

    pages: list[Page]
    output_dir: Path
    data: dict[str, Any]
    rendered: list[Page] = field(default_factory=list)
    cached: list[Page] = field(default_factory=list)

    @property
    def cache_hits(self) -> int:
        return len(self.cached)

    @property
    def cache_misses(self) -> int:
        return len(self.rendered)


def load_config(project_root: Path) -> dict[str, Any]:
    """Load site configuration from stasis.yaml.

    Args:
        project_root: Root directory of the project.

    Returns:
        Configuration values with defaults applied.
    """
    config_path = project_root / CONFIG_FILENAME
    config = DEFAULT_CONFIG.copy()
    if config_path.exists():
        with open(config_path, encoding="utf-8") as f:
            loaded = yaml.safe_load(f) or {}
            if isinstance(loaded, dict):
                config.update(loaded)
    return config


def load_data(project_root: Path) -> dict[str, Any]:
    """Load site data from YAML files in the data directory.

    ``data/site.yaml`` is merged at the top level; any other ``data/<name>.yaml``
    is available as ``data.<name>``.

    Args:
        project_root: Root directory of the project.

    Returns:
        Merged data from all YAML files.
    """
    data_dir = project_root / "data"
    data: dict[str, Any] = {}
    if not data_dir.exists():
        return data
    for path in sorted(data_dir.glob("*.yaml")):
        with open(path, encoding="utf-8") as f:
            payload = yaml.safe_load(f) or {}
        if not isinstance(payload, dict):
            continue
        if path.name == "site.yaml":
            data.update(payload)
        else:
            data[path.stem] = payload
    return data


def resolve_paths(project_root: Path, config: dict[str, Any]) -> dict[str, Any]:
    """Return a copy of ``config`` with directories made absolute."""
    resolved = dict(config)
    for key in ("src_dir", "output_dir", "cache_dir"):
        resolved[key] = str(project_root / str(config.get(key) or DEFAULT_CONFIG[key]))
    return resolved


def build_site(
    project_root: Path,
    include_drafts: bool = False,
    force: bool = False,
    clean: bool = False,
    now: datetime | None = None,
) -> BuildResult:
    """Build the entire static site.

    Args:
        project_root: Root directory of the project.
        include_drafts: Whether to include draft pages (starting with _).
        force: Re-render every page regardless of the cache.
        clean: Wipe the output directory first; implies ``force``.
        now: Build time; defaults to the current UTC time.

    Returns:
        BuildResult with all pages and which of them were rendered.

    Raises:
        ISGConfigurationError: If the ``isg`` config block is invalid.
        BuildError: If a page fails to render.
        BuildLockError: If another build holds the cache lock.
        ManifestSaveError: If the cache manifest cannot be written.
    """
    project_root = Path(project_root).absolute()
    config = load_config(project_root)
    validate_isg_config(config.get("isg"))
    isg_config = ISGConfig.from_dict(config.get("isg"))
    config = resolve_paths(project_root, config)
    config["isg"] = isg_config

    site_dir = Path(config["src_dir"])
    if not site_dir.exists():
        raise FileNotFoundError(f"Expected site directory at {site_dir}")
    output_dir = Path(config["output_dir"])
    cache_dir = Path(config["cache_dir"])
    now = now or datetime.now(timezone.utc)

    if clean:
        ensure_clean_dir(output_dir)
        force = True
    else:
        output_dir.mkdir(parents=True, exist_ok=True)

    data = load_data(project_root)
    root_url = str(config.get("root_url") or "")
    pages = ContentProcessor(site_dir).load(include_drafts=include_drafts)
    engine = TemplateEngine(site_dir, data, root_url=root_url)
    engine.update_collections(pages)
    result = BuildResult(pages=pages, output_dir=output_dir, data=data)

    if not isg_config.enabled:
        log.info("isg_disabled", pages=len(pages))
        for page in pages:
            _write_page(output_dir, page, _render(engine, page))
            result.rendered.append(page)
        return result

    with BuildLock(cache_dir):
        manifest = load_cache_manifest(cache_dir) or create_empty_manifest()
        produced: dict[str, CacheEntry] = {}
        for page in pages:
            key = output_path_for(page.url)
            existing = manifest.entries.get(key)
            if not (force or _needs_render(page, existing, output_dir, config, now)):
                log.debug("page_cached", url=page.url)
                result.cached.append(page)
                continue

            log.debug("page_rendering", url=page.url)
            _write_page(output_dir, page, _render(engine, page))
            result.rendered.append(page)
            if existing is None:
                produced[key] = create_cache_entry(page, config, now)
            else:
                produced[key] = update_cache_entry(existing, page, config, now)

        _merge_entries(manifest, produced)
        save_cache_manifest(cache_dir, manifest)

    log.info(
        "build_finished",
        pages=len(pages),
        cache_hits=result.cache_hits,
        cache_misses=result.cache_misses,
    )
    return result


def _needs_render(
    page: Page,
    existing: CacheEntry | None,
    output_dir: Path,
    config: dict[str, Any],
    now: datetime,
) -> bool:
    rebuild = should_rebuild_page(page, existing, config, now)
    if not rebuild and not _output_file(output_dir, page).exists():
        log.info("page_output_missing", url=page.url)
        return True
    return rebuild


def _merge_entries(manifest: CacheManifest, produced: dict[str, CacheEntry]) -> None:
    for key, entry in produced.items():
        manifest.entries[key] = entry


def _render(engine: TemplateEngine, page: Page) -> str:
    try:
        return engine.render_page(page)
    except TemplateSyntaxError as exc:
        raise BuildError(
            page.path,
            f"Template syntax error on line {exc.lineno}: {exc.message}",
            exc,
        ) from exc
    except Exception as exc:
        raise BuildError(page.path, _format_error_message(exc), exc) from exc


def _format_error_message(exc: Exception) -> str:
    """Format an exception into a user-friendly error message.

    Args:
        exc: The exception to format.

    Returns:
        A human-readable error message.
    """
    error_type = type(exc).__name__
    error_msg = str(exc)

    if error_type == "UndefinedError":
        return f"Undefined variable: {error_msg}"
    if error_type == "TemplateNotFound":
        return f"Template not found: {error_msg}"
    if error_type == "TypeError":
        return f"Type error: {error_msg}"
    if error_type == "AttributeError":
        return f"Attribute error: {error_msg}"

    return f"{error_type}: {error_msg}"


def _output_file(output_dir: Path, page: Page) -> Path:
    return output_dir / output_path_for(page.url).lstrip("/")


def _write_page(output_dir: Path, page: Page, rendered: str) -> None:
    """Write a rendered page to the output directory.

    Args:
        output_dir: Base output directory.
        page: Page being written.
        rendered: Rendered HTML content.
    """
    target = _output_file(output_dir, page)
    target.parent.mkdir(parents=True, exist_ok=True)
    with open(target, "w", encoding="utf-8") as f:
        f.write(rendered)
