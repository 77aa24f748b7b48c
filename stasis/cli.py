"""Command-line interface for Stasis.

This module defines the CLI commands using the Click framework.

Commands:
- build: Build the site, re-rendering only what the ISG cache says is stale.
- invalidate: Drop cache entries matching a query, or the whole cache.
"""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import click

from . import __version__
from .logs import configure_logging


@click.group()
@click.version_option(version=__version__, prog_name="stasis")
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging")
def cli(verbose: bool):
    """Stasis static site generator."""
    configure_logging(verbose=verbose)


@cli.command()
@click.option("--drafts", is_flag=True, help="Include draft content")
@click.option("--force", is_flag=True, help="Re-render every page, ignoring the cache")
@click.option("--clean", is_flag=True, help="Wipe the output directory first")
def build(drafts: bool, force: bool, clean: bool):
    """Build the site into the output directory."""
    project_root = Path.cwd()
    from .build import BuildError, build_site
    from .deps import CircularDependencyError
    from .lock import BuildLockError
    from .manifest import ManifestSaveError
    from .validation import ISGConfigurationError

    try:
        result = build_site(project_root, include_drafts=drafts, force=force, clean=clean)
    except ISGConfigurationError as exc:
        click.echo(click.style("Invalid ISG configuration:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  Code: {exc.code.value}", fg="yellow"), err=True)
        click.echo(click.style(f"  Field: {exc.field}", fg="yellow"), err=True)
        click.echo(click.style(f"  Value: {exc.value!r}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    except BuildError as exc:
        rel_path = _relative(exc.source_path, project_root)
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  File: {rel_path}", fg="yellow"), err=True)
        click.echo(click.style(f"  Error: {exc.message}", fg="white"), err=True)
        raise SystemExit(1) from None
    except (
        BuildLockError,
        CircularDependencyError,
        ManifestSaveError,
        FileNotFoundError,
    ) as exc:
        click.echo(click.style("Build failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  Error: {exc}", fg="white"), err=True)
        raise SystemExit(1) from None

    click.echo(
        f"Built {len(result.pages)} pages into {result.output_dir} "
        f"({result.cache_misses} rendered, {result.cache_hits} cached)"
    )


@cli.command()
@click.argument("query", required=False, default=None)
def invalidate(query: str | None):
    """Invalidate cached pages.

    QUERY is a space-separated list of terms; an entry matching any term is
    dropped. Without a QUERY the whole cache is cleared.

    \b
    Terms:
      tag:blog          entries tagged "blog"
      path:/blog/       paths starting with /blog/
      glob:/blog/**     paths matching a glob
      age:3months       content younger than 3 months
      news              tag or path containing "news"
    """
    project_root = Path.cwd()
    from .build import DEFAULT_CONFIG, load_config
    from .invalidation import invalidate as run_invalidation
    from .lock import BuildLock, BuildLockError
    from .manifest import ManifestSaveError

    config = load_config(project_root)
    cache_dir = project_root / str(config.get("cache_dir") or DEFAULT_CONFIG["cache_dir"])
    try:
        with BuildLock(cache_dir):
            result = run_invalidation(cache_dir, query, now=datetime.now(timezone.utc))
    except (BuildLockError, ManifestSaveError) as exc:
        click.echo(click.style("Invalidation failed:", fg="red", bold=True), err=True)
        click.echo(click.style(f"  Error: {exc}", fg="white"), err=True)
        raise SystemExit(1) from None

    if result.cleared_all:
        click.echo(f"Cleared cache ({result.invalidated_count} entries)")
        return
    click.echo(f"Invalidated {result.invalidated_count} entries")
    for path in result.invalidated_paths:
        click.echo(f"  {path}")


def _relative(path: Path, root: Path) -> Path:
    try:
        return Path(path).relative_to(root)
    except ValueError:
        return Path(path)


def main():
    """Entry point for the CLI application."""
    cli()
