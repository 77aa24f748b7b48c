"""Stasis static site generator.

This package builds static sites from Markdown and Jinja2 templates with
Incremental Static Generation (ISG): a cache manifest records what every page
was rendered from, so later builds only re-render pages whose content,
templates or TTL demand it.

The main entry point is the CLI module, which provides commands for building
sites and invalidating cached pages.
"""

__all__ = ["__version__"]
__version__ = "0.1.0"
