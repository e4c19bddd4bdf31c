"""Command-line and HTML consumers of the pkgregistry core."""

from .html import render_links, render_simple_page

__all__ = ["render_links", "render_simple_page"]
