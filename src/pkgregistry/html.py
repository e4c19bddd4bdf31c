from __future__ import annotations

import html
from collections.abc import Iterable

from pkgregistry_core.schemas import IndexEntry

PAGE_TEMPLATE = """<!DOCTYPE html>
<html>
  <head>
    <meta name="pypi:repository-version" content="1.0">
    <title>{title}</title>
  </head>
  <body>
    <h1>{title}</h1>
{links}  </body>
</html>
"""


def render_links(entries: Iterable[IndexEntry]) -> str:
    return "".join(
        f'    <a href="{html.escape(entry.link)}">{html.escape(entry.display_name)}</a><br/>\n'
        for entry in entries
    )


def render_simple_page(title: str, entries: Iterable[IndexEntry]) -> str:
    return PAGE_TEMPLATE.format(title=html.escape(title), links=render_links(entries))
