"""Search result rendering: ``[snippet](url)`` items separated by blank lines."""

from __future__ import annotations

import html
import re
from dataclasses import dataclass

NO_RESULTS = "No good results found."
ITEM_SEPARATOR = "\n\n"

_BOLD_TAG = re.compile(r"</?b>", re.IGNORECASE)
_ANY_TAG = re.compile(r"<[^>]+>")
_WHITESPACE = re.compile(r"\s+")
_ITEM = re.compile(r"^\[(?P<snippet>.*)\]\((?P<url>\S*)\)$")


@dataclass(frozen=True)
class SearchResult:
    """One search hit."""

    snippet: str
    url: str


def render_snippet(raw: str) -> str:
    """Turn a provider snippet into one line of markdown.

    ``<b>`` highlights become ``**`` emphasis, other tags and entities are
    dropped, and whitespace (newlines included) collapses to single spaces so
    a snippet never contains the item separator.
    """
    text = _BOLD_TAG.sub("**", raw or "")
    text = _ANY_TAG.sub("", text)
    text = html.unescape(text)
    return _WHITESPACE.sub(" ", text).strip()


def format_results(results: list[SearchResult]) -> str:
    """Render results as ``[snippet](url)`` items; empty list → sentinel text."""
    if not results:
        return NO_RESULTS
    return ITEM_SEPARATOR.join(f"[{r.snippet}]({r.url})" for r in results)


def parse_results(text: str) -> list[SearchResult]:
    """Inverse of ``format_results``. Lines that are not items are skipped."""
    results = []
    for block in text.strip().split(ITEM_SEPARATOR):
        match = _ITEM.match(block.strip())
        if match:
            results.append(SearchResult(match["snippet"], match["url"]))
    return results
