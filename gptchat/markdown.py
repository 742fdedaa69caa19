"""Markdown to HTML rendering for assistant replies."""

from __future__ import annotations

from markdown_it import MarkdownIt

_RENDERER: MarkdownIt | None = None


def _build_renderer() -> MarkdownIt:
    global _RENDERER
    if _RENDERER is None:
        renderer = MarkdownIt("commonmark", {"html": False, "typographer": False})
        renderer.enable("table")
        renderer.enable("strikethrough")
        _RENDERER = renderer
    return _RENDERER


def render_markdown(text: str) -> str:
    """Render *text* as HTML.  Partial markdown is fine; it renders as far as it goes."""
    if not text:
        return ""
    return _build_renderer().render(text)
