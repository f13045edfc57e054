"""Minimal markdown to HTML conversion for assistant replies.

Supports fenced code blocks, ``-``/``*`` and numbered lists, paragraphs, and
the inline forms ``**bold**``, `` `code` `` and ``[label](https://...)``.
Everything else is emitted as escaped text, so rendering never fails.
"""

import html
import re

FENCE = "```"

_BULLET = re.compile(r"^\s*[-*]\s+(.*)$")
_ORDERED = re.compile(r"^\s*\d+\.\s+(.*)$")
_BOLD = re.compile(r"\*\*(.+?)\*\*")
_CODE_SPAN = re.compile(r"`([^`]+)`")
_LINK = re.compile(r"\[([^\]]+)\]\((https?://[^\s)\ue000\ue001]+)\)")
_LANGUAGE = re.compile(r"^[A-Za-z0-9_+#.-]+$")
_SLOT_OPEN = "\ue000"
_SLOT_CLOSE = "\ue001"
_SLOT = re.compile(f"{_SLOT_OPEN}(\\d+){_SLOT_CLOSE}")


def escape(text: str) -> str:
    return html.escape(text, quote=True)


def _stash(store: list[str], html_fragment: str) -> str:
    store.append(html_fragment)
    return f"{_SLOT_OPEN}{len(store) - 1}{_SLOT_CLOSE}"


def _unstash(text: str, store: list[str]) -> str:
    # a link label may itself hold a code span slot
    for _ in range(2):
        text = _SLOT.sub(lambda m: store[int(m.group(1))], text)
    return text


def render_inline(text: str) -> str:
    """Escape ``text`` and apply bold, inline code and links.

    Code spans and links are swapped for opaque slots before the bold pass, so
    their content is never bold-processed while ``**...**`` may still wrap them.
    """
    text = text.replace(_SLOT_OPEN, "").replace(_SLOT_CLOSE, "")
    store: list[str] = []

    pieces = _CODE_SPAN.split(text)
    for idx in range(1, len(pieces), 2):
        pieces[idx] = _stash(store, f"<code>{escape(pieces[idx])}</code>")
    escaped = "".join(p if idx % 2 else escape(p) for idx, p in enumerate(pieces))

    escaped = _LINK.sub(
        lambda m: _stash(
            store,
            f'<a href="{m.group(2)}" target="_blank" rel="noopener noreferrer">{m.group(1)}</a>',
        ),
        escaped,
    )
    escaped = _BOLD.sub(r"<strong>\1</strong>", escaped)
    return _unstash(escaped, store)


def _render_code(segment: str) -> str:
    language = ""
    first, sep, rest = segment.partition("\n")
    if sep and _LANGUAGE.match(first):
        language, segment = first, rest

    lines = segment.split("\n")
    while lines and not lines[0].strip():
        lines.pop(0)
    while lines and not lines[-1].strip():
        lines.pop()
    body = escape("\n".join(lines))

    if language:
        return f'<pre><code class="language-{escape(language)}">{body}</code></pre>'
    return f"<pre><code>{body}</code></pre>"


def _render_prose(segment: str) -> list[str]:
    blocks: list[str] = []
    mode: str | None = None
    items: list[str] = []

    def flush() -> None:
        nonlocal mode, items
        if mode and items:
            body = "".join(f"<li>{item}</li>" for item in items)
            blocks.append(f"<{mode}>{body}</{mode}>")
        mode = None
        items = []

    for line in segment.splitlines():
        bullet = _BULLET.match(line)
        ordered = None if bullet else _ORDERED.match(line)
        if bullet or ordered:
            kind = "ul" if bullet else "ol"
            if mode != kind:
                flush()
                mode = kind
            items.append(render_inline((bullet or ordered).group(1).strip()))
        elif not line.strip():
            flush()
        else:
            flush()
            blocks.append(f"<p>{render_inline(line.strip())}</p>")

    flush()
    return blocks


def render(text: str) -> str:
    """Render markdown ``text`` as HTML. Empty input gives an empty string."""
    if not text:
        return ""
    blocks: list[str] = []
    for idx, segment in enumerate(text.split(FENCE)):
        if idx % 2:
            blocks.append(_render_code(segment))
        else:
            blocks.extend(_render_prose(segment))
    return "\n".join(blocks)
