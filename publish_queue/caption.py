"""Caption composition for channel posts (Telegram HTML parse mode)."""

import html
import re

QUOTE_SENTINEL = "%quote%"

_URL_RE = re.compile(r"https?://\S+", re.IGNORECASE)
_SPACES_RE = re.compile(r"[ \t]{2,}")


def escape_markup(text: str) -> str:
    """Escape characters that carry meaning in the destination markup."""
    return html.escape(text, quote=False)


def format_quote(source_text: str) -> str:
    """
    Render source post text as a block quote.

    URLs are stripped from every line; lines left empty by that are dropped,
    blank separator lines are kept. Returns "" when nothing remains.
    """
    lines = []
    for raw_line in (source_text or "").splitlines():
        line = _URL_RE.sub("", raw_line)
        line = _SPACES_RE.sub(" ", line).strip()
        if not line and raw_line.strip():
            continue
        lines.append(escape_markup(line))

    while lines and not lines[0]:
        lines.pop(0)
    while lines and not lines[-1]:
        lines.pop()

    if not lines:
        return ""
    return "<blockquote>" + "\n".join(lines) + "</blockquote>"


def compose_caption(
    user_text: str,
    post_url: str,
    source_text: str = "",
    sentinel: str = QUOTE_SENTINEL,
) -> str:
    """
    Build the outgoing caption.

    The user text is escaped; each occurrence of ``sentinel`` is replaced with
    the quoted source text. A link back to the source post is always appended.
    """
    text = (user_text or "").strip()

    if sentinel and sentinel in text:
        quote = format_quote(source_text)
        body = quote.join(escape_markup(part) for part in text.split(sentinel)).strip()
    else:
        body = escape_markup(text)

    link = f'<a href="{html.escape(post_url, quote=True)}">src</a>'
    return f"{body}\n\n{link}" if body else link
