"""Best-effort decoders for free-form hosted tool output.

Hosted tools are not contractually bound to return structured data. Each
decoder either returns a structured payload or None; decode_text() walks the
chain and falls back to an opaque ``{"raw": text}`` wrapper, so decoding
never raises.
"""
import html
import json
import logging
import re
from typing import Any, Callable, Optional

from models.errors import ToolErrorKind

logger = logging.getLogger(__name__)

Decoder = Callable[[str], Optional[Any]]

TAG_PATTERN = re.compile(r"<[^>]*>")
BLANK_LINE = re.compile(r"\n[ \t]*\n")

LABELS = {
    "Title: ": "title",
    "Description: ": "description",
    "URL: ": "url",
}


def clean_html(text: str) -> str:
    """Strip tags and decode entities from a snippet."""

    return html.unescape(TAG_PATTERN.sub("", text)).strip()


def decode_json(text: str) -> Optional[Any]:
    """Strict JSON decode. None if the text is not a JSON document."""

    stripped = text.strip()
    if not stripped or stripped[0] not in "{[":
        return None
    try:
        return json.loads(stripped)
    except json.JSONDecodeError:
        return None


def decode_labeled_blocks(text: str) -> Optional[dict]:
    """
    Decode search output made of blank-line separated labeled blocks.

    Format:
        Title: Example
        Description: <strong>Snippet</strong> text
        URL: https://example.com

    Returns:
        {"results": [{title, description, url}, ...], "total": n}, or None if
        no block carried both a title and a URL
    """
    results = []
    for block in BLANK_LINE.split(text.replace("\r\n", "\n")):
        if not block.strip():
            continue

        entry = {"title": "", "description": "", "url": ""}
        for line in block.split("\n"):
            for label, key in LABELS.items():
                if line.startswith(label):
                    value = line[len(label):].strip()
                    entry[key] = clean_html(value) if key == "description" else value
                    break

        if entry["title"] and entry["url"]:
            results.append(entry)

    if not results:
        return None
    return {"results": results, "total": len(results)}


DEFAULT_DECODERS: tuple[Decoder, ...] = (decode_json, decode_labeled_blocks)


def decode_text(
    text: str,
    decoders: tuple[Decoder, ...] = DEFAULT_DECODERS,
    tool_name: str = "",
) -> Any:
    """
    Run the decoder chain over text and return the first structured payload.

    Falls back to {"raw": text} when nothing matches.
    """
    for decoder in decoders:
        try:
            decoded = decoder(text)
        except Exception as e:
            logger.debug(f"Decoder {decoder.__name__} raised on {tool_name}: {e}")
            continue
        if decoded is not None:
            return decoded

    logger.debug(
        f"{ToolErrorKind.PARSE_FAILURE.value}: output of '{tool_name}' is not "
        f"structured ({len(text)} chars), returning raw text"
    )
    return {"raw": text}


def decode_call_result(
    result: Any, tool_name: str = "", arguments: Optional[dict] = None
) -> Any:
    """
    Decode an MCP CallToolResult into a payload.

    Prefers structuredContent, then decodes the concatenated text content.
    Non-text content items (images, resources) are passed through as dicts.
    Search results carry the query that produced them.
    """
    structured = getattr(result, "structuredContent", None)
    if structured:
        return with_query(structured, arguments)

    texts = []
    others = []
    for item in getattr(result, "content", None) or []:
        if getattr(item, "type", None) == "text":
            texts.append(item.text)
        elif hasattr(item, "model_dump"):
            others.append(item.model_dump(exclude_none=True))

    if not texts:
        return {"content": others} if others else {}

    payload = decode_text("\n\n".join(texts), tool_name=tool_name)
    if others and isinstance(payload, dict):
        payload = {**payload, "attachments": others}
    return with_query(payload, arguments)


def with_query(payload: Any, arguments: Optional[dict]) -> Any:
    """Echo the search query into a {"results": ...} payload that lacks one."""

    query = (arguments or {}).get("query")
    if query and isinstance(payload, dict) and "results" in payload and "query" not in payload:
        return {"query": query, **payload}
    return payload


def result_error_text(result: Any) -> str:
    """Collect the text of an MCP result flagged isError."""

    texts = [
        item.text
        for item in getattr(result, "content", None) or []
        if getattr(item, "type", None) == "text"
    ]
    return "\n".join(texts) or "Hosted tool reported an error"
