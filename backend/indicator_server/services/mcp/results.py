"""
Tool result envelopes.

Tools return MCP content blocks: the payload is JSON-encoded into a single
text block, and failures set ``isError``.
"""

import json
from datetime import datetime, timezone
from typing import Any

from pydantic import ValidationError as PydanticValidationError

from indicator_server.schemas.indicators import ErrorCategory


def text_result(payload: Any, is_error: bool = False) -> dict[str, Any]:
    result = {"content": [{"type": "text", "text": json.dumps(payload, indent=2)}]}
    if is_error:
        result["isError"] = True
    return result


def error_result(message: str, category: ErrorCategory, **extra: Any) -> dict[str, Any]:
    """Structured error payload; the session stays usable."""
    payload = {
        "error": message,
        "category": category.value,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        **extra,
    }
    return text_result(payload, is_error=True)


def parse_result(result: dict[str, Any]) -> Any:
    """Decode the JSON payload of a text result."""
    return json.loads(result["content"][0]["text"])


def format_validation_error(exc: PydanticValidationError) -> str:
    """Flatten pydantic errors into one readable line."""
    messages = []
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"])
        message = error["msg"].removeprefix("Value error, ")
        messages.append(f"{location}: {message}" if location else message)
    return "; ".join(messages)
