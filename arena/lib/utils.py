"""Utility functions for the arena backend."""

import json
import re
import secrets
import string
from datetime import datetime, timezone
from typing import Any

ROOM_CODE_ALPHABET = string.ascii_uppercase + string.digits
ROOM_CODE_LENGTH = 6


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every stored datetime uses."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_room_code(length: int = ROOM_CODE_LENGTH) -> str:
    """
    Generate a random room code.

    Examples:
        >>> len(generate_room_code())
        6
    """
    return "".join(secrets.choice(ROOM_CODE_ALPHABET) for _ in range(length))


_FENCE_RE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def extract_json_object(content: str) -> dict[str, Any]:
    """
    Pull the first JSON object out of raw model output.

    Handles:
    - Bare JSON
    - JSON wrapped in a ```json fenced block
    - JSON surrounded by prose

    Raises:
        ValueError: If no JSON object can be decoded
    """
    text = content.strip()

    fenced = _FENCE_RE.search(text)
    if fenced:
        text = fenced.group(1).strip()

    if not text.startswith("{"):
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise ValueError("No JSON object found in response")
        text = text[start:end]

    data = json.loads(text)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")
    return data


def truncate(text: str, limit: int = 100) -> str:
    """Shorten text for logs and job results."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."
