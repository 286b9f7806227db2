"""Extract JSON objects from completion responses."""
from __future__ import annotations
import json
import re


def extract_json_from_response(text: str) -> dict:
    """Extract a JSON object from completion text.

    Strategies in order:
    1. Direct JSON parse of entire text
    2. Find ```json ... ``` block
    3. Find first { to last }

    Raises ``ValueError`` when no strategy yields a JSON object.
    """
    text = (text or "").strip()

    # Strategy 1: direct parse
    try:
        return _as_object(json.loads(text))
    except ValueError:  # includes JSONDecodeError
        pass

    # Strategy 2: ```json block
    json_block = re.search(r'```(?:json)?\s*\n(.*?)\n\s*```', text, re.DOTALL)
    if json_block:
        try:
            return _as_object(json.loads(json_block.group(1)))
        except ValueError:
            pass

    # Strategy 3: first { to last }
    first_brace = text.find('{')
    last_brace = text.rfind('}')
    if first_brace != -1 and last_brace > first_brace:
        try:
            return _as_object(json.loads(text[first_brace:last_brace + 1]))
        except ValueError:
            pass

    raise ValueError(f"Could not extract JSON object from response: {text[:200]}...")


def _as_object(value) -> dict:
    if not isinstance(value, dict):
        raise ValueError(f"Expected a JSON object, got {type(value).__name__}")
    return value
