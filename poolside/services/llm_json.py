"""Best-effort JSON recovery from free-form LLM output.

Models wrap JSON in markdown fences, add a sentence of preamble, or trail
off into prose after the closing bracket.
"""

import json
import re

# Closing fence optional: long replies get cut off at max_tokens.
_FENCE_RE = re.compile(r"^```[\w-]*\s*(.*?)\s*(?:```)?$", re.DOTALL)

_decoder = json.JSONDecoder()


def strip_codeblock(text: str) -> str:
    """Remove a markdown fence wrapping the whole of *text*, if there is one."""
    text = text.strip()
    m = _FENCE_RE.match(text)
    return m.group(1) if m else text


def first_json_value(text: str) -> dict | list | None:
    """Decode the first JSON object or array embedded in *text*."""
    for i, ch in enumerate(text):
        if ch not in "{[":
            continue
        try:
            value, _ = _decoder.raw_decode(text, i)
        except ValueError:
            continue
        return value
    return None


def safe_json_parse(text: str) -> dict | list | None:
    """Parse model output as JSON; ``None`` when nothing in it parses."""
    text = strip_codeblock(text)
    try:
        return json.loads(text)
    except ValueError:
        return first_json_value(text)
