import json
import re
import unicodedata
from typing import Any, Dict, List, Literal, overload

_FENCE_RE = re.compile(r"```[a-zA-Z0-9_-]*")


def clean_control_chars(s: str) -> str:
    return "".join(ch for ch in s if ch in "\n\t" or unicodedata.category(ch)[0] != "C")


def strip_code_fences(s: str) -> str:
    """Drop markdown fences (```json ... ```) wherever the model left them."""
    return _FENCE_RE.sub("", s or "").strip()


def _slice_outer(text: str, open_ch: str, close_ch: str) -> str:
    start = text.find(open_ch)
    end = text.rfind(close_ch)
    if start == -1 or end <= start:
        return ""
    return text[start:end + 1]


def _loads_lenient(text: str) -> Any:
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        # remove trailing commas before '}' or ']'
        return json.loads(re.sub(r",(\s*[}\]])", r"\1", text))


def _core_parse(text: str) -> Any:
    """Parse JSON from model text, handling code fences, control chars, trailing commas and prose."""
    text = strip_code_fences(clean_control_chars(text or ""))
    if not text:
        raise ValueError("Empty model response")

    try:
        obj = _loads_lenient(text)
    except json.JSONDecodeError:
        # search-grounded answers sometimes wrap the object in a sentence
        inner = _slice_outer(text, "{", "}") or _slice_outer(text, "[", "]")
        if not inner or inner == text:
            raise
        obj = _loads_lenient(inner)

    # sometimes models double-encode JSON as a string
    if isinstance(obj, str):
        obj = json.loads(obj)

    return obj


@overload
def extract_json(text: str, expect: Literal["object"] = "object") -> Dict[str, Any]: ...
@overload
def extract_json(text: str, expect: Literal["array"]) -> List[Any]: ...
@overload
def extract_json(text: str, expect: Literal["any"]) -> Any: ...

def extract_json(text: str, expect: Literal["object", "array", "any"] = "object"):
    """
    Parse JSON from model output.
    - expect="object" (default): returns Dict[str, Any], else raises ValueError.
    - expect="array": returns List[Any], else raises ValueError.
    - expect="any": returns whatever was parsed.
    """
    obj = _core_parse(text)

    if expect == "object" and not isinstance(obj, dict):
        raise ValueError("Expected a JSON object")
    if expect == "array" and not isinstance(obj, list):
        raise ValueError("Expected a JSON array")
    return obj
