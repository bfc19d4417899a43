import dataclasses
import json
from typing import Any

from fastapi.responses import JSONResponse

# Largest integer a JavaScript client can hold without precision loss.
_MAX_SAFE_INT = 2 ** 53 - 1


class SafeJSONResponse(JSONResponse):
    """JSONResponse that renders 18-decimal amounts as strings."""

    def render(self, content: Any) -> bytes:
        return json.dumps(
            stringify_amounts(content),
            ensure_ascii=False,
            allow_nan=False,
        ).encode("utf-8")


def stringify_amounts(obj):
    """Recursively convert dataclasses, sets and out-of-range ints to JSON-safe values."""
    if isinstance(obj, bool):
        return obj
    if isinstance(obj, int):
        return str(obj) if abs(obj) > _MAX_SAFE_INT else obj
    if dataclasses.is_dataclass(obj) and not isinstance(obj, type):
        return stringify_amounts(dataclasses.asdict(obj))
    if isinstance(obj, dict):
        return {str(k): stringify_amounts(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [stringify_amounts(v) for v in obj]
    if isinstance(obj, (set, frozenset)):
        return sorted(stringify_amounts(v) for v in obj)
    return obj
