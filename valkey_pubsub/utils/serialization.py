"""
JSON wire encoding shared by channel messages and cached values.
"""

import json
from typing import Any

from ..exceptions import SerializationError

# Compact separators match the text other JSON producers put on the wire
_SEPARATORS = (",", ":")


def to_json(value: Any) -> str:
    """
    Encode a value as compact JSON text.

    Only JSON-representable values are accepted: NaN and infinity are
    rejected instead of producing non-standard tokens.

    Raises:
        SerializationError: If the value cannot be encoded
    """
    try:
        return json.dumps(value, separators=_SEPARATORS, allow_nan=False)
    except (TypeError, ValueError) as e:
        raise SerializationError(f"Value is not JSON serializable: {e}") from e


def from_json(text: Any) -> Any:
    """Decode JSON text (str or bytes). ValueError and TypeError propagate."""
    return json.loads(text)
