"""Wire payload model shared by both bridging directions.

Every message the gateway produces or consumes is the UTF-8 JSON document
``{"value": <number>}``. Uses msgspec.Struct for validation on decode.
"""

from __future__ import annotations

import math

import msgspec

from ..const import INTEGER_DATATYPES
from ..errors import PayloadValidationError

__all__ = [
    "PayloadValidationError",
    "ValuePayload",
    "coerce_for_datatype",
    "decode_value",
    "encode_value",
]

Number = int | float


class ValuePayload(msgspec.Struct, frozen=True):
    """A single numeric value in transit between endpoint and broker."""

    value: int | float

    @classmethod
    def from_mqtt(cls, payload: bytes | bytearray | str) -> ValuePayload:
        """Parse an inbound MQTT payload into a validated ValuePayload."""
        if not payload:
            raise PayloadValidationError("payload is empty")
        try:
            result = msgspec.json.decode(payload, type=cls)
        except msgspec.ValidationError as exc:
            raise PayloadValidationError(f"invalid value payload: {exc}") from exc
        except msgspec.DecodeError as exc:
            raise PayloadValidationError(f"malformed JSON payload: {exc}") from exc
        if not math.isfinite(result.value):
            raise PayloadValidationError("value must be a finite number")
        return result

    def to_mqtt(self) -> bytes:
        return msgspec.json.encode(self)


def encode_value(value: object) -> bytes:
    """Encode a value read from the endpoint as ``{"value": v}``."""
    # bool is an int subclass but not a numeric reading.
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise PayloadValidationError(f"value {value!r} of type {type(value).__name__} is not numeric")
    if not math.isfinite(value):
        raise PayloadValidationError(f"value {value!r} is not finite")
    return ValuePayload(value=value).to_mqtt()


def decode_value(payload: bytes | bytearray | str) -> Number:
    return ValuePayload.from_mqtt(payload).value


def coerce_for_datatype(value: Number, datatype: str) -> Number:
    """Convert *value* to the Python type matching an OPC UA variant type."""
    if datatype in INTEGER_DATATYPES:
        if isinstance(value, float):
            if not value.is_integer():
                raise PayloadValidationError(f"value {value!r} is not integral for datatype {datatype}")
            return int(value)
        return value
    return float(value)
