"""
variant_sdk.tier0_core.values
───────────────────────────────
Typed variant configuration values. Raw JSON values are decoded exactly once,
at the catalog boundary, into a tagged union discriminated on ``kind``;
everything downstream works with these models instead of untyped ``Any``.

    int | float | bool | string | list | map
"""
from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


class _Value(BaseModel):
    model_config = ConfigDict(frozen=True, strict=True)

    def to_python(self) -> Any:
        return self.value  # type: ignore[attr-defined]


class IntValue(_Value):
    kind: Literal["int"] = "int"
    value: int


class FloatValue(_Value):
    kind: Literal["float"] = "float"
    value: float


class BoolValue(_Value):
    kind: Literal["bool"] = "bool"
    value: bool


class StringValue(_Value):
    kind: Literal["string"] = "string"
    value: str


class ListValue(_Value):
    kind: Literal["list"] = "list"
    value: list["ConfigValue"]

    def to_python(self) -> list[Any]:
        return [item.to_python() for item in self.value]


class MapValue(_Value):
    kind: Literal["map"] = "map"
    value: dict[str, "ConfigValue"]

    def to_python(self) -> dict[str, Any]:
        return {k: v.to_python() for k, v in self.value.items()}


ConfigValue = Annotated[
    Union[IntValue, FloatValue, BoolValue, StringValue, ListValue, MapValue],
    Field(discriminator="kind"),
]

ListValue.model_rebuild()
MapValue.model_rebuild()

_VALUE_TYPES = (IntValue, FloatValue, BoolValue, StringValue, ListValue, MapValue)


def config_value_from_json(raw: Any) -> ConfigValue:
    """
    Decode a JSON-compatible Python value into its tagged form.

    Raises ValueError for ``None`` and for types JSON cannot carry.
    """
    if isinstance(raw, _VALUE_TYPES):
        return raw
    # bool is a subclass of int: check it first
    if isinstance(raw, bool):
        return BoolValue(value=raw)
    if isinstance(raw, int):
        return IntValue(value=raw)
    if isinstance(raw, float):
        return FloatValue(value=raw)
    if isinstance(raw, str):
        return StringValue(value=raw)
    if isinstance(raw, (list, tuple)):
        return ListValue(value=[config_value_from_json(item) for item in raw])
    if isinstance(raw, dict):
        return MapValue(value={str(k): config_value_from_json(v) for k, v in raw.items()})
    raise ValueError(f"Unsupported config value type: {type(raw).__name__}")


def extract(value: ConfigValue | None, default: Any) -> Any:
    """
    Return the python value of *value* if it matches the type of *default*,
    otherwise *default*. Integers widen to float; nothing else converts.
    """
    if value is None or default is None:
        return default if value is None else value.to_python()
    if isinstance(default, bool):
        return value.value if isinstance(value, BoolValue) else default
    if isinstance(default, int):
        return value.value if isinstance(value, IntValue) else default
    if isinstance(default, float):
        if isinstance(value, (IntValue, FloatValue)):
            return float(value.value)
        return default
    if isinstance(default, str):
        return value.value if isinstance(value, StringValue) else default
    if isinstance(default, list):
        return value.to_python() if isinstance(value, ListValue) else default
    if isinstance(default, dict):
        return value.to_python() if isinstance(value, MapValue) else default
    return default


__all__ = [
    "ConfigValue", "IntValue", "FloatValue", "BoolValue", "StringValue",
    "ListValue", "MapValue", "config_value_from_json", "extract",
]
