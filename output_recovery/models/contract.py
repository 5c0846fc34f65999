"""Schema contract: the declared shape every recovered payload must satisfy."""
import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional

from ..utils.helpers import parse_path


class FieldType(str, Enum):
    """Value types a contract can declare."""
    STRING = "string"
    NUMBER = "number"
    INTEGER = "integer"
    BOOLEAN = "boolean"
    ARRAY = "array"
    OBJECT = "object"
    ENUM = "enum"
    ANY = "any"


@dataclass(frozen=True)
class FieldSpec:
    """
    Contract for a single value.

    min_length/max_length bound characters for strings, elements for arrays
    and keys for objects.
    """
    type: FieldType
    required: bool = True
    nullable: bool = False
    min_length: Optional[int] = None
    max_length: Optional[int] = None
    items: Optional["FieldSpec"] = None                       # arrays
    fields: dict[str, "FieldSpec"] = field(default_factory=dict)  # objects
    additional_properties: bool = True                        # objects
    allowed_values: tuple = ()                                # enums
    description: str = ""

    # ------------------------------------------------------------------
    # Convenience constructors
    # ------------------------------------------------------------------

    @classmethod
    def string(cls, **kwargs) -> "FieldSpec":
        return cls(FieldType.STRING, **kwargs)

    @classmethod
    def number(cls, **kwargs) -> "FieldSpec":
        return cls(FieldType.NUMBER, **kwargs)

    @classmethod
    def integer(cls, **kwargs) -> "FieldSpec":
        return cls(FieldType.INTEGER, **kwargs)

    @classmethod
    def boolean(cls, **kwargs) -> "FieldSpec":
        return cls(FieldType.BOOLEAN, **kwargs)

    @classmethod
    def any(cls, **kwargs) -> "FieldSpec":
        return cls(FieldType.ANY, **kwargs)

    @classmethod
    def enum(cls, values, **kwargs) -> "FieldSpec":
        return cls(FieldType.ENUM, allowed_values=tuple(values), **kwargs)

    @classmethod
    def array(cls, items: "FieldSpec", **kwargs) -> "FieldSpec":
        return cls(FieldType.ARRAY, items=items, **kwargs)

    @classmethod
    def object(cls, fields: dict[str, "FieldSpec"], **kwargs) -> "FieldSpec":
        return cls(FieldType.OBJECT, fields=dict(fields), **kwargs)

    def describe(self) -> Any:
        """JSON-friendly rendering used in prompts and logs."""
        if self.type == FieldType.OBJECT:
            rendered: Any = {
                (name if spec.required else f"{name}?"): spec.describe()
                for name, spec in self.fields.items()
            }
            return rendered
        if self.type == FieldType.ARRAY:
            inner = self.items.describe() if self.items else "any"
            bounds = _bounds(self)
            return [inner, f"array{bounds}"] if bounds else [inner]

        if self.type == FieldType.ENUM:
            text = "one of " + ", ".join(json.dumps(v, default=str) for v in self.allowed_values)
        else:
            text = self.type.value + _bounds(self)
        if self.nullable:
            text += " | null"
        if self.description:
            text += f" ({self.description})"
        return text


def _bounds(spec: FieldSpec) -> str:
    if spec.min_length is None and spec.max_length is None:
        return ""
    low = spec.min_length if spec.min_length is not None else 0
    high = spec.max_length if spec.max_length is not None else "*"
    return f"[{low}..{high}]"


@dataclass(frozen=True)
class SchemaContract:
    """Immutable, caller-supplied description of an expected payload."""
    root: FieldSpec
    name: str = "output"

    @classmethod
    def from_fields(cls, fields: dict[str, FieldSpec], name: str = "output", **kwargs) -> "SchemaContract":
        """Build a contract whose root is an object with the given fields."""
        return cls(root=FieldSpec.object(fields, **kwargs), name=name)

    def spec_at(self, path: str) -> Optional[FieldSpec]:
        """Resolve the FieldSpec governing a data path, or None if undeclared."""
        spec: Optional[FieldSpec] = self.root
        for segment in parse_path(path):
            if spec is None:
                return None
            if isinstance(segment, int):
                spec = spec.items if spec.type == FieldType.ARRAY else None
            else:
                spec = spec.fields.get(segment) if spec.type == FieldType.OBJECT else None
        return spec

    def enum_sets(self) -> list[tuple]:
        """Every allowed-value set declared anywhere in the contract."""
        found: list[tuple] = []

        def _walk(spec: Optional[FieldSpec]) -> None:
            if spec is None:
                return
            if spec.type == FieldType.ENUM and spec.allowed_values not in found:
                found.append(spec.allowed_values)
            _walk(spec.items)
            for child in spec.fields.values():
                _walk(child)

        _walk(self.root)
        return found

    def enum_values(self) -> list[str]:
        """Flat, de-duplicated list of all string enum values (for cache warm-up)."""
        values: list[str] = []
        for allowed in self.enum_sets():
            for value in allowed:
                if isinstance(value, str) and value not in values:
                    values.append(value)
        return values

    def describe(self, indent: int = 2) -> str:
        return json.dumps(self.root.describe(), indent=indent, ensure_ascii=False)
