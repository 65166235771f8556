import types
from dataclasses import dataclass, field as dataclass_field
from typing import Any, Union, get_args, get_origin

from pydantic import BaseModel
from pydantic.fields import FieldInfo


class Inline:
    """ Merge the sub-record's fields into the parent's flat representation """


class OmitEmpty:
    """
    Leave the key out when the value is empty (None, 0, False, "", [] ...)
    and equal to the field's default. Fields without a default are always written.
    """


class Skip:
    """ Never encode, decode or describe the field """


def _has_marker(metadata: list[Any], marker: type) -> bool:
    return any(meta is marker or isinstance(meta, marker) for meta in metadata)


@dataclass(frozen=True)
class FlatField:
    name: str
    flat_name: str
    annotation: Any
    skip: bool = False
    inline: bool = False
    omit_empty: bool = False
    info: FieldInfo | None = dataclass_field(default=None, compare=False, repr=False)

    @property
    def is_helper(self) -> bool:
        inner, _ = unwrap_optional(self.annotation)
        return _is_class(inner) and getattr(inner, '__inline_helper__', False)

    def omits(self, value: Any) -> bool:
        if not self.omit_empty or not is_empty(value):
            return False
        if self.info is None or self.info.is_required():
            return False
        return value == self.info.get_default(call_default_factory=True)


def classify(name: str, field: FieldInfo) -> FlatField:
    metadata = list(field.metadata)
    skip = name.startswith('_') or field.exclude is True or _has_marker(metadata, Skip)
    return FlatField(
        name=name,
        flat_name=field.alias or name,
        annotation=field.annotation,
        skip=skip,
        inline=_has_marker(metadata, Inline),
        omit_empty=_has_marker(metadata, OmitEmpty),
        info=field,
    )


def declared_fields(cls: type[BaseModel]) -> list[FlatField]:
    return [classify(name, field) for name, field in cls.model_fields.items()]


def unwrap_optional(tp: Any) -> tuple[Any, bool]:
    """Strip one ``Optional`` layer, returning the inner type and whether it was there."""
    origin = get_origin(tp)
    if origin is Union or origin is types.UnionType:
        args = [arg for arg in get_args(tp) if arg is not type(None)]
        if len(args) == 1 and len(get_args(tp)) == 2:
            return args[0], True
    return tp, False


def is_record_type(tp: Any) -> bool:
    return _is_class(tp) and issubclass(tp, BaseModel)


def is_empty(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, (str, bytes, list, tuple, dict, set, frozenset)):
        return len(value) == 0
    if isinstance(value, (bool, int, float)):
        return not value
    return False


def _is_class(tp: Any) -> bool:
    # list[int] passes isinstance(..., type) on 3.10 but cannot be used with issubclass
    return isinstance(tp, type) and get_origin(tp) is None
