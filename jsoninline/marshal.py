import logging
from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel, RootModel
from pydantic_core import PydanticSerializationError, to_json, to_jsonable_python

from .errors import FieldConversionError
from .fields import declared_fields

logger = logging.getLogger(__name__)


def marshal(value: Any) -> Any:
    """
    Convert ``value`` into JSON-compatible data with every inline field flattened.
    Records become flat dicts, sequences become lists of flattened elements and
    anything else is handed to pydantic-core unchanged.

    Field values are read straight from the model: ``@field_serializer`` functions
    and ``serialization_alias`` are not applied, keys come from ``alias`` or the
    field name.
    """
    if isinstance(value, RootModel):
        return marshal(value.root)
    if isinstance(value, BaseModel):
        return _marshal_model(value)
    if isinstance(value, Mapping):
        return {key: marshal(item) for key, item in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [marshal(item) for item in value]
    try:
        return to_jsonable_python(value)
    except PydanticSerializationError as e:
        raise FieldConversionError(f"Cannot encode value of type {type(value).__name__}: {e}") from e


def marshal_json(value: Any, indent: Optional[int] = None) -> bytes:
    return to_json(marshal(value), indent=indent)


def _marshal_model(model: BaseModel) -> dict[str, Any]:
    cls = type(model)
    flat: dict[str, Any] = {}

    for field in declared_fields(cls):
        if field.skip or field.is_helper:
            continue

        value = getattr(model, field.name)

        if field.inline:
            # an absent inline record contributes no keys at all
            if value is None:
                continue
            inline = _marshal_field(cls, field.name, value)
            if not isinstance(inline, Mapping):
                raise FieldConversionError(
                    f"Inline field {cls.__name__}.{field.name} did not encode to an object"
                )
            overwritten = flat.keys() & inline.keys()
            if overwritten:
                logger.debug(f"{cls.__name__}.{field.name} overwrites {sorted(overwritten)}")
            flat.update(inline)
            continue

        if field.omits(value):
            continue
        flat[field.flat_name] = _marshal_field(cls, field.name, value)

    return flat


def _marshal_field(cls: type, name: str, value: Any) -> Any:
    try:
        return marshal(value)
    except FieldConversionError as e:
        raise FieldConversionError(f"{cls.__name__}.{name}: {e}") from e
