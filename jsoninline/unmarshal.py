import logging
from collections.abc import Mapping
from typing import Annotated, Any, Union, get_args, get_origin

from pydantic import BaseModel, RootModel, TypeAdapter, ValidationError
from pydantic_core import from_json

from .errors import FieldConversionError, InvalidTargetError, MalformedDocumentError
from .fields import declared_fields, is_record_type, unwrap_optional

logger = logging.getLogger(__name__)


class PreparedValues(dict):
    """ Field values already un-flattened for one record, keyed the way pydantic validates them """


def unmarshal(data: Union[str, bytes, bytearray], target: Any) -> Any:
    """
    Parse a flat JSON document and decode it into ``target``.

    ``target`` is either a type (``User``, ``list[User]``, ``tuple[User, User]`` ...),
    in which case the decoded value is returned, or a model instance which is
    filled in place and returned.
    """
    try:
        parsed = from_json(data)
    except ValueError as e:
        raise MalformedDocumentError(f"Cannot parse flat document: {e}") from e
    return decode(parsed, target)


def decode(obj: Any, target: Any) -> Any:
    if target is None:
        raise InvalidTargetError("No destination to decode into")
    if isinstance(target, BaseModel):
        decoded = _decode_value(type(target), obj)
        target.__setstate__(decoded.__getstate__())
        return target
    if not (isinstance(target, type) or get_origin(target) is not None or target is Any):
        raise InvalidTargetError(
            f"Cannot decode into a {type(target).__name__} instance, pass a type or a model instance"
        )
    return _decode_value(target, obj)


def prepare(cls: type[BaseModel], flat: Any, inlining: frozenset[type] = frozenset()) -> PreparedValues:
    """
    Turn a flat mapping into the nested values ``cls`` validates from.

    Every inline field receives the whole flat mapping, so two inline records
    declaring the same key are both populated from it. An optional inline record
    is only built when the mapping holds at least one of its keys, otherwise it
    keeps its default. ``inlining`` holds the records already fanned out from
    this same mapping.
    """
    if not isinstance(flat, Mapping):
        raise MalformedDocumentError(f"{cls.__name__} expects an object, got {type(flat).__name__}")

    by_name = _validates_by_name(cls)
    values = PreparedValues()
    for field in declared_fields(cls):
        if field.skip or field.is_helper:
            continue

        if field.inline:
            inner, optional = unwrap_optional(field.annotation)
            chain = inlining | {cls}
            if inner in chain:
                # a record inlining itself would be fanned out forever
                continue
            if optional and not _claims_any(inner, flat):
                logger.debug(f"{cls.__name__}.{field.name} has no keys in the document, left unset")
                continue
            logger.debug(f"{cls.__name__}.{field.name} receives all {len(flat)} keys")
            values[field.flat_name] = _decode_field(cls, field.name, inner, flat, chain)
            continue

        key = field.flat_name
        if key not in flat and by_name and field.name in flat:
            key = field.name
        if key not in flat:
            continue
        raw = flat[key]
        if _contains_record(field.annotation):
            raw = _decode_field(cls, field.name, field.annotation, raw)
        values[field.flat_name] = raw

    return values


def _decode_field(cls: type, name: str, tp: Any, obj: Any, inlining: frozenset[type] = frozenset()) -> Any:
    try:
        return _decode_value(tp, obj, inlining)
    except FieldConversionError as e:
        raise FieldConversionError(f"{cls.__name__}.{name}: {e}") from e


def _decode_value(tp: Any, obj: Any, inlining: frozenset[type] = frozenset()) -> Any:
    if not _contains_record(tp):
        return _validate(tp, obj)

    inner, optional = unwrap_optional(tp)
    if optional and obj is None:
        return None

    origin = get_origin(inner)
    if origin is Annotated:
        return _decode_value(get_args(inner)[0], obj, inlining)

    if is_record_type(inner):
        if issubclass(inner, RootModel):
            root = _decode_value(inner.model_fields["root"].annotation, obj, inlining)
            return _validate(inner, root)
        try:
            return inner.model_validate(prepare(inner, obj, inlining))
        except ValidationError as e:
            raise FieldConversionError(f"Cannot decode {inner.__name__}: {e}") from e

    if origin is list:
        (elem,) = get_args(inner)
        return [_decode_value(elem, item) for item in _expect_list(inner, obj)]

    if origin is tuple:
        args = get_args(inner)
        items = _expect_list(inner, obj)
        if len(args) == 2 and args[1] is Ellipsis:
            return tuple(_decode_value(args[0], item) for item in items)
        if len(items) != len(args):
            raise MalformedDocumentError(f"{inner} expects {len(args)} elements, got {len(items)}")
        return tuple(_decode_value(arg, item) for arg, item in zip(args, items))

    if origin is dict:
        _, value_type = get_args(inner)
        if not isinstance(obj, Mapping):
            raise MalformedDocumentError(f"{inner} expects an object, got {type(obj).__name__}")
        return {key: _decode_value(value_type, item) for key, item in obj.items()}

    # unions of several records and other shapes are left to pydantic
    return _validate(tp, obj)


def _expect_list(tp: Any, obj: Any) -> list[Any]:
    if not isinstance(obj, list):
        raise MalformedDocumentError(f"{tp} expects an array, got {type(obj).__name__}")
    return obj


def _validate(tp: Any, obj: Any) -> Any:
    try:
        return TypeAdapter(tp).validate_python(obj)
    except ValidationError as e:
        raise FieldConversionError(str(e)) from e


def _contains_record(tp: Any) -> bool:
    if is_record_type(tp):
        return True
    return any(_contains_record(arg) for arg in get_args(tp))


def _claims_any(tp: Any, flat: Mapping, seen: frozenset[type] = frozenset()) -> bool:
    """Whether ``flat`` holds a key declared by ``tp`` or by one of its inline records."""
    if not is_record_type(tp):
        return bool(flat)
    if tp in seen:
        return False
    for field in declared_fields(tp):
        if field.skip or field.is_helper:
            continue
        if field.inline:
            inner, _ = unwrap_optional(field.annotation)
            if _claims_any(inner, flat, seen | {tp}):
                return True
        elif field.flat_name in flat:
            return True
    return False


def _validates_by_name(cls: type[BaseModel]) -> bool:
    config = cls.model_config
    return bool(config.get('populate_by_name') or config.get('validate_by_name'))
