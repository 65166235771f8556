import copy
import logging
from collections.abc import Iterator
from typing import Annotated, Any, Optional, get_args, get_origin

from pydantic import RootModel, TypeAdapter

from .errors import UnsupportedShapeError
from .fields import declared_fields, is_record_type, unwrap_optional

logger = logging.getLogger(__name__)

NULL_SCHEMA = {'type': 'null'}


def schema_for(tp: Any, **options: Any) -> dict[str, Any]:
    """
    Generate the JSON Schema of ``tp`` with pydantic and flatten its inline fields.
    ``options`` are passed to ``TypeAdapter.json_schema`` (``ref_template``, ``mode`` ...).
    """
    schema = TypeAdapter(tp).json_schema(**options)
    return flatten_schema(schema, tp)


def flatten_schema(schema: dict[str, Any], tp: Any, seen: Optional[set[type]] = None) -> dict[str, Any]:
    """
    Rewrite ``schema`` in place so it describes the flat documents of ``tp``.

    Inline fields disappear from their parent's ``properties`` and ``required``;
    the sub-record's schema is appended to the parent's ``anyOf`` instead, one
    entry per inline field. ``anyOf`` is meant as a set of permitted property
    groups here, several of them may be present in the same document.
    """
    defs = schema.get('$defs', {})
    _flatten(schema, tp, defs, set() if seen is None else seen)
    _prune_defs(schema)
    return schema


def _flatten(node: dict[str, Any], tp: Any, defs: dict[str, Any], seen: set[type]) -> None:
    tp = _strip_annotated(tp)
    tp, optional = unwrap_optional(tp)
    tp = _strip_annotated(tp)
    if optional:
        node = _strip_null(node)
    node = _resolve(node, defs)

    if is_record_type(tp):
        if issubclass(tp, RootModel):
            _flatten(node, tp.model_fields['root'].annotation, defs, seen)
        else:
            _flatten_record(node, tp, defs, seen)
        return

    origin = get_origin(tp)
    args = get_args(tp)
    if origin in (list, set, frozenset) or (origin is tuple and len(args) == 2 and args[1] is Ellipsis):
        if args and isinstance(node.get('items'), dict):
            _flatten(node['items'], args[0], defs, seen)
    elif origin is tuple:
        for item, arg in zip(node.get('prefixItems', []), args):
            _flatten(item, arg, defs, seen)
    elif origin is dict:
        if len(args) == 2 and isinstance(node.get('additionalProperties'), dict):
            _flatten(node['additionalProperties'], args[1], defs, seen)


def _flatten_record(node: dict[str, Any], cls: type, defs: dict[str, Any], seen: set[type]) -> None:
    if cls in seen:
        return
    seen.add(cls)

    properties = node.get('properties')
    if not isinstance(properties, dict):
        raise UnsupportedShapeError(f"Schema of {cls.__name__} has no properties to flatten")

    for field in declared_fields(cls):
        if field.flat_name not in properties:
            continue

        if field.skip or field.is_helper:
            _remove_property(node, field.flat_name)
            continue

        if field.inline:
            sub_schema = _remove_property(node, field.flat_name)
            _flatten(sub_schema, field.annotation, defs, seen)
            _, optional = unwrap_optional(_strip_annotated(field.annotation))
            alternative = _resolve(_strip_null(sub_schema) if optional else sub_schema, defs)
            alternative = copy.deepcopy(alternative)
            if optional:
                # an absent optional record writes none of its keys
                _relax_required(alternative)
            logger.debug(f"{cls.__name__}.{field.name} inlined as an alternative")
            node.setdefault('anyOf', []).append(alternative)
            continue

        _flatten(properties[field.flat_name], field.annotation, defs, seen)


def _remove_property(node: dict[str, Any], name: str) -> dict[str, Any]:
    removed = node['properties'].pop(name)
    required = node.get('required')
    if required and name in required:
        required.remove(name)
        if not required:
            del node['required']
    return removed


def _relax_required(node: dict[str, Any]) -> None:
    node.pop('required', None)
    for alternative in node.get('anyOf', []):
        _relax_required(alternative)


def _strip_annotated(tp: Any) -> Any:
    while get_origin(tp) is Annotated:
        tp = get_args(tp)[0]
    return tp


def _strip_null(node: dict[str, Any]) -> dict[str, Any]:
    alternatives = node.get('anyOf')
    if isinstance(alternatives, list):
        rest = [alt for alt in alternatives if alt != NULL_SCHEMA]
        if len(rest) == 1:
            return rest[0]
    return node


def _resolve(node: dict[str, Any], defs: dict[str, Any]) -> dict[str, Any]:
    while True:
        if '$ref' in node:
            name = node['$ref'].rsplit('/', 1)[-1]
            if name not in defs:
                raise UnsupportedShapeError(f"Unresolvable schema reference {node['$ref']}")
            node = defs[name]
        elif 'properties' not in node and isinstance(node.get('allOf'), list) and len(node['allOf']) == 1:
            node = node['allOf'][0]
        else:
            return node


def _refs(node: Any) -> Iterator[str]:
    if isinstance(node, dict):
        for key, value in node.items():
            if key == '$ref' and isinstance(value, str):
                yield value
            else:
                yield from _refs(value)
    elif isinstance(node, list):
        for item in node:
            yield from _refs(item)


def _prune_defs(schema: dict[str, Any]) -> None:
    defs = schema.get('$defs')
    if not defs:
        return

    used: set[str] = set()
    pending = [{key: value for key, value in schema.items() if key != '$defs'}]
    while pending:
        for ref in _refs(pending.pop()):
            name = ref.rsplit('/', 1)[-1]
            if name in defs and name not in used:
                used.add(name)
                pending.append(defs[name])

    for name in list(defs):
        if name not in used:
            logger.debug(f"Dropping unreferenced schema definition {name}")
            del defs[name]
    if not defs:
        del schema['$defs']
