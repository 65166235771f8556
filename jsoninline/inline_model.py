from collections.abc import Mapping
from pydantic import BaseModel, RootModel, model_serializer, model_validator
from pydantic_core import from_json
from typing import Any, Union

from .errors import InvalidTargetError, MalformedDocumentError
from .fields import declared_fields
from .marshal import marshal, marshal_json
from .schema import flatten_schema
from .unmarshal import PreparedValues, decode, prepare, unmarshal


class InlineMarshaler(RootModel[Any]):
    """ Wrap a value (for encoding) or a destination (for decoding) so inline fields are flattened """

    # fields typed as this wrapper are neither encoded, decoded nor described
    __inline_helper__ = True

    @model_serializer(mode='plain')
    def _marshal(self):
        return marshal(self.root)

    def marshal_json(self, indent: int | None = None) -> bytes:
        return marshal_json(self.root, indent=indent)

    def unmarshal_json(self, data: Union[str, bytes, bytearray]) -> Any:
        if self.root is None:
            raise InvalidTargetError("Cannot unmarshal into an empty InlineMarshaler")
        return unmarshal(data, self.root)

    def unmarshal(self, obj: Any) -> Any:
        if self.root is None:
            raise InvalidTargetError("Cannot decode into an empty InlineMarshaler")
        return decode(obj, self.root)


def V(value: Any) -> InlineMarshaler:
    return InlineMarshaler(value)


class InlineModel(BaseModel):
    """
    Model that speaks the flat representation through the regular pydantic API.

    ``model_dump``/``model_dump_json`` flatten inline fields, validation (direct,
    nested in another model or through a ``TypeAdapter``) hands the whole flat
    mapping to every inline field and ``model_json_schema`` lists inline records
    as alternatives. Input that already names an inline field, such as keyword
    construction ``Place(name="x", coordinates=Coordinates(...))``, stays nested.

    Dumping reads field values directly, so ``@field_serializer`` functions and
    ``serialization_alias`` do not apply to the flat output.
    """

    @model_validator(mode='before')
    @classmethod
    def _gather_inline(cls, data: Any) -> Any:
        if not isinstance(data, Mapping) or isinstance(data, PreparedValues):
            return data
        for field in declared_fields(cls):
            if field.inline and (field.name in data or field.flat_name in data):
                return data
        return prepare(cls, data)

    @model_serializer(mode='plain')
    def _flatten_inline(self):
        return marshal(self)

    @classmethod
    def model_validate_json(cls, json_data: Union[str, bytes, bytearray], **kwargs):
        try:
            obj = from_json(json_data)
        except ValueError as e:
            raise MalformedDocumentError(f"Cannot parse flat document: {e}") from e
        return cls.model_validate(obj, **kwargs)

    @classmethod
    def model_json_schema(cls, *args, **kwargs) -> dict[str, Any]:
        schema = super().model_json_schema(*args, **kwargs)
        return flatten_schema(schema, cls)
