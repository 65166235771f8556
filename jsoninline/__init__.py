from .errors import InlineError, InvalidTargetError, MalformedDocumentError, FieldConversionError, UnsupportedShapeError
from .fields import Inline, OmitEmpty, Skip, FlatField, classify, declared_fields
from .marshal import marshal, marshal_json
from .unmarshal import unmarshal, decode
from .schema import schema_for, flatten_schema
from .inline_model import InlineMarshaler, InlineModel, V

__all__ = [
    "Inline",
    "OmitEmpty",
    "Skip",
    "FlatField",
    "classify",
    "declared_fields",
    "marshal",
    "marshal_json",
    "unmarshal",
    "decode",
    "schema_for",
    "flatten_schema",
    "InlineMarshaler",
    "InlineModel",
    "V",
    "InlineError",
    "InvalidTargetError",
    "MalformedDocumentError",
    "FieldConversionError",
    "UnsupportedShapeError",
]
