class InlineError(Exception):
    """ Base class for every failure raised while flattening or un-flattening """


class InvalidTargetError(InlineError):
    """ Decode was given no destination, or one it cannot fill """


class MalformedDocumentError(InlineError):
    """ The flat document does not have the shape the destination expects """


class FieldConversionError(InlineError):
    """ A single field could not be converted to or from its declared type """


class UnsupportedShapeError(InlineError):
    """ A type and its generated schema could not be reconciled """
