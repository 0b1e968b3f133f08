"""Parsing of permission strings into DataType members."""

from collections.abc import Iterable

from DAAS_Gateway.daas_shared.errors import UnknownVariantError
from DAAS_Gateway.daas_shared.types import DataType

_BY_NAME = {dt.value: dt for dt in DataType}


def parse_data_type(value) -> DataType:
    """Map 'secrets' / 'SECRETS' / DataType.SECRETS to the enum member.

    Anything else raises UnknownVariantError; there is no default member.
    """
    if isinstance(value, DataType):
        return value
    if not isinstance(value, str):
        raise UnknownVariantError("dataType", value, _BY_NAME)

    member = _BY_NAME.get(value.strip().lower())
    if member is None:
        raise UnknownVariantError("dataType", value, _BY_NAME)
    return member


def parse_data_types(values: Iterable) -> frozenset[DataType]:
    return frozenset(parse_data_type(v) for v in values)
