"""Feed parsing and record normalization helpers."""

from .models import FieldMap, ImageRecord, PropertyRecord, PropertyType, ValidationFailure
from .parser import FeedFormat, parse, parse_csv, parse_xml
from .transformer import TransformOptions, slugify, transform_record, transform_records

__all__ = [
    "FeedFormat",
    "FieldMap",
    "ImageRecord",
    "PropertyRecord",
    "PropertyType",
    "TransformOptions",
    "ValidationFailure",
    "parse",
    "parse_csv",
    "parse_xml",
    "slugify",
    "transform_record",
    "transform_records",
]
