"""Submission parsers for CSV uploads and JSON item lists."""

from product_import.application.parsers.submission_parser import (
    ParsedSubmission,
    parse_caption_image_input,
    parse_csv,
    parse_existing_behavior,
    parse_json_items,
)

__all__ = [
    "ParsedSubmission",
    "parse_caption_image_input",
    "parse_csv",
    "parse_existing_behavior",
    "parse_json_items",
]
