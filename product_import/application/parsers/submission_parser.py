"""
Submission parsing.

Turns CSV uploads and JSON item lists into validated item rows ready for
ImportItemCRUD.insert_batch, and parses job policy fields.

Rows that cannot be processed (no product JSON) are kept as pre-failed
rows instead of rejecting the whole submission.

Dependencies: csv (stdlib), product_import.core.exceptions
System role: Input adapter for the batch ingester
"""

import csv
import io
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from product_import.boundary.db.models.import_job_model import CaptionImageInput, ExistingBehavior
from product_import.core.exceptions import ValidationError

logger = logging.getLogger(__name__)

PRODUCT_JSON_REQUIRED = "product_json is required"

CITY_CODE_COLUMNS = ("city_code", "city_cd", "citycode")
PRODUCT_ID_COLUMNS = ("product_id", "productid", "id")
PRODUCT_JSON_COLUMNS = ("product_json", "json", "product")


@dataclass
class ParsedSubmission:
    """Validated rows plus the number of pre-failed ones."""

    rows: list[dict[str, Any]] = field(default_factory=list)
    invalid_count: int = 0


def parse_existing_behavior(value: Any) -> ExistingBehavior:
    """
    Parse the existing-product policy.

    Missing/empty defaults to skip; the legacy value "overwrite" maps to
    skip as the safe choice.

    Raises:
        ValidationError: Unknown value
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return ExistingBehavior.SKIP
    if isinstance(value, ExistingBehavior):
        return value
    normalized = str(value).strip()
    if normalized == "overwrite":
        return ExistingBehavior.SKIP
    try:
        return ExistingBehavior(normalized)
    except ValueError:
        raise ValidationError(
            f"Invalid existing_behavior: {normalized}",
            field="existing_behavior",
        )


def parse_caption_image_input(value: Any) -> CaptionImageInput | None:
    """
    Parse the caption image mode; None when not given.

    Raises:
        ValidationError: Unknown value
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    if isinstance(value, CaptionImageInput):
        return value
    try:
        return CaptionImageInput(str(value).strip())
    except ValueError:
        raise ValidationError(
            f"Invalid caption_image_input: {value}",
            field="caption_image_input",
        )


def _column(record: dict[str, str], keys: Iterable[str]) -> str:
    """First non-empty value among alias columns."""
    for key in keys:
        value = record.get(key)
        if value:
            return value
    return ""


def parse_csv(content: str) -> ParsedSubmission:
    """
    Parse a CSV upload into item rows.

    Headers are trimmed and lower-cased; fully empty rows are dropped.
    row_index is the 1-based line of the row in the file assuming one
    header line (first data row = 2).

    Args:
        content: CSV text (a leading BOM is ignored)

    Returns:
        ParsedSubmission

    Raises:
        ValidationError: No data rows
    """
    reader = csv.reader(io.StringIO(content.lstrip("\ufeff")))
    header = next(reader, None)
    if not header:
        raise ValidationError("CSV has no data rows", field="file")
    headers = [name.strip().lower() for name in header]

    records = []
    for raw in reader:
        record = {name: (raw[index].strip() if index < len(raw) else "") for index, name in enumerate(headers)}
        if any(record.values()):
            records.append(record)
    if not records:
        raise ValidationError("CSV has no data rows", field="file")

    submission = ParsedSubmission()
    for index, record in enumerate(records):
        product_json = _column(record, PRODUCT_JSON_COLUMNS)
        row = {
            "row_index": index + 2,
            "city_code": _column(record, CITY_CODE_COLUMNS) or None,
            "product_id": _column(record, PRODUCT_ID_COLUMNS) or None,
            "product_json": product_json,
            "status": "pending",
        }
        if not product_json:
            row["status"] = "failed"
            row["last_error"] = PRODUCT_JSON_REQUIRED
            submission.invalid_count += 1
        submission.rows.append(row)

    logger.info(
        "%s:parse_csv - Parsed CSV",
        __name__,
        extra={"rows": len(submission.rows), "invalid": submission.invalid_count},
    )
    return submission


def parse_json_items(items: Iterable[Any]) -> ParsedSubmission:
    """
    Convert API item inputs into item rows.

    Items arrive already shape-validated (ImportItemInput); a pending row
    without product JSON is turned into a pre-failed row here.
    """
    submission = ParsedSubmission()
    for item in items:
        row = {
            "row_index": item.row_index,
            "city_code": item.city_code,
            "product_id": item.product_id,
            "product_json": item.product_json or "",
            "status": item.status,
        }
        if item.status == "failed":
            row["last_error"] = item.error or "invalid row"
        elif not row["product_json"].strip():
            row["status"] = "failed"
            row["last_error"] = PRODUCT_JSON_REQUIRED
        if row["status"] == "failed":
            submission.invalid_count += 1
        submission.rows.append(row)
    return submission
