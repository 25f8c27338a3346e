"""
Unit tests for submission parsing.

System role: Verification of CSV/JSON row conversion and policy parsing
"""

import json

import pytest

from product_import.application.parsers import (
    parse_caption_image_input,
    parse_csv,
    parse_existing_behavior,
    parse_json_items,
)
from product_import.boundary.db.models.import_job_model import CaptionImageInput, ExistingBehavior
from product_import.core.exceptions import ValidationError
from product_import.models.import_job import ImportItemInput


class TestParseExistingBehavior:
    """Test suite for parse_existing_behavior()."""

    @pytest.mark.parametrize("value", [None, "", "  ", "skip", "overwrite"])
    def test_should_default_to_skip(self, value) -> None:
        assert parse_existing_behavior(value) == ExistingBehavior.SKIP

    def test_should_accept_delete_then_insert(self) -> None:
        assert parse_existing_behavior("delete_then_insert") == ExistingBehavior.DELETE_THEN_INSERT

    def test_should_reject_unknown_value(self) -> None:
        with pytest.raises(ValidationError) as exc_info:
            parse_existing_behavior("replace")

        assert exc_info.value.details["field"] == "existing_behavior"


class TestParseCaptionImageInput:
    """Test suite for parse_caption_image_input()."""

    def test_should_return_none_when_missing(self) -> None:
        assert parse_caption_image_input(None) is None
        assert parse_caption_image_input("") is None

    def test_should_parse_known_modes(self) -> None:
        assert parse_caption_image_input("data_url") == CaptionImageInput.DATA_URL
        assert parse_caption_image_input("url") == CaptionImageInput.URL

    def test_should_reject_unknown_mode(self) -> None:
        with pytest.raises(ValidationError):
            parse_caption_image_input("base64")


class TestParseCsv:
    """Test suite for parse_csv()."""

    def test_should_normalise_headers_and_aliases(self) -> None:
        payload = json.dumps({"id": "P1", "name": "Tea"})
        content = "\ufeff City_CD ,ProductID,JSON\n13101,P1,\"" + payload.replace('"', '""') + "\"\n"

        submission = parse_csv(content)

        assert submission.invalid_count == 0
        assert submission.rows == [
            {
                "row_index": 2,
                "city_code": "13101",
                "product_id": "P1",
                "product_json": payload,
                "status": "pending",
            }
        ]

    def test_should_drop_empty_rows_and_prefail_rows_without_payload(self) -> None:
        content = "city_code,product_id,product_json\n,,\n13101,P2,\n13101,P3,{}\n"

        submission = parse_csv(content)

        assert submission.invalid_count == 1
        assert [row["row_index"] for row in submission.rows] == [2, 3]
        assert submission.rows[0]["status"] == "failed"
        assert submission.rows[0]["last_error"] == "product_json is required"
        assert submission.rows[1]["status"] == "pending"

    @pytest.mark.parametrize("content", ["", "city_code,product_id,product_json\n", "a,b\n,\n"])
    def test_should_reject_csv_without_data(self, content) -> None:
        with pytest.raises(ValidationError):
            parse_csv(content)


class TestParseJsonItems:
    """Test suite for parse_json_items()."""

    def test_should_convert_camel_case_items(self) -> None:
        items = [
            ImportItemInput.model_validate(
                {"rowIndex": 1, "cityCode": " ", "productId": "P1", "productJson": '{"id": "P1"}'}
            )
        ]

        submission = parse_json_items(items)

        assert submission.invalid_count == 0
        assert submission.rows[0]["city_code"] is None
        assert submission.rows[0]["product_id"] == "P1"
        assert submission.rows[0]["status"] == "pending"

    def test_should_keep_client_failures_and_prefail_empty_payloads(self) -> None:
        items = [
            ImportItemInput(row_index=1, status="failed", error="bad price"),
            ImportItemInput(row_index=2, status="failed"),
            ImportItemInput(row_index=3, product_json="   "),
        ]

        submission = parse_json_items(items)

        assert submission.invalid_count == 3
        assert [row["last_error"] for row in submission.rows] == [
            "bad price",
            "invalid row",
            "product_json is required",
        ]

    def test_item_input_should_reject_non_positive_row_index(self) -> None:
        with pytest.raises(ValueError):
            ImportItemInput(row_index=0, product_json="{}")
