"""Tests for explorer response models."""

from datetime import UTC, datetime
from decimal import Decimal

import pytest

from transfer_ledger.errors import MalformedResponseError
from transfer_ledger.explorer.models import (
    PageResult,
    TransferRecord,
    is_failed_entry,
    normalize_function_name,
    parse_uint,
)


class TestNormalizeFunctionName:
    @pytest.mark.parametrize(
        ("raw", "expected"),
        [
            ("transfer(address,uint256)", "transfer"),
            ("settleTournament(uint256,address[])", "settleTournament"),
            ("batchAll(bytes[])", "batchAll"),
            ("approve", "approve"),
            ("", ""),
            (None, ""),
        ],
    )
    def test_normalize(self, raw: str | None, expected: str) -> None:
        assert normalize_function_name(raw) == expected


class TestIsFailedEntry:
    def test_failed(self) -> None:
        assert is_failed_entry({"isError": "1"}) is True

    def test_succeeded(self) -> None:
        assert is_failed_entry({"isError": "0"}) is False

    def test_missing_flag_is_not_failed(self) -> None:
        assert is_failed_entry({}) is False


class TestTransferRecord:
    def test_from_explorer(self, make_entry, tx_hash, holder_address) -> None:
        entry = make_entry(1, 4_000_000, value="123456789012345678901234567890")

        record = TransferRecord.from_explorer(entry)

        assert record.hash == tx_hash(1)
        assert record.block_number == 4_000_000
        assert record.block_hash == "0x" + "b" * 64
        assert record.timestamp == datetime(2023, 11, 14, 22, 13, 20, tzinfo=UTC)
        assert record.from_address == holder_address
        assert record.value == Decimal("123456789012345678901234567890")
        assert record.function_name == "transfer"

    def test_empty_function_name(self, make_entry) -> None:
        record = TransferRecord.from_explorer(make_entry(1, 10, function_name=""))
        assert record.function_name == ""

    @pytest.mark.parametrize("field", ["hash", "blockNumber", "blockHash", "timeStamp", "value"])
    def test_missing_required_field(self, make_entry, field: str) -> None:
        entry = make_entry(1, 10)
        del entry[field]
        with pytest.raises(MalformedResponseError):
            TransferRecord.from_explorer(entry)

    @pytest.mark.parametrize("value", ["abc", "-5", "1.5", "NaN", "1_000", " 12 ", "+7", "\u0661"])
    def test_invalid_value_is_not_coerced(self, make_entry, value: str) -> None:
        with pytest.raises(MalformedResponseError):
            TransferRecord.from_explorer(make_entry(1, 10, value=value))

    def test_non_decimal_block_number(self, make_entry) -> None:
        entry = make_entry(1, 10)
        entry["blockNumber"] = "0x10"
        with pytest.raises(MalformedResponseError):
            TransferRecord.from_explorer(entry)


class TestPageResult:
    def test_no_transactions_found(self) -> None:
        page = PageResult.from_dict({"status": "0", "message": "No transactions found", "result": []})
        assert page.is_no_transactions is True

    def test_other_status_zero_is_not_exhaustion(self) -> None:
        page = PageResult.from_dict({"status": "0", "message": "NOTOK", "result": "Invalid API Key"})
        assert page.is_no_transactions is False
        with pytest.raises(MalformedResponseError):
            _ = page.entries

    def test_entries(self, make_entry) -> None:
        entries = [make_entry(1, 10), make_entry(2, 11)]
        page = PageResult.from_dict({"status": "1", "message": "OK", "result": entries})
        assert page.is_no_transactions is False
        assert page.entries == entries

    def test_entries_must_be_objects(self) -> None:
        page = PageResult.from_dict({"status": "1", "message": "OK", "result": ["0xabc"]})
        with pytest.raises(MalformedResponseError):
            _ = page.entries

    def test_from_dict_rejects_non_object(self) -> None:
        with pytest.raises(MalformedResponseError):
            PageResult.from_dict(["not", "an", "object"])  # type: ignore[arg-type]


class TestTransferRecordNumericFields:
    @pytest.mark.parametrize("raw", ["1_000", " 12 ", "+12", "12\n"])
    def test_block_number_must_be_plain_digits(self, make_entry, raw: str) -> None:
        entry = make_entry(1, 10)
        entry["blockNumber"] = raw
        with pytest.raises(MalformedResponseError):
            TransferRecord.from_explorer(entry)

    def test_timestamp_out_of_range(self, make_entry) -> None:
        entry = make_entry(1, 10)
        entry["timeStamp"] = "99999999999999999"
        with pytest.raises(MalformedResponseError):
            TransferRecord.from_explorer(entry)


class TestParseUint:
    def test_plain_digits(self) -> None:
        assert parse_uint("4000000", "blockNumber") == 4_000_000

    def test_oversized_digit_string(self) -> None:
        with pytest.raises(MalformedResponseError):
            parse_uint("9" * 10_000, "value")
