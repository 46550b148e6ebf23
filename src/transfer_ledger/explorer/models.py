"""Data models for explorer responses."""

from dataclasses import dataclass
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from transfer_ledger.errors import MalformedResponseError

NO_RESULTS_MESSAGES = ("No transactions found", "No records found")


def normalize_function_name(name: str | None) -> str:
    """Strip the parameter signature from an explorer function name.

    ``"batchAll(bytes[])"`` becomes ``"batchAll"``.
    """
    if not name:
        return ""
    return name.split("(", 1)[0]


def is_failed_entry(entry: dict[str, Any]) -> bool:
    """Return True if the explorer marks the transaction as failed."""
    return str(entry.get("isError", "0")) == "1"


def _require(entry: dict[str, Any], key: str) -> str:
    value = entry.get(key)
    if value is None or value == "":
        raise MalformedResponseError(f"Transfer entry missing field {key!r}: {entry.get('hash')}")
    return str(value)


def parse_uint(raw: Any, key: str) -> int:
    """Parse an explorer decimal string into a non-negative int.

    Only plain ASCII digits are accepted; ``int()`` alone would also take
    signs, surrounding whitespace and ``_`` separators.
    """
    text = str(raw)
    if not (text.isascii() and text.isdigit()):
        raise MalformedResponseError(f"Field {key!r} is not a decimal integer: {raw!r}")
    try:
        return int(text, 10)
    except ValueError as e:
        # Longer than the interpreter's int string conversion limit.
        raise MalformedResponseError(f"Field {key!r} is too long: {len(text)} digits") from e


def _parse_int(entry: dict[str, Any], key: str) -> int:
    return parse_uint(_require(entry, key), key)


def _parse_timestamp(entry: dict[str, Any]) -> datetime:
    seconds = _parse_int(entry, "timeStamp")
    try:
        return datetime.fromtimestamp(seconds, tz=UTC)
    except (OverflowError, OSError, ValueError) as e:
        raise MalformedResponseError(f"Field 'timeStamp' is out of range: {seconds}") from e


@dataclass(frozen=True)
class TransferRecord:
    """One on-chain token transfer, parsed at the ingestion boundary."""

    hash: str
    block_number: int
    block_hash: str
    timestamp: datetime
    from_address: str
    to_address: str
    value: Decimal
    function_name: str

    @classmethod
    def from_explorer(cls, entry: dict[str, Any]) -> "TransferRecord":
        """Create a TransferRecord from a raw tokentx entry.

        Raises:
            MalformedResponseError: If a required field is missing or a numeric
                field cannot be parsed. Nothing is coerced to zero.
        """
        return cls(
            hash=_require(entry, "hash"),
            block_number=_parse_int(entry, "blockNumber"),
            block_hash=_require(entry, "blockHash"),
            timestamp=_parse_timestamp(entry),
            from_address=str(entry.get("from") or ""),
            to_address=str(entry.get("to") or ""),
            value=Decimal(_parse_int(entry, "value")),
            function_name=normalize_function_name(entry.get("functionName")),
        )


@dataclass(frozen=True)
class PageResult:
    """A single tokentx response envelope."""

    status: str
    message: str | None
    result: Any

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "PageResult":
        """Create a PageResult from a decoded JSON body."""
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Expected a JSON object, got {type(data).__name__}")
        message = data.get("message")
        return cls(
            status=str(data.get("status", "")),
            message=str(message) if message is not None else None,
            result=data.get("result"),
        )

    @property
    def is_no_transactions(self) -> bool:
        """Explicit exhaustion signal from the explorer."""
        return self.status == "0" and (self.message or "") in NO_RESULTS_MESSAGES

    @property
    def entries(self) -> list[dict[str, Any]]:
        """Raw transfer entries.

        Raises:
            MalformedResponseError: If ``result`` is not a list of objects.
        """
        if not isinstance(self.result, list):
            raise MalformedResponseError(
                f"Unexpected envelope (status={self.status!r}, message={self.message!r}): "
                f"result is {type(self.result).__name__}"
            )
        for entry in self.result:
            if not isinstance(entry, dict):
                raise MalformedResponseError(
                    f"Unexpected transfer entry type: {type(entry).__name__}"
                )
        return self.result
