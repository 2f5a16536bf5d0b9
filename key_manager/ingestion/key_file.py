"""Read name/hash pairs (CSV, TSV or JSON) and account lists (CSV or TSV)."""

import csv
import json
from pathlib import Path
from typing import Any, List, Optional, Union

import structlog
from pydantic import ValidationError

from ..client.models import KeyManagerError
from ..selection.models import AccountEntry, KeyTarget

logger = structlog.get_logger(__name__)


class FileParseError(KeyManagerError):
    """Raised when a key file cannot be read or has malformed records."""

    def __init__(self, message: str, path: Optional[str] = None):
        super().__init__(message, "FILE_PARSE_ERROR", details={"path": path})


def detect_delimiter(path: Path) -> str:
    return "\t" if path.suffix.lower() == ".tsv" else ","


def _target(name: Any, key_hash: Any, where: str) -> KeyTarget:
    try:
        return KeyTarget(name=str(name or "").strip(), hash=str(key_hash or "").strip())
    except ValidationError:
        raise FileParseError(f"Missing name or hash in {where}")


def _read_json(path: Path, text: str) -> List[KeyTarget]:
    data = json.loads(text)
    if not isinstance(data, list):
        raise FileParseError("JSON file must contain an array", str(path))

    targets = []
    for index, item in enumerate(data, 1):
        if not isinstance(item, dict):
            raise FileParseError(f"Record {index} is not an object", str(path))
        targets.append(
            _target(item.get("name") or item.get("keyName"), item.get("hash"), f"record {index}")
        )
    return targets


def _read_delimited(
    path: Path, text: str, delimiter: str, has_header: bool
) -> List[KeyTarget]:
    lines = [line for line in text.splitlines() if line.strip()]
    targets = []

    if has_header:
        reader = csv.DictReader(lines, delimiter=delimiter)
        fields = [f.strip() for f in reader.fieldnames or []]
        if "name" not in fields or "hash" not in fields:
            raise FileParseError(
                "Missing required fields. Expected 'name' and 'hash' columns", str(path)
            )
        for row_number, row in enumerate(reader, 2):
            row = {(k or "").strip(): v for k, v in row.items()}
            targets.append(_target(row.get("name"), row.get("hash"), f"row {row_number}"))
        return targets

    for row_number, row in enumerate(csv.reader(lines, delimiter=delimiter), 1):
        if len(row) < 2:
            raise FileParseError(
                "Invalid record format. Expected at least 2 columns "
                f"(name, hash), got {len(row)}",
                str(path),
            )
        targets.append(_target(row[0], row[1], f"row {row_number}"))
    return targets


def read_key_file(
    path: Union[str, Path],
    delimiter: Optional[str] = None,
    has_header: bool = True,
) -> List[KeyTarget]:
    """Load the keys listed in a file, in file order.

    Args:
        path: .json array of {name|keyName, hash}, or CSV/TSV
        delimiter: Field delimiter, detected from the extension if omitted
        has_header: Whether the first CSV row names the columns

    Raises:
        FileParseError: Unreadable file or malformed record
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
        if path.suffix.lower() == ".json":
            targets = _read_json(path, text)
        else:
            targets = _read_delimited(
                path, text, delimiter or detect_delimiter(path), has_header
            )
    except FileParseError:
        raise
    except (OSError, ValueError, csv.Error) as e:
        raise FileParseError(f"Failed to parse key file {path}: {e}", str(path)) from e

    logger.info("Key file loaded", path=str(path), count=len(targets))
    return targets


def read_account_file(
    path: Union[str, Path],
    delimiter: Optional[str] = None,
    has_header: bool = True,
) -> List[AccountEntry]:
    """Load accounts for a batch create: email first, any further columns are tags.

    Empty tag cells are dropped. Emails are not validated here so a bad row
    fails on its own during the batch.

    Raises:
        FileParseError: Unreadable file or a row without an email
    """
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8-sig")
        lines = [line for line in text.splitlines() if line.strip()]
        rows = list(csv.reader(lines, delimiter=delimiter or detect_delimiter(path)))
    except (OSError, ValueError, csv.Error) as e:
        raise FileParseError(f"Failed to parse account file {path}: {e}", str(path)) from e

    if has_header:
        rows = rows[1:]

    accounts = []
    for row_number, row in enumerate(rows, 2 if has_header else 1):
        cells = [cell.strip() for cell in row]
        if not cells or not cells[0]:
            raise FileParseError(
                f"Invalid record format in row {row_number}. Expected an email "
                "in the first column",
                str(path),
            )
        accounts.append(AccountEntry(email=cells[0], tags=[c for c in cells[1:] if c]))

    logger.info("Account file loaded", path=str(path), count=len(accounts))
    return accounts
