"""Turn uploaded CSV/TSV/Excel files into records and keep them as one dataset."""
from __future__ import annotations

import io
import logging
import math
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import date, datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Protocol, Tuple

import numpy as np
import pandas as pd

from plotchat.errors import ParseError, UnsupportedFormatError
from plotchat.protocol import Record, dataset_columns

logger = logging.getLogger(__name__)

DELIMITERS = {".csv": ",", ".tsv": "\t", ".tab": "\t"}
SPREADSHEET_EXTENSIONS = {".xlsx", ".xls"}
SUPPORTED_EXTENSIONS = tuple(sorted(set(DELIMITERS) | SPREADSHEET_EXTENSIONS))


class UploadedFile(Protocol):
    name: str

    def getvalue(self) -> bytes:
        ...


def _serialize_value(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    if value is pd.NaT:
        return None
    if isinstance(value, np.generic):
        return _serialize_value(value.item())
    if isinstance(value, (datetime, date, pd.Timestamp)):
        return value.isoformat()
    return value


def frame_to_records(frame: pd.DataFrame) -> List[Record]:
    frame = frame.copy()
    frame.columns = [str(col) for col in frame.columns]
    return [
        {column: _serialize_value(value) for column, value in row.items()}
        for row in frame.astype(object).to_dict(orient="records")
    ]


def parse_table(content: bytes, filename: str) -> Tuple[List[str], List[Record]]:
    """Parse one uploaded file into its header and records; the extension picks the parser."""
    extension = Path(filename).suffix.lower()
    if extension not in DELIMITERS and extension not in SPREADSHEET_EXTENSIONS:
        raise UnsupportedFormatError(
            f"Unsupported file type '{extension or filename}'. Use one of: {', '.join(SUPPORTED_EXTENSIONS)}"
        )

    buffer = io.BytesIO(content)
    if extension in DELIMITERS:
        try:
            frame = pd.read_csv(buffer, sep=DELIMITERS[extension])
        except (pd.errors.ParserError, pd.errors.EmptyDataError, UnicodeDecodeError, ValueError) as exc:
            raise ParseError(f"Could not parse {filename}: {exc}") from exc
    else:
        # The Excel engines each raise their own types for corrupt workbooks
        try:
            frame = pd.read_excel(buffer, sheet_name=0)
        except Exception as exc:
            raise ParseError(f"Could not parse {filename}: {exc}") from exc

    columns = [str(column) for column in frame.columns]
    records = frame_to_records(frame)
    logger.info("Parsed %s: %d rows, %d columns", filename, len(records), len(columns))
    return columns, records


def read_table(content: bytes, filename: str) -> List[Record]:
    return parse_table(content, filename)[1]


class Dataset:
    """Records from every uploaded file, concatenated in upload order."""

    def __init__(self) -> None:
        self._files: "OrderedDict[str, List[Record]]" = OrderedDict()
        self._headers: Dict[str, List[str]] = {}

    def __contains__(self, filename: object) -> bool:
        return filename in self._files

    def __len__(self) -> int:
        return sum(len(records) for records in self._files.values())

    def __bool__(self) -> bool:
        return bool(self._files)

    @property
    def file_names(self) -> List[str]:
        return list(self._files)

    def add_file(self, filename: str, records: List[Record], columns: Optional[List[str]] = None) -> bool:
        """Add a file; a name that is already present is ignored.

        ``columns`` is the file's header, so a file with no data rows still
        contributes its columns.
        """
        if filename in self._files:
            return False
        self._files[filename] = list(records)
        self._headers[filename] = list(columns) if columns is not None else dataset_columns(records)
        return True

    def remove_file(self, filename: str) -> bool:
        self._headers.pop(filename, None)
        return self._files.pop(filename, None) is not None

    @property
    def rows(self) -> List[Record]:
        combined: List[Record] = []
        for records in self._files.values():
            combined.extend(records)
        return combined

    @property
    def columns(self) -> List[str]:
        seen: Dict[str, None] = {}
        for header in self._headers.values():
            for column in header:
                seen.setdefault(column, None)
        return list(seen)

    def row_counts(self) -> Dict[str, int]:
        return {name: len(records) for name, records in self._files.items()}


@dataclass
class SyncResult:
    changed: bool = False
    added: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    duplicates: List[str] = field(default_factory=list)
    errors: Dict[str, str] = field(default_factory=dict)


def sync_uploads(dataset: Dataset, uploads: Iterable[UploadedFile]) -> SyncResult:
    """Make ``dataset`` match the files currently in the upload widget.

    Only files not seen before are parsed. A second upload with a name already
    in use is reported as a duplicate and ignored.
    """
    result = SyncResult()
    uploads = list(uploads or [])
    current_names = {upload.name for upload in uploads}

    for name in dataset.file_names:
        if name not in current_names:
            dataset.remove_file(name)
            result.removed.append(name)

    seen = set()
    for upload in uploads:
        if upload.name in seen:
            result.duplicates.append(upload.name)
            continue
        seen.add(upload.name)
        if upload.name in dataset:
            continue
        try:
            columns, records = parse_table(upload.getvalue(), upload.name)
        except (UnsupportedFormatError, ParseError) as exc:
            result.errors[upload.name] = exc.message
            continue
        dataset.add_file(upload.name, records, columns)
        result.added.append(upload.name)

    result.changed = bool(result.added or result.removed)
    return result
