"""
Record Store - typed CRUD over a spreadsheet tab.

The remote table has no primary-key index, no upsert and no transactions.
What we get is "read the whole range" and "write this range". On top of that:

- A TableSchema maps logical field names to column positions. Field i lives
  in column first_column + i whether or not it is populated, so the ORDER of
  the columns list is the physical layout. Moving a column is a schema edit,
  not a code change.
- Lookups are linear scans over a fresh read. Row numbers are never cached:
  a delete shifts every row below it, so each update/delete re-scans right
  before writing.
- Updates are merge-preserve: the current row is re-read and only the fields
  the caller supplied are replaced, every other cell is written back exactly
  as it was read.

Read-then-write is not atomic. Two writers updating the same key race and the
last write wins.
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Dict, Generic, Iterable, List, Optional, Tuple, Type, TypeVar

from errors import MalformedRow, RecordNotFound
from sheets_client import SheetsClient

logger = logging.getLogger("leadsync.record_store")

T = TypeVar("T")

KINDS = ("str", "int", "float", "bool")
FALSE_VALUES = {"FALSE", "NO", "0"}


def column_letter(index: int) -> str:
    """0 -> A, 25 -> Z, 26 -> AA"""
    letters = ""
    index += 1
    while index > 0:
        index, rem = divmod(index - 1, 26)
        letters = chr(ord("A") + rem) + letters
    return letters


def column_index(letters: str) -> int:
    """A -> 0, Z -> 25, AA -> 26"""
    index = 0
    for ch in letters.upper():
        index = index * 26 + (ord(ch) - ord("A") + 1)
    return index - 1


@dataclass(frozen=True)
class Column:
    name: str
    kind: str = "str"
    required: bool = False
    default: Any = None  # value when the cell is empty
    true_value: str = "TRUE"  # what a True bool is written as

    def __post_init__(self):
        if self.kind not in KINDS:
            raise ValueError(f"Unknown column kind {self.kind!r} for {self.name}")

    def parse(self, raw: Optional[str]) -> Any:
        text = "" if raw is None else str(raw).strip()
        if text == "":
            if self.default is None and self.kind == "str":
                return ""
            return self.default

        if self.kind == "str":
            return str(raw)
        if self.kind == "bool":
            upper = text.upper()
            if upper in ("TRUE", "YES", self.true_value.upper()):
                return True
            if upper in FALSE_VALUES:
                return False
            return False
        if self.kind == "int":
            try:
                return int(float(text.replace(",", "")))
            except ValueError:
                return self.default
        try:
            return float(text.rstrip("%").replace(",", ""))
        except ValueError:
            return self.default

    def serialize(self, value: Any) -> str:
        """Unset values become empty strings, never null."""
        if value is None:
            return ""
        if self.kind == "bool":
            if isinstance(value, str):
                return value
            return self.true_value if value else "FALSE"
        return str(value)


class TableSchema:
    """Column-mapping for one tab."""

    def __init__(self,
                 table: str,
                 columns: Iterable[Column],
                 key: str = None,
                 first_column: str = "A",
                 header_rows: int = 1):
        self.table = table
        self.columns: List[Column] = list(columns)
        if not self.columns:
            raise ValueError(f"{table}: schema has no columns")
        self.key = key or self.columns[0].name
        self.first_column = first_column.upper()
        self.header_rows = header_rows

        self._positions = {c.name: i for i, c in enumerate(self.columns)}
        if len(self._positions) != len(self.columns):
            raise ValueError(f"{table}: duplicate column names")
        if self.key not in self._positions:
            raise ValueError(f"{table}: key column {self.key!r} not in schema")

    @property
    def width(self) -> int:
        return len(self.columns)

    @property
    def field_names(self) -> List[str]:
        return [c.name for c in self.columns]

    @property
    def last_column(self) -> str:
        return column_letter(column_index(self.first_column) + self.width - 1)

    def position(self, name: str) -> int:
        try:
            return self._positions[name]
        except KeyError:
            raise ValueError(f"{self.table} has no field {name!r}") from None

    def column(self, name: str) -> Column:
        return self.columns[self.position(name)]

    def body_range(self) -> str:
        return f"{self.table}!{self.first_column}{self.header_rows + 1}:{self.last_column}"

    def append_range(self) -> str:
        return f"{self.table}!{self.first_column}:{self.last_column}"

    def row_range(self, row_number: int) -> str:
        return f"{self.table}!{self.first_column}{row_number}:{self.last_column}{row_number}"

    def row_number(self, body_index: int) -> int:
        """Sheet row (1-based) for the body_index-th row of a body_range() read."""
        return self.header_rows + body_index + 1

    def pad(self, row: List[Any]) -> List[str]:
        """The API drops trailing empty cells; put them back."""
        cells = ["" if v is None else str(v) for v in row[:self.width]]
        return cells + [""] * (self.width - len(cells))

    def parse_row(self, row: List[Any], row_number: int) -> Dict[str, Any]:
        cells = self.pad(row)
        for column, raw in zip(self.columns, cells):
            if column.required and not raw.strip():
                raise MalformedRow(self.table, row_number, f"missing required field {column.name!r}")
        return self.parse_cells(cells)

    def parse_cells(self, cells: List[str]) -> Dict[str, Any]:
        """Typed values for a padded row, no presence checks. Keys come back trimmed."""
        values = {column.name: column.parse(raw) for column, raw in zip(self.columns, cells)}
        values[self.key] = str(values[self.key] or "").strip()
        return values

    def serialize(self, values: Dict[str, Any]) -> List[str]:
        return [column.serialize(values.get(column.name)) for column in self.columns]

    def merge(self, current_row: List[Any], updates: Dict[str, Any]) -> List[str]:
        """
        Field-level merge. A field is replaced only when its key is present and
        the value is not None; every other cell is copied verbatim from current_row.
        """
        unknown = [name for name in updates if name not in self._positions]
        if unknown:
            raise ValueError(f"{self.table} has no field(s): {', '.join(unknown)}")

        merged = self.pad(current_row)
        for name, value in updates.items():
            if value is None:
                continue
            merged[self._positions[name]] = self.column(name).serialize(value)
        return merged


def _as_dict(record: Any) -> Dict[str, Any]:
    if isinstance(record, dict):
        return record
    if dataclasses.is_dataclass(record):
        return dataclasses.asdict(record)
    raise TypeError(f"Cannot serialize record of type {type(record).__name__}")


class RecordStore(Generic[T]):
    """
    CRUD over one tab described by a TableSchema.

    record_type is any callable taking the schema's fields as keyword
    arguments (normally a dataclass). Without one, records are plain dicts.
    """

    def __init__(self, client: SheetsClient, schema: TableSchema, record_type: Type[T] = None):
        self.client = client
        self.schema = schema
        self.record_type = record_type

    @property
    def table(self) -> str:
        return self.schema.table

    def _build(self, values: Dict[str, Any]) -> T:
        return self.record_type(**values) if self.record_type else values

    def _read_rows(self) -> List[List[Any]]:
        return self.client.get_values(self.schema.body_range())

    def list_all(self) -> List[T]:
        """Every well-formed row. Rows missing required fields are logged and skipped."""
        records = []
        dropped = 0
        for index, row in enumerate(self._read_rows()):
            row_number = self.schema.row_number(index)
            try:
                records.append(self._build(self.schema.parse_row(row, row_number)))
            except MalformedRow as e:
                dropped += 1
                logger.warning(f"Dropping malformed row: {e}")
        if dropped:
            logger.info(f"{self.table}: {len(records)} records loaded, {dropped} malformed rows skipped")
        return records

    def filter_by_field(self, field: str, value: Any) -> List[T]:
        """Client-side filter; there is no indexed query on the remote side."""
        self.schema.position(field)
        return [r for r in self.list_all() if _as_dict(r).get(field) == value]

    def _locate(self, key: str) -> Tuple[int, List[str]]:
        """Fresh scan for key. Returns (sheet row number, padded current row)."""
        key_pos = self.schema.position(self.schema.key)
        key = key.strip()
        for index, row in enumerate(self._read_rows()):
            cells = self.schema.pad(row)
            if cells[key_pos].strip() == key:
                return self.schema.row_number(index), cells
        raise RecordNotFound(self.table, key)

    def find_by_key(self, key: str) -> Optional[T]:
        try:
            row_number, cells = self._locate(key)
        except RecordNotFound:
            return None
        try:
            return self._build(self.schema.parse_row(cells, row_number))
        except MalformedRow as e:
            logger.warning(f"Record {key!r} found but malformed: {e}")
            return None

    def get(self, key: str) -> T:
        record = self.find_by_key(key)
        if record is None:
            raise RecordNotFound(self.table, key)
        return record

    def append(self, record: Any) -> bool:
        values = _as_dict(record)
        if not values.get(self.schema.key):
            raise ValueError(f"{self.table}: record has no {self.schema.key}")
        self.client.append_row(self.schema.append_range(), self.schema.serialize(values))
        logger.info(f"Appended {self.schema.key}={values[self.schema.key]} to {self.table}")
        return True

    def update_by_key(self, key: str, updates: Dict[str, Any]) -> T:
        """
        Merge-preserve update. Re-reads the table, locates the row, overwrites
        only the supplied fields and writes the full row back to the same row.
        Returns the record as written.
        """
        row_number, current = self._locate(key)
        merged = self.schema.merge(current, updates)
        self.client.update_row(self.schema.row_range(row_number), merged)
        logger.debug(f"Updated {self.table} row {row_number} ({key}): {sorted(updates)}")
        return self._build(self.schema.parse_cells(merged))

    def delete_by_key(self, key: str) -> bool:
        row_number, _ = self._locate(key)
        self.client.delete_row(self.table, row_number)
        logger.info(f"Deleted {self.table} row {row_number} ({key})")
        return True
