import csv
from typing import Any, Dict, Iterable, List, Mapping, TextIO

EXPORT_COLUMNS = [
    "id",
    "name",
    "unit",
    "category",
    "brand",
    "stock",
    "status",
    "image",
    "created_at",
    "updated_at",
]

_SPECIAL_CHARS = (",", '"', "\n")


def escape_csv_field(value: Any) -> str:
    """
    Render a single CSV field.

    None becomes an empty string. The value is quoted (with inner quotes
    doubled) only when it contains a comma, a double quote or a newline.
    """
    if value is None:
        return ""
    text = str(value)
    if any(char in text for char in _SPECIAL_CHARS):
        return '"' + text.replace('"', '""') + '"'
    return text


def encode_products_csv(rows: Iterable[Mapping[str, Any]]) -> str:
    """
    Encode product rows as a CSV document with a fixed column order.

    Args:
        rows: Mappings keyed by column name, already in output order

    Returns:
        Header line followed by one line per row, joined with "\\n"
    """
    lines = [",".join(EXPORT_COLUMNS)]
    for row in rows:
        lines.append(",".join(escape_csv_field(row.get(column)) for column in EXPORT_COLUMNS))
    return "\n".join(lines)


def read_csv_records(stream: TextIO) -> List[Dict[str, str]]:
    """
    Parse a delimited text stream into records keyed by header name.

    Header names are stripped and lower-cased so "NAME" and " name " both
    map to "name". Columns without a header are dropped.
    """
    reader = csv.DictReader(stream)
    records = []
    for row in reader:
        records.append({
            key.strip().lower(): value
            for key, value in row.items()
            if isinstance(key, str)
        })
    return records
