"""CSV parsing and writing helpers shared by the import/export endpoints."""
import csv
import io
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional, Sequence

from fastapi.responses import StreamingResponse

from medstock.core.exceptions import ValidationError

DATE_FORMATS = ("%d-%m-%Y", "%d/%m/%Y", "%Y-%m-%d", "%Y/%m/%d")

# canonical field -> accepted header spellings (compared case-insensitively)
DRUG_HEADER_ALIASES = {
    "name": ("name", "drug_name", "drug name"),
    "drug_type": ("drug_type", "drug type", "type"),
    "batch_no": ("batch_no", "batch no", "batch"),
    "description": ("description",),
    "stock": ("stock", "quantity"),
    "price": ("price",),
    "category": ("category",),
    "mfg_date": ("mfg_date", "mfg date", "manufacturing date"),
    "exp_date": ("exp_date", "exp date", "expiry date", "expiry"),
}

DISPENSING_HEADER_ALIASES = {
    "drug_name": ("drug_name", "drug name", "name"),
    "quantity_dispensed": ("quantity_dispensed", "quantity dispensed", "quantity"),
    "notes": ("notes",),
}


def decode_upload(raw: bytes) -> str:
    """Decode uploaded bytes; tolerate a UTF-8 BOM and fall back to latin-1."""
    if not raw:
        raise ValidationError("No CSV file uploaded")
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        return raw.decode("latin-1")


def read_dict_rows(text: str, aliases: Dict[str, Sequence[str]]) -> List[Dict[str, str]]:
    """
    Parse a header-driven CSV into dicts keyed by canonical field names.

    Unknown columns are dropped, values are stripped, blank lines skipped.
    """
    reader = csv.DictReader(io.StringIO(text))
    if not reader.fieldnames:
        return []

    lookup = {}
    for header in reader.fieldnames:
        if header is None:
            continue
        key = header.strip().lower()
        for field, spellings in aliases.items():
            if key in spellings and field not in lookup.values():
                lookup[header] = field
                break

    rows = []
    for raw in reader:
        if not any((v or "").strip() for v in raw.values() if isinstance(v, str)):
            continue
        row = {field: "" for field in aliases}
        for header, field in lookup.items():
            value = raw.get(header)
            row[field] = value.strip() if isinstance(value, str) else ""
        rows.append(row)
    return rows


def read_first_column(text: str) -> List[str]:
    """Non-empty first-column values, one per row, header included."""
    values = []
    for record in csv.reader(io.StringIO(text)):
        cells = [c.strip() for c in record if c and c.strip()]
        if cells:
            values.append(cells[0])
    return values


def read_rows(text: str) -> List[List[str]]:
    return [[c.strip() for c in record] for record in csv.reader(io.StringIO(text)) if any(c.strip() for c in record)]


def parse_date(value: Optional[str]) -> Optional[date]:
    """Parse DD-MM-YYYY, DD/MM/YYYY, YYYY-MM-DD or YYYY/MM/DD. Blank -> None."""
    if value is None or not str(value).strip():
        return None
    value = str(value).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(value, fmt).date()
        except ValueError:
            continue
    raise ValueError(f"Invalid date '{value}'. Use DD-MM-YYYY, DD/MM/YYYY, YYYY-MM-DD or YYYY/MM/DD")


def parse_int(value: Optional[str], field: str) -> Optional[int]:
    if value is None or not str(value).strip():
        return None
    text = str(value).strip()
    try:
        return int(text)
    except ValueError:
        pass
    try:
        number = float(text)
    except ValueError:
        raise ValueError(f"Invalid {field} '{value}'")
    if not number.is_integer():
        raise ValueError(f"Invalid {field} '{value}'")
    return int(number)


def csv_response(header: Sequence[str], rows: Iterable[Sequence], filename: str) -> StreamingResponse:
    """Render rows into an in-memory CSV download."""
    output = io.StringIO()
    writer = csv.writer(output)
    writer.writerow(header)
    for row in rows:
        writer.writerow(row)

    output.seek(0)
    return StreamingResponse(
        iter([output.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f"attachment; filename={filename}"},
    )
