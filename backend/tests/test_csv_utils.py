from datetime import date

import pytest

from medstock.core.exceptions import ValidationError
from medstock.services.csv_utils import (
    DISPENSING_HEADER_ALIASES,
    decode_upload,
    parse_date,
    parse_int,
    read_dict_rows,
    read_first_column,
)


@pytest.mark.parametrize("value", ["31-12-2026", "31/12/2026", "2026-12-31", "2026/12/31"])
def test_parse_date_formats(value):
    assert parse_date(value) == date(2026, 12, 31)


def test_parse_date_blank_and_invalid():
    assert parse_date("  ") is None
    with pytest.raises(ValueError):
        parse_date("31.12.2026")


def test_parse_int():
    assert parse_int("12", "stock") == 12
    assert parse_int("12.0", "stock") == 12
    assert parse_int("", "stock") is None
    with pytest.raises(ValueError, match="Invalid stock '1.5'"):
        parse_int("1.5", "stock")


def test_decode_upload():
    assert decode_upload("\ufeffname\n".encode("utf-8")) == "name\n"
    assert decode_upload("café".encode("latin-1")) == "café"
    with pytest.raises(ValidationError):
        decode_upload(b"")


def test_read_dict_rows_maps_header_aliases():
    text = "Drug Name,QUANTITY,Extra\n Paracetamol , 5 ,x\n,,\n"

    rows = read_dict_rows(text, DISPENSING_HEADER_ALIASES)

    assert rows == [{"drug_name": "Paracetamol", "quantity_dispensed": "5", "notes": ""}]


def test_read_first_column():
    assert read_first_column("Drug Types\nTablet,ignored\n\n , Syrup\n") == ["Drug Types", "Tablet", "Syrup"]
