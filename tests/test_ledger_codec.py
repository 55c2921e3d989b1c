"""Чтение и запись xlsx-таблицы."""

from datetime import datetime
from io import BytesIO

import pytest
from openpyxl import Workbook, load_workbook

from ledger_codec import HEADER, Ledger, LedgerRow, decode, encode
from ledger_errors import DecodeError


def _xlsx(rows: list[list]) -> bytes:
    wb = Workbook()
    ws = wb.active
    for row in rows:
        ws.append(row)
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()


def test_empty_ledger_round_trip() -> None:
    data = encode(Ledger())
    assert decode(data).rows == []

    ws = load_workbook(BytesIO(data)).worksheets[0]
    assert [c.value for c in ws[1]] == HEADER
    assert ws.title == "Sheet1"


def test_rows_round_trip_keep_order_and_empty_fields() -> None:
    ledger = Ledger(rows=[
        LedgerRow("01.10.26", "rent", amount_in=1000, percent=10, amount_with_percent=1100, balance=1100),
        LedgerRow("02.10.26", "food", amount_out=200, balance=900),
        LedgerRow("03.10.26", "bonus", amount_in=333, percent=-10, amount_with_percent=299.7, balance=1199.7),
    ])

    decoded = decode(encode(ledger))

    assert decoded.rows == ledger.rows
    assert decoded.rows[1].amount_in is None
    assert decoded.rows[1].percent is None
    assert decoded.rows[0].amount_out is None


def test_decode_maps_columns_by_header_name() -> None:
    data = _xlsx([
        ["Balance", "Name", "Out", "Date"],
        [50, "taxi", 50, "05.10.26"],
    ])

    row = decode(data).rows[0]

    assert row.name == "taxi"
    assert row.amount_out == 50
    assert row.balance == 50
    assert row.date == "05.10.26"
    assert row.amount_in is None


def test_decode_skips_empty_rows_and_parses_text_numbers() -> None:
    data = _xlsx([
        HEADER,
        ["01.10.26", "rent", "1 000", "10", "1100", None, "1100"],
        [None, None, None, None, None, None, None],
        ["02.10.26", "fee", None, None, None, "12,5", "1087,5"],
    ])

    rows = decode(data).rows

    assert len(rows) == 2
    assert rows[0].amount_in == 1000
    assert rows[1].amount_out == 12.5
    assert rows[1].balance == 1087.5


def test_decode_formats_date_cells() -> None:
    data = _xlsx([HEADER, [datetime(2026, 10, 19), "rent", 1, 0, 1, None, 1]])

    assert decode(data).rows[0].date == "19.10.26"


def test_decode_rejects_non_xlsx() -> None:
    with pytest.raises(DecodeError):
        decode(b"definitely not a spreadsheet")


def test_last_balance() -> None:
    assert Ledger().last_balance == 0
    ledger = Ledger(rows=[LedgerRow("01.10.26", "x", amount_out=5, balance=None)])
    assert ledger.last_balance == 0
    ledger.rows.append(LedgerRow("02.10.26", "y", amount_out=5, balance=-10))
    assert ledger.last_balance == -10


@pytest.mark.parametrize("name", ["=1+1", "=SUM(1,2)", "=HYPERLINK(\"http://x\")"])
def test_names_starting_with_equals_stay_text(name) -> None:
    ledger = Ledger(rows=[LedgerRow("=01.10.26", name, amount_out=5, balance=-5)])

    data = encode(ledger)

    assert decode(data).rows == ledger.rows
    cell = load_workbook(BytesIO(data)).worksheets[0]["B2"]
    assert cell.data_type == "s"
    assert cell.value == name


def test_text_with_letters_is_not_a_number() -> None:
    data = _xlsx([HEADER, ["01.10.26", "rent", None, None, None, "5", "abc12"]])

    row = decode(data).rows[0]

    assert row.balance is None
    assert decode(data).last_balance == 0
