"""
Чтение и запись таблицы-реестра в формате xlsx (openpyxl).
Первый лист, первая строка — заголовок; дальше по строке на операцию.
Колонки: Date, Name, In, Percent, Amount with %, Out, Balance.
"""

import re
import zipfile
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
from typing import Optional, Union

from openpyxl import Workbook, load_workbook
from openpyxl.utils.exceptions import InvalidFileException

from ledger_errors import DecodeError

Number = Union[int, float]

SHEET_NAME = "Sheet1"

COL_DATE = "Date"
COL_NAME = "Name"
COL_IN = "In"
COL_PERCENT = "Percent"
COL_AMOUNT_WITH_PERCENT = "Amount with %"
COL_OUT = "Out"
COL_BALANCE = "Balance"

HEADER = [COL_DATE, COL_NAME, COL_IN, COL_PERCENT, COL_AMOUNT_WITH_PERCENT, COL_OUT, COL_BALANCE]

DATE_FORMAT = "%d.%m.%y"

# Колонки, которые всегда пишутся как текст: строка с «=» иначе станет формулой
_TEXT_COLUMNS = (HEADER.index(COL_DATE) + 1, HEADER.index(COL_NAME) + 1)

_LETTER_RE = re.compile(r"[^\W\d_]")


@dataclass
class LedgerRow:
    """Одна операция. Для поступления заполнены In/Percent/Amount with %, для выбытия — Out."""

    date: str
    name: str
    amount_in: Optional[Number] = None
    percent: Optional[Number] = None
    amount_with_percent: Optional[Number] = None
    amount_out: Optional[Number] = None
    balance: Optional[Number] = None

    @property
    def is_in(self) -> bool:
        return self.amount_in is not None

    def to_cells(self) -> list:
        # Пустые поля — пустые ячейки, не ноль
        return [
            self.date or None,
            self.name or None,
            self.amount_in,
            self.percent,
            self.amount_with_percent,
            self.amount_out,
            self.balance,
        ]


@dataclass
class Ledger:
    rows: list[LedgerRow] = field(default_factory=list)

    @property
    def last_balance(self) -> Number:
        """Баланс последней строки; для пустой таблицы или нечислового значения — 0."""
        if not self.rows:
            return 0
        return self.rows[-1].balance or 0


def format_date(d: date) -> str:
    """Дата в формате ДД.ММ.ГГ."""
    return d.strftime(DATE_FORMAT)


def _parse_number(value) -> Optional[Number]:
    """Число из ячейки. Строки разбираются как в реестре: пробел — тысячи, запятая — десятичная."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return value
    s = str(value).strip()
    # Текст с буквами — повреждённая ячейка, не число: «abc12» → None
    if _LETTER_RE.search(s):
        return None
    s = s.replace(" ", "").replace(",", ".")
    s = re.sub(r"[^\d.\-]", "", s)
    if not s:
        return None
    try:
        f = float(s)
    except ValueError:
        return None
    return int(f) if f.is_integer() else f


def _cell_text(value) -> str:
    if value is None:
        return ""
    if isinstance(value, (datetime, date)):
        return format_date(value)
    return str(value).strip()


def _row_from_cells(cells: tuple, columns: dict[str, int]) -> Optional[LedgerRow]:
    """Строка листа → LedgerRow по позициям колонок из заголовка. Полностью пустая строка → None."""
    if all(c is None or (isinstance(c, str) and not c.strip()) for c in cells):
        return None

    def get(col: str):
        idx = columns.get(col)
        if idx is None or idx >= len(cells):
            return None
        return cells[idx]

    return LedgerRow(
        date=_cell_text(get(COL_DATE)),
        name=_cell_text(get(COL_NAME)),
        amount_in=_parse_number(get(COL_IN)),
        percent=_parse_number(get(COL_PERCENT)),
        amount_with_percent=_parse_number(get(COL_AMOUNT_WITH_PERCENT)),
        amount_out=_parse_number(get(COL_OUT)),
        balance=_parse_number(get(COL_BALANCE)),
    )


def decode(data: bytes) -> Ledger:
    """xlsx (байты) → Ledger. Читается только первый лист."""
    try:
        wb = load_workbook(BytesIO(data), data_only=True)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise DecodeError(f"Файл не является xlsx-таблицей: {e}") from e
    if not wb.worksheets:
        raise DecodeError("В файле нет ни одного листа")
    ws = wb.worksheets[0]

    rows_iter = ws.iter_rows(values_only=True)
    header = next(rows_iter, None)
    if header is None:
        return Ledger()
    columns = {}
    for i, name in enumerate(header):
        key = _cell_text(name)
        if key and key not in columns:
            columns[key] = i

    ledger = Ledger()
    for cells in rows_iter:
        row = _row_from_cells(cells, columns)
        if row is not None:
            ledger.rows.append(row)
    return ledger


def encode(ledger: Ledger) -> bytes:
    """Ledger → xlsx (байты): один лист, заголовок и строки в исходном порядке."""
    wb = Workbook()
    ws = wb.active
    ws.title = SHEET_NAME
    ws.append(HEADER)
    for row in ledger.rows:
        ws.append(row.to_cells())
        for col in _TEXT_COLUMNS:
            cell = ws.cell(row=ws.max_row, column=col)
            if isinstance(cell.value, str):
                cell.data_type = "s"
    buf = BytesIO()
    wb.save(buf)
    return buf.getvalue()
