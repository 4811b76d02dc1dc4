# app/services/spreadsheet.py
import io
import logging
import math
import zipfile
from typing import Iterable, List, Optional, Sequence, Union

from openpyxl import Workbook, load_workbook
from openpyxl.comments import Comment
from openpyxl.styles import Font
from openpyxl.utils.cell import coordinate_to_tuple
from openpyxl.utils.exceptions import CellCoordinatesException, InvalidFileException
from openpyxl.worksheet.formula import ArrayFormula

from app.models import SOP, SOPCategory
from app.schemas import Discrepancy, SpreadsheetAnalysis, SpreadsheetCell

logger = logging.getLogger(__name__)

MAX_FORMULA_CELLS = 50
COMMENT_AUTHOR = "CSV Validator"
SUPPORTED_EXTENSIONS = (".xlsx", ".xlsm")


class SpreadsheetError(ValueError):
    """The uploaded workbook could not be read or regenerated."""


def _open(data: bytes, data_only: bool = False):
    if not data:
        raise SpreadsheetError("Uploaded spreadsheet is empty")
    try:
        return load_workbook(io.BytesIO(data), data_only=data_only)
    except (InvalidFileException, zipfile.BadZipFile, KeyError, OSError, ValueError) as e:
        raise SpreadsheetError(f"Unreadable spreadsheet: {e}") from e


def check_extension(file_name: str) -> None:
    if not file_name.lower().endswith(SUPPORTED_EXTENSIONS):
        raise SpreadsheetError("Only .xlsx / .xlsm workbooks are supported")


def _formula_text(cell) -> Optional[str]:
    # formula-like text ("=..." stored as a string) is collected too
    if isinstance(cell.value, ArrayFormula):
        return cell.value.text
    if cell.data_type == "f":
        return str(cell.value)
    if isinstance(cell.value, str) and cell.value.startswith("="):
        return cell.value
    return None


def extract_formula_cells(data: bytes) -> List[SpreadsheetCell]:
    """
    Formula-bearing cells of the first worksheet, row-major over its populated range.
    The value is the cached result stored in the file (None if never calculated).
    """
    wb = _open(data)
    cached = _open(data, data_only=True)
    ws = wb.worksheets[0]
    ws_values = cached.worksheets[0]
    cells = []
    for row in ws.iter_rows():
        for cell in row:
            formula = _formula_text(cell)
            if formula is None:
                continue
            cells.append(
                SpreadsheetCell(
                    address=cell.coordinate,
                    formula=formula,
                    value=ws_values[cell.coordinate].value,
                )
            )
    return cells


def cap_cells(cells: Sequence[SpreadsheetCell], limit: int = MAX_FORMULA_CELLS) -> List[SpreadsheetCell]:
    # row-major extraction order makes this the first `limit` formulas of the sheet
    return list(cells[:limit])


def select_active_sop(sops: Iterable[SOP]) -> Optional[SOP]:
    """Most recently uploaded active SOP in the Spreadsheet Validation category."""
    candidates = [
        s for s in sops
        if s.is_active and s.category == SOPCategory.SPREADSHEET_VALIDATION
    ]
    if not candidates:
        return None
    return max(candidates, key=lambda s: (s.upload_date, s.id or 0))


async def reconcile(gateway, file_name: str, data: bytes, active_sop: Optional[SOP] = None) -> SpreadsheetAnalysis:
    cells = cap_cells(extract_formula_cells(data))
    if not cells:
        return SpreadsheetAnalysis(
            file_name=file_name,
            total_formulas=0,
            discrepancies=[],
            is_valid=True,
            summary="No formulas found in the spreadsheet.",
        )
    context = active_sop.extracted_rules if active_sop else None
    analysis = await gateway.validate_spreadsheet(file_name, cells, context)
    if active_sop:
        analysis.referenced_sop_title = active_sop.title
    logger.info(
        "Reconciled %s: %d formulas, %d discrepancies",
        file_name, analysis.total_formulas, len(analysis.discrepancies),
    )
    return analysis


def _literal(value: str) -> Union[int, float, str]:
    try:
        return int(value)
    except ValueError:
        pass
    try:
        number = float(value)
    except ValueError:
        return value
    # nan and inf cannot be stored in a sheet
    return number if math.isfinite(number) else value


def _target_cell(ws, address: str):
    coordinate = address.split("!")[-1].replace("$", "")
    try:
        row, col = coordinate_to_tuple(coordinate)
    except (CellCoordinatesException, ValueError, TypeError):
        return None
    if row > ws.max_row or col > ws.max_column:
        return None
    cell = ws.cell(row=row, column=col)
    if cell.value is None:
        return None
    return cell


def apply_corrections(data: bytes, discrepancies: Iterable[Discrepancy]) -> bytes:
    """
    Reopen the original workbook and merge suggested corrections into the first sheet.
    A suggested formula wins over a suggested value; every touched cell gets a
    comment quoting the discrepancy reason. Everything else is left as it was.
    """
    wb = _open(data)
    ws = wb.worksheets[0]
    applied = 0
    for disc in discrepancies:
        if not disc.suggested_formula and not disc.suggested_value:
            continue
        cell = _target_cell(ws, disc.address)
        if cell is None:
            logger.info("Skipping correction for missing cell %s", disc.address)
            continue
        if disc.suggested_formula:
            formula = disc.suggested_formula
            cell.value = formula if formula.startswith("=") else "=" + formula
        else:
            cell.value = _literal(disc.suggested_value)
            if isinstance(cell.value, str) and cell.value.startswith("="):
                cell.data_type = "s"
        note = f"Correction: {disc.reason}"
        if cell.comment is not None:
            note = f"{cell.comment.text}\n{note}"
        cell.comment = Comment(note, COMMENT_AUTHOR)
        applied += 1
    out = io.BytesIO()
    wb.save(out)
    logger.info("Applied %d corrections", applied)
    return out.getvalue()


def corrected_filename(file_name: str) -> str:
    return f"Corrected_{file_name}"


XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def inspection_history_xlsx(records, param_names: Sequence[str]) -> bytes:
    """History sheet: Date, Inspector, Notes, then one column per schema parameter."""
    wb = Workbook()
    ws = wb.active
    ws.title = "History"
    headers = ["Date", "Inspector", "Notes", *param_names]
    ws.append(headers)
    for cell in ws[1]:
        cell.font = Font(bold=True)
    for r in records:
        ws.append([
            r.date.isoformat(),
            r.inspector_name,
            r.notes,
            *[r.parameters.get(name) for name in param_names],
        ])
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
