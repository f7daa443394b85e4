# app/services/export.py
import io, re
from datetime import date
from html import escape
from typing import Any, Dict, List, Optional, Sequence, Tuple

import openpyxl
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter

from .table_utils import array_to_csv

Grid = Sequence[Sequence[Any]]

MIME_TYPES = {
    "csv": "text/csv",
    "tsv": "text/tab-separated-values",
    "json": "application/json",
    "markdown": "text/markdown",
    "md": "text/markdown",
    "html": "text/html",
    "xlsx": "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
}

_BAD_SHEET_CHARS = re.compile(r"[\[\]:*?/\\]")

_HTML_STYLE = """\
    body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Oxygen, Ubuntu, Cantarell, 'Open Sans', 'Helvetica Neue', sans-serif; }
    table { border-collapse: collapse; width: 100%; margin-bottom: 1rem; }
    th, td { padding: 0.5rem; text-align: left; }
    th { background-color: #f8f9fa; font-weight: 600; border-bottom: 2px solid #dee2e6; }
    td { border-bottom: 1px solid #dee2e6; }
    tr:nth-child(even) { background-color: #f8f9fa; }"""


def _text(v: Any) -> str:
    return "" if v is None else str(v)


def download_filename(ext: str, today: Optional[date] = None) -> str:
    return f"table-export-{(today or date.today()).isoformat()}.{ext}"


def to_csv(data: Grid) -> str:
    return array_to_csv(data)


def to_tsv(data: Grid) -> str:
    return "\n".join(
        "\t".join(_text(c).replace("\t", " ").replace("\n", " ") for c in row) for row in data
    )


def to_json_records(data: Grid) -> Dict[str, Any]:
    """First row is the header row; blank header cells are skipped, blank values become null."""
    headers = list(data[0]) if data else []
    rows = list(data[1:])
    records = []
    for row in rows:
        rec: Dict[str, Any] = {}
        for j, h in enumerate(headers):
            if h:
                v = row[j] if j < len(row) else None
                rec[str(h)] = v if v not in (None, "") else None
        records.append(rec)
    return {
        "success": True,
        "data": records,
        "meta": {"rowCount": len(rows), "columnCount": len(headers), "headers": headers},
    }


def _md_cell(v: Any) -> str:
    return _text(v).replace("|", "\\|").replace("\n", " ")


def to_markdown(data: Grid, title: str = "Extracted Table", today: Optional[date] = None) -> str:
    """Column-aligned table: headers centred, cells left aligned, a dated footer."""
    headers = [_md_cell(h) for h in (data[0] if data else [])]
    rows = [[_md_cell(c) for c in row] for row in data[1:]]

    ncols = max([len(headers)] + [len(r) for r in rows])
    widths = [0] * ncols
    for i, h in enumerate(headers):
        widths[i] = len(h)
    for r in rows:
        for i, c in enumerate(r):
            widths[i] = max(widths[i], len(c))
    widths = [max(w, 3) + 2 for w in widths]

    lines = [f"# {title}", ""]
    head = "|"
    for i, h in enumerate(headers):
        pad = widths[i] - len(h)
        left = pad // 2
        head += " " + " " * left + h + " " * (pad - left) + " |"
    lines.append(head)
    lines.append("|" + "".join(" " + "-" * w + " |" for w in widths))
    for r in rows:
        lines.append("|" + "".join(" " + c + " " * (widths[i] - len(c)) + " |" for i, c in enumerate(r)))

    d = today or date.today()
    return "\n".join(lines) + f"\n\n*Generated by Tablextract on {d.month}/{d.day}/{d.year}*\n"


def to_compact_markdown(data: Grid) -> str:
    if not data:
        return ""
    rows = ["| " + " | ".join(_md_cell(c) for c in row) + " |" for row in data]
    rows.insert(1, "| " + " | ".join("---" for _ in data[0]) + " |")
    return "\n".join(rows)


def to_html_fragment(data: Grid) -> str:
    if not data:
        return ""
    out = ["<table>", "  <thead>", "    <tr>"]
    out += [f"      <th>{escape(_text(c))}</th>" for c in data[0]]
    out += ["    </tr>", "  </thead>", "  <tbody>"]
    for row in data[1:]:
        out.append("    <tr>")
        out += [f"      <td>{escape(_text(c))}</td>" for c in row]
        out.append("    </tr>")
    out += ["  </tbody>", "</table>"]
    return "\n".join(out)


def to_html_document(data: Grid, title: str = "Table Export") -> str:
    t = escape(title)
    table = "\n".join("  " + line for line in to_html_fragment(data).splitlines())
    return (
        "<!DOCTYPE html>\n"
        '<html lang="en">\n'
        "<head>\n"
        '  <meta charset="UTF-8">\n'
        '  <meta name="viewport" content="width=device-width, initial-scale=1.0">\n'
        f"  <title>{t}</title>\n"
        f"  <style>\n{_HTML_STYLE}\n  </style>\n"
        "</head>\n"
        "<body>\n"
        f"  <h1>{t}</h1>\n"
        f"{table}\n"
        "</body>\n"
        "</html>"
    )


def sheet_title(name: Optional[str], index: int, taken: List[str]) -> str:
    """Excel sheet names: max 31 chars, no []:*?/\\ and unique per workbook."""
    base = _BAD_SHEET_CHARS.sub(" ", name or "").strip()[:31] or f"Table {index + 1}"
    title, n = base, 2
    while title.lower() in (t.lower() for t in taken):
        suffix = f" ({n})"
        title = base[:31 - len(suffix)] + suffix
        n += 1
    return title


def to_excel(sheets: Sequence[Tuple[Optional[str], Grid]]) -> bytes:
    """One worksheet per (name, grid); the first row of each is bolded as headers."""
    wb = openpyxl.Workbook()
    wb.remove(wb.active)
    taken: List[str] = []
    for idx, (name, grid) in enumerate(sheets):
        title = sheet_title(name, idx, taken)
        taken.append(title)
        ws = wb.create_sheet(title)
        for row in grid:
            ws.append([_text(c) if isinstance(c, (dict, list)) else c for c in row])
        if grid:
            for cell in ws[1]:
                cell.font = Font(bold=True)
            for col in range(1, max(len(r) for r in grid) + 1):
                width = max(len(_text(r[col - 1])) if col <= len(r) else 0 for r in grid)
                ws.column_dimensions[get_column_letter(col)].width = min(max(width + 2, 8), 60)
    buf = io.BytesIO()
    wb.save(buf)
    return buf.getvalue()
