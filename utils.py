import io
import re
from xml.sax.saxutils import escape
from typing import Iterable

import pandas as pd
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet, ParagraphStyle
from reportlab.platypus import SimpleDocTemplate, Table, TableStyle, Paragraph, Spacer

from domain import PROCESSES, ProductionRecord
from services import ShiftMetricsCalculator, format_hours, format_percentage

XLSX_MIME = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"

# (header, record attribute or derived key, width)
REPORT_COLUMNS = [
    ("Section", "section", 10),
    ("Date", "date", 12),
    ("Shift", "shift", 10),
    ("Start Time", "shift_start", 10),
    ("End Time", "shift_end", 10),
    ("Downtime 1 Stop", "breakdown_start1", 15),
    ("Downtime 1 Start", "breakdown_end1", 15),
    ("Downtime 1 Reason", "breakdown_reason1", 20),
    ("Downtime 2 Stop", "breakdown_start2", 15),
    ("Downtime 2 Start", "breakdown_end2", 15),
    ("Downtime 2 Reason", "breakdown_reason2", 20),
    ("Total Downtime (Hrs)", "total_downtime_hours", 18),
    ("Net Running Hours", "net_running_hours", 18),
    ("Customer Name", "customer_name", 20),
    ("Brand", "brand", 15),
    ("Mold Type", "mold_type", 15),
    ("Wall thickness (Good/Bad)", "wall_thickness", 20),
    ("Date insert (Yes/No)", "date_insert", 18),
    ("Bottom mold/ cooling (Yes/No)", "bottom_mold_cooling", 25),
    ("Bottle strength (Good/Bad)", "bottle_general_strength", 22),
    ("Embossing", "Embossing", 10),
    ("Screen Printing", "Screen Printing", 15),
    ("Hot-Stamping", "Hot-Stamping", 15),
    ("Labelling", "Labelling", 10),
    ("Shift Incharge", "shift_incharge", 15),
    ("Operator", "operator", 15),
    ("Helpers", "helpers", 20),
    ("Resin/Grade", "resin_grade", 15),
    ("Virgin (KG)", "virgin_kg", 12),
    ("Regrind (KG)", "regrind_kg", 12),
    ("Good Bottles (Pcs)", "good_bottles", 15),
    ("Rejected Bottles (Pcs)", "rejected_bottles", 18),
    ("Preform (Pcs)", "preform", 12),
    ("Lump (KG)", "lumps_kg", 12),
    ("Wastage (%)", "wastage_percentage", 14),
    ("Operator Notes", "operator_notes", 30),
]


def yes_no(flag: bool) -> str:
    return "Yes" if flag else "No"


def report_row(record: ProductionRecord, calculator: ShiftMetricsCalculator) -> dict:
    """Raw fields joined with freshly computed metrics and process flags."""
    m = calculator.compute(record)
    derived = {
        "total_downtime_hours": format_hours(m.total_downtime_hours),
        "net_running_hours": format_hours(m.net_running_hours),
        "wastage_percentage": format_percentage(m.wastage_percentage),
    }
    derived.update({p: yes_no(record.has_process(p)) for p in PROCESSES})
    row = {}
    for header, key, _ in REPORT_COLUMNS:
        value = derived[key] if key in derived else getattr(record, key)
        row[header] = "" if value is None else value
    return row


def records_to_dataframe(records: Iterable[ProductionRecord], calculator: ShiftMetricsCalculator) -> pd.DataFrame:
    rows = [report_row(r, calculator) for r in records]
    return pd.DataFrame(rows, columns=[c[0] for c in REPORT_COLUMNS])


def report_filename(section: str | None = None) -> str:
    if not section:
        return "Production_Report_All.xlsx"
    safe = re.sub(r"[()\s]", "_", section)
    safe = re.sub(r"_+", "_", safe).rstrip("_")
    return f"Production_Report_{safe}.xlsx"


def dataframe_to_excel(df: pd.DataFrame, sheet_name: str = "All Production") -> bytes:
    output = io.BytesIO()
    widths = {header: width for header, _, width in REPORT_COLUMNS}
    with pd.ExcelWriter(output, engine="xlsxwriter") as writer:
        df.to_excel(writer, sheet_name=sheet_name, index=False)
        worksheet = writer.sheets[sheet_name]
        for i, col in enumerate(df.columns):
            worksheet.set_column(i, i, widths.get(col, 15))
    output.seek(0)
    return output.getvalue()


# =========================
# Printable report (one record)
# =========================
def _text(value) -> str:
    return "-" if value in (None, "") else str(value)


def _number(value) -> str:
    return "0" if value in (None, "") else str(value)


def _print_sections(r: ProductionRecord) -> list[tuple[str, list[tuple[str, str]]]]:
    processes = ", ".join(r.processes) if r.processes else "None"
    return [
        ("1. Shift & Runtime", [
            ("Date", _text(r.date)), ("Shift", _text(r.shift)),
            ("Start", _text(r.shift_start)), ("End", _text(r.shift_end)),
            ("Net Running Hours", f"{r.net_running_hours or '0.00'} Hours"),
            ("Incharge", _text(r.shift_incharge)),
            ("Operator", _text(r.operator)), ("Helpers", _text(r.helpers)),
        ]),
        ("2. Downtime", [
            ("Stop 1", _text(r.breakdown_start1)), ("Start 1", _text(r.breakdown_end1)),
            ("Reason 1", _text(r.breakdown_reason1)), ("", ""),
            ("Stop 2", _text(r.breakdown_start2)), ("Start 2", _text(r.breakdown_end2)),
            ("Reason 2", _text(r.breakdown_reason2)), ("", ""),
        ]),
        ("3. Job Details", [
            ("Customer", _text(r.customer_name)), ("Brand", _text(r.brand)),
            ("Mold Type", _text(r.mold_type)), ("Wall Thickness", _text(r.wall_thickness)),
            ("Date Insert", _text(r.date_insert)), ("Bottom Mold/Cooling", _text(r.bottom_mold_cooling)),
            ("Bottle Strength", _text(r.bottle_general_strength)), ("", ""),
        ]),
        ("4. Material & Output", [
            ("Resin Grade", _text(r.resin_grade)), ("Virgin (KG)", _number(r.virgin_kg)),
            ("Regrind (KG)", _number(r.regrind_kg)), ("Good Bottles", _number(r.good_bottles)),
            ("Rejected Bottles", _number(r.rejected_bottles)), ("Preform", _number(r.preform)),
            ("Lump (KG)", _number(r.lumps_kg)), ("Wastage (%)", r.wastage_percentage or "0.00%"),
        ]),
        ("5. Post-Production & Notes", [
            ("Processes", processes), ("", ""),
        ]),
    ]


def record_to_pdf(record: ProductionRecord) -> bytes:
    buf = io.BytesIO()
    doc = SimpleDocTemplate(buf, pagesize=A4, topMargin=24, bottomMargin=24, leftMargin=24, rightMargin=24)
    styles = getSampleStyleSheet()
    title_style = ParagraphStyle(name="TitleCentered", parent=styles["Title"], alignment=TA_CENTER)
    cell_style = ParagraphStyle(name="Cell", parent=styles["Normal"], fontSize=9, leading=11)

    story = [Paragraph(f"Production Report - {record.section}", title_style), Spacer(1, 8)]
    for heading, items in _print_sections(record):
        story.append(Paragraph(heading, styles["Heading2"]))
        cells = [Paragraph(f"<b>{k}:</b> {escape(v)}" if k else "", cell_style) for k, v in items]
        grid = [cells[i:i + 2] for i in range(0, len(cells), 2)]
        table = Table(grid, colWidths=[doc.width / 2] * 2, hAlign="LEFT")
        table.setStyle(TableStyle([
            ("LINEBELOW", (0, 0), (-1, -1), 0.25, colors.HexColor("#CCCCCC")),
            ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ]))
        story.append(table)

    story += [Spacer(1, 12), Paragraph("<b>Operator Notes:</b>", styles["Normal"])]
    notes_text = escape(record.operator_notes).replace("\n", "<br/>") if record.operator_notes else "No notes."
    notes = Table([[Paragraph(notes_text, cell_style)]], colWidths=[doc.width])
    notes.setStyle(TableStyle([("BOX", (0, 0), (-1, -1), 0.6, colors.HexColor("#CCCCCC"))]))
    story.append(notes)

    doc.build(story)
    return buf.getvalue()
