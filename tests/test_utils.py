import pytest

from domain import ProductionRecord
from services import ShiftMetricsCalculator
from utils import (
    REPORT_COLUMNS, dataframe_to_excel, record_to_pdf, records_to_dataframe, report_filename,
)


def sample(**kw):
    base = dict(
        section="ASB 1 (PET)", date="2024-05-01", customer_name="Acme Corp",
        shift_start="08:00", shift_end="16:00",
        breakdown_start1="10:00", breakdown_end1="10:30", breakdown_reason1="Mold change",
        processes=["Embossing", "Hot-Stamping"],
        good_bottles=100, rejected_bottles=10, preform=5, lumps_kg=2,
    )
    base.update(kw)
    return ProductionRecord(**base)


def test_report_row_recomputes_derived_values():
    # stale stored text must not leak into the report
    df = records_to_dataframe([sample(net_running_hours="1.00")], ShiftMetricsCalculator())
    row = df.iloc[0]
    assert list(df.columns) == [c[0] for c in REPORT_COLUMNS]
    assert row["Net Running Hours"] == "7.50"
    assert row["Total Downtime (Hrs)"] == "0.50"
    assert row["Wastage (%)"] == "15.13%"
    assert row["Downtime 1 Reason"] == "Mold change"
    assert row["Downtime 2 Stop"] == ""


def test_process_flags():
    row = records_to_dataframe([sample()], ShiftMetricsCalculator()).iloc[0]
    assert (row["Embossing"], row["Screen Printing"], row["Hot-Stamping"], row["Labelling"]) == \
        ("Yes", "No", "Yes", "No")


def test_malformed_time_shows_unavailable():
    row = records_to_dataframe([sample(shift_start="8")], ShiftMetricsCalculator()).iloc[0]
    assert row["Net Running Hours"] == "N/A"


def test_empty_report_keeps_headers():
    df = records_to_dataframe([], ShiftMetricsCalculator())
    assert df.empty
    assert len(df.columns) == len(REPORT_COLUMNS)


@pytest.mark.parametrize("section,expected", [
    (None, "Production_Report_All.xlsx"),
    ("ASB 1 (PET)", "Production_Report_ASB_1_PET.xlsx"),
    ("ASB 2 (PC)", "Production_Report_ASB_2_PC.xlsx"),
])
def test_report_filename(section, expected):
    assert report_filename(section) == expected


def test_dataframe_to_excel_is_xlsx():
    df = records_to_dataframe([sample()], ShiftMetricsCalculator())
    data = dataframe_to_excel(df, sheet_name="ASB 1 (PET)")
    assert data[:2] == b"PK"
    assert len(data) > 1000


def test_record_to_pdf():
    pdf = record_to_pdf(sample(operator_notes="Line <2> ok\nno issues", net_running_hours="7.50"))
    assert pdf.startswith(b"%PDF")


def test_record_to_pdf_with_empty_fields():
    pdf = record_to_pdf(ProductionRecord(section="ASB 2 (PC)", date="", customer_name=""))
    assert pdf.startswith(b"%PDF")
