import io
import math

import pandas as pd
import pytest

from domain import MaterialCounts, ProductionRecord, ShiftTimeInput
from services import (
    ProductionLogService, RecordValidationError, ShiftMetricsCalculator,
    format_hours, format_percentage, summarize, time_to_minutes, validate_record,
)


@pytest.fixture
def calc():
    return ShiftMetricsCalculator()


def shift(start, end, *breakdowns):
    return ShiftTimeInput(start, end, tuple(breakdowns))


def record(**kw):
    base = dict(section="ASB 1 (PET)", date="2024-05-01", customer_name="Acme Corp")
    base.update(kw)
    return ProductionRecord(**base)


# --- time parsing ---

def test_time_to_minutes():
    assert time_to_minutes("08:30") == 510
    assert time_to_minutes("00:00") == 0
    assert time_to_minutes("") == 0
    assert time_to_minutes(None) == 0


@pytest.mark.parametrize("bad", ["8", "ab:cd", "12:xx", " "])
def test_time_to_minutes_malformed_is_nan(bad):
    assert math.isnan(time_to_minutes(bad))


# --- running hours ---

@pytest.mark.parametrize("start,end", [("", "16:00"), ("08:00", ""), (None, None)])
def test_missing_shift_end_gives_zero(calc, start, end):
    assert calc.compute_running_hours(shift(start, end, ("10:00", "10:30"))) == (0.0, 0.0)


def test_zero_length_shift(calc):
    assert calc.compute_running_hours(shift("08:00", "08:00")) == (0.0, 0.0)


def test_overnight_shift(calc):
    assert calc.compute_running_hours(shift("22:00", "06:00")) == (8.0, 0.0)


def test_same_day_shift_with_one_breakdown(calc):
    net, downtime = calc.compute_running_hours(shift("08:00", "16:00", ("10:00", "10:30")))
    assert downtime == 0.5
    assert net == 7.5


def test_breakdown_across_midnight(calc):
    net, downtime = calc.compute_running_hours(shift("20:00", "04:00", ("23:30", "00:30")))
    assert downtime == 1.0
    assert net == 7.0


def test_downtime_longer_than_shift_is_clamped(calc):
    net, downtime = calc.compute_running_hours(shift("08:00", "09:00", ("08:00", "10:00")))
    assert net == 0
    assert downtime == 2.0


def test_two_breakdowns_are_summed(calc):
    net, downtime = calc.compute_running_hours(
        shift("06:00", "18:00", ("07:00", "07:15"), ("12:00", "12:45"))
    )
    assert downtime == 1.0
    assert net == 11.0


def test_half_filled_breakdown_is_ignored(calc):
    net, downtime = calc.compute_running_hours(shift("08:00", "16:00", ("10:00", None), ("", "11:00")))
    assert (net, downtime) == (8.0, 0.0)


def test_breakdown_with_equal_ends_contributes_nothing(calc):
    assert calc.compute_running_hours(shift("08:00", "16:00", ("10:00", "10:00"))) == (8.0, 0.0)


def test_only_first_two_breakdowns_count(calc):
    net, downtime = calc.compute_running_hours(
        shift("08:00", "16:00", ("09:00", "09:30"), ("10:00", "10:30"), ("11:00", "12:00"))
    )
    assert downtime == 1.0


def test_malformed_shift_time_is_not_finite(calc):
    net, downtime = calc.compute_running_hours(shift("8h", "16:00"))
    assert math.isnan(net)
    assert format_hours(net) == "N/A"


def test_malformed_breakdown_is_skipped(calc):
    assert calc.compute_running_hours(shift("08:00", "16:00", ("xx", "10:00"))) == (8.0, 0.0)


# --- wastage ---

def test_wastage_pet(calc):
    counts = MaterialCounts("ASB 1 (PET)", good_bottles=100, rejected_bottles=10, preform=5, lumps_kg=2)
    pct = calc.compute_wastage(counts)
    assert pct == pytest.approx(12.59 / 83.19 * 100)
    assert format_percentage(pct) == "15.13%"


def test_wastage_pc_uses_its_own_weight(calc):
    counts = MaterialCounts("ASB 2 (PC)", good_bottles=90, rejected_bottles=10)
    assert calc.compute_wastage(counts) == pytest.approx(10.0)


def test_no_material_gives_zero_wastage(calc):
    assert calc.compute_wastage(MaterialCounts("ASB 1 (PET)")) == 0


def test_unknown_section_weighs_nothing(calc):
    assert calc.unit_weight("ASB 9") == 0.0
    # only lumps are left, so everything accounted for is waste
    counts = MaterialCounts("ASB 9", good_bottles=100, lumps_kg=1)
    assert calc.compute_wastage(counts) == 100.0


def test_unknown_section_weight_is_configurable():
    calc = ShiftMetricsCalculator(unknown_section_weight=0.706)
    assert calc.unit_weight(None) == 0.706


def test_raw_form_values_are_coerced(calc):
    counts = MaterialCounts.from_raw("ASB 1 (PET)", "100", "abc", None, "2")
    assert counts == MaterialCounts("ASB 1 (PET)", 100, 0, 0, 2.0)


# --- whole record ---

def test_compute_is_idempotent(calc):
    r = record(shift_start="22:00", shift_end="06:00", breakdown_start1="01:00", breakdown_end1="01:20",
               good_bottles=500, rejected_bottles=7, preform=3, lumps_kg=1.5)
    assert calc.compute(r) == calc.compute(r)


def test_complete_record_fills_text_fields(calc):
    r = calc.complete_record(record(shift_start="08:00", shift_end="16:00",
                                    breakdown_start1="10:00", breakdown_end1="10:30",
                                    good_bottles=100, rejected_bottles=10, preform=5, lumps_kg=2))
    assert r.net_running_hours == "7.50"
    assert r.total_downtime_hours == "0.50"
    assert r.wastage_percentage == "15.13%"


# --- validation ---

def test_valid_record_has_no_errors():
    assert validate_record(record(shift_start="08:00", processes=["Embossing"])) == []


def test_validation_messages():
    errors = validate_record(ProductionRecord(section="", date="", customer_name=" "))
    assert len(errors) == 3


def test_validation_rejects_bad_times_and_processes():
    errors = validate_record(record(shift_end="25h", breakdown_start2="x", processes=["Painting"]))
    assert any("shift_end" in e for e in errors)
    assert any("breakdown_start2" in e for e in errors)
    assert any("Painting" in e for e in errors)


def test_validation_rejects_unknown_section():
    assert validate_record(record(section="ASB 3")) == ["Unknown section: ASB 3"]


# --- service ---

class FakeRepository:
    def __init__(self):
        self.rows = []

    def save(self, r):
        r.id = len(self.rows) + 1
        self.rows.append(r)
        return r

    def find_all(self, section=None):
        return [r for r in self.rows if not section or r.section == section]

    def distinct(self, field):
        return sorted({getattr(r, field) for r in self.rows})

    def find_latest(self):
        return self.rows[-1] if self.rows else None


def test_submit_recomputes_and_saves():
    repo = FakeRepository()
    svc = ProductionLogService(repo)
    saved = svc.submit(record(customer_name="  Acme Corp ", shift_start="22:00", shift_end="06:00",
                              good_bottles="100", rejected_bottles="10", preform="5", lumps_kg="2",
                              net_running_hours="99.00"))
    assert saved.id == 1
    assert saved.customer_name == "Acme Corp"
    assert saved.good_bottles == 100
    assert saved.net_running_hours == "8.00"
    assert saved.wastage_percentage == "15.13%"
    assert saved.created_at is not None
    assert svc.latest() is saved
    assert svc.customers() == ["Acme Corp"]


def test_submit_rejects_invalid_record():
    repo = FakeRepository()
    with pytest.raises(RecordValidationError) as exc:
        ProductionLogService(repo).submit(record(customer_name=""))
    assert exc.value.errors == ["Customer name is required."]
    assert repo.rows == []


def test_export_report_filters_by_section():
    repo = FakeRepository()
    svc = ProductionLogService(repo)
    svc.submit(record())
    svc.submit(record(section="ASB 2 (PC)"))
    filename, data = svc.export_report("ASB 2 (PC)")
    assert filename == "Production_Report_ASB_2_PC.xlsx"
    sheets = pd.read_excel(io.BytesIO(data), sheet_name=None)
    assert list(sheets) == ["ASB 2 (PC)"]
    df = sheets["ASB 2 (PC)"]
    assert len(df) == 1
    assert df["Section"].tolist() == ["ASB 2 (PC)"]


def test_summarize_weights_by_mass(calc):
    records = [
        record(shift_start="08:00", shift_end="16:00", good_bottles=100, rejected_bottles=10, preform=5, lumps_kg=2),
        record(shift_start="x", shift_end="16:00"),
    ]
    totals = summarize(records, calc)
    assert totals["records"] == 2
    assert totals["net_running_hours"] == 8.0
    assert totals["wastage_percentage"] == pytest.approx(12.59 / 83.19 * 100)


@pytest.mark.parametrize("value", ["8:30:zz", "08:30:00", "8"])
def test_validation_requires_exactly_hours_and_minutes(value):
    assert validate_record(record(shift_start=value)) == [f"shift_start: expected HH:MM, got {value!r}"]


@pytest.mark.parametrize("value", ["01/05/2024", "2024-13-01", "yesterday"])
def test_validation_rejects_non_iso_dates(value):
    assert validate_record(record(date=value)) == [f"date: expected YYYY-MM-DD, got {value!r}"]
