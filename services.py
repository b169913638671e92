from __future__ import annotations
from dataclasses import replace
from datetime import date, datetime, timezone
from typing import Iterable, List, Mapping, Optional, Tuple
import logging
import math

from domain import (
    PROCESSES, SECTIONS, WEIGHTS,
    DerivedMetrics, MaterialCounts, ProductionRecord, ShiftTimeInput,
    parse_count, parse_kg,
)

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
UNAVAILABLE = "N/A"


def time_to_minutes(value: str | None) -> float:
    """
    "HH:MM" -> minutes since midnight. Empty => 0.
    Anything that is not two numeric fields gives nan instead of raising.
    """
    if not value:
        return 0
    parts = str(value).strip().split(":")
    if len(parts) < 2:
        return math.nan
    try:
        hours, minutes = int(parts[0]), int(parts[1])
    except ValueError:
        return math.nan
    return hours * 60 + minutes


def is_valid_hhmm(value: str | None) -> bool:
    return len(str(value).split(":")) == 2 and math.isfinite(time_to_minutes(value))


def format_hours(hours: float) -> str:
    return f"{hours:.2f}" if math.isfinite(hours) else UNAVAILABLE


def format_percentage(pct: float) -> str:
    return f"{pct:.2f}%" if math.isfinite(pct) else UNAVAILABLE


class ShiftMetricsCalculator:
    """Running hours, downtime and material wastage for one shift log."""
    def __init__(self, weights: Mapping[str, float] = WEIGHTS, unknown_section_weight: float = 0.0):
        self.weights = weights
        self.unknown_section_weight = unknown_section_weight

    def unit_weight(self, section: str | None) -> float:
        return self.weights.get(section, self.unknown_section_weight)

    def compute_running_hours(self, shift: ShiftTimeInput) -> Tuple[float, float]:
        """
        Returns (net_running_hours, total_downtime_hours), unrounded.
        Shifts and breakdowns whose end is before their start cross midnight.
        """
        if not shift.shift_start or not shift.shift_end:
            return 0.0, 0.0

        span = time_to_minutes(shift.shift_end) - time_to_minutes(shift.shift_start)
        if span < 0:
            span += MINUTES_PER_DAY
        if span <= 0:
            return 0.0, 0.0

        downtime = 0
        for start, end in shift.present_breakdowns:
            duration = time_to_minutes(end) - time_to_minutes(start)
            if duration < 0:
                duration += MINUTES_PER_DAY
            if duration > 0:
                downtime += duration

        net = span - downtime
        if net < 0:  # nan passes through
            net = 0
        return net / 60, downtime / 60

    def compute_wastage(self, counts: MaterialCounts) -> float:
        """Scrap mass as a percentage of good plus scrap mass."""
        weight = self.unit_weight(counts.section)
        good_kg = counts.good_bottles * weight
        rejected_kg = counts.rejected_bottles * weight
        preform_kg = counts.preform * weight
        total_wastage_kg = rejected_kg + preform_kg + counts.lumps_kg
        total_input_kg = good_kg + total_wastage_kg
        if total_input_kg > 0:
            return total_wastage_kg / total_input_kg * 100
        return 0.0

    def compute(self, record: ProductionRecord) -> DerivedMetrics:
        net, downtime = self.compute_running_hours(ShiftTimeInput.from_record(record))
        wastage = self.compute_wastage(MaterialCounts.from_record(record))
        return DerivedMetrics(net, downtime, wastage)

    def complete_record(self, record: ProductionRecord) -> ProductionRecord:
        """Fills in the derived text fields of a record."""
        m = self.compute(record)
        record.net_running_hours = format_hours(m.net_running_hours)
        record.total_downtime_hours = format_hours(m.total_downtime_hours)
        record.wastage_percentage = format_percentage(m.wastage_percentage)
        return record


class RecordValidationError(ValueError):
    def __init__(self, errors: List[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


def validate_record(record: ProductionRecord) -> List[str]:
    errors = []
    if not record.section:
        errors.append("Section is required.")
    elif record.section not in SECTIONS:
        errors.append(f"Unknown section: {record.section}")
    if not record.date:
        errors.append("Date is required.")
    else:
        try:
            date.fromisoformat(record.date)
        except ValueError:
            errors.append(f"date: expected YYYY-MM-DD, got {record.date!r}")
    if not (record.customer_name or "").strip():
        errors.append("Customer name is required.")

    time_fields = ["shift_start", "shift_end"]
    for i in (1, 2):
        time_fields += [f"breakdown_start{i}", f"breakdown_end{i}"]
    for name in time_fields:
        value = getattr(record, name)
        if value and not is_valid_hhmm(value):
            errors.append(f"{name}: expected HH:MM, got {value!r}")

    unknown = [p for p in (record.processes or []) if p not in PROCESSES]
    if unknown:
        errors.append(f"Unknown processes: {', '.join(unknown)}")
    return errors


class ProductionLogService:
    """Submission, lookup and report export on top of a record repository."""
    def __init__(self, repository, calculator: Optional[ShiftMetricsCalculator] = None):
        self.repository = repository
        self.calculator = calculator or ShiftMetricsCalculator()

    def submit(self, record: ProductionRecord) -> ProductionRecord:
        errors = validate_record(record)
        if errors:
            logger.warning("Rejected production record for %s: %s", record.section, errors)
            raise RecordValidationError(errors)
        record = replace(
            record,
            customer_name=record.customer_name.strip(),
            virgin_kg=parse_kg(record.virgin_kg),
            regrind_kg=parse_kg(record.regrind_kg),
            good_bottles=parse_count(record.good_bottles),
            rejected_bottles=parse_count(record.rejected_bottles),
            preform=parse_count(record.preform),
            lumps_kg=parse_kg(record.lumps_kg),
        )
        record = self.calculator.complete_record(record)
        record.created_at = datetime.now(timezone.utc)
        saved = self.repository.save(record)
        logger.info(
            "Saved production record id=%s section=%s date=%s net=%s wastage=%s",
            saved.id, saved.section, saved.date, saved.net_running_hours, saved.wastage_percentage,
        )
        return saved

    def customers(self) -> List[str]:
        return self.repository.distinct("customer_name")

    def latest(self) -> Optional[ProductionRecord]:
        return self.repository.find_latest()

    def records(self, section: str | None = None) -> List[ProductionRecord]:
        return self.repository.find_all(section=section)

    def export_report(self, section: str | None = None) -> Tuple[str, bytes]:
        from utils import dataframe_to_excel, records_to_dataframe, report_filename

        records = self.records(section)
        df = records_to_dataframe(records, self.calculator)
        data = dataframe_to_excel(df, sheet_name=section or "All Production")
        logger.info("Exported %d production records (section=%s)", len(records), section or "all")
        return report_filename(section), data


def summarize(records: Iterable[ProductionRecord], calculator: ShiftMetricsCalculator) -> dict:
    """Totals over a set of records: hours summed, wastage from summed masses."""
    net = downtime = 0.0
    good_kg = wastage_kg = 0.0
    count = 0
    for r in records:
        m = calculator.compute(r)
        if math.isfinite(m.net_running_hours):
            net += m.net_running_hours
        downtime += m.total_downtime_hours
        c = MaterialCounts.from_record(r)
        w = calculator.unit_weight(c.section)
        good_kg += c.good_bottles * w
        wastage_kg += (c.rejected_bottles + c.preform) * w + c.lumps_kg
        count += 1
    total_kg = good_kg + wastage_kg
    return {
        "records": count,
        "net_running_hours": net,
        "total_downtime_hours": downtime,
        "wastage_percentage": wastage_kg / total_kg * 100 if total_kg > 0 else 0.0,
    }
