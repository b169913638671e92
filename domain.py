from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from types import MappingProxyType
from typing import Any, Sequence, Tuple
import math

# Weight of one molded piece in KG, per production line
WEIGHTS = MappingProxyType({
    "ASB 1 (PET)": 0.706,
    "ASB 2 (PC)": 0.820,
})

SECTIONS: Tuple[str, ...] = tuple(WEIGHTS)
PROCESSES: Tuple[str, ...] = ("Embossing", "Screen Printing", "Hot-Stamping", "Labelling")
MAX_BREAKDOWNS = 2


def parse_count(value: Any) -> int:
    """Piece count from form input. Invalid, missing or negative => 0."""
    try:
        n = int(float(str(value).strip()))
    except (TypeError, ValueError, OverflowError):
        return 0
    return max(0, n)


def parse_kg(value: Any) -> float:
    """Mass in KG from form input. Invalid, missing, negative or non-finite => 0."""
    try:
        x = float(str(value).strip())
    except (TypeError, ValueError):
        return 0.0
    if not math.isfinite(x) or x < 0:
        return 0.0
    return x


@dataclass
class ProductionRecord:
    """One shift production log entry for a blow-molding line."""
    section: str
    date: str
    customer_name: str
    shift: str | None = None
    shift_start: str | None = None
    shift_end: str | None = None

    breakdown_start1: str | None = None
    breakdown_end1: str | None = None
    breakdown_reason1: str | None = None
    breakdown_start2: str | None = None
    breakdown_end2: str | None = None
    breakdown_reason2: str | None = None

    brand: str | None = None
    mold_type: str | None = None
    wall_thickness: str | None = None
    date_insert: str | None = None
    bottom_mold_cooling: str | None = None
    bottle_general_strength: str | None = None
    processes: list[str] = field(default_factory=list)

    shift_incharge: str | None = None
    operator: str | None = None
    helpers: str | None = None

    resin_grade: str | None = None
    virgin_kg: float = 0.0
    regrind_kg: float = 0.0
    good_bottles: int = 0
    rejected_bottles: int = 0
    preform: int = 0
    lumps_kg: float = 0.0

    operator_notes: str | None = None

    # Derived text, stored next to the raw values for reporting
    net_running_hours: str | None = None
    total_downtime_hours: str | None = None
    wastage_percentage: str | None = None

    created_at: datetime | None = None
    id: int | None = None

    @property
    def breakdown_pairs(self) -> list[tuple[str | None, str | None]]:
        return [
            (self.breakdown_start1, self.breakdown_end1),
            (self.breakdown_start2, self.breakdown_end2),
        ]

    def has_process(self, name: str) -> bool:
        return name in (self.processes or [])


@dataclass(frozen=True)
class ShiftTimeInput:
    """Shift and breakdown clock times ("HH:MM") for one calculation."""
    shift_start: str | None
    shift_end: str | None
    breakdowns: Sequence[tuple[str | None, str | None]] = ()

    @property
    def present_breakdowns(self) -> list[tuple[str, str]]:
        """Pairs where both ends were filled in, at most MAX_BREAKDOWNS."""
        return [(s, e) for s, e in list(self.breakdowns)[:MAX_BREAKDOWNS] if s and e]

    @classmethod
    def from_record(cls, record: ProductionRecord) -> "ShiftTimeInput":
        return cls(record.shift_start, record.shift_end, tuple(record.breakdown_pairs))


@dataclass(frozen=True)
class MaterialCounts:
    section: str | None
    good_bottles: int = 0
    rejected_bottles: int = 0
    preform: int = 0
    lumps_kg: float = 0.0

    @classmethod
    def from_raw(cls, section: str | None, good: Any = None, rejected: Any = None,
                 preform: Any = None, lumps: Any = None) -> "MaterialCounts":
        return cls(
            section=section,
            good_bottles=parse_count(good),
            rejected_bottles=parse_count(rejected),
            preform=parse_count(preform),
            lumps_kg=parse_kg(lumps),
        )

    @classmethod
    def from_record(cls, record: ProductionRecord) -> "MaterialCounts":
        return cls.from_raw(
            record.section, record.good_bottles, record.rejected_bottles,
            record.preform, record.lumps_kg,
        )


@dataclass(frozen=True)
class DerivedMetrics:
    net_running_hours: float = 0.0
    total_downtime_hours: float = 0.0
    wastage_percentage: float = 0.0
