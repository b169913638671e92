from __future__ import annotations

from typing import List, Optional
from datetime import datetime, timezone
import logging

from sqlalchemy import Column, JSON
from sqlalchemy.pool import NullPool
from sqlalchemy import text
from sqlmodel import SQLModel, Field, Session, create_engine, select

from domain import ProductionRecord

logger = logging.getLogger(__name__)


class ProductionRecordDB(SQLModel, table=True):
    __tablename__ = "production_records"

    id: int | None = Field(default=None, primary_key=True)
    section: str = Field(index=True)
    date: str = Field(index=True)
    shift: str | None = None
    shift_start: str | None = None
    shift_end: str | None = None

    breakdown_start1: str | None = None
    breakdown_end1: str | None = None
    breakdown_reason1: str | None = None
    breakdown_start2: str | None = None
    breakdown_end2: str | None = None
    breakdown_reason2: str | None = None

    customer_name: str = Field(index=True)
    brand: str | None = None
    mold_type: str | None = None
    wall_thickness: str | None = None
    date_insert: str | None = None
    bottom_mold_cooling: str | None = None
    bottle_general_strength: str | None = None
    processes: List[str] = Field(default_factory=list, sa_column=Column(JSON))

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

    net_running_hours: str | None = None
    total_downtime_hours: str | None = None
    wastage_percentage: str | None = None

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc), index=True)


# Columns shared by the table and the domain record
_FIELDS = [name for name in ProductionRecordDB.model_fields if name != "id"]


def build_engine(db_url: str, echo: bool = False):
    is_sqlite = db_url.startswith("sqlite")
    kwargs = {
        "echo": echo,
        "pool_pre_ping": True,
        "connect_args": {},
    }
    if is_sqlite:
        kwargs["connect_args"] = {"check_same_thread": False}
    else:
        # Hosted Postgres: no local pool, bounded connect time
        kwargs["poolclass"] = NullPool
        kwargs["connect_args"] = {"connect_timeout": 10}
        if "sslmode=" not in db_url:
            db_url += ("&" if "?" in db_url else "?") + "sslmode=require"
    return create_engine(db_url, **kwargs)


def _to_row(r: ProductionRecord) -> ProductionRecordDB:
    values = {name: getattr(r, name) for name in _FIELDS}
    values["processes"] = list(r.processes or [])
    if values["created_at"] is None:
        values.pop("created_at")
    elif values["created_at"].tzinfo is None:
        # naive timestamps are taken as UTC
        values["created_at"] = values["created_at"].replace(tzinfo=timezone.utc)
    return ProductionRecordDB(**values)


def _to_record(row: ProductionRecordDB) -> ProductionRecord:
    values = {name: getattr(row, name) for name in _FIELDS}
    values["processes"] = list(row.processes or [])
    return ProductionRecord(id=row.id, **values)


class ProductionRecordRepository:
    """Stores production logs. Postgres URLs must connect or construction fails."""
    def __init__(self, url: str = "sqlite:///production.db", echo: bool = False):
        self.engine = build_engine(url, echo=echo)

        if not url.startswith("sqlite"):
            try:
                with self.engine.connect() as conn:
                    conn.execute(text("select 1"))
            except Exception as e:
                raise RuntimeError(f"Could not connect to Postgres: {e}") from e

        SQLModel.metadata.create_all(self.engine)

    def save(self, record: ProductionRecord) -> ProductionRecord:
        with Session(self.engine) as session:
            row = _to_row(record)
            session.add(row)
            session.commit()
            session.refresh(row)
            logger.debug("Inserted production record %s", row.id)
            return _to_record(row)

    def find_all(self, section: str | None = None) -> List[ProductionRecord]:
        with Session(self.engine) as session:
            query = select(ProductionRecordDB)
            if section:
                query = query.where(ProductionRecordDB.section == section)
            query = query.order_by(ProductionRecordDB.created_at, ProductionRecordDB.id)
            return [_to_record(r) for r in session.exec(query).all()]

    def distinct(self, field: str) -> List[str]:
        """Sorted distinct non-empty values of one column."""
        if field not in _FIELDS or field == "processes":
            raise ValueError(f"Unknown field: {field}")
        column = getattr(ProductionRecordDB, field)
        with Session(self.engine) as session:
            values = session.exec(select(column).distinct()).all()
        return sorted(v for v in values if v not in (None, ""))

    def find_latest(self) -> Optional[ProductionRecord]:
        with Session(self.engine) as session:
            row = session.exec(
                select(ProductionRecordDB)
                .order_by(ProductionRecordDB.created_at.desc(), ProductionRecordDB.id.desc())
            ).first()
            return _to_record(row) if row else None


__all__ = ["ProductionRecordDB", "ProductionRecordRepository", "build_engine"]
