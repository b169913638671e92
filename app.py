# -----------------------------------------------
# 🏭 Shift production log — blow-molding lines (Streamlit)
# -----------------------------------------------
# Requires: streamlit, sqlmodel, pandas, reportlab, xlsxwriter, psycopg2-binary (for Postgres)
# Live running-hours / wastage preview uses the same calculator as the Excel report.

import os
import logging
from pathlib import Path
from datetime import date

import streamlit as st
from sqlalchemy.exc import SQLAlchemyError

from domain import PROCESSES, SECTIONS, ProductionRecord, ShiftTimeInput, MaterialCounts
from repository import ProductionRecordRepository
from services import (
    ProductionLogService, RecordValidationError, ShiftMetricsCalculator,
    format_hours, format_percentage, summarize,
)
from utils import XLSX_MIME, record_to_pdf

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("production_log")

# =========================
# Persistence by environment (local SQLite fallback for development)
# =========================
def _pick_data_dir() -> Path:
    candidates = []
    env = os.getenv("DATA_DIR")
    if env:
        candidates.append(Path(env))
    candidates += [Path("/data"), Path.cwd() / "data"]

    for p in candidates:
        try:
            p.mkdir(parents=True, exist_ok=True)
            t = p / ".rwtest"
            t.write_text("ok")
            t.unlink(missing_ok=True)
            return p
        except OSError:
            continue
    return Path.cwd()

DATA_DIR = _pick_data_dir()
DEFAULT_SQLITE = f"sqlite:///{(DATA_DIR / 'production.db').as_posix()}"
DB_URL = os.getenv("DATABASE_URL", DEFAULT_SQLITE)

@st.cache_resource
def get_service(url: str) -> ProductionLogService:
    logger.info("Opening production database (%s)", "sqlite" if url.startswith("sqlite") else "postgres")
    return ProductionLogService(ProductionRecordRepository(url, echo=False), ShiftMetricsCalculator())

service = get_service(DB_URL)
calculator = service.calculator

# =========================
# Global parameters
# =========================
APP_TITLE = "Shift Production Log"
WASTAGE_ALERT_PERCENT = 3.0
SHIFTS = ["Day", "Night"]
GOOD_BAD = ["", "Good", "Bad"]
YES_NO = ["", "Yes", "No"]

FORM_KEYS = [
    "date", "shift", "shift_start", "shift_end",
    "breakdown_start1", "breakdown_end1", "breakdown_reason1",
    "breakdown_start2", "breakdown_end2", "breakdown_reason2",
    "customer_pick", "customer_new", "brand", "mold_type", "wall_thickness", "date_insert",
    "bottom_mold_cooling", "bottle_general_strength", "processes",
    "shift_incharge", "operator", "helpers",
    "resin_grade", "virgin_kg", "regrind_kg", "good_bottles", "rejected_bottles", "preform", "lumps_kg",
    "operator_notes",
]

# =========================
# State helpers
# =========================
def _reset_form():
    for k in FORM_KEYS:
        st.session_state.pop(f"f_{k}", None)

def _flash_success_if_any():
    msg = st.session_state.pop("_flash_success", None)
    if msg:
        st.success(msg)

def _value(key: str, default=""):
    return st.session_state.get(f"f_{key}", default)

def _time_value(key: str) -> str | None:
    v = (_value(key) or "").strip()
    return v or None

def record_from_form(section: str) -> ProductionRecord:
    customer = (_value("customer_new") or "").strip() or (_value("customer_pick") or "")
    d = _value("date", None)
    return ProductionRecord(
        section=section,
        date=d.isoformat() if isinstance(d, date) else "",
        customer_name=customer,
        shift=_value("shift") or None,
        shift_start=_time_value("shift_start"),
        shift_end=_time_value("shift_end"),
        breakdown_start1=_time_value("breakdown_start1"),
        breakdown_end1=_time_value("breakdown_end1"),
        breakdown_reason1=_value("breakdown_reason1") or None,
        breakdown_start2=_time_value("breakdown_start2"),
        breakdown_end2=_time_value("breakdown_end2"),
        breakdown_reason2=_value("breakdown_reason2") or None,
        brand=_value("brand") or None,
        mold_type=_value("mold_type") or None,
        wall_thickness=_value("wall_thickness") or None,
        date_insert=_value("date_insert") or None,
        bottom_mold_cooling=_value("bottom_mold_cooling") or None,
        bottle_general_strength=_value("bottle_general_strength") or None,
        processes=list(_value("processes", [])),
        shift_incharge=_value("shift_incharge") or None,
        operator=_value("operator") or None,
        helpers=_value("helpers") or None,
        resin_grade=_value("resin_grade") or None,
        virgin_kg=_value("virgin_kg"),
        regrind_kg=_value("regrind_kg"),
        good_bottles=_value("good_bottles"),
        rejected_bottles=_value("rejected_bottles"),
        preform=_value("preform"),
        lumps_kg=_value("lumps_kg"),
        operator_notes=_value("operator_notes") or None,
    )

def load_customers() -> list[str]:
    try:
        return service.customers()
    except SQLAlchemyError as e:
        logger.error("Could not load customers: %s", e)
        return []

# =========================
# Page setup
# =========================
st.set_page_config(page_title=APP_TITLE, page_icon="🏭", layout="centered")
st.title(f"🏭 {APP_TITLE}")
st.caption("Select a line, fill in the shift log, save, then print or export.")

section = st.radio("Line", SECTIONS, horizontal=True, key="section")
st.subheader(f"{section} - Production Log")
_flash_success_if_any()

# =========================
# ⏱️ Shift & downtime
# =========================
c1, c2, c3, c4 = st.columns(4)
c1.date_input("Date", value=date.today(), key="f_date")
c2.selectbox("Shift", [""] + SHIFTS, key="f_shift")
c3.text_input("Start (HH:MM)", placeholder="08:00", key="f_shift_start")
c4.text_input("End (HH:MM)", placeholder="16:00", key="f_shift_end")

for i in (1, 2):
    b1, b2, b3 = st.columns([1, 1, 2])
    b1.text_input(f"Stop {i}", placeholder="HH:MM", key=f"f_breakdown_start{i}")
    b2.text_input(f"Start {i}", placeholder="HH:MM", key=f"f_breakdown_end{i}")
    b3.text_input(f"Reason {i}", key=f"f_breakdown_reason{i}")

# =========================
# 🧾 Job details & personnel
# =========================
customers = load_customers()
j1, j2 = st.columns(2)
j1.selectbox("Customer", [""] + customers, key="f_customer_pick")
j2.text_input("New customer", key="f_customer_new", help="Overrides the selection above")
j1.text_input("Brand", key="f_brand")
j2.text_input("Mold type", key="f_mold_type")
j1.selectbox("Wall thickness", GOOD_BAD, key="f_wall_thickness")
j2.selectbox("Date insert", YES_NO, key="f_date_insert")
j1.selectbox("Bottom mold / cooling", YES_NO, key="f_bottom_mold_cooling")
j2.selectbox("Bottle strength", GOOD_BAD, key="f_bottle_general_strength")
st.multiselect("Post-production processes", PROCESSES, key="f_processes")

p1, p2, p3 = st.columns(3)
p1.text_input("Shift incharge", key="f_shift_incharge")
p2.text_input("Operator", key="f_operator")
p3.text_input("Helpers", key="f_helpers")

# =========================
# ⚖️ Material & output
# =========================
m1, m2, m3 = st.columns(3)
m1.text_input("Resin / grade", key="f_resin_grade")
m2.text_input("Virgin (KG)", key="f_virgin_kg")
m3.text_input("Regrind (KG)", key="f_regrind_kg")
m1.text_input("Good bottles (pcs)", key="f_good_bottles")
m2.text_input("Rejected bottles (pcs)", key="f_rejected_bottles")
m3.text_input("Preform (pcs)", key="f_preform")
m1.text_input("Lump (KG)", key="f_lumps_kg")
st.text_area("Operator notes", key="f_operator_notes")

# =========================
# 📈 Live preview (recomputed on every change)
# =========================
draft = record_from_form(section)
net, downtime = calculator.compute_running_hours(ShiftTimeInput.from_record(draft))
wastage = calculator.compute_wastage(MaterialCounts.from_record(draft))

r1, r2, r3 = st.columns(3)
r1.metric("Net running hours", format_hours(net))
r2.metric("Downtime (h)", format_hours(downtime))
r3.metric("Wastage", format_percentage(wastage))
if wastage > WASTAGE_ALERT_PERCENT:
    st.error(f"Wastage above {WASTAGE_ALERT_PERCENT:.0f}%")

if st.button("Save log", use_container_width=True, type="primary"):
    try:
        saved = service.submit(draft)
    except RecordValidationError as e:
        for msg in e.errors:
            st.error(msg)
    except SQLAlchemyError as e:
        logger.exception("Saving production record failed")
        st.error(f"Failed to save production data: {e}")
    else:
        _reset_form()
        st.session_state["_flash_success"] = (
            f"Saved {saved.section} {saved.date}: {saved.net_running_hours} h · wastage {saved.wastage_percentage}. "
            "You can now print this report."
        )
        st.rerun()

# =========================
# 🖨️ Print — last saved record
# =========================
st.subheader("🖨️ Print last report")
try:
    latest = service.latest()
except SQLAlchemyError as e:
    logger.error("Could not load the last record: %s", e)
    st.error(f"Failed to load the last record: {e}")
    latest = None
else:
    if latest is None:
        st.caption("No records saved yet.")
if latest is not None:
    st.download_button(
        f"Download report PDF ({latest.section}, {latest.date})",
        data=record_to_pdf(latest),
        file_name=f"production_report_{latest.id}.pdf",
        mime="application/pdf",
        use_container_width=True,
    )

# =========================
# ⬇️ Excel report (built on demand)
# =========================
st.subheader("⬇️ Excel report")
scope = st.selectbox("Records", ["All"] + list(SECTIONS), key="export_scope")
section_filter = None if scope == "All" else scope
try:
    totals = summarize(service.records(section_filter), calculator)
except SQLAlchemyError as e:
    logger.error("Could not load records for the report: %s", e)
    st.error(f"Failed to load production records: {e}")
    totals = None

if totals is not None:
    st.caption(
        f"{totals['records']} records · net {format_hours(totals['net_running_hours'])} h · "
        f"downtime {format_hours(totals['total_downtime_hours'])} h · "
        f"wastage {format_percentage(totals['wastage_percentage'])}"
    )
    if st.button("Build Excel report", use_container_width=True, disabled=totals["records"] == 0):
        try:
            st.session_state["_export"] = (scope, *service.export_report(section_filter))
        except SQLAlchemyError as e:
            logger.exception("Excel export failed")
            st.error(f"Failed to build the Excel report: {e}")

    export = st.session_state.get("_export")
    if export and export[0] == scope:
        _, filename, xlsx_bytes = export
        st.download_button(
            f"Download {filename}",
            data=xlsx_bytes,
            file_name=filename,
            mime=XLSX_MIME,
            use_container_width=True,
        )
