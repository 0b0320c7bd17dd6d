"""
report_builder.py — Report card PDF and grade sheet Excel generation.

Generates:
- Report card data  (build_report_card: derived grades, achievements and the
                     promotion result for one enrollment, JSON-safe)
- Report Card PDF   (identity, period/annual grades colour-coded by level,
                     period chart, achievement narratives, promotion)
- Grade Sheet Excel (one row per student-subject, level fills, promotion sheet)

Reports only read persisted results; nothing is recomputed here.
All PDFs are A4, print-ready with school name / date footer.
"""

import io
from datetime import datetime
from typing import Any, Dict, List, Optional

import matplotlib
matplotlib.use("Agg")  # Non-interactive backend for server use
import matplotlib.pyplot as plt
import numpy as np
from openpyxl import Workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm, mm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from core.areas import generate_alerts, rollup_areas
from core.classifier import scale_thresholds
from core.config_resolver import ResolvedConfig
from core.errors import NotFoundError
from core.grading_config import ALTO, BAJO, BASICO, SUPERIOR
from core.models import to_payload
from core.narrative import compose_achievement_narrative, narrate_promotion
from core.numeric import as_float


# ── Colour palette ──────────────────────────────────────────────────

BRAND_DARK  = colors.HexColor("#1a1a2e")
BRAND_ACCENT = colors.HexColor("#0f3460")
LIGHT_GREY  = colors.HexColor("#f5f5f5")
WHITE       = colors.white

MPL_PALETTE = ["#0f3460", "#e94560", "#2ecc71", "#f39c12", "#9b59b6", "#1abc9c"]

LEVEL_HEX = {
    SUPERIOR: "d5f5e3",
    ALTO: "e8f8f5",
    BASICO: "fef9e7",
    BAJO: "fadbd8",
}


# ── Report card data ────────────────────────────────────────────────

def _achievement_narratives(store, enrollment_id: str, resolved: ResolvedConfig, include_suggested: bool):
    """subject_id -> {period_id: narrative} from the enrollment's student achievements."""
    grouped: Dict[str, Dict[str, list]] = {}
    for sa in store.list_student_achievements(enrollment_id=enrollment_id):
        try:
            achievement = store.get_achievement(sa.achievement_id)
            assignment = store.get_teacher_assignment(achievement.teacher_assignment_id)
        except NotFoundError:
            continue
        grouped.setdefault(assignment.subject_id, {}).setdefault(achievement.period_id, []).append((achievement, sa))

    out: Dict[str, Dict[str, str]] = {}
    for subject_id, by_period in grouped.items():
        for period_id, entries in by_period.items():
            text = compose_achievement_narrative(entries, resolved.achievement, include_suggested)
            if text:
                out.setdefault(subject_id, {})[period_id] = text
    return out


def build_report_card(
    store,
    enrollment_id: str,
    year: int,
    resolved: ResolvedConfig,
    include_suggested: bool = False,
) -> Dict[str, Any]:
    """Collect one enrollment's persisted results into a JSON-safe report card."""
    enrollment = store.get_enrollment(enrollment_id)
    periods = store.list_periods(enrollment.institution_id, year)
    label_for = {b.level: b.display_label for b in resolved.grading.scale}
    narratives = _achievement_narratives(store, enrollment_id, resolved, include_suggested)

    subjects = []
    annual_finals = {}
    group_subjects = store.get_subjects_for_group(enrollment.group_id)
    for subject in group_subjects:
        period_grades = {}
        for p in periods:
            g = store.get_period_grade(enrollment_id, subject.id, p.id)
            if g is None:
                continue
            period_grades[p.id] = {
                "grade": as_float(g.final_grade),
                "base_grade": as_float(g.base_grade),
                "level": g.level,
                "label": label_for.get(g.level, g.level),
                "recovery_applied": g.recovery_applied,
            }
        annual = store.get_annual_grade(enrollment_id, subject.id, year)
        if annual is not None:
            annual_finals[subject.id] = annual.final_grade
        subjects.append({
            "subject_id": subject.id,
            "name": subject.name,
            "period_grades": period_grades,
            "annual": None if annual is None else {
                "grade": as_float(annual.final_grade),
                "base_grade": as_float(annual.base_grade),
                "level": annual.level,
                "label": label_for.get(annual.level, annual.level),
                "recovery_applied": annual.recovery_applied,
            },
            "achievements": narratives.get(subject.id, {}),
        })

    grading = resolved.grading
    areas, alerts = [], []
    if grading.areas:
        areas = rollup_areas(annual_finals, grading, [s.id for s in group_subjects])
        if grading.area_rules.generate_alerts:
            alerts = generate_alerts(areas, {s.id: s.name for s in group_subjects})

    promotion = store.get_promotion_result(enrollment_id, year)
    return {
        "enrollment": to_payload(enrollment),
        "year": year,
        "periods": [{"id": p.id, "name": p.name or f"Period {p.order}", "order": p.order} for p in periods],
        "subjects": subjects,
        "areas": to_payload(areas),
        "alerts": to_payload(alerts),
        "promotion": None if promotion is None else {
            **to_payload(promotion),
            "narrative": narrate_promotion(promotion),
        },
        "scale": scale_thresholds(resolved.grading.scale),
        "generated_at": datetime.now().isoformat(timespec="seconds"),
    }


# ── Helpers ─────────────────────────────────────────────────────────

def _fmt(grade: Optional[float]) -> str:
    return "—" if grade is None else f"{grade:.2f}"


def _footer(canvas, doc, school_name: str):
    """Draw school name and date in the page footer."""
    canvas.saveState()
    canvas.setFont("Helvetica", 8)
    canvas.setFillColor(colors.grey)
    footer_text = f"{school_name} · Generated {datetime.now().strftime('%d %B %Y, %H:%M')}"
    canvas.drawString(2 * cm, 1.2 * cm, footer_text)
    canvas.drawRightString(A4[0] - 2 * cm, 1.2 * cm, f"Page {doc.page}")
    canvas.restoreState()


def _chart_to_image(fig, width=14 * cm, height=7 * cm) -> Image:
    """Convert a matplotlib figure to a ReportLab Image."""
    buf = io.BytesIO()
    fig.savefig(buf, format="png", dpi=150, bbox_inches="tight")
    plt.close(fig)
    buf.seek(0)
    return Image(buf, width=width, height=height)


def _styles():
    ss = getSampleStyleSheet()
    return {
        "title": ParagraphStyle(
            "CustomTitle", parent=ss["Title"],
            fontSize=22, leading=28, textColor=BRAND_DARK,
            spaceAfter=4 * mm,
        ),
        "subtitle": ParagraphStyle(
            "CustomSubtitle", parent=ss["Normal"],
            fontSize=13, leading=17, textColor=BRAND_ACCENT,
            spaceAfter=3 * mm,
        ),
        "heading": ParagraphStyle(
            "CustomHeading", parent=ss["Heading2"],
            fontSize=13, leading=17, textColor=BRAND_DARK,
            spaceBefore=6 * mm, spaceAfter=3 * mm,
        ),
        "body": ParagraphStyle(
            "CustomBody", parent=ss["Normal"],
            fontSize=10, leading=14, textColor=colors.black,
            spaceAfter=2 * mm,
        ),
        "small": ParagraphStyle(
            "CustomSmall", parent=ss["Normal"],
            fontSize=8, leading=10, textColor=colors.grey,
        ),
        "center": ParagraphStyle(
            "CenterBody", parent=ss["Normal"],
            fontSize=10, leading=14, alignment=TA_CENTER,
        ),
    }


def _grades_table(card: Dict[str, Any]) -> Table:
    """Subjects x periods table, annual column coloured by performance level."""
    periods = card["periods"]
    header = ["Subject"] + [p["name"] for p in periods] + ["Final", "Level"]
    data = [header]
    levels = []
    for s in card["subjects"]:
        row = [s["name"]]
        for p in periods:
            pg = s["period_grades"].get(p["id"])
            mark = _fmt(pg["grade"] if pg else None)
            if pg and pg["recovery_applied"]:
                mark += "*"
            row.append(mark)
        annual = s["annual"]
        row.append(_fmt(annual["grade"]) if annual else "—")
        row.append(annual["label"] if annual else "Not graded")
        data.append(row)
        levels.append(annual["level"] if annual else None)

    style_cmds = [
        ("BACKGROUND", (0, 0), (-1, 0), BRAND_DARK),
        ("TEXTCOLOR", (0, 0), (-1, 0), WHITE),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, 0), 9),
        ("FONTSIZE", (0, 1), (-1, -1), 8),
        ("ALIGN", (1, 0), (-1, -1), "CENTER"),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#cccccc")),
        ("TOPPADDING", (0, 0), (-1, -1), 4),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 4),
    ]
    for row_idx, level in enumerate(levels, start=1):
        hex_code = LEVEL_HEX.get(level)
        if hex_code:
            style_cmds.append(("BACKGROUND", (-2, row_idx), (-1, row_idx), colors.HexColor(f"#{hex_code}")))

    t = Table(data, repeatRows=1)
    t.setStyle(TableStyle(style_cmds))
    return t


def _period_series(card: Dict[str, Any]) -> Dict[str, np.ndarray]:
    """period id -> grade per charted subject; NaN where the period is not graded."""
    subjects = [s for s in card["subjects"] if s["period_grades"]]
    series = {}
    for p in card["periods"]:
        grades = [(s["period_grades"].get(p["id"]) or {}).get("grade") for s in subjects]
        series[p["id"]] = np.array([np.nan if g is None else g for g in grades], dtype=float)
    return series


def _period_chart(card: Dict[str, Any]) -> Optional[Image]:
    """Grouped bars: each subject's grade per period."""
    periods = card["periods"]
    subjects = [s for s in card["subjects"] if s["period_grades"]]
    if not periods or not subjects:
        return None

    series = _period_series(card)
    x = np.arange(len(subjects))
    width = 0.8 / len(periods)
    fig, ax = plt.subplots(figsize=(7, 3.2))
    for i, p in enumerate(periods):
        values = series[p["id"]]
        ax.bar(x + i * width, values, width, label=p["name"], color=MPL_PALETTE[i % len(MPL_PALETTE)])

    low = min(b["min"] for b in card["scale"]) if card["scale"] else 0
    high = max(b["max"] for b in card["scale"]) if card["scale"] else 5
    ax.set_xticks(x + width * (len(periods) - 1) / 2)
    ax.set_xticklabels([s["name"] for s in subjects], rotation=30, ha="right", fontsize=8)
    ax.set_ylim(0, high * 1.05)
    ax.axhline(low, color="#999999", linewidth=0.6)
    ax.set_title("Grades by Period", fontsize=11, fontweight="bold", pad=10)
    ax.legend(fontsize=7, frameon=False)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    return _chart_to_image(fig)


# ═══════════════════════════════════════════════════════════════════
# 1. REPORT CARD PDF
# ═══════════════════════════════════════════════════════════════════

def generate_report_card_pdf(output_path: str, card: Dict[str, Any], school_name: str):
    """Generate a student's report card PDF from build_report_card output."""
    st = _styles()
    story = []
    enrollment = card["enrollment"]

    story.append(Paragraph(school_name, st["title"]))
    story.append(Paragraph(f"Report Card {card['year']}", st["subtitle"]))
    story.append(Paragraph(datetime.now().strftime("%d %B %Y"), st["small"]))
    story.append(Spacer(1, 4 * mm))

    identity = [
        ["Student", enrollment.get("student_name") or enrollment.get("student_id") or enrollment["id"],
         "Enrollment", enrollment["id"]],
        ["Group", enrollment["group_id"], "Academic Year", str(card["year"])],
    ]
    identity_table = Table(identity, colWidths=[3.2 * cm, 4.3 * cm, 3.2 * cm, 4.3 * cm])
    identity_table.setStyle(TableStyle([
        ("GRID", (0, 0), (-1, -1), 0.6, colors.HexColor("#d1d5db")),
        ("BACKGROUND", (0, 0), (-1, -1), colors.HexColor("#f8fafc")),
        ("FONTNAME", (0, 0), (0, -1), "Helvetica-Bold"),
        ("FONTNAME", (2, 0), (2, -1), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 9),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]))
    story.append(identity_table)

    # ── Grades ──────────────────────────────────────────────────────
    story.append(Paragraph("Grades", st["heading"]))
    if card["subjects"]:
        story.append(_grades_table(card))
        story.append(Paragraph("* grade raised by a recovery activity", st["small"]))
    else:
        story.append(Paragraph("No subjects assigned to this group.", st["body"]))

    chart = _period_chart(card)
    if chart:
        story.append(Spacer(1, 3 * mm))
        story.append(chart)

    legend = ", ".join(f"{b['label']} {b['min']:.1f}–{b['max']:.1f}" for b in card["scale"])
    if legend:
        story.append(Paragraph(f"Scale: {legend}", st["small"]))

    # ── Achievements ────────────────────────────────────────────────
    with_text = [s for s in card["subjects"] if s["achievements"]]
    if with_text:
        story.append(Paragraph("Achievements", st["heading"]))
        period_names = {p["id"]: p["name"] for p in card["periods"]}
        for s in with_text:
            story.append(Paragraph(f"<b>{s['name']}</b>", st["body"]))
            for period_id, text in s["achievements"].items():
                lines = "<br/>".join(text.splitlines())
                story.append(Paragraph(f"{period_names.get(period_id, period_id)}: {lines}", st["body"]))

    # ── Areas ───────────────────────────────────────────────────────
    areas = [a for a in card.get("areas") or [] if not a["standalone"]]
    if areas:
        story.append(Paragraph("Areas", st["heading"]))
        for a in areas:
            state = {True: "approved", False: "not approved"}.get(a["approved"], "not graded")
            story.append(Paragraph(f"<b>{a['name']}</b>: {_fmt(a['grade'])} ({state})", st["body"]))
    for alert in card.get("alerts") or []:
        story.append(Paragraph(alert["message"], st["small"]))

    # ── Promotion ───────────────────────────────────────────────────
    story.append(Paragraph("Promotion", st["heading"]))
    promotion = card.get("promotion")
    if promotion:
        story.append(Paragraph(f"<b>{promotion['decision'].replace('_', ' ').title()}</b>", st["body"]))
        story.append(Paragraph(promotion["narrative"], st["body"]))
    else:
        story.append(Paragraph("Promotion has not been decided yet.", st["body"]))
    story.append(Spacer(1, 6 * mm))

    sign_table = Table(
        [
            ["Group Director Signature", "Parent/Guardian Signature", "Principal Signature"],
            ["", "", ""],
        ],
        colWidths=[5 * cm, 5 * cm, 5 * cm],
        rowHeights=[0.65 * cm, 1.5 * cm],
    )
    sign_table.setStyle(TableStyle([
        ("GRID", (0, 0), (-1, -1), 0.5, colors.HexColor("#9ca3af")),
        ("FONTNAME", (0, 0), (-1, 0), "Helvetica-Bold"),
        ("FONTSIZE", (0, 0), (-1, -1), 8),
        ("ALIGN", (0, 0), (-1, -1), "CENTER"),
        ("BACKGROUND", (0, 0), (-1, 0), colors.HexColor("#f3f4f6")),
    ]))
    story.append(sign_table)

    doc = SimpleDocTemplate(
        output_path, pagesize=A4,
        leftMargin=2 * cm, rightMargin=2 * cm,
        topMargin=2 * cm, bottomMargin=2.5 * cm,
    )
    doc.build(
        story,
        onFirstPage=lambda c, d: _footer(c, d, school_name),
        onLaterPages=lambda c, d: _footer(c, d, school_name),
    )


# ═══════════════════════════════════════════════════════════════════
# 2. GRADE SHEET EXCEL
# ═══════════════════════════════════════════════════════════════════

def generate_grade_sheet_excel(output_path: str, cards: List[Dict[str, Any]], school_name: str):
    """Export report cards of a group to one workbook (grades + promotion sheets)."""
    header_font = Font(bold=True, color="FFFFFF", size=11)
    header_fill = PatternFill(start_color="1a1a2e", end_color="1a1a2e", fill_type="solid")
    thin_border = Border(
        left=Side(style="thin"), right=Side(style="thin"),
        top=Side(style="thin"), bottom=Side(style="thin"),
    )

    def _style_sheet(ws, level_col: Optional[int] = None):
        for cell in ws[1]:
            cell.font = header_font
            cell.fill = header_fill
            cell.alignment = Alignment(horizontal="center")
            cell.border = thin_border
        for row in ws.iter_rows(min_row=2, max_row=ws.max_row):
            for cell in row:
                cell.border = thin_border
                cell.alignment = Alignment(horizontal="center")
            if level_col:
                hex_code = LEVEL_HEX.get(row[level_col - 1].value)
                if hex_code:
                    fill = PatternFill(start_color=hex_code, end_color=hex_code, fill_type="solid")
                    for cell in row:
                        cell.fill = fill
        ws.freeze_panes = "A2"
        for col_cells in ws.columns:
            max_len = max(len(str(cell.value or "")) for cell in col_cells)
            ws.column_dimensions[col_cells[0].column_letter].width = min(max_len + 4, 40)

    periods = cards[0]["periods"] if cards else []

    wb = Workbook()
    ws = wb.active
    ws.title = "Grades"
    ws.sheet_properties.tabColor = "1a1a2e"
    header = ["Enrollment", "Student", "Subject"] + [p["name"] for p in periods] + ["Final", "Level", "Recovery"]
    ws.append(header)
    for card in cards:
        e = card["enrollment"]
        for s in card["subjects"]:
            annual = s["annual"] or {}
            ws.append(
                [e["id"], e.get("student_name") or "", s["name"]]
                + [(s["period_grades"].get(p["id"]) or {}).get("grade") for p in periods]
                + [annual.get("grade"), annual.get("level") or "", "yes" if annual.get("recovery_applied") else ""]
            )
    _style_sheet(ws, level_col=len(header) - 1)

    ws_promo = wb.create_sheet(title="Promotion")
    ws_promo.sheet_properties.tabColor = "0f3460"
    ws_promo.append(["Enrollment", "Student", "Decision", "Failed Subjects", "Failed Areas", "Attendance %", "Rules"])
    for card in cards:
        e = card["enrollment"]
        p = card.get("promotion") or {}
        ws_promo.append([
            e["id"],
            e.get("student_name") or "",
            p.get("decision") or "PENDING",
            p.get("failed_subject_count"),
            ", ".join(p.get("failed_areas") or []),
            p.get("attendance_pct"),
            ", ".join(p.get("triggering_rules") or []),
        ])
    _style_sheet(ws_promo)

    ws_info = wb.create_sheet(title="Info")
    ws_info.append(["School", school_name])
    ws_info.append(["Generated", datetime.now().strftime("%d %B %Y, %H:%M")])

    wb.save(output_path)
