# store_audit/report_pdf.py
"""
Single letter-size page PDF for a finalized audit.

Layout: header with folio, info grid, score and status boxes, action plan,
findings grid (two columns, capped upstream), both signatures.
"""
import io
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_JUSTIFY
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import HRFlowable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle
from reportlab.platypus.flowables import Flowable

from store_audit.report import NO_OBSERVATION_TEXT, AuditReport, Finding
from store_audit.scoring import AuditStatus
from store_audit.signature import decode_payload

# ── Colours ──────────────────────────────────────────────────────────────────
NAVY      = colors.HexColor("#1e3a8a")
RED_C     = colors.HexColor("#dc2626")
GREY_TXT  = colors.HexColor("#6b7280")
LIGHT_BG  = colors.HexColor("#f9fafb")
BORDER    = colors.HexColor("#e5e7eb")
AMBER_BG  = colors.HexColor("#fffbeb")
AMBER     = colors.HexColor("#b45309")
RED_BG    = colors.HexColor("#fef2f2")

STATUS_COLORS = {
    AuditStatus.MODEL_STORE: (colors.HexColor("#dcfce7"), colors.HexColor("#166534")),
    AuditStatus.ACCEPTABLE: (colors.HexColor("#fef9c3"), colors.HexColor("#854d0e")),
    AuditStatus.CRITICAL: (colors.HexColor("#fee2e2"), colors.HexColor("#991b1b")),
}

CONTENT_WIDTH = 7.5 * inch


class SignatureBox(Flowable):
    """Draws a stroke payload scaled to fit the box, with the signer line below."""

    def __init__(self, payload, width=3.2*inch, height=0.8*inch):
        super().__init__()
        self.strokes = decode_payload(payload)
        self.width = width
        self.height = height

    def draw(self):
        c = self.canv
        c.setStrokeColor(GREY_TXT)
        c.setLineWidth(0.6)
        c.line(0, 0, self.width, 0)

        points = [p for s in self.strokes for p in s]
        if not points:
            return
        min_x = min(p[0] for p in points)
        max_x = max(p[0] for p in points)
        min_y = min(p[1] for p in points)
        max_y = max(p[1] for p in points)
        span_x = max(max_x - min_x, 1.0)
        span_y = max(max_y - min_y, 1.0)
        pad = 4
        scale = min((self.width - 2 * pad) / span_x, (self.height - 2 * pad) / span_y)
        off_x = (self.width - span_x * scale) / 2

        c.setStrokeColor(colors.black)
        c.setLineWidth(1.1)
        c.setLineCap(1)
        for stroke in self.strokes:
            if len(stroke) < 2:
                continue
            path = c.beginPath()
            # client coordinates grow downwards
            for i, (x, y) in enumerate(stroke):
                px = off_x + (x - min_x) * scale
                py = pad + (max_y - y) * scale
                if i == 0:
                    path.moveTo(px, py)
                else:
                    path.lineTo(px, py)
            c.drawPath(path, stroke=1, fill=0)


def _styles():
    styles = getSampleStyleSheet()
    styles.add(ParagraphStyle(
        "DocTitle", parent=styles["Normal"], fontName="Helvetica-Bold", fontSize=15,
        leading=17, textColor=NAVY,
    ))
    styles.add(ParagraphStyle(
        "DocSub", parent=styles["Normal"], fontSize=7.5, leading=9, textColor=GREY_TXT,
    ))
    styles.add(ParagraphStyle(
        "Folio", parent=styles["Normal"], fontName="Courier-Bold", fontSize=12,
        leading=14, textColor=RED_C, alignment=2,
    ))
    styles.add(ParagraphStyle(
        "Info", parent=styles["Normal"], fontSize=8.5, leading=11,
    ))
    styles.add(ParagraphStyle(
        "H3", parent=styles["Normal"], fontName="Helvetica-Bold", fontSize=8.5,
        leading=11, textColor=NAVY, spaceBefore=6, spaceAfter=2,
    ))
    styles.add(ParagraphStyle(
        "Plan", parent=styles["Normal"], fontSize=7.5, leading=9.5, alignment=TA_JUSTIFY,
    ))
    styles.add(ParagraphStyle(
        "Cell", parent=styles["Normal"], fontSize=7, leading=8.5,
    ))
    styles.add(ParagraphStyle(
        "Centered", parent=styles["Normal"], fontSize=8, leading=10, alignment=TA_CENTER,
    ))
    return styles


def _p(text, style):
    return Paragraph(escape(str(text or "")).replace("\n", "<br/>"), style)


def _finding_cell(finding: Finding, styles):
    marker = "[Obs] " if finding.has_observation else ""
    obs = finding.observation if finding.has_observation else NO_OBSERVATION_TEXT
    points = f"{finding.score} pts"
    if finding.option_label:
        points += f" ({escape(finding.option_label)})"
    return [
        Paragraph(
            f"<b>{escape(marker + finding.question_id)} - {escape(finding.category)}</b>"
            f"&nbsp;&nbsp;<font color='#b91c1c'>{points}</font>",
            styles["Cell"],
        ),
        Paragraph(f"<i><font color='#6b7280'>\"{escape(finding.criterion)}\"</font></i>", styles["Cell"]),
        Paragraph(f"<b>Obs:</b> {escape(obs)}", styles["Cell"]),
    ]


def _findings_table(report: AuditReport, styles):
    cells = [_finding_cell(f, styles) for f in report.findings]
    if len(cells) % 2:
        cells.append("")
    rows = [cells[i:i + 2] for i in range(0, len(cells), 2)]
    table = Table(rows, colWidths=[CONTENT_WIDTH / 2] * 2)
    style = [
        ("VALIGN", (0, 0), (-1, -1), "TOP"),
        ("LEFTPADDING", (0, 0), (-1, -1), 4),
        ("RIGHTPADDING", (0, 0), (-1, -1), 4),
    ]
    for idx, finding in enumerate(report.findings):
        r, c = divmod(idx, 2)
        bg = AMBER_BG if finding.has_observation else RED_BG
        border = AMBER if finding.has_observation else colors.HexColor("#fecaca")
        style.append(("BACKGROUND", (c, r), (c, r), bg))
        style.append(("BOX", (c, r), (c, r), 0.5, border))
    table.setStyle(TableStyle(style))
    return table


def render_report_pdf(report: AuditReport) -> bytes:
    styles = _styles()
    record = report.record
    buf = io.BytesIO()
    doc = SimpleDocTemplate(
        buf, pagesize=letter,
        leftMargin=0.5*inch, rightMargin=0.5*inch,
        topMargin=0.4*inch, bottomMargin=0.4*inch,
        title=f"Auditoría {record.folio}",
    )

    story = []

    # ── Header ───────────────────────────────────────────────────────────
    header = Table(
        [[
            [_p("AUDITORÍA DE TIENDA", styles["DocTitle"]),
             _p("REPORTE DE EJECUCIÓN EN PUNTO DE VENTA", styles["DocSub"])],
            [_p("FOLIO", styles["DocSub"]), _p(record.folio, styles["Folio"])],
        ]],
        colWidths=[CONTENT_WIDTH * 0.65, CONTENT_WIDTH * 0.35],
    )
    header.setStyle(TableStyle([("VALIGN", (0, 0), (-1, -1), "MIDDLE"), ("ALIGN", (1, 0), (1, 0), "RIGHT")]))
    story.append(header)
    story.append(HRFlowable(width="100%", thickness=1.5, color=RED_C, spaceAfter=6))

    # ── Info grid ────────────────────────────────────────────────────────
    def info(label, value):
        return Paragraph(f"<b><font color='#1e3a8a'>{label}:</font></b> {escape(str(value))}", styles["Info"])

    grid = Table(
        [
            [info("TIENDA", record.store_name), "", info("FECHA", record.audit_date.isoformat()),
             info("HORA", record.audit_time.strftime("%H:%M"))],
            [info("GERENTE", record.manager_name), "", info("AUDITOR", record.auditor_name), ""],
        ],
        colWidths=[CONTENT_WIDTH / 4] * 4,
    )
    grid.setStyle(TableStyle([
        ("SPAN", (0, 0), (1, 0)),
        ("SPAN", (0, 1), (1, 1)),
        ("SPAN", (2, 1), (3, 1)),
        ("BACKGROUND", (0, 0), (-1, -1), LIGHT_BG),
        ("BOX", (0, 0), (-1, -1), 0.5, BORDER),
    ]))
    story.append(grid)
    story.append(Spacer(1, 6))

    # ── Score & status ───────────────────────────────────────────────────
    bg, fg = STATUS_COLORS[record.status]
    score_box = Table(
        [[
            Paragraph(
                f"<font size='7' color='#6b7280'>CALIFICACIÓN</font><br/>"
                f"<font size='20' color='#1e3a8a'><b>{record.total_score}</b></font>"
                f"<font size='8' color='#9ca3af'>/{report.max_points}</font>",
                ParagraphStyle("score", parent=styles["Centered"], leading=22),
            ),
            Paragraph(
                f"<font size='7'>ESTATUS OPERATIVO</font><br/><font size='13'><b>{escape(record.status.label)}</b></font>",
                ParagraphStyle("status", parent=styles["Centered"], leading=16, textColor=fg),
            ),
        ]],
        colWidths=[CONTENT_WIDTH / 3, CONTENT_WIDTH * 2 / 3],
        rowHeights=[0.6 * inch],
    )
    score_box.setStyle(TableStyle([
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("BACKGROUND", (0, 0), (0, 0), colors.HexColor("#eff6ff")),
        ("BACKGROUND", (1, 0), (1, 0), bg),
        ("BOX", (0, 0), (0, 0), 0.5, BORDER),
        ("BOX", (1, 0), (1, 0), 0.5, BORDER),
    ]))
    story.append(score_box)

    # ── Action plan ──────────────────────────────────────────────────────
    if record.action_plan:
        story.append(_p("PLAN DE ACCIÓN", styles["H3"]))
        story.append(_p(record.action_plan, styles["Plan"]))

    # ── Findings ─────────────────────────────────────────────────────────
    story.append(_p(f"DETALLE DE HALLAZGOS ({report.total_findings})", styles["H3"]))
    if report.findings:
        story.append(_findings_table(report, styles))
        if report.overflow_note:
            story.append(Spacer(1, 3))
            story.append(Paragraph(
                f"<i><font color='#dc2626'>{escape(report.overflow_note)}</font></i>", styles["Centered"]
            ))
    else:
        story.append(_p(report.no_findings_message, styles["Centered"]))

    # ── Signatures ───────────────────────────────────────────────────────
    story.append(Spacer(1, 14))
    sig_w = CONTENT_WIDTH / 2 - 0.3 * inch
    signatures = Table(
        [
            [SignatureBox(record.manager_signature, width=sig_w), SignatureBox(record.auditor_signature, width=sig_w)],
            [_p(record.manager_name.upper(), styles["Centered"]), _p(record.auditor_name.upper(), styles["Centered"])],
            [_p("Firma Gerente", styles["DocSub"]), _p("Firma Auditor", styles["DocSub"])],
        ],
        colWidths=[CONTENT_WIDTH / 2] * 2,
    )
    signatures.setStyle(TableStyle([("ALIGN", (0, 0), (-1, -1), "CENTER")]))
    story.append(signatures)

    doc.build(story)
    return buf.getvalue()
