from __future__ import annotations

from datetime import datetime
from io import BytesIO
from typing import Any
from xml.sax.saxutils import escape as xml_escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.cidfonts import UnicodeCIDFont
from reportlab.platypus import BaseDocTemplate, Frame, PageTemplate, Paragraph, Spacer, Table, TableStyle

# Built-in Asian CID fonts: no font files to ship.
BODY_FONT = "HYSMyeongJo-Medium"
HEAD_FONT = "HYGothic-Medium"

NO_VALUE = "-"


def _register_font() -> tuple[str, str]:
    registered = set(pdfmetrics.getRegisteredFontNames())
    for name in (BODY_FONT, HEAD_FONT):
        if name not in registered:
            pdfmetrics.registerFont(UnicodeCIDFont(name))
    return BODY_FONT, HEAD_FONT


def _text(value: Any) -> str:
    """Escape for Paragraph markup; newlines become <br/>."""
    if value is None or value == "":
        return NO_VALUE
    return xml_escape(str(value)).replace("\n", "<br/>")


def _fmt_dt(value: datetime | None) -> str:
    return value.strftime("%Y-%m-%d %H:%M") if value else NO_VALUE


def _header_footer(canvas, doc, meta: dict[str, str]):
    width, height = getattr(doc, "pagesize", A4)
    canvas.saveState()

    canvas.setStrokeColor(colors.HexColor("#d0d7de"))
    canvas.setLineWidth(1)
    canvas.line(2*cm, height-2.2*cm, width-2*cm, height-2.2*cm)

    canvas.setFillColor(colors.black)
    canvas.setFont(meta["font_bold"], 12)
    canvas.drawString(2*cm, height-1.2*cm, meta["title"])

    canvas.setFont(meta["font"], 9)
    canvas.setFillColor(colors.HexColor("#57606a"))
    canvas.drawString(2*cm, height-1.65*cm, meta["subtitle"])
    canvas.drawRightString(width-2*cm, height-1.55*cm, f"{meta['date']}  |  {meta['report_no']}")

    canvas.setStrokeColor(colors.HexColor("#d0d7de"))
    canvas.line(2*cm, 1.6*cm, width-2*cm, 1.6*cm)
    canvas.drawRightString(width-2*cm, 1.0*cm, f"{canvas.getPageNumber()} 쪽")

    canvas.restoreState()


def build_report_pdf(details: dict, app_name: str = "EduFlow") -> bytes:
    """Render one report (as returned by `get_report_details`) to PDF bytes."""
    font_name, font_bold = _register_font()

    styles = getSampleStyleSheet()
    base = ParagraphStyle(
        name="Body",
        parent=styles["Normal"],
        fontName=font_name,
        fontSize=10,
        leading=15,
        alignment=TA_LEFT,
        wordWrap="CJK",
    )
    h1 = ParagraphStyle(name="H1", parent=base, fontName=font_bold, fontSize=15, leading=21, alignment=TA_CENTER, spaceAfter=8)
    h2 = ParagraphStyle(
        name="H2",
        parent=base,
        fontName=font_bold,
        fontSize=12,
        leading=18,
        spaceBefore=10,
        spaceAfter=6,
        keepWithNext=1,
    )
    cell = ParagraphStyle(name="Cell", parent=base, fontSize=9.5, leading=13)
    head = ParagraphStyle(name="Head", parent=cell, fontName=font_bold)

    meta = {
        "title": f"{app_name} 학생 평가 보고서",
        "subtitle": details.get("form_title") or "",
        "date": datetime.now().strftime("%Y-%m-%d %H:%M"),
        "report_no": f"Report #{details.get('id', '')}",
        "font": font_name,
        "font_bold": font_bold,
    }

    buff = BytesIO()
    left_m = right_m = 2 * cm
    top_m, bottom_m = 3 * cm, 2.2 * cm
    doc_tpl = BaseDocTemplate(
        buff,
        pagesize=A4,
        leftMargin=left_m,
        rightMargin=right_m,
        topMargin=top_m,
        bottomMargin=bottom_m,
        title=f"report_{details.get('id', '')}",
    )
    w, h = A4
    frame = Frame(left_m, bottom_m, w - left_m - right_m, h - top_m - bottom_m, id="F", showBoundary=0)
    doc_tpl.addPageTemplates([PageTemplate(id="page", frames=[frame], onPage=lambda c, d: _header_footer(c, d, meta))])
    usable_w = w - left_m - right_m

    grid = TableStyle([
        ("GRID", (0,0), (-1,-1), 0.5, colors.HexColor("#d0d7de")),
        ("BACKGROUND", (0,0), (0,-1), colors.HexColor("#f6f8fa")),
        ("VALIGN", (0,0), (-1,-1), "TOP"),
        ("LEFTPADDING", (0,0), (-1,-1), 8),
        ("RIGHTPADDING", (0,0), (-1,-1), 8),
    ])

    story: list[Any] = [Spacer(1, 6), Paragraph(_text(details.get("form_title")), h1), Spacer(1, 8)]

    state = details.get("state") or {}
    info_rows = [
        ("학생", details.get("student_name")),
        ("반", details.get("class_name")),
        ("제출일", _fmt_dt(details.get("submitted_at"))),
        ("반 평균", details.get("class_average")),
        ("시간강사", details.get("time_teacher_name")),
        ("선생님", details.get("teacher_name")),
        ("상태", state.get("next_action")),
    ]
    t = Table(
        [[Paragraph(label, head), Paragraph(_text(value), cell)] for label, value in info_rows],
        colWidths=[3.5*cm, usable_w - 3.5*cm],
    )
    t.setStyle(grid)
    story += [t, Spacer(1, 12)]

    story.append(Paragraph("1) 학생 응답", h2))
    questions = details.get("questions") or []
    if questions:
        rows = [[Paragraph("질문", head), Paragraph("응답", head)]]
        for q in questions:
            answer = q.get("answer")
            if answer is not None and q.get("question_type") == "rating":
                answer = f"{answer} / {q.get('rating_max') or 5}"
            rows.append([Paragraph(_text(q.get("question_text")), cell), Paragraph(_text(answer), cell)])
        qt = Table(rows, colWidths=[usable_w * 0.45, usable_w * 0.55], repeatRows=1)
        qt.setStyle(grid)
        story.append(qt)
    else:
        story.append(Paragraph(NO_VALUE, base))

    story.append(Paragraph("2) 시간강사 의견", h2))
    story.append(Paragraph(_text(details.get("time_teacher_comment")), base))
    story.append(Paragraph("3) 선생님 의견", h2))
    story.append(Paragraph(_text(details.get("teacher_comment")), base))

    if details.get("final_report"):
        story.append(Paragraph("4) 종합 보고서", h2))
        story.append(Paragraph(_text(details.get("final_report")), base))

    doc_tpl.build(story)
    return buff.getvalue()
