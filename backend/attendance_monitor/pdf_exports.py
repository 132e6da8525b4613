from __future__ import annotations

from datetime import datetime
from io import BytesIO
from typing import Any, Sequence
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import A4, landscape
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas
from reportlab.platypus import LongTable, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from .config import settings
from .periods import DateRange, format_date_for_display, format_range
from .summary import REPORT_HEADERS, CellTag, ReportCell, ReportRow, RowKind

PAGE_SIZE = landscape(A4)
PAGE_WIDTH, PAGE_HEIGHT = PAGE_SIZE
LEFT_MARGIN = 15 * mm
RIGHT_MARGIN = 15 * mm
BOTTOM_MARGIN = 18 * mm
CONTENT_WIDTH = PAGE_WIDTH - LEFT_MARGIN - RIGHT_MARGIN

HEADER_TOP_MARGIN = 24.0
HEADER_HEIGHT = 78.0
HEADER_SIDE_PADDING = LEFT_MARGIN
HEADER_AFTER_GAP = 12.0
HEADER_TITLE_FONT_SIZE = 26.0
HEADER_SUBTITLE_FONT_SIZE = 13.0

COLUMN_FRACTIONS = (0.245, 0.075, 0.115, 0.2825, 0.2825)

PALETTE = {
    "navy": colors.HexColor("#0A192F"),
    "text": colors.HexColor("#0F172A"),
    "muted": colors.HexColor("#64748B"),
    "line": colors.HexColor("#0A192F"),
    "grid": colors.black,
    "stripe_even": colors.white,
    "stripe_odd": colors.HexColor("#F8FAFC"),
    "totals": colors.HexColor("#F0F0F0"),
    "warning": colors.HexColor("#B40000"),
    "success": colors.HexColor("#006400"),
    "signature_line": colors.HexColor("#646464"),
}

_STYLES = getSampleStyleSheet()
TABLE_HEADER_STYLE = ParagraphStyle(
    "table-header",
    parent=_STYLES["BodyText"],
    fontName="Helvetica-Bold",
    fontSize=12,
    leading=14,
    alignment=TA_CENTER,
    textColor=colors.white,
)
TABLE_CELL_STYLE = ParagraphStyle(
    "table-cell",
    parent=_STYLES["BodyText"],
    fontName="Helvetica",
    fontSize=10.5,
    leading=13,
    textColor=PALETTE["text"],
)
SIGNATURE_CAPTION_STYLE = ParagraphStyle(
    "signature-caption",
    parent=TABLE_CELL_STYLE,
    fontName="Helvetica-Bold",
    fontSize=11,
)
SIGNATURE_NAME_STYLE = ParagraphStyle(
    "signature-name",
    parent=TABLE_CELL_STYLE,
    fontSize=10,
)

_CELL_STYLE_CACHE: dict[tuple[tuple[str, ...], str], ParagraphStyle] = {}


def _safe_text(value: Any, *, fallback: str = "") -> str:
    if value is None:
        return fallback
    text = str(value).strip()
    return text if text else fallback


def _markup(text: str) -> str:
    return "<br/>".join(escape(line) for line in text.split("\n"))


def _fit_text(canv: canvas.Canvas, text: str, *, font_name: str, font_size: float, max_width: float) -> str:
    if max_width <= 0:
        return ""

    cleaned = _safe_text(text)
    if not cleaned:
        return ""

    if canv.stringWidth(cleaned, font_name, font_size) <= max_width:
        return cleaned

    suffix = "..."
    clipped = cleaned
    while clipped and canv.stringWidth(clipped + suffix, font_name, font_size) > max_width:
        clipped = clipped[:-1]
    return (clipped + suffix) if clipped else suffix


def cell_style(cell: ReportCell) -> ParagraphStyle:
    tags = tuple(sorted(tag.value for tag in cell.tags))
    key = (tags, cell.align)
    cached = _CELL_STYLE_CACHE.get(key)
    if cached is not None:
        return cached

    bold = CellTag.EMPHASIS.value in tags or CellTag.TOTAL.value in tags
    text_color = PALETTE["text"]
    if CellTag.WARNING.value in tags:
        text_color = PALETTE["warning"]
    elif CellTag.SUCCESS.value in tags:
        text_color = PALETTE["success"]
    elif CellTag.MUTED.value in tags:
        text_color = PALETTE["muted"]

    style = ParagraphStyle(
        f"cell-{'-'.join(tags) or 'plain'}-{cell.align}",
        parent=TABLE_CELL_STYLE,
        fontName="Helvetica-Bold" if bold else "Helvetica",
        textColor=text_color,
        alignment=TA_CENTER if cell.align == "center" else TA_LEFT,
    )
    _CELL_STYLE_CACHE[key] = style
    return style


def draw_header(
    canv: canvas.Canvas,
    page_width: float,
    page_height: float,
    *,
    title: str,
    subtitle_lines: Sequence[str],
) -> None:
    header_top = page_height - HEADER_TOP_MARGIN
    header_bottom = header_top - HEADER_HEIGHT
    max_width = page_width - (HEADER_SIDE_PADDING * 2)

    canv.saveState()
    canv.setStrokeColor(PALETTE["line"])
    canv.setLineWidth(0.8)
    canv.line(HEADER_SIDE_PADDING, header_top, page_width - HEADER_SIDE_PADDING, header_top)
    canv.line(HEADER_SIDE_PADDING, header_top - 2, page_width - HEADER_SIDE_PADDING, header_top - 2)

    title_font = "Helvetica-Bold"
    title_text = _fit_text(
        canv,
        _safe_text(title, fallback="ATTENDANCE MONITORING"),
        font_name=title_font,
        font_size=HEADER_TITLE_FONT_SIZE,
        max_width=max_width,
    )
    title_width = canv.stringWidth(title_text, title_font, HEADER_TITLE_FONT_SIZE)
    title_x = (page_width - title_width) / 2.0
    title_y = header_top - 32.0

    canv.setFillColor(PALETTE["navy"])
    canv.setFont(title_font, HEADER_TITLE_FONT_SIZE)
    canv.drawString(title_x, title_y, title_text)

    canv.setLineWidth(0.5)
    canv.line(title_x - 10, title_y - 5, title_x + title_width + 10, title_y - 5)
    canv.line(title_x - 10, title_y - 6.5, title_x + title_width + 10, title_y - 6.5)

    subtitle_font = "Helvetica-Bold"
    subtitle_y = title_y - 24.0
    canv.setFont(subtitle_font, HEADER_SUBTITLE_FONT_SIZE)
    for line in list(subtitle_lines)[:2]:
        subtitle_text = _fit_text(
            canv,
            line,
            font_name=subtitle_font,
            font_size=HEADER_SUBTITLE_FONT_SIZE,
            max_width=max_width,
        )
        subtitle_width = canv.stringWidth(subtitle_text, subtitle_font, HEADER_SUBTITLE_FONT_SIZE)
        canv.drawString((page_width - subtitle_width) / 2.0, subtitle_y, subtitle_text)
        subtitle_y -= 15.0
        canv.setFont("Helvetica", HEADER_SUBTITLE_FONT_SIZE - 3)
        subtitle_font = "Helvetica"

    canv.setLineWidth(0.3)
    canv.line(HEADER_SIDE_PADDING, header_bottom, page_width - HEADER_SIDE_PADDING, header_bottom)
    canv.restoreState()


class NumberedCanvas(canvas.Canvas):
    def __init__(self, *args: Any, **kwargs: Any) -> None:
        super().__init__(*args, **kwargs)
        self._saved_page_states: list[dict[str, Any]] = []

    def showPage(self) -> None:
        self._saved_page_states.append(dict(self.__dict__))
        self._startPage()

    def save(self) -> None:
        total_pages = len(self._saved_page_states)
        for state in self._saved_page_states:
            self.__dict__.update(state)
            self._draw_footer(total_pages)
            canvas.Canvas.showPage(self)
        canvas.Canvas.save(self)

    def _draw_footer(self, total_pages: int) -> None:
        line_y = 11 * mm
        text_y = 7.6 * mm

        self.saveState()
        self.setStrokeColor(PALETTE["line"])
        self.setLineWidth(0.3)
        self.line(LEFT_MARGIN, line_y, PAGE_WIDTH - RIGHT_MARGIN, line_y)

        self.setFillColor(PALETTE["muted"])
        self.setFont("Helvetica", 8)
        self.drawString(LEFT_MARGIN, text_y, "Generated by Attendance Monitoring")
        self.drawRightString(PAGE_WIDTH - RIGHT_MARGIN, text_y, f"Page {self._pageNumber} of {total_pages}")
        self.restoreState()


def _build_report_table(rows: Sequence[ReportRow]) -> LongTable:
    header = [Paragraph(escape(text), TABLE_HEADER_STYLE) for text in REPORT_HEADERS]
    table_data: list[list[Any]] = [header]
    total_indexes: list[int] = []

    for row in rows:
        if row.kind in (RowKind.SIGNATURE, RowKind.CAPTION):
            continue
        if row.kind is RowKind.TOTAL:
            total_indexes.append(len(table_data))
        table_data.append([Paragraph(_markup(cell.text), cell_style(cell)) for cell in row.cells])

    table = LongTable(
        table_data,
        colWidths=[CONTENT_WIDTH * fraction for fraction in COLUMN_FRACTIONS],
        repeatRows=1,
        hAlign="CENTER",
    )

    style_commands: list[tuple[Any, ...]] = [
        ("BACKGROUND", (0, 0), (-1, 0), PALETTE["navy"]),
        ("GRID", (0, 0), (-1, -1), 0.3, PALETTE["grid"]),
        ("BOX", (0, 0), (-1, 0), 0.5, PALETTE["grid"]),
        ("VALIGN", (0, 0), (-1, -1), "MIDDLE"),
        ("LEFTPADDING", (0, 0), (-1, -1), 6),
        ("RIGHTPADDING", (0, 0), (-1, -1), 6),
        ("TOPPADDING", (0, 0), (-1, -1), 5),
        ("BOTTOMPADDING", (0, 0), (-1, -1), 5),
    ]

    for row_index in range(1, len(table_data)):
        if row_index in total_indexes:
            style_commands.append(("BACKGROUND", (0, row_index), (-1, row_index), PALETTE["totals"]))
            continue
        background = PALETTE["stripe_even"] if row_index % 2 else PALETTE["stripe_odd"]
        style_commands.append(("BACKGROUND", (0, row_index), (-1, row_index), background))

    table.setStyle(TableStyle(style_commands))
    return table


def _build_signature_block(rows: Sequence[ReportRow]) -> Table | None:
    signature_rows = [row for row in rows if row.kind in (RowKind.SIGNATURE, RowKind.CAPTION)]
    if not signature_rows:
        return None

    names = [row.label for row in signature_rows if row.kind is RowKind.SIGNATURE]
    captions = [row.label for row in signature_rows if row.kind is RowKind.CAPTION]
    while len(names) < len(captions):
        names.append("")

    block_width = 70 * mm
    gap_width = max(CONTENT_WIDTH - (block_width * len(captions)), 0.0) / max(len(captions) - 1, 1)

    caption_cells: list[Any] = []
    name_cells: list[Any] = []
    col_widths: list[float] = []
    for index, caption in enumerate(captions):
        if index:
            caption_cells.append("")
            name_cells.append("")
            col_widths.append(gap_width)
        caption_cells.append(Paragraph(escape(caption), SIGNATURE_CAPTION_STYLE))
        name_cells.append(Paragraph(escape(names[index].upper()), SIGNATURE_NAME_STYLE))
        col_widths.append(block_width)

    table = Table([caption_cells, ["" for _ in col_widths], name_cells], colWidths=col_widths, hAlign="CENTER")
    style_commands: list[tuple[Any, ...]] = [
        ("VALIGN", (0, 0), (-1, -1), "BOTTOM"),
        ("LEFTPADDING", (0, 0), (-1, -1), 0),
        ("RIGHTPADDING", (0, 0), (-1, -1), 0),
        ("TOPPADDING", (0, 1), (-1, 1), 22),
    ]
    for column in range(0, len(col_widths), 2):
        style_commands.append(("LINEBELOW", (column, 1), (column, 1), 0.5, PALETTE["signature_line"]))
    table.setStyle(TableStyle(style_commands))
    return table


def _cut_off_text(date_range: DateRange) -> str:
    if date_range.is_unbounded:
        return "Cut-off Date : all records"
    if date_range.from_date and date_range.to_date:
        return f"Cut-off Date : {format_range(date_range.from_date, date_range.to_date)}"
    if date_range.from_date:
        return f"Cut-off Date : from {format_date_for_display(date_range.from_date)}"
    return f"Cut-off Date : until {format_date_for_display(date_range.to_date)}"


def _build_document(
    *,
    title: str,
    subtitle_lines: Sequence[str],
    story: Sequence[Any],
) -> bytes:
    buffer = BytesIO()

    def _draw_page_header(canv: canvas.Canvas, doc: SimpleDocTemplate) -> None:
        draw_header(
            canv,
            page_width=doc.pagesize[0],
            page_height=doc.pagesize[1],
            title=title,
            subtitle_lines=subtitle_lines,
        )

    doc = SimpleDocTemplate(
        buffer,
        pagesize=PAGE_SIZE,
        leftMargin=LEFT_MARGIN,
        rightMargin=RIGHT_MARGIN,
        topMargin=HEADER_TOP_MARGIN + HEADER_HEIGHT + HEADER_AFTER_GAP,
        bottomMargin=BOTTOM_MARGIN,
        title=title,
    )

    doc.build(
        list(story),
        onFirstPage=_draw_page_header,
        onLaterPages=_draw_page_header,
        canvasmaker=NumberedCanvas,
    )
    return buffer.getvalue()


def build_summary_pdf(
    rows: Sequence[ReportRow],
    *,
    date_range: DateRange,
    title: str | None = None,
) -> bytes:
    generated_at = datetime.now().strftime("%Y-%m-%d %I:%M %p")

    story: list[Any] = [_build_report_table(rows)]
    signature_block = _build_signature_block(rows)
    if signature_block is not None:
        story.append(Spacer(1, 28))
        story.append(signature_block)

    return _build_document(
        title=_safe_text(title, fallback=settings.report_title),
        subtitle_lines=[
            _cut_off_text(date_range),
            f"Generated: {generated_at}",
        ],
        story=story,
    )
