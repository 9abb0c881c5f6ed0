"""
PDF rendering of a validation document (A4 portrait, mm units).

Layout: blue header band (type code, long label, title), grey metadata box,
"Content" section with a small markdown subset, and a footer on every page.
Core PDF fonts are Latin-1 only, so text is transliterated before drawing.
"""
from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass
from datetime import date, datetime

from fpdf import FPDF

from app.cvms.constants import DOCUMENT_TYPE_LABELS, STATUS_LABELS
from app.cvms.utils import utcnow

MARGIN = 20
HEADER_HEIGHT = 35
META_BOX_HEIGHT = 35
HEADER_FILL = (59, 130, 246)
META_FILL = (248, 250, 252)
META_BORDER = (226, 232, 240)
FOOTER_GREY = (128, 128, 128)
FONT = "helvetica"

_NUMBERED_RE = re.compile(r"^(\d+)\. (.*)$")
_SAFE_TITLE_RE = re.compile(r"[^a-zA-Z0-9\s]")

_REPLACEMENTS = {
    "‘": "'",
    "’": "'",
    "“": '"',
    "”": '"',
    "–": "-",
    "—": "-",
    "•": "·",
    "…": "...",
    " ": " ",
}


@dataclass(frozen=True)
class PdfDocument:
    title: str
    document_type: str
    document_type_label: str | None = None
    version: str | None = None
    status: str | None = None
    content: str | None = None
    created_at: datetime | date | None = None
    approved_at: datetime | date | None = None
    system_name: str | None = None
    author_name: str | None = None
    approver_name: str | None = None


def latin1(text: str | None) -> str:
    """Map text onto Latin-1 (what the core fonts can draw)."""
    out: list[str] = []
    for ch in text or "":
        ch = _REPLACEMENTS.get(ch, ch)
        try:
            ch.encode("latin-1")
            out.append(ch)
            continue
        except UnicodeEncodeError:
            pass
        ascii_ = unicodedata.normalize("NFKD", ch).encode("ascii", "ignore").decode("ascii")
        out.append(ascii_ or "?")
    return "".join(out)


def pdf_filename(document_type: str, title: str, version: str | None) -> str:
    safe_title = _SAFE_TITLE_RE.sub("", title or "")
    safe_title = re.sub(r"\s+", "_", safe_title)[:50]
    return f"{document_type}_{safe_title}_v{version or '1.0'}.pdf"


def _fmt_date(value: datetime | date | None) -> str:
    if value is None:
        return "-"
    return value.strftime("%d/%m/%Y")


class _ReportPDF(FPDF):
    def __init__(self, footer_text: str, generated_at: datetime):
        super().__init__(orientation="P", unit="mm", format="A4")
        self.footer_text = latin1(footer_text)
        self.generated_at = generated_at
        self.set_margins(MARGIN, MARGIN, MARGIN)
        self.set_auto_page_break(False)

    def footer(self) -> None:
        self.set_font(FONT, "", 8)
        self.set_text_color(*FOOTER_GREY)
        y = self.h - 10
        label = f"{self.footer_text} - Page {self.page_no()} of {{nb}}"
        self.set_xy(0, y - 3)
        self.cell(self.w, 4, label, align="C")
        stamp = self.generated_at.strftime("%d/%m/%Y %H:%M:%S")
        self.text(self.w - MARGIN - self.get_string_width(stamp), y, stamp)


class _Writer:
    """Cursor-based writer that wraps lines and breaks pages by hand."""

    def __init__(self, pdf: _ReportPDF):
        self.pdf = pdf
        self.y = float(MARGIN)
        self.content_width = pdf.w - 2 * MARGIN

    @property
    def bottom(self) -> float:
        return self.pdf.h - MARGIN

    def split(self, text: str, max_width: float) -> list[str]:
        words = text.split(" ")
        lines: list[str] = []
        current = ""
        for word in words:
            candidate = f"{current} {word}" if current else word
            if self.pdf.get_string_width(candidate) <= max_width:
                current = candidate
                continue
            if current:
                lines.append(current)
            # Break words longer than a full line.
            while self.pdf.get_string_width(word) > max_width and len(word) > 1:
                cut = len(word)
                while cut > 1 and self.pdf.get_string_width(word[:cut]) > max_width:
                    cut -= 1
                lines.append(word[:cut])
                word = word[cut:]
            current = word
        lines.append(current)
        return lines

    def wrapped(self, text: str, x: float, max_width: float, line_height: float) -> None:
        for line in self.split(latin1(text), max_width):
            if self.y > self.bottom:
                self.pdf.add_page()
                self.y = float(MARGIN)
            self.pdf.text(x, self.y, line)
            self.y += line_height

    def ensure_room(self) -> None:
        if self.y > self.bottom:
            self.pdf.add_page()
            self.y = float(MARGIN)


def _draw_header(pdf: _ReportPDF, doc: PdfDocument) -> None:
    content_width = pdf.w - 2 * MARGIN
    pdf.set_fill_color(*HEADER_FILL)
    pdf.rect(0, 0, pdf.w, HEADER_HEIGHT, style="F")

    pdf.set_text_color(255, 255, 255)
    pdf.set_font(FONT, "B", 12)
    pdf.text(MARGIN, 15, latin1(doc.document_type))

    pdf.set_font(FONT, "", 8)
    label = doc.document_type_label or DOCUMENT_TYPE_LABELS.get(doc.document_type, doc.document_type)
    pdf.text(MARGIN, 22, latin1(label))

    pdf.set_font(FONT, "B", 16)
    writer = _Writer(pdf)
    for i, line in enumerate(writer.split(latin1(doc.title), content_width)):
        pdf.text(MARGIN, 30 + i * 6, line)


def _label_value(pdf: _ReportPDF, label: str, value: str, x: float, value_x: float, y: float) -> None:
    pdf.set_font(FONT, "B", 9)
    pdf.text(x, y, label)
    pdf.set_font(FONT, "", 9)
    pdf.text(value_x, y, latin1(value))


def _draw_metadata(pdf: _ReportPDF, doc: PdfDocument) -> float:
    content_width = pdf.w - 2 * MARGIN
    y = 45.0
    pdf.set_text_color(0, 0, 0)
    pdf.set_fill_color(*META_FILL)
    pdf.set_draw_color(*META_BORDER)
    pdf.rect(MARGIN, y, content_width, META_BOX_HEIGHT, style="DF")

    y += 8
    status = doc.status or "draft"
    _label_value(pdf, "Version:", f"v{doc.version or '1.0'}", MARGIN + 5, MARGIN + 25, y)
    _label_value(pdf, "Status:", STATUS_LABELS.get(status, status), MARGIN + 50, MARGIN + 70, y)
    _label_value(pdf, "System:", doc.system_name or "-", MARGIN + 110, MARGIN + 130, y)

    y += 10
    _label_value(pdf, "Author:", doc.author_name or "-", MARGIN + 5, MARGIN + 25, y)
    _label_value(pdf, "Created:", _fmt_date(doc.created_at), MARGIN + 80, MARGIN + 110, y)

    if doc.approved_at:
        y += 10
        _label_value(pdf, "Approved by:", doc.approver_name or "-", MARGIN + 5, MARGIN + 35, y)
        _label_value(pdf, "Approved on:", _fmt_date(doc.approved_at), MARGIN + 80, MARGIN + 115, y)

    return y + 20


def _draw_content(pdf: _ReportPDF, content: str, y: float) -> None:
    w = _Writer(pdf)
    w.y = y

    pdf.set_font(FONT, "B", 11)
    pdf.text(MARGIN, w.y, "Content")
    w.y += 8
    pdf.set_draw_color(*HEADER_FILL)
    pdf.set_line_width(0.5)
    pdf.line(MARGIN, w.y, MARGIN + 30, w.y)
    w.y += 8

    pdf.set_font(FONT, "", 10)
    for line in content.split("\n"):
        w.ensure_room()
        if line.startswith("# "):
            pdf.set_font(FONT, "B", 14)
            w.wrapped(line[2:], MARGIN, w.content_width, 7)
            w.y += 4
            pdf.set_font(FONT, "", 10)
        elif line.startswith("## "):
            pdf.set_font(FONT, "B", 12)
            w.wrapped(line[3:], MARGIN, w.content_width, 6)
            w.y += 3
            pdf.set_font(FONT, "", 10)
        elif line.startswith("### "):
            pdf.set_font(FONT, "B", 11)
            w.wrapped(line[4:], MARGIN, w.content_width, 6)
            w.y += 2
            pdf.set_font(FONT, "", 10)
        elif line.startswith("- ") or line.startswith("* "):
            pdf.text(MARGIN, w.y, "·")
            w.wrapped(line[2:], MARGIN + 5, w.content_width - 5, 5)
        elif _NUMBERED_RE.match(line):
            m = _NUMBERED_RE.match(line)
            pdf.text(MARGIN, w.y, f"{m.group(1)}.")
            w.wrapped(m.group(2), MARGIN + 8, w.content_width - 8, 5)
        elif line.strip() == "":
            w.y += 4
        else:
            w.wrapped(line, MARGIN, w.content_width, 5)


def render_document_pdf(doc: PdfDocument, *, footer_text: str, generated_at: datetime | None = None) -> bytes:
    pdf = _ReportPDF(footer_text, generated_at or utcnow())
    pdf.add_page()
    _draw_header(pdf, doc)
    y = _draw_metadata(pdf, doc)
    if doc.content:
        _draw_content(pdf, doc.content, y)
    return bytes(pdf.output())
