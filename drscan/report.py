"""
PDF report export for a single analysis result.
"""
import io
import logging
from datetime import date, datetime
from typing import Callable, Optional, Tuple

from PIL import Image as PILImage
from reportlab.lib import colors
from reportlab.lib.pagesizes import A4
from reportlab.lib.styles import getSampleStyleSheet
from reportlab.lib.units import cm
from reportlab.platypus import Image, Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from drscan.classifier import parse_data_url
from drscan.models import AnalysisResult, DR_LEVELS

logger = logging.getLogger(__name__)


class ReportExporter:
    """Builds a one-page A4 PDF report for an AnalysisResult."""

    REPORT_TITLE = "Diabetic Retinopathy Analysis"
    SUBJECT = "Diabetic Retinopathy Detection Report"
    CREATOR = "DR Detection System"
    AUTHOR = "DR Detection Team"
    KEYWORDS = "diabetic retinopathy, medical analysis, eye screening"

    HIGHLIGHT_COLOR = colors.HexColor('#6366f1')
    MAX_IMAGE_WIDTH = 14 * cm
    MAX_IMAGE_HEIGHT = 12 * cm

    def __init__(self, today: Callable[[], date] = date.today):
        self.page_size = A4
        self.styles = getSampleStyleSheet()
        self._today = today

    def filename_for(self, result: AnalysisResult) -> str:
        return f"dr-analysis-{self._today().isoformat()}-{result.id}.pdf"

    def build_pdf(self, result: AnalysisResult) -> bytes:
        """
        Render the report to PDF bytes.

        Args:
            result: Result to report on

        Returns:
            PDF document content
        """
        buffer = io.BytesIO()
        doc = SimpleDocTemplate(
            buffer,
            pagesize=self.page_size,
            leftMargin=1 * cm,
            rightMargin=1 * cm,
            title=f"{self.REPORT_TITLE} - {result.label}",
            subject=self.SUBJECT,
            creator=self.CREATOR,
            author=self.AUTHOR,
            keywords=self.KEYWORDS,
        )

        analysed_at = datetime.fromtimestamp(result.timestamp / 1000.0)
        elements = [
            Paragraph(self.REPORT_TITLE, self.styles['Title']),
            Spacer(1, 0.3 * cm),
            Table([
                ["Report ID:", result.id],
                ["Date of Analysis:", analysed_at.strftime("%Y-%m-%d %H:%M")],
            ], hAlign='LEFT'),
            Spacer(1, 0.5 * cm),
            self._image_flowable(result.image_url),
            Spacer(1, 0.5 * cm),
            Paragraph(f"Severity: {result.label} (level {result.level})", self.styles['Heading2']),
            Paragraph(result.description, self.styles['BodyText']),
            Spacer(1, 0.5 * cm),
            self._level_scale(result.level),
            Spacer(1, 0.8 * cm),
            Paragraph(
                "This report is generated by an AI model and is not a medical diagnosis. "
                "Consult an eye care professional.",
                self.styles['Italic'],
            ),
        ]

        doc.build(elements)
        return buffer.getvalue()

    def _image_flowable(self, image_url: str) -> Image:
        _, data = parse_data_url(image_url)
        with PILImage.open(io.BytesIO(data)) as pil_image:
            width, height = pil_image.size

        scale = min(self.MAX_IMAGE_WIDTH / width, self.MAX_IMAGE_HEIGHT / height)
        return Image(io.BytesIO(data), width=width * scale, height=height * scale)

    def _level_scale(self, level: int) -> Table:
        table = Table([[DR_LEVELS[key] for key in sorted(DR_LEVELS)]])
        style = [
            ('ALIGN', (0, 0), (-1, -1), 'CENTER'),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.grey),
            ('FONTSIZE', (0, 0), (-1, -1), 9),
            ('BACKGROUND', (level, 0), (level, 0), self.HIGHLIGHT_COLOR),
            ('TEXTCOLOR', (level, 0), (level, 0), colors.white),
            ('FONTNAME', (level, 0), (level, 0), 'Helvetica-Bold'),
        ]
        table.setStyle(TableStyle(style))
        return table

    def export(self, result: AnalysisResult) -> Optional[Tuple[str, bytes]]:
        """
        Build the report for download.

        Returns:
            (filename, pdf bytes), or None if the report could not be built;
            the failure is logged
        """
        try:
            content = self.build_pdf(result)
        except Exception:
            logger.exception("Failed to export PDF for result %s", result.id)
            return None
        filename = self.filename_for(result)
        logger.info("Exported report %s (%d bytes)", filename, len(content))
        return filename, content
