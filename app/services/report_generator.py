"""
Report export for XRay Report Assistant.

Renders the current report text into a downloadable document.
"""

import re
from datetime import datetime
from pathlib import Path
from typing import Optional
from uuid import uuid4

from jinja2 import Template
from markupsafe import Markup, escape

# WeasyPrint needs native Pango/Cairo libraries; without them we write HTML
try:
    from weasyprint import HTML, CSS
    WEASYPRINT_AVAILABLE = True
except (ImportError, OSError):
    WEASYPRINT_AVAILABLE = False
    HTML = None
    CSS = None

from app.config import settings
from app.core.exceptions import ValidationError
from app.utils.logger import get_logger

logger = get_logger("report_generator")

REPORT_TITLE = "AI-Generated Radiology Report"

_BOLD = re.compile(r"\*\*(.+?)\*\*", re.DOTALL)


def render_report_markup(report: str) -> Markup:
    """Escape report text and turn ``**bold**`` spans into <strong>."""
    escaped = str(escape(report))
    return Markup(_BOLD.sub(r"<strong>\1</strong>", escaped))


class ReportGenerator:
    """
    Generates A4 documents from report text.

    Uses an HTML template and WeasyPrint for PDF conversion.
    """

    REPORT_CSS = """
    @page {
        size: A4;
        margin: 40pt;
        @bottom-center {
            content: "Page " counter(page) " of " counter(pages);
            font-size: 9pt;
            color: #666;
        }
    }

    body {
        font-family: Helvetica, Arial, sans-serif;
        font-size: 12pt;
        line-height: 1.5;
        color: #333;
    }

    h1 {
        font-size: 18pt;
        margin: 0 0 20pt 0;
    }

    .report {
        white-space: pre-wrap;
    }

    .disclaimer {
        margin-top: 30pt;
        padding: 10pt;
        background: #fef9c3;
        border-left: 4px solid #eab308;
        font-size: 9pt;
    }

    .footer {
        margin-top: 20pt;
        font-size: 8pt;
        color: #999;
    }
    """

    TEMPLATE_HTML = """<!DOCTYPE html>
<html>
<head>
    <meta charset="utf-8">
    <title>{{ title }}</title>
    {% if inline_css %}<style>{{ inline_css }}</style>{% endif %}
</head>
<body>
    <h1>{{ title }}</h1>
    <div class="report">{{ report }}</div>
    <div class="disclaimer">
        <strong>Disclaimer:</strong> This is an AI-generated report for informational
        purposes only. It is not a substitute for professional medical advice.
        Always consult a qualified healthcare provider.
    </div>
    <div class="footer">Generated {{ generated_date }} | {{ app_name }} v{{ version }}</div>
</body>
</html>
"""

    def __init__(self, output_dir: Optional[Path] = None):
        self.output_dir = Path(output_dir) if output_dir is not None else settings.output_path
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def generate_html(self, report: str, inline_css: bool = True) -> str:
        """Render the report as a standalone HTML document."""
        template = Template(self.TEMPLATE_HTML)
        return template.render(
            title=REPORT_TITLE,
            report=render_report_markup(report),
            inline_css=Markup(self.REPORT_CSS) if inline_css else None,
            generated_date=datetime.now().strftime("%B %d, %Y at %I:%M %p"),
            app_name=settings.app_name,
            version=settings.app_version
        )

    def export(self, report: str) -> Path:
        """
        Write the report to a PDF (or HTML if WeasyPrint is unavailable).

        Raises:
            ValidationError: There is no report to export
        """
        if not report.strip():
            raise ValidationError("There is no report to export yet.")

        stem = f"radiology-report_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid4().hex[:8]}"

        if not WEASYPRINT_AVAILABLE:
            logger.warning("WeasyPrint not available, generating HTML instead")
            output_path = self.output_dir / f"{stem}.html"
            output_path.write_text(self.generate_html(report), encoding="utf-8")
            return output_path

        output_path = self.output_dir / f"{stem}.pdf"
        html = HTML(string=self.generate_html(report, inline_css=False))
        html.write_pdf(output_path, stylesheets=[CSS(string=self.REPORT_CSS)])

        logger.info("Report exported", path=str(output_path))
        return output_path


# Lazy-loaded singleton
_report_generator: Optional[ReportGenerator] = None


def get_report_generator() -> ReportGenerator:
    """Get or create report generator singleton."""
    global _report_generator
    if _report_generator is None:
        _report_generator = ReportGenerator()
    return _report_generator
