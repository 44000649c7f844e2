# pdf_generator.py
# PDF patient summaries for the PD clinic using reportlab

import re
from datetime import datetime
from io import BytesIO
from typing import List, Optional
from xml.sax.saxutils import escape

from reportlab.lib import colors
from reportlab.lib.enums import TA_CENTER, TA_LEFT
from reportlab.lib.pagesizes import letter
from reportlab.lib.styles import ParagraphStyle, getSampleStyleSheet
from reportlab.lib.units import inch
from reportlab.platypus import Paragraph, SimpleDocTemplate, Spacer, Table, TableStyle

from pdcare.core.config import CLINIC_NAME, PDF_HEADER_COLOR
from pdcare.core.models import Alert, AlertSeverity, PatientRecord
from pdcare.services.alerts import classify_lab_result
from pdcare.services.parsing import latest


def _text(value) -> str:
    return escape(str(value)) if value not in (None, "") else "N/A"


class PatientSummaryPDFGenerator:
    """Generates a printable summary of one PD patient's current clinical state"""

    def __init__(self, clinic_name: str = CLINIC_NAME):
        """Initialize PDF generator with styling and configuration"""
        self.clinic_name = clinic_name

        # Page dimensions
        self.page_width, self.page_height = letter
        self.margin = 0.75 * inch

        # Colors
        self.header_color = colors.HexColor(PDF_HEADER_COLOR)
        self.text_color = colors.black
        self.light_gray = colors.HexColor("#F0F0F0")

        # Fonts and sizes
        self.title_font = "Helvetica-Bold"
        self.title_size = 16
        self.section_font = "Helvetica-Bold"
        self.section_size = 13
        self.body_font = "Helvetica"
        self.body_size = 10
        self.small_font = "Helvetica"
        self.small_size = 8

        self.styles = getSampleStyleSheet()

        self.title_style = ParagraphStyle(
            'SummaryTitle',
            parent=self.styles['Heading1'],
            fontName=self.title_font,
            fontSize=self.title_size,
            textColor=self.header_color,
            alignment=TA_CENTER,
            spaceAfter=12
        )

        self.section_style = ParagraphStyle(
            'SummarySection',
            parent=self.styles['Heading2'],
            fontName=self.section_font,
            fontSize=self.section_size,
            textColor=self.header_color,
            spaceAfter=6,
            spaceBefore=12
        )

        self.body_style = ParagraphStyle(
            'SummaryBody',
            parent=self.styles['BodyText'],
            fontName=self.body_font,
            fontSize=self.body_size,
            textColor=self.text_color,
            alignment=TA_LEFT,
            leading=12
        )

        self.bullet_style = ParagraphStyle(
            'SummaryBullet',
            parent=self.body_style,
            leftIndent=20,
            bulletIndent=10,
            spaceBefore=2,
            spaceAfter=2
        )

    def generate_patient_summary_pdf(
        self,
        record: PatientRecord,
        alerts: List[Alert],
        kpi_note: Optional[str] = None
    ) -> bytes:
        """
        Generate the patient summary PDF

        Args:
            record: Patient and clinical collections
            alerts: Alerts currently active for this patient
            kpi_note: Optional free-text line (e.g. clinic peritonitis rate) printed under the title

        Returns:
            PDF file as bytes
        """
        buffer = BytesIO()

        doc = SimpleDocTemplate(
            buffer,
            pagesize=letter,
            rightMargin=self.margin,
            leftMargin=self.margin,
            topMargin=self.margin + 0.5*inch,  # Extra space for header
            bottomMargin=self.margin + 0.3*inch  # Extra space for footer
        )

        story = []
        story.append(Paragraph("PERITONEAL DIALYSIS PATIENT SUMMARY", self.title_style))
        if kpi_note:
            story.append(Paragraph(f"<i>{escape(kpi_note)}</i>", self.body_style))
        story.append(Spacer(1, 0.2*inch))

        story.extend(self._add_patient_info_section(record))
        story.extend(self._add_alerts_section(alerts))
        story.extend(self._add_vitals_section(record))
        story.extend(self._add_labs_section(record))
        story.extend(self._add_medications_section(record))
        story.extend(self._add_peritonitis_section(record))
        if record.patient.doctor_notes:
            story.extend(self._add_notes_section(record.patient.doctor_notes))

        doc.build(
            story,
            onFirstPage=self._add_header_footer,
            onLaterPages=self._add_header_footer
        )

        pdf_bytes = buffer.getvalue()
        buffer.close()

        return pdf_bytes

    def _grid_table(self, data: list, col_widths: list, header_row: bool = False) -> Table:
        table = Table(data, colWidths=col_widths)
        style = [
            ('FONTNAME', (0, 0), (-1, -1), self.body_font),
            ('FONTSIZE', (0, 0), (-1, -1), self.body_size),
            ('PADDING', (0, 0), (-1, -1), 5),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.gray),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ]
        if header_row:
            style += [
                ('BACKGROUND', (0, 0), (-1, 0), self.light_gray),
                ('FONTNAME', (0, 0), (-1, 0), self.section_font),
            ]
        table.setStyle(TableStyle(style))
        return table

    def _add_patient_info_section(self, record: PatientRecord) -> list:
        """Create patient demographics table"""
        patient = record.patient
        elements = [Paragraph("PATIENT INFORMATION", self.section_style)]

        data = [
            ["Patient Name:", patient.name, "Patient ID:", patient.patient_id],
            ["Nephro ID:", patient.nephro_id or "N/A", "Status:", patient.status],
            ["Physician:", patient.physician, "Exchange Type:", patient.pd_exchange_type],
            ["Date of Birth:", patient.date_of_birth or "N/A", "PD Start:", patient.pd_start_date or "N/A"],
            ["Phone:", patient.contact_phone or "N/A", "Next Visit:", (patient.next_appointment or "N/A")[:10]],
        ]

        table = Table(data, colWidths=[1.2*inch, 2.3*inch, 1.2*inch, 2.3*inch])
        table.setStyle(TableStyle([
            ('BACKGROUND', (0, 0), (0, -1), self.light_gray),
            ('BACKGROUND', (2, 0), (2, -1), self.light_gray),
            ('FONTNAME', (0, 0), (0, -1), self.section_font),
            ('FONTNAME', (2, 0), (2, -1), self.section_font),
            ('FONTNAME', (1, 0), (1, -1), self.body_font),
            ('FONTNAME', (3, 0), (3, -1), self.body_font),
            ('FONTSIZE', (0, 0), (-1, -1), self.body_size),
            ('PADDING', (0, 0), (-1, -1), 5),
            ('GRID', (0, 0), (-1, -1), 0.5, colors.gray),
            ('VALIGN', (0, 0), (-1, -1), 'MIDDLE'),
        ]))

        elements.append(table)
        return elements

    def _add_alerts_section(self, alerts: List[Alert]) -> list:
        elements = [Paragraph("ACTIVE ALERTS", self.section_style)]
        if not alerts:
            elements.append(Paragraph("<i>No active alerts.</i>", self.body_style))
            return elements

        for alert in alerts:
            critical = alert.severity == AlertSeverity.CRITICAL
            color = "#B00020" if critical else "#B26A00"
            label = "CRITICAL" if critical else "WARNING"
            elements.append(Paragraph(
                f"• <font color='{color}'><b>{label}</b></font> {escape(alert.message)}",
                self.bullet_style
            ))
        return elements

    def _add_vitals_section(self, record: PatientRecord) -> list:
        elements = [Paragraph("LATEST VITALS", self.section_style)]
        vital = latest(record.vitals, lambda v: v.measured_at)
        if vital is None:
            elements.append(Paragraph("<i>No vitals recorded.</i>", self.body_style))
            return elements

        bp = f"{_text(vital.systolic_bp)}/{_text(vital.diastolic_bp)} mmHg"
        data = [
            ["Measured", "Blood Pressure", "Heart Rate", "Temp (°C)", "Weight (kg)"],
            [vital.measured_at[:16], bp, _text(vital.heart_rate), _text(vital.temperature_c), _text(vital.weight_kg)],
        ]
        elements.append(self._grid_table(data, [1.6*inch, 1.6*inch, 1.2*inch, 1.2*inch, 1.4*inch], header_row=True))
        if vital.fluid_status_notes:
            elements.append(Spacer(1, 0.05*inch))
            elements.append(Paragraph(f"Fluid status: {escape(vital.fluid_status_notes)}", self.body_style))
        return elements

    def _add_labs_section(self, record: PatientRecord) -> list:
        """Lab results with H/L flags against the reference range"""
        elements = [Paragraph("LAB RESULTS", self.section_style)]
        if not record.lab_results:
            elements.append(Paragraph("<i>No lab results recorded.</i>", self.body_style))
            return elements

        data = [["Date", "Test", "Value", "Reference", "Flag"]]
        for lab in record.lab_results:
            flag = {"high": "H", "low": "L"}.get(classify_lab_result(lab), "")
            low = lab.reference_low if lab.reference_low is not None else ""
            high = lab.reference_high if lab.reference_high is not None else ""
            data.append([
                lab.resulted_at[:10], lab.test_name, f"{lab.value} {lab.units}", f"{low} - {high}", flag
            ])
        elements.append(self._grid_table(data, [1.1*inch, 2.0*inch, 1.5*inch, 1.6*inch, 0.8*inch], header_row=True))
        return elements

    def _add_medications_section(self, record: PatientRecord) -> list:
        elements = [Paragraph("CURRENT MEDICATIONS", self.section_style)]
        current = [m for m in record.medications if not m.end_date]
        if not current:
            elements.append(Paragraph("<i>No current medications.</i>", self.body_style))
            return elements

        data = [["Medication", "Dosage", "Frequency", "Since"]]
        for med in current:
            data.append([med.name, med.dosage, med.frequency, med.start_date[:10]])
        elements.append(self._grid_table(data, [2.4*inch, 1.4*inch, 1.8*inch, 1.4*inch], header_row=True))
        return elements

    def _add_peritonitis_section(self, record: PatientRecord) -> list:
        elements = [Paragraph("PERITONITIS HISTORY", self.section_style)]
        if not record.peritonitis_episodes:
            elements.append(Paragraph("<i>No history of peritonitis.</i>", self.body_style))
            return elements

        data = [["Diagnosed", "Organism", "Treatment", "Outcome"]]
        for ep in record.peritonitis_episodes:
            data.append([
                ep.diagnosis_date[:10],
                Paragraph(_text(ep.organism), self.body_style),
                Paragraph(_text(ep.treatment_regimen), self.body_style),
                ep.outcome,
            ])
        elements.append(self._grid_table(data, [1.1*inch, 2.2*inch, 2.3*inch, 1.4*inch], header_row=True))
        return elements

    def _add_notes_section(self, notes: str) -> list:
        """Physician notes; lines starting with '-' render as bullets"""
        elements = [Paragraph("PHYSICIAN NOTES", self.section_style)]
        for line in notes.split('\n'):
            line_stripped = line.strip()
            if not line_stripped:
                continue
            if line_stripped.startswith('-') or line_stripped.startswith('•'):
                bullet_text = re.sub(r'^[-•]\s*', '', line_stripped)
                elements.append(Paragraph(f"• {self._format_markdown(bullet_text)}", self.bullet_style))
            else:
                elements.append(Paragraph(self._format_markdown(line_stripped), self.body_style))
        return elements

    def _format_markdown(self, text: str) -> str:
        """Convert **bold** and *italic* to reportlab tags (after escaping)"""
        text = escape(text)
        text = re.sub(r'\*\*([^*]+)\*\*', r'<b>\1</b>', text)
        text = re.sub(r'(?<!\*)\*([^*]+)\*(?!\*)', r'<i>\1</i>', text)
        return text

    def _add_header_footer(self, canvas, doc):
        """Add header and footer to each page"""
        canvas.saveState()

        # Header
        canvas.setFont(self.title_font, 10)
        canvas.setFillColor(self.header_color)
        canvas.drawString(self.margin, self.page_height - 0.5*inch, self.clinic_name.upper())

        canvas.setFont(self.body_font, 9)
        canvas.setFillColor(colors.gray)
        generation_date = datetime.now().strftime("%B %d, %Y")
        canvas.drawRightString(self.page_width - self.margin, self.page_height - 0.5*inch, f"Generated: {generation_date}")

        canvas.setStrokeColor(self.header_color)
        canvas.setLineWidth(1)
        canvas.line(self.margin, self.page_height - 0.6*inch, self.page_width - self.margin, self.page_height - 0.6*inch)

        # Footer
        canvas.setFont(self.small_font, self.small_size)
        canvas.setFillColor(colors.gray)
        canvas.drawCentredString(self.page_width / 2, 0.5*inch, f"Page {doc.page}")
        canvas.drawString(self.margin, 0.5*inch, "Cloudy fluid or fever: contact the PD unit immediately")
        canvas.drawRightString(self.page_width - self.margin, 0.5*inch, "CONFIDENTIAL MEDICAL INFORMATION")

        canvas.restoreState()
