# certificate_renderer.py — PDF artifact for completed certificates
import asyncio
import os
import logging
from dataclasses import dataclass
from datetime import date
from typing import Optional

from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.pdfgen import canvas

logger = logging.getLogger("certisphere.renderer")

CERTIFICATE_OUTPUT_ROOT = os.getenv("CERTIFICATE_OUTPUT_ROOT", "certificates")
ISSUER_NAME = os.getenv("CERTIFICATE_ISSUER", "CertiSphere")

DEFAULT_STATEMENT = (
    "This certificate is issued after a thorough civil engineering audit, "
    "verifying that the project or organization has met the applicable "
    "technical and safety standards."
)


@dataclass
class RenderRequest:
    certificate_id: int
    business_name: Optional[str]
    certificate_name: Optional[str]
    certificate_type: Optional[str]
    certificate_reference: Optional[str]
    iso_standards: Optional[list] = None


class CertificateRenderer:
    def __init__(self, output_root: str = CERTIFICATE_OUTPUT_ROOT):
        self.output_root = output_root

    def path_for(self, certificate_id: int) -> str:
        return os.path.join(self.output_root, f"certificate_{certificate_id}.pdf")

    def _draw(self, req: RenderRequest, path: str) -> None:
        width, height = A4
        pdf = canvas.Canvas(path, pagesize=A4)
        pdf.setTitle(f"Certificate {req.certificate_reference or req.certificate_id}")

        pdf.setFont("Helvetica-Bold", 16)
        pdf.drawCentredString(width / 2, height - 30 * mm, "Certificate of Audit")

        pdf.setFont("Helvetica", 12)
        y = height - 50 * mm
        lines = [
            f"Organization: {req.business_name or 'N/A'}",
            f"Certificate Title: {req.certificate_name or 'Untitled'}",
            f"Certificate Type: {req.certificate_type or 'N/A'}",
            f"Certificate Reference #: {req.certificate_reference or 'N/A'}",
            f"Date of Issuance: {date.today().isoformat()}",
        ]
        if req.iso_standards:
            lines.append(f"Standards: {', '.join(req.iso_standards)}")
        for line in lines:
            pdf.drawString(20 * mm, y, line)
            y -= 8 * mm

        text = pdf.beginText(20 * mm, y - 10 * mm)
        text.setFont("Helvetica", 10)
        words, current = DEFAULT_STATEMENT.split(), ""
        for word in words:
            if len(current) + len(word) + 1 > 90:
                text.textLine(current)
                current = word
            else:
                current = f"{current} {word}".strip()
        text.textLine(current)
        pdf.drawText(text)

        pdf.setFont("Helvetica-Oblique", 12)
        pdf.drawCentredString(width / 2, 30 * mm, f"Certified by {ISSUER_NAME}")
        pdf.showPage()
        pdf.save()

    async def render(self, req: RenderRequest) -> str:
        os.makedirs(self.output_root, exist_ok=True)
        path = self.path_for(req.certificate_id)
        await asyncio.to_thread(self._draw, req, path)
        logger.info(f"PDF generated at: {path}")
        return path


_renderer = CertificateRenderer()


def get_certificate_renderer() -> CertificateRenderer:
    return _renderer
