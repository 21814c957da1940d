"""Ticket PDF rendering and the on-disk artifact directory.

Rendering is a pure function of the ticket and event data: the canvas runs
in reportlab's invariant mode and nothing time-dependent is printed, so a
re-render yields the same bytes.
"""
from __future__ import annotations
import asyncio
import logging
import os
import tempfile
from io import BytesIO
from typing import Optional

import qrcode
from reportlab.lib.colors import HexColor
from reportlab.lib.pagesizes import A4
from reportlab.lib.utils import ImageReader
from reportlab.pdfgen import canvas

from .config import EventInfo
from .errors import ArtifactGenerationError
from .helpers import to_iso
from .model.ticket import Ticket

logger = logging.getLogger(__name__)

GOLD = HexColor("#D4AF37")
GREY = HexColor("#666666")
DARK = HexColor("#333333")


def qr_png(data: str) -> bytes:
    qr = qrcode.QRCode(
        version=1,
        error_correction=qrcode.constants.ERROR_CORRECT_M,
        box_size=10,
        border=1,
    )
    qr.add_data(data)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def render_ticket_pdf(ticket: Ticket, event: EventInfo,
                      contact_email: Optional[str] = None) -> bytes:
    buf = BytesIO()
    c = canvas.Canvas(buf, pagesize=A4, invariant=1)
    c.setTitle(f"Ticket {ticket.ticket_id}")
    c.setAuthor(event.organizer)
    width, height = A4

    # header band
    c.setFillColor(GOLD)
    c.rect(0, height - 120, width, 120, fill=1, stroke=0)
    c.setFillColor(HexColor("#000000"))
    c.setFont("Helvetica-Bold", 32)
    c.drawString(50, height - 60, event.organizer)
    c.setFont("Helvetica-Bold", 24)
    c.drawString(50, height - 95, event.title)

    # ticket id
    c.setFont("Helvetica", 14)
    c.drawString(50, height - 160, "TICKET ID")
    c.setFillColor(GOLD)
    c.setFont("Courier-Bold", 20)
    c.drawString(50, height - 185, ticket.ticket_id)

    # attendee
    c.setFillColor(HexColor("#000000"))
    c.setFont("Helvetica-Bold", 14)
    c.drawString(50, height - 230, "ATTENDEE INFORMATION")
    c.setFont("Helvetica", 12)
    ticket_type = event.ticket_types.get(ticket.gender, ticket.gender)
    lines = [
        f"Name: {ticket.name}",
        f"Email: {ticket.email}",
        f"Ticket Type: {ticket_type}",
        f"Amount Paid: NGN {ticket.amount:,}",
    ]
    for i, line in enumerate(lines):
        c.drawString(50, height - 255 - i * 20, line)

    # event details
    c.setFont("Helvetica-Bold", 14)
    c.drawString(50, height - 360, "EVENT DETAILS")
    c.setFont("Helvetica", 12)
    details = [
        f"Date: {event.date}",
        f"Time: {event.time}",
        f"Venue: {event.venue}",
        f"Address: {event.address}",
    ]
    for i, line in enumerate(details):
        c.drawString(50, height - 385 - i * 20, line)

    # QR code encodes the public ticket reference
    qr_size = 180
    qr_x = width - 230
    qr_y = height - 150 - qr_size
    c.drawImage(ImageReader(BytesIO(qr_png(ticket.ticket_id))),
                qr_x, qr_y, width=qr_size, height=qr_size)
    c.setFillColor(GREY)
    c.setFont("Helvetica", 10)
    c.drawCentredString(qr_x + qr_size / 2, qr_y - 15,
                        "Scan QR code at venue")

    # notes
    c.setFillColor(HexColor("#000000"))
    c.setFont("Helvetica-Bold", 14)
    c.drawString(50, height - 500, "IMPORTANT INFORMATION")
    c.setFillColor(DARK)
    c.setFont("Helvetica", 10)
    notes = [
        "- Please arrive at least 30 minutes before the event starts",
        "- Bring a valid ID for verification",
        "- This ticket is non-transferable and non-refundable",
        "- Keep this ticket safe and present it at the entrance",
    ]
    for i, line in enumerate(notes):
        c.drawString(50, height - 525 - i * 20, line)

    # footer
    c.setStrokeColor(GOLD)
    c.setLineWidth(2)
    c.line(50, 100, width - 50, 100)
    c.setFillColor(GREY)
    c.setFont("Helvetica", 10)
    contact = f"For inquiries, contact: {event.contact}"
    if contact_email:
        contact += f" | {contact_email}"
    c.drawCentredString(width / 2, 75, contact)
    c.setFont("Helvetica", 8)
    c.drawCentredString(width / 2, 50,
                        f"Purchased on: {to_iso(ticket.created_at)}")

    c.showPage()
    c.save()
    return buf.getvalue()


class ArtifactStore:
    """Directory of ``<ticketId>.pdf`` files."""

    def __init__(self, directory: str, event: EventInfo,
                 contact_email: Optional[str] = None) -> None:
        self.directory = os.path.abspath(directory)
        self.event = event
        self.contact_email = contact_email
        os.makedirs(self.directory, exist_ok=True)

    def path_for(self, ticket_id: str) -> str:
        name = os.path.basename(ticket_id)
        return os.path.join(self.directory, f"{name}.pdf")

    def exists(self, ticket_id: str) -> bool:
        return os.path.isfile(self.path_for(ticket_id))

    def render(self, ticket: Ticket) -> bytes:
        return render_ticket_pdf(ticket, self.event, self.contact_email)

    def _write(self, ticket_id: str, data: bytes) -> str:
        path = self.path_for(ticket_id)
        fd, tmp = tempfile.mkstemp(dir=self.directory, suffix=".tmp")
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(data)
            os.replace(tmp, path)
        except BaseException:
            if os.path.exists(tmp):
                os.unlink(tmp)
            raise
        return path

    def _generate(self, ticket: Ticket) -> bytes:
        data = self.render(ticket)
        path = self._write(ticket.ticket_id, data)
        logger.info(f"Saved ticket PDF for {ticket.ticket_id} to {path}")
        return data

    async def generate(self, ticket: Ticket) -> bytes:
        """Render and persist; blocking work runs in a worker thread."""
        try:
            return await asyncio.to_thread(self._generate, ticket)
        except Exception as e:
            logger.exception(
                f"PDF generation failed for ticket {ticket.ticket_id}"
            )
            raise ArtifactGenerationError(
                f"could not generate PDF for {ticket.ticket_id}: {e}"
            )
