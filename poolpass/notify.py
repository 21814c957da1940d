from __future__ import annotations
import asyncio
import logging
import smtplib
import ssl
from abc import ABC, abstractmethod
from email.message import EmailMessage
from typing import Optional

from .config import EventInfo, Settings
from .model.ticket import Ticket

logger = logging.getLogger(__name__)


class Notifier(ABC):
    @abstractmethod
    async def send_ticket(self, ticket: Ticket, pdf: bytes) -> bool:
        """Deliver the ticket PDF to the buyer. Never raises."""


class DisabledNotifier(Notifier):
    async def send_ticket(self, ticket: Ticket, pdf: bytes) -> bool:
        logger.warning(
            f"Email delivery disabled; ticket {ticket.ticket_id} is "
            f"available at /tickets/{ticket.ticket_id}.pdf"
        )
        return False


class SmtpNotifier(Notifier):
    def __init__(self, *, user: str, password: str,
                 host: Optional[str] = None, port: Optional[int] = None,
                 admin_email: Optional[str] = None,
                 event: Optional[EventInfo] = None) -> None:
        # no explicit host: fall back to Gmail submission
        self.host = host or "smtp.gmail.com"
        self.port = port or 465
        self.user = user
        self.password = password
        self.admin_email = admin_email
        self.event = event or EventInfo()

    def build_message(self, ticket: Ticket, pdf: bytes) -> EmailMessage:
        ev = self.event
        msg = EmailMessage()
        msg["From"] = f"{ev.organizer.title()} <{self.user}>"
        msg["To"] = ticket.email
        if self.admin_email:
            msg["Bcc"] = self.admin_email
        msg["Subject"] = (
            f"Your Ticket for {ev.title} - {ticket.ticket_id}"
        )
        msg.set_content(
            f"Hi {ticket.name},\n\n"
            f"Thanks for your purchase. Your ticket ID is "
            f"{ticket.ticket_id}.\nPlease find your ticket attached as a PDF."
            "\n"
        )
        msg.add_alternative(
            f"<div style=\"font-family: Arial, sans-serif;\">"
            f"<h2 style=\"color:#D4AF37\">{ev.organizer.title()} - "
            f"{ev.title}</h2>"
            f"<p>Hi {ticket.name},</p>"
            f"<p>Thanks for your purchase. Your ticket ID is "
            f"<strong>{ticket.ticket_id}</strong>.</p>"
            f"<p>Please find your ticket attached as a PDF.</p></div>",
            subtype="html",
        )
        msg.add_attachment(
            pdf, maintype="application", subtype="pdf",
            filename=f"Ticket_{ticket.ticket_id}.pdf",
        )
        return msg

    def _send_sync(self, msg: EmailMessage) -> None:
        if self.port == 465:
            with smtplib.SMTP_SSL(self.host, self.port,
                                  context=ssl.create_default_context()) as s:
                s.login(self.user, self.password)
                s.send_message(msg)
        else:
            with smtplib.SMTP(self.host, self.port) as s:
                s.starttls(context=ssl.create_default_context())
                s.login(self.user, self.password)
                s.send_message(msg)

    async def send_ticket(self, ticket: Ticket, pdf: bytes) -> bool:
        msg = self.build_message(ticket, pdf)
        logger.info(f"Sending ticket {ticket.ticket_id} to {ticket.email}")
        try:
            await asyncio.to_thread(self._send_sync, msg)
        except (smtplib.SMTPException, OSError) as e:
            logger.error(
                f"Failed to send ticket {ticket.ticket_id} to "
                f"{ticket.email}: {e!r}"
            )
            return False
        logger.info(f"Ticket email sent for {ticket.ticket_id}")
        return True


def new_notifier(settings: Settings) -> Notifier:
    if settings.email_delivery == "smtp":
        if not (settings.smtp_user and settings.smtp_pass):
            logger.warning(
                "EMAIL_DELIVERY=smtp without SMTP credentials - "
                "emails will not be sent"
            )
            return DisabledNotifier()
        return SmtpNotifier(
            user=settings.smtp_user,
            password=settings.smtp_pass,
            host=settings.smtp_host,
            port=settings.smtp_port,
            admin_email=settings.admin_email,
            event=settings.event,
        )
    return DisabledNotifier()
