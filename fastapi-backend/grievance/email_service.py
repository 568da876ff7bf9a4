"""Email service for OTP and complaint resolution emails."""

import asyncio
import logging
import re
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional

import aiosmtplib

from .config import Settings

logger = logging.getLogger("grievance.email_service")

SYSTEM_NAME = "Hostel Grievance Portal"


class EmailDispatcher:
    """Sends transactional email over SMTP.

    Every send is bounded by ``email_timeout_seconds`` and reports success as a
    bool; callers decide whether a failed send matters.
    """

    def __init__(self, settings: Settings):
        self.host = settings.smtp_host
        self.port = settings.smtp_port
        self.username = settings.smtp_user or None
        self.password = settings.smtp_password or None
        self.use_tls = settings.smtp_use_tls
        self.sender = settings.email_from
        self.timeout = settings.email_timeout_seconds
        self.otp_expiry_minutes = settings.otp_expiry_minutes

    async def send_email(
        self, to_email: str, subject: str, html_body: str, text_body: Optional[str] = None
    ) -> bool:
        """
        Send an email using SMTP.

        Args:
            to_email: Recipient email address
            subject: Email subject
            html_body: HTML email body
            text_body: Plain text body (generated from the HTML when omitted)

        Returns:
            True if email was sent successfully, False otherwise
        """
        if not text_body:
            text_body = re.sub(r"<[^>]+>", "", html_body)
            text_body = text_body.replace("&nbsp;", " ").replace("&amp;", "&")

        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = to_email
        message.attach(MIMEText(text_body, "plain"))
        message.attach(MIMEText(html_body, "html"))

        try:
            await asyncio.wait_for(
                aiosmtplib.send(
                    message,
                    hostname=self.host,
                    port=self.port,
                    username=self.username,
                    password=self.password,
                    start_tls=self.use_tls,
                    timeout=self.timeout,
                ),
                timeout=self.timeout,
            )
            logger.info("Email sent successfully to %s: %s", to_email, subject)
            return True
        except (aiosmtplib.SMTPException, OSError, asyncio.TimeoutError) as e:
            logger.error("Failed to send email to %s: %s", to_email, e)
            if self.host == "localhost":
                logger.info("[DEV MODE] Would send email to %s:", to_email)
                logger.info("Subject: %s", subject)
                logger.info("Body: %s", text_body)
            return False

    async def send_otp_email(self, email: str, otp_code: str) -> bool:
        """Send the one-time login code."""
        subject = f"Your OTP for {SYSTEM_NAME}"

        html_body = f"""
        <html>
        <body style="font-family: Arial, sans-serif; color: #333;">
            <p>Hello,</p>
            <p>Use the code below to sign in to the {SYSTEM_NAME}:</p>
            <p style="font-size: 28px; font-weight: bold; letter-spacing: 6px;">{otp_code}</p>
            <p><strong>This code will expire in {self.otp_expiry_minutes} minutes.</strong></p>
            <p>If you did not request this code, please ignore this email.</p>
        </body>
        </html>
        """

        text_body = (
            f"Your OTP is {otp_code}. It will expire in {self.otp_expiry_minutes} minutes.\n\n"
            "If you did not request this code, please ignore this email.\n"
        )

        return await self.send_email(email, subject, html_body, text_body)

    async def send_resolution_email(self, email: str, complaint) -> bool:
        """Tell the reporting student their complaint was resolved."""
        subject = f"Complaint #{complaint.id} resolved - {SYSTEM_NAME}"

        html_body = f"""
        <html>
        <body style="font-family: Arial, sans-serif; color: #333;">
            <p>Hello,</p>
            <p>Your complaint <strong>#{complaint.id}</strong> has been marked as <strong>Resolved</strong>.</p>
            <ul>
                <li><strong>Category:</strong> {complaint.type}</li>
                <li><strong>Description:</strong> {complaint.description}</li>
                <li><strong>Hostel:</strong> {complaint.hostel_name}</li>
                <li><strong>Room:</strong> {complaint.room_no}</li>
            </ul>
            <p>If the problem persists, please file a new complaint.</p>
        </body>
        </html>
        """

        text_body = (
            f"Your complaint #{complaint.id} has been marked as Resolved.\n\n"
            f"Category: {complaint.type}\n"
            f"Description: {complaint.description}\n"
            f"Hostel: {complaint.hostel_name}\n"
            f"Room: {complaint.room_no}\n\n"
            "If the problem persists, please file a new complaint.\n"
        )

        return await self.send_email(email, subject, html_body, text_body)
