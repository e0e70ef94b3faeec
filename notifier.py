"""
Booking confirmation emails through the Brevo transactional email API
"""
import html
import logging
from typing import Optional

import httpx

from allocator import BookingDetails
from config import BREVO_API_KEY, BREVO_API_URL, SENDER_EMAIL, SENDER_NAME, EMAIL_TIMEOUT_SECONDS

logger = logging.getLogger(__name__)

SUBJECT = "Lab Test Booking Confirmation - HelloTabeeb"
SINGLE_USE_WARNING = "Please keep this code safe as it can only be used once."

TIMEOUT = "timeout"
RATE_LIMITED = "rate_limited"
PROVIDER_ERROR = "provider_error"


class EmailError(Exception):
    def __init__(self, kind: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.kind = kind
        self.status_code = status_code


def render_confirmation_email(name: str, test_name: str, test_fee: str, discount_code: str) -> str:
    name, test_name, test_fee, discount_code = (
        html.escape(str(v)) for v in (name, test_name, test_fee, discount_code)
    )
    return f"""
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
                <h2 style="color: #2c3e50;">Lab Test Booking Confirmation</h2>
                <p>Dear {name},</p>
                <p>Thank you for booking your lab test with HelloTabeeb. Your booking has been confirmed.</p>
                <div style="background-color: #f8f9fa; padding: 15px; border-radius: 5px; margin: 20px 0;">
                    <h3 style="margin-top: 0;">Booking Details:</h3>
                    <ul style="list-style-type: none; padding-left: 0;">
                        <li><strong>Test:</strong> {test_name}</li>
                        <li><strong>Fee:</strong> {test_fee}</li>
                        <li style="margin-top: 10px;"><strong>Your Discount Code:</strong>
                            <span style="background-color: #e9ecef; padding: 5px 10px; border-radius: 3px;">{discount_code}</span>
                        </li>
                    </ul>
                </div>
                <p><strong>Important:</strong> {SINGLE_USE_WARNING}</p>
                <p>Please show this email at the lab during your visit.</p>
                <hr style="border-top: 1px solid #eee; margin: 20px 0;">
                <p style="color: #666; font-size: 14px;">
                    Best regards,<br>
                    HelloTabeeb Lab Services Team
                </p>
            </div>
        </body>
        </html>
    """


class EmailNotifier:
    """Sends booking confirmations via Brevo"""

    def __init__(
        self,
        api_key: Optional[str] = BREVO_API_KEY,
        api_url: str = BREVO_API_URL,
        timeout: float = EMAIL_TIMEOUT_SECONDS,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.api_key = api_key
        self.api_url = api_url
        self.timeout = timeout
        self.transport = transport

    async def send(self, booking: BookingDetails, discount_code: str) -> Optional[str]:
        """
        Send the confirmation email and return Brevo's messageId.

        Raises EmailError with kind `timeout`, `rate_limited` or `provider_error`.
        """
        if not self.api_key:
            logger.warning("BREVO_API_KEY is not configured, cannot send email")
            raise EmailError(PROVIDER_ERROR, "Email service is not configured")

        payload = {
            "sender": {"email": SENDER_EMAIL, "name": SENDER_NAME},
            "to": [{"email": booking.email, "name": booking.name}],
            "subject": SUBJECT,
            "htmlContent": render_confirmation_email(booking.name, booking.test_name, booking.test_fee, discount_code),
        }
        headers = {
            "api-key": self.api_key,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(self.api_url, json=payload, headers=headers)
                response.raise_for_status()
        except httpx.TimeoutException as e:
            logger.error(f"Email service timeout for {booking.email}: {e}")
            raise EmailError(TIMEOUT, "Email service timeout") from e
        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.error(f"Email service returned {status} for {booking.email}: {e.response.text}")
            if status == 429:
                raise EmailError(RATE_LIMITED, "Too many requests to email service", status) from e
            raise EmailError(PROVIDER_ERROR, "Failed to send email", status) from e
        except httpx.HTTPError as e:
            logger.error(f"Email service request failed for {booking.email}: {e}")
            raise EmailError(PROVIDER_ERROR, "Failed to send email") from e

        try:
            message_id = response.json().get("messageId")
        except ValueError:
            message_id = None
        logger.info(f"Confirmation email sent to {booking.email}, messageId={message_id}")
        return message_id
