"""
Transactional email over SMTP.

Only the subscription invoice mail is sent from this service. Sending is
blocking; the side-effect dispatcher calls it from a worker thread.
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from typing import Optional
from decimal import Decimal
import logging

from vendor_billing.config import Settings

logger = logging.getLogger(__name__)

SMTP_TIMEOUT_SECONDS = 10


class EmailService:
    """Sends invoice emails; a no-op when SMTP credentials are missing."""

    def __init__(
        self,
        smtp_host: str,
        smtp_port: int,
        smtp_user: str,
        smtp_password: str,
        from_email: str,
        from_name: str,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.smtp_user = smtp_user
        self.smtp_password = smtp_password
        self.sender = f"{from_name} <{from_email or smtp_user}>"
        self.envelope_from = from_email or smtp_user

    @classmethod
    def from_settings(cls, settings: Settings) -> "EmailService":
        return cls(
            smtp_host=settings.SMTP_HOST,
            smtp_port=settings.SMTP_PORT,
            smtp_user=settings.SMTP_USER,
            smtp_password=settings.SMTP_PASSWORD,
            from_email=settings.smtp_from_address or "",
            from_name=settings.SMTP_FROM_NAME,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.smtp_user and self.smtp_password)

    def _build_message(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str],
    ) -> MIMEMultipart:
        message = MIMEMultipart("alternative")
        message["Subject"] = subject
        message["From"] = self.sender
        message["To"] = to_email
        if text_content:
            message.attach(MIMEText(text_content, "plain", "utf-8"))
        message.attach(MIMEText(html_content, "html", "utf-8"))
        return message

    def send_email(
        self,
        to_email: str,
        subject: str,
        html_content: str,
        text_content: Optional[str] = None
    ) -> bool:
        """Send one message with STARTTLS. Returns False instead of raising."""
        if not self.is_configured:
            logger.warning(f"SMTP credentials missing; email to {to_email} not sent")
            return False

        message = self._build_message(to_email, subject, html_content, text_content)
        try:
            with smtplib.SMTP(self.smtp_host, self.smtp_port, timeout=SMTP_TIMEOUT_SECONDS) as server:
                server.starttls()
                server.login(self.smtp_user, self.smtp_password)
                server.sendmail(self.envelope_from, [to_email], message.as_string())
        except smtplib.SMTPAuthenticationError:
            logger.error(f"SMTP login rejected for {self.smtp_user}")
            return False
        except (smtplib.SMTPException, OSError) as e:
            # OSError covers refused connections and socket timeouts
            logger.error(f"Sending '{subject}' to {to_email} failed: {e}")
            return False

        logger.info(f"Sent '{subject}' to {to_email}")
        return True

    def send_subscription_invoice_email(
        self,
        to_email: str,
        company_name: str,
        invoice_number: str,
        plan_name: str,
        amount: Decimal,
        discount_amount: Decimal,
        net_amount: Decimal,
        offer_code: Optional[str],
        transaction_id: str,
        start_date: str,
        end_date: str,
    ) -> bool:
        """
        Send the subscription confirmation with the invoice summary.
        """
        subject = f"Invoice {invoice_number} - Subscription Purchase"

        discount_row = ""
        if discount_amount and Decimal(str(discount_amount)) > 0:
            code_label = f" ({offer_code})" if offer_code else ""
            discount_row = f"""
                <tr><td>Discount{code_label}</td><td style="text-align:right;">- ₹{discount_amount}</td></tr>
            """

        html_content = f"""
        <!DOCTYPE html>
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
            <h2>Subscription Confirmation</h2>
            <p>Dear {company_name},</p>
            <p>Your subscription has been successfully activated.</p>
            <table style="width: 100%; max-width: 480px; border-collapse: collapse;">
                <tr><td>Invoice</td><td style="text-align:right;">{invoice_number}</td></tr>
                <tr><td>Plan</td><td style="text-align:right;">{plan_name}</td></tr>
                <tr><td>Amount</td><td style="text-align:right;">₹{amount}</td></tr>
                {discount_row}
                <tr><td><strong>Total Paid</strong></td><td style="text-align:right;"><strong>₹{net_amount}</strong></td></tr>
                <tr><td>Transaction</td><td style="text-align:right;">{transaction_id}</td></tr>
            </table>
            <p><strong>Subscription Period:</strong> {start_date} to {end_date}</p>
            <p>Thank you for your business!</p>
        </body>
        </html>
        """

        text_content = (
            f"Subscription Confirmation\n\n"
            f"Dear {company_name},\n"
            f"Invoice {invoice_number} for plan {plan_name}.\n"
            f"Amount: {amount}  Discount: {discount_amount}  Paid: {net_amount}\n"
            f"Transaction: {transaction_id}\n"
            f"Subscription Period: {start_date} to {end_date}\n"
        )

        return self.send_email(to_email, subject, html_content, text_content)
