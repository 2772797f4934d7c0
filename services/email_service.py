"""
Email service for account notifications.
Uses fastapi-mail; the FastMail client lives on ``app.state.mail`` and is None when SMTP is not configured.
"""
from typing import Optional, TYPE_CHECKING

from fastapi_mail import MessageSchema, MessageType

from core.logger import logger
import config

if TYPE_CHECKING:
    from fastapi_mail import FastMail
    from database.models import User


def _wrap(title: str, body: str) -> str:
    return f"""
    <html>
    <body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
        <div style="max-width: 600px; margin: 0 auto; padding: 20px;">
            <h2 style="color: #1976d2;">{config.APP_NAME}</h2>
            <h3>{title}</h3>
            {body}
        </div>
    </body>
    </html>
    """


class EmailService:
    """Service for sending account emails via fastapi-mail."""

    @staticmethod
    async def send(fm: Optional["FastMail"], to_email: str, subject: str, html_body: str) -> bool:
        """
        Send an HTML email.

        Args:
            fm: FastMail instance (from request.app.state.mail)
            to_email: Recipient email address
            subject: Email subject
            html_body: HTML email body

        Returns:
            True if sent successfully, False otherwise
        """
        if fm is None:
            logger.warning(f"Mail client not configured; skipping email '{subject}' to {to_email}")
            return False

        message = MessageSchema(
            subject=subject,
            recipients=[to_email],
            body=html_body,
            subtype=MessageType.html,
        )
        try:
            await fm.send_message(message)
            logger.info(f"Email '{subject}' sent to {to_email}")
            return True
        except Exception as e:
            logger.error(f"Failed to send email '{subject}' to {to_email}: {e}", exc_info=True)
            return False

    @staticmethod
    async def send_welcome_email(user: "User", fm: Optional["FastMail"]) -> bool:
        body = f"""
            <p>Hi {user.first_name},</p>
            <p>Your {user.role.value} account has been created. You can sign in with {user.email}.</p>
            <p><a href="{config.FRONTEND_URL}/login">Go to the portal</a></p>
        """
        return await EmailService.send(fm, user.email, f"Welcome to {config.APP_NAME}", _wrap("Welcome", body))

    @staticmethod
    async def send_password_reset_email(user: "User", token: str, fm: Optional["FastMail"]) -> bool:
        link = f"{config.FRONTEND_URL}/reset-password/{token}"
        body = f"""
            <p>Hi {user.first_name},</p>
            <p>Use the link below to choose a new password:</p>
            <p><a href="{link}">{link}</a></p>
            <p>This link will expire in {config.PASSWORD_RESET_EXPIRE_MINUTES} minutes.</p>
            <p style="color: #666; font-size: 12px;">If you didn't request this, please ignore this email.</p>
        """
        return await EmailService.send(fm, user.email, "Password Reset Request", _wrap("Password reset", body))

    @staticmethod
    async def send_email_verification(user: "User", token: str, fm: Optional["FastMail"]) -> bool:
        link = f"{config.FRONTEND_URL}/verify-email/{token}"
        body = f"""
            <p>Hi {user.first_name},</p>
            <p>Please confirm your email address:</p>
            <p><a href="{link}">{link}</a></p>
            <p>This link will expire in {config.EMAIL_VERIFICATION_EXPIRE_HOURS} hours.</p>
        """
        return await EmailService.send(fm, user.email, "Verify your email", _wrap("Email verification", body))
