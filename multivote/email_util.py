"""
Email utility — async SMTP email delivery using aiosmtplib.

Environment variables:
    SMTP_HOST      SMTP server hostname  (default: smtp.gmail.com)
    SMTP_PORT      SMTP server port      (default: 587 → STARTTLS)
    SMTP_USER      SMTP username
    SMTP_PASS      SMTP password
    SMTP_USE_TLS   Set to "true" for STARTTLS connections (default: true)
    SMTP_FROM      Sender address        (default: SMTP_USER)
    FRONTEND_URL   Public URL of the frontend, used in email links

Delivery is fire-and-forget from the caller's point of view: ``send_email``
raises on failure and callers decide what a failed send means.
"""

import os
import logging
from email.message import EmailMessage
from email.utils import formataddr

import aiosmtplib

logger = logging.getLogger(__name__)

# ── Configuration ────────────────────────────────────────────────────────────
SMTP_HOST = os.getenv("SMTP_HOST", "smtp.gmail.com")
SMTP_PORT = int(os.getenv("SMTP_PORT", "587").strip() or "587")
SMTP_USER = os.getenv("SMTP_USER", "")
SMTP_PASS = os.getenv("SMTP_PASS", "")
SMTP_USE_TLS = os.getenv("SMTP_USE_TLS", "true").lower() == "true"
SMTP_FROM = os.getenv("SMTP_FROM", SMTP_USER or "no-reply@multivote.local")
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")

_HEADER = """
    <div style="background: #22c55e; color: white; padding: 20px; text-align: center;">
        <h1 style="margin: 0;">Multivote</h1>
        <p style="margin: 8px 0 0 0;">{instance_name}</p>
    </div>
"""


async def send_email(to: str, subject: str, body_text: str, body_html: str | None = None,
                     from_name: str | None = None):
    """Send an email asynchronously via SMTP."""
    msg = EmailMessage()
    msg["From"] = formataddr((from_name, SMTP_FROM)) if from_name else SMTP_FROM
    msg["To"] = to
    msg["Subject"] = subject
    msg.set_content(body_text)

    if body_html:
        msg.add_alternative(body_html, subtype="html")

    kwargs: dict = {
        "hostname": SMTP_HOST,
        "port": SMTP_PORT,
        "start_tls": SMTP_USE_TLS,
    }
    if SMTP_USER and SMTP_PASS:
        kwargs["username"] = SMTP_USER
        kwargs["password"] = SMTP_PASS

    try:
        await aiosmtplib.send(msg, **kwargs)
        logger.info(f"Email sent to {to}: {subject}")
    except Exception as e:
        logger.error(f"Failed to send email to {to}: {e}")
        raise


async def send_otp_email(to_email: str, full_name: str, code: str, instance_name: str,
                         ttl_hours: int = 5):
    """Send a voter their 6-digit login code."""
    subject = f"Your login code — {instance_name}"

    body_text = (
        f"Hello {full_name},\n\n"
        f"Your login code for {instance_name} is:\n\n"
        f"    {code}\n\n"
        f"This code expires in {ttl_hours} hours and can only be used once.\n"
        "If you did not request this, please ignore this email.\n\n"
        f"— {instance_name}"
    )

    body_html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        {_HEADER.format(instance_name=instance_name)}
        <div style="padding: 30px; background: #f8f9fa; text-align: center;">
            <h2>Hello {full_name},</h2>
            <p>Enter this code to sign in and vote:</p>
            <div style="background: #ffffff; border: 2px dashed #22c55e;
                        padding: 20px; margin: 25px auto; max-width: 250px;
                        border-radius: 10px;">
                <span style="font-size: 36px; font-weight: bold; letter-spacing: 8px;
                             color: #22c55e; font-family: monospace;">
                    {code}
                </span>
            </div>
            <p style="color: #6c757d; font-size: 14px;">
                This code expires in <strong>{ttl_hours} hours</strong> and works once.<br>
                Do not share this code with anyone.
            </p>
        </div>
    </div>
    """

    await send_email(to_email, subject, body_text, body_html, from_name=instance_name)


async def send_account_invite_email(to_email: str, password: str, role: str,
                                    instance_name: str | None = None):
    """Send an admin/observer their new account and initial password."""
    scope = instance_name or "Multivote"
    login_url = f"{FRONTEND_URL}/login"
    subject = f"Your {role} account — {scope}"

    body_text = (
        f"An {role} account has been created for you on {scope}.\n\n"
        f"Email: {to_email}\n"
        f"Initial password: {password}\n\n"
        f"Sign in at {login_url} and change your password right away.\n\n"
        f"— {scope}"
    )

    body_html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        {_HEADER.format(instance_name=scope)}
        <div style="padding: 30px; background: #f8f9fa;">
            <h2>Your {role} account is ready</h2>
            <p><strong>Email:</strong> {to_email}</p>
            <p><strong>Initial password:</strong>
               <code style="background: #e9ecef; padding: 5px 10px; border-radius: 3px;">{password}</code></p>
            <div style="text-align: center; margin: 30px 0;">
                <a href="{login_url}"
                   style="background: #22c55e; color: white; padding: 15px 40px;
                          text-decoration: none; border-radius: 5px; font-size: 18px;">
                    Sign in
                </a>
            </div>
            <p style="color: #6c757d; font-size: 13px;">
                Change this password after your first sign-in.
            </p>
        </div>
    </div>
    """

    await send_email(to_email, subject, body_text, body_html, from_name=scope)


async def send_password_reset_email(to_email: str, password: str, role: str,
                                    instance_name: str | None = None):
    """Send an admin/observer the password a super-admin reset for them."""
    scope = instance_name or "Multivote"
    login_url = f"{FRONTEND_URL}/login"
    subject = f"Your password was reset — {scope}"

    body_text = (
        f"The password of your {role} account on {scope} has been reset.\n\n"
        f"New password: {password}\n\n"
        f"Sign in at {login_url} and choose a new password.\n\n"
        f"— {scope}"
    )

    body_html = f"""
    <div style="font-family: Arial, sans-serif; max-width: 600px; margin: 0 auto;">
        {_HEADER.format(instance_name=scope)}
        <div style="padding: 30px; background: #f8f9fa;">
            <h2>Your password was reset</h2>
            <p><strong>New password:</strong>
               <code style="background: #e9ecef; padding: 5px 10px; border-radius: 3px;">{password}</code></p>
            <p><a href="{login_url}">Sign in</a> and choose a new password.</p>
        </div>
    </div>
    """

    await send_email(to_email, subject, body_text, body_html, from_name=scope)
