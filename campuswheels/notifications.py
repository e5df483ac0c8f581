"""Outgoing email: OTP codes and SOS alerts.

Delivery is a single SMTP submission per message. When no SMTP user is
configured the message is dropped with a warning, which keeps local
development usable without a mail account.
"""
import logging
import smtplib
from email.message import EmailMessage

from .config import (
    EMAIL_HOST, EMAIL_PORT, EMAIL_USER, EMAIL_PASSWORD, SOS_EMAILS, OTP_EXPIRY_MINUTES
)

logger = logging.getLogger(__name__)


def send_email(recipients: list, subject: str, body: str, sender_name: str = "Campus Wheels") -> bool:
    if not EMAIL_USER:
        logger.warning("Email transport not configured, dropping '%s' to %s", subject, ", ".join(recipients))
        return False

    message = EmailMessage()
    message["From"] = f'"{sender_name}" <{EMAIL_USER}>'
    message["To"] = ", ".join(recipients)
    message["Subject"] = subject
    message.set_content(body)

    with smtplib.SMTP(EMAIL_HOST, EMAIL_PORT, timeout=15) as smtp:
        smtp.starttls()
        smtp.login(EMAIL_USER, EMAIL_PASSWORD or "")
        smtp.send_message(message)

    logger.info("Sent '%s' to %d recipient(s)", subject, len(recipients))
    return True


def send_otp_email(email: str, otp: str) -> bool:
    body = (
        "Your One-Time Password (OTP) for Campus Wheels email verification is:\n\n"
        f"    {otp}\n\n"
        f"This OTP will expire in {OTP_EXPIRY_MINUTES} minutes.\n"
        "If you didn't request this OTP, please ignore this email.\n"
    )
    return send_email([email], "Your OTP for Campus Wheels Verification", body)


def send_sos_email(details: dict) -> bool:
    if not SOS_EMAILS:
        logger.warning("No emergency contacts configured, SOS alert %s not emailed", details.get("alert_id"))
        return False

    if details.get("latitude") is not None and details.get("longitude") is not None:
        location_link = f"https://www.google.com/maps?q={details['latitude']},{details['longitude']}"
    else:
        location_link = "Location not available"

    ride = details.get("ride", {})
    body = "\n".join([
        "EMERGENCY ALERT - an SOS was triggered on Campus Wheels.",
        "",
        "User information:",
        f"  Name: {details.get('user_name')}",
        f"  Email: {details.get('user_email')}",
        f"  Phone: {details.get('user_phone') or 'Not provided'}",
        "",
        "Driver information:",
        f"  Name: {details.get('driver_name')}",
        f"  Phone: {details.get('driver_phone') or 'Not provided'}",
        "",
        "Ride details:",
        f"  From: {ride.get('start_location')}",
        f"  To: {ride.get('end_location')}",
        f"  Scheduled: {ride.get('ride_date_time')}",
        "",
        f"Current location: {details.get('location') or 'Not provided'}",
        f"Map: {location_link}",
        f"Message: {details.get('message') or '-'}",
        "",
        f"Alert ID: {details.get('alert_id')}",
        f"Timestamp: {details.get('timestamp')}",
        "",
        "Please take immediate action and contact the user or local authorities if necessary.",
    ])
    return send_email(SOS_EMAILS, "URGENT: SOS Alert from Campus Wheels", body, sender_name="Campus Wheels SOS")
