from __future__ import annotations
import logging
import smtplib
from email.mime.text import MIMEText

from .config import Settings

logger = logging.getLogger(__name__)


def render_magic_link_email(link: str) -> str:
    return (
        "<html><body>"
        "<h1>Log in to Planner</h1>"
        f"<p>Just click this <a href=\"{link}\">link</a> and you're logged in!</p>"
        "</body></html>"
    )


def send_magic_link_email(settings: Settings, to_addr: str, link: str) -> bool:
    """Send the login link over SMTP.

    Without SMTP configured the link is only logged, which is how the app is
    used in development.
    """
    html_body = render_magic_link_email(link)
    from_addr = settings.smtp_from or settings.smtp_user
    if not settings.smtp_host or not from_addr:
        logger.info("SMTP not configured; magic link for %s: %s", to_addr, link)
        return False

    msg = MIMEText(html_body, "html")
    msg["Subject"] = "Login to Planner!"
    msg["From"] = from_addr
    msg["To"] = to_addr

    try:
        with smtplib.SMTP(settings.smtp_host, settings.smtp_port) as server:
            server.starttls()
            if settings.smtp_user and settings.smtp_password:
                server.login(settings.smtp_user, settings.smtp_password)
            server.sendmail(from_addr, [to_addr], msg.as_string())
        return True
    except (smtplib.SMTPException, OSError) as e:
        logger.error("SMTP send failed: %s", e)
        return False
