from newsletter.core.config import Settings
from newsletter.email.base import EmailSender
from newsletter.email.http_sender import HTTPEmailSender
from newsletter.email.smtp_sender import SMTPEmailSender


def build_email_sender(settings: Settings) -> EmailSender:
    """Pick the transport once, from EMAIL_USE_HTTP."""
    if settings.EMAIL_USE_HTTP:
        return HTTPEmailSender(
            api_key=settings.EMAIL_API_KEY,
            from_address=settings.EMAIL_FROM_ADDRESS,
            from_name=settings.EMAIL_FROM_NAME,
            base_url=settings.EMAIL_BASE_URL,
            timeout=settings.SEND_TIMEOUT,
        )

    return SMTPEmailSender(
        host=settings.SMTP_HOST,
        port=settings.SMTP_PORT,
        from_address=settings.EMAIL_FROM_ADDRESS,
        from_name=settings.EMAIL_FROM_NAME,
        username=settings.SMTP_USERNAME,
        password=settings.SMTP_PASSWORD,
        use_tls=settings.SMTP_USE_TLS,
        start_tls=settings.SMTP_START_TLS,
        timeout=settings.SEND_TIMEOUT,
    )
