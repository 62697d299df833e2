from newsletter.email.base import EmailMessage, EmailSender
from newsletter.email.smtp_sender import SMTPEmailSender
from newsletter.email.http_sender import HTTPEmailSender
from newsletter.email.factory import build_email_sender

__all__ = [
    'EmailMessage',
    'EmailSender',
    'SMTPEmailSender',
    'HTTPEmailSender',
    'build_email_sender',
]
