"""Mail provider integrations (Gmail API, Microsoft Graph, SMTP)."""

from src.integrations.mail.base import MailClientError, MailSender, OutgoingMail
from src.integrations.mail.factory import build_mail_sender

__all__ = ["MailClientError", "MailSender", "OutgoingMail", "build_mail_sender"]
