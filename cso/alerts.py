from __future__ import annotations

import smtplib
from email.message import EmailMessage

from . import db
from .settings import Settings, settings


def _smtp_configured(cfg: Settings) -> bool:
    return cfg.enable_email and all(
        (cfg.smtp_host, cfg.smtp_port, cfg.smtp_user, cfg.smtp_password, cfg.email_from, cfg.email_to)
    )


def notify_dispatch_failure(context: str, query_id: str, detail: str, cfg: Settings = settings) -> bool:
    """Mail the operator that a cluster operation failed.

    Opt-in through CSO_ENABLE_EMAIL plus the CSO_SMTP_* and CSO_EMAIL_* settings.
    Returns True only when the message was handed to the SMTP server.
    """
    if not _smtp_configured(cfg):
        return False

    msg = EmailMessage()
    msg["From"] = cfg.email_from
    msg["To"] = cfg.email_to
    msg["Subject"] = f"FAILED: {context} on {cfg.cluster_name}"
    msg.set_content(f"Cluster: {cfg.cluster_name}\nOperation: {context}\nQuery: {query_id}\nDetail: {detail}\n")

    try:
        with smtplib.SMTP(cfg.smtp_host, cfg.smtp_port, timeout=10) as smtp:
            smtp.starttls()
            smtp.login(cfg.smtp_user, cfg.smtp_password)
            smtp.send_message(msg)
    except (smtplib.SMTPException, OSError) as e:
        db.log_event("WARN", f"Failure alert for {query_id} not sent: {type(e).__name__}: {e}", context=context)
        return False
    return True
