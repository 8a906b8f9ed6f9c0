"""Report email delivery.

Renders a report as HTML and sends it through a Resend-compatible HTTP API.
Delivery problems are reported as ``False``, never raised.
"""
import html
import logging
from typing import List, Optional

import httpx

from maraude_tracker.config import settings
from maraude_tracker.models.db_models import MaraudeReport

logger = logging.getLogger(__name__)


def default_subject(report: MaraudeReport) -> str:
    return f"Compte-rendu de maraude - {report.maraude_action.title}"


def _e(value) -> str:
    return html.escape(str(value)) if value is not None else ""


def render_report_html(report: MaraudeReport, message: Optional[str], sender_name: str, sender_email: str) -> str:
    action = report.maraude_action
    association = action.association if action else None

    distributions = "".join(
        f"<li>{_e(d.distribution_type.name if d.distribution_type else 'Inconnu')} : {d.quantity}"
        f"{f' ({_e(d.notes)})' if d.notes else ''}</li>"
        for d in report.distributions
    )

    alerts = ""
    if report.alerts:
        items = "".join(
            f"<li><strong>{_e(a.severity.value.upper())}</strong> - {_e(a.situation_description)}</li>"
            for a in report.alerts
        )
        alerts = f"<h3>Alertes :</h3><ul>{items}</ul>"

    personal = ""
    if message:
        personal = (
            f"<hr><p><strong>Message personnalisé de {_e(sender_name)} :</strong></p>"
            f"<p>{_e(message)}</p>"
        )

    return (
        '<h2 style="color:#2563eb;">Compte-rendu de maraude</h2>'
        f"<p><strong>Maraude :</strong> {_e(action.title if action else '')}</p>"
        f"<p><strong>Association :</strong> {_e(association.name if association else '')}</p>"
        f"<p><strong>Date :</strong> {_e(report.report_date.isoformat())}</p>"
        f"<p><strong>Bénéficiaires :</strong> {report.beneficiaries_count or 0}</p>"
        f"<p><strong>Bénévoles :</strong> {report.volunteers_count or 0}</p>"
        f"<h3>Distributions :</h3><ul>{distributions}</ul>"
        f"{alerts}"
        "<h3>Notes générales :</h3>"
        f"<p>{_e(report.general_notes) or 'Aucune note.'}</p>"
        f"{personal}"
        f'<p style="margin-top:20px;color:#6b7280;">Envoyé par {_e(sender_name)} &lt;{_e(sender_email)}&gt;</p>'
    )


async def send_report_email(
    report: MaraudeReport,
    recipients: List[str],
    subject: str,
    message: Optional[str],
    sender_name: str,
    sender_email: str,
) -> bool:
    """Send the report to ``recipients``. Returns True when the API accepted it."""
    if not settings.EMAIL_API_KEY:
        logger.warning("Email API key not configured; report %s not sent", report.id)
        return False

    payload = {
        "from": settings.EMAIL_FROM,
        "to": list(recipients),
        "subject": subject,
        "html": render_report_html(report, message, sender_name, sender_email),
        "reply_to": sender_email,
    }
    headers = {
        "Authorization": f"Bearer {settings.EMAIL_API_KEY}",
        "Content-Type": "application/json",
    }

    try:
        async with httpx.AsyncClient(timeout=settings.EMAIL_TIMEOUT_SECONDS) as client:
            response = await client.post(settings.EMAIL_API_URL, headers=headers, json=payload)
    except httpx.TimeoutException:
        logger.warning("Email API timeout for report %s", report.id)
        return False
    except httpx.HTTPError as e:
        logger.warning("Email API request failed for report %s: %s", report.id, e.__class__.__name__)
        return False

    if response.status_code >= 300:
        logger.warning("Email API returned %s for report %s", response.status_code, report.id)
        return False

    logger.info("Report %s emailed to %d recipient(s)", report.id, len(recipients))
    return True
