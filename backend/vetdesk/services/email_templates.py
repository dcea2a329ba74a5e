"""
Discharge email templates.

One branded layout (header colour, logo, header/footer text per clinic)
rendered with Jinja2. The body uses the structured discharge summary
when available and falls back to the plain-text summary otherwise.
"""

import html
import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, Optional

from jinja2 import Environment, BaseLoader, select_autoescape


logger = logging.getLogger(__name__)


DEFAULT_PRIMARY_COLOR = "#2563EB"
DEFAULT_CLINIC_NAME = "Your Veterinary Clinic"

_env = Environment(loader=BaseLoader(), autoescape=select_autoescape(default=True))


@dataclass
class ClinicBranding:
    clinic_name: str = DEFAULT_CLINIC_NAME
    clinic_phone: str = ""
    clinic_email: str = ""
    primary_color: str = DEFAULT_PRIMARY_COLOR
    logo_url: Optional[str] = None
    email_header_text: Optional[str] = None
    email_footer_text: Optional[str] = None


def create_clinic_branding(
    clinic_name: Optional[str] = None,
    clinic_phone: Optional[str] = None,
    clinic_email: Optional[str] = None,
    primary_color: Optional[str] = None,
    logo_url: Optional[str] = None,
    email_header_text: Optional[str] = None,
    email_footer_text: Optional[str] = None,
) -> ClinicBranding:
    """Fill unset branding fields with defaults."""
    return ClinicBranding(
        clinic_name=clinic_name or DEFAULT_CLINIC_NAME,
        clinic_phone=clinic_phone or "",
        clinic_email=clinic_email or "",
        primary_color=primary_color or DEFAULT_PRIMARY_COLOR,
        logo_url=logo_url or None,
        email_header_text=email_header_text or None,
        email_footer_text=email_footer_text or None,
    )


DISCHARGE_EMAIL_TEMPLATE = """<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><title>{{ subject }}</title></head>
<body style="margin:0;padding:0;font-family:Arial,Helvetica,sans-serif;background:#f4f4f5;">
<table width="100%" cellpadding="0" cellspacing="0" style="max-width:600px;margin:0 auto;background:#ffffff;">
  <tr>
    <td style="background:{{ branding.primary_color }};padding:24px 30px;color:#ffffff;">
      {% if branding.logo_url %}<img src="{{ branding.logo_url }}" alt="{{ branding.clinic_name }}" style="max-height:48px;"><br>{% endif %}
      <h1 style="margin:8px 0 0;font-size:22px;">{{ branding.clinic_name }}</h1>
      {% if branding.email_header_text %}<p style="margin:4px 0 0;">{{ branding.email_header_text }}</p>{% endif %}
    </td>
  </tr>
  <tr>
    <td style="padding:24px 30px;color:#111827;">
      <h2 style="margin:0 0 4px;">Discharge Instructions for {{ patient_name }}</h2>
      <p style="margin:0 0 16px;color:#6b7280;">{{ date }}{% if species or breed %} &middot; {{ [species, breed] | select | join(", ") }}{% endif %}</p>
      {% if structured %}
        {% if structured.visitSummary %}<h3>Visit Summary</h3><p>{{ structured.visitSummary }}</p>{% endif %}
        {% if structured.diagnosis %}<h3>Diagnosis</h3><p>{{ structured.diagnosis }}</p>{% endif %}
        {% if structured.medications %}
        <h3>Medications</h3>
        <ul>{% for med in structured.medications %}<li><strong>{{ med.name }}</strong>{% if med.instructions %}: {{ med.instructions }}{% endif %}</li>{% endfor %}</ul>
        {% endif %}
        {% if structured.homeCare %}
        <h3>Home Care</h3>
        <ul>{% for item in structured.homeCare %}<li>{{ item }}</li>{% endfor %}</ul>
        {% endif %}
        {% if structured.warningSigns %}
        <h3>When to Call Us</h3>
        <ul>{% for item in structured.warningSigns %}<li>{{ item }}</li>{% endfor %}</ul>
        {% endif %}
        {% if structured.followUp %}<h3>Follow-up</h3><p>{{ structured.followUp }}</p>{% endif %}
      {% else %}
        {% for paragraph in paragraphs %}<p>{{ paragraph }}</p>{% endfor %}
      {% endif %}
    </td>
  </tr>
  <tr>
    <td style="background:#f9fafb;padding:20px 30px;color:#6b7280;font-size:13px;">
      {% if branding.email_footer_text %}<p>{{ branding.email_footer_text }}</p>{% endif %}
      <p>Questions? Contact {{ branding.clinic_name }}{% if branding.clinic_phone %} at {{ branding.clinic_phone }}{% endif %}{% if branding.clinic_email %} or {{ branding.clinic_email }}{% endif %}.</p>
    </td>
  </tr>
</table>
</body>
</html>
"""


def strip_html(value: str) -> str:
    """Collapse HTML markup to a single line of plain text."""
    text = re.sub(r"<[^>]*>", " ", value)
    text = html.unescape(text).replace("\xa0", " ")
    return re.sub(r"\s+", " ", text).strip()


def html_to_plain_text(value: str) -> str:
    """Plain-text alternative for an HTML email, keeping block breaks."""
    text = re.sub(r"(?is)<(style|script|title)[^>]*>.*?</\1>", "", value)
    text = re.sub(r"(?i)<li[^>]*>", "\n- ", text)
    text = re.sub(r"(?i)<br\s*/?>|</(p|h[1-6]|tr|ul|div)>", "\n", text)
    text = re.sub(r"<[^>]*>", "", text)
    text = html.unescape(text).replace("\xa0", " ")
    lines = [re.sub(r"[ \t]+", " ", line).strip() for line in text.splitlines()]
    return re.sub(r"\n{3,}", "\n\n", "\n".join(lines)).strip()


def render_discharge_email(
    summary_content: str,
    patient_name: str,
    species: Optional[str],
    breed: Optional[str],
    branding: ClinicBranding,
    structured_content: Optional[Dict[str, Any]] = None,
) -> Dict[str, str]:
    """
    Render the discharge email for one patient.

    Returns:
        {"subject": str, "html": str, "text": str}
    """
    subject = f"Discharge Instructions for {patient_name}"
    paragraphs = [p.strip() for p in summary_content.split("\n\n") if p.strip()]

    html_content = _env.from_string(DISCHARGE_EMAIL_TEMPLATE).render(
        subject=subject,
        patient_name=patient_name,
        species=species,
        breed=breed,
        branding=branding,
        structured=structured_content or None,
        paragraphs=paragraphs,
        date="Recent Visit",
    )

    return {"subject": subject, "html": html_content, "text": html_to_plain_text(html_content)}
