"""
messages.py — Localised message bodies for every channel.

Catalogues exist for ``es`` (default) and ``en``; any other locale falls
back to ``es``. Channel constraints:

    SMS       one line, plain text, maps link at the end
    WhatsApp  multi-line plain text with emoji markers
    Email     subject + HTML body with a nearby-hospitals table

All user-supplied strings are HTML-escaped before they reach the email
body. The hospital line is omitted entirely when no hospital is known.
"""

from __future__ import annotations

from datetime import datetime, timezone
from html import escape
from typing import Dict, List, Optional

from backend.app.alerts.models import EventType, HospitalContact, NotificationParams
from backend.app.spatial.radius_utils import format_distance, maps_url

DEFAULT_LOCALE = "es"

_CATALOGUES: Dict[str, Dict[str, str]] = {
    "es": {
        "sms.emergency": "EMERGENCIA: {patient_name} activó alerta de pánico. {maps_url}",
        "sms.emergency_hospital": "EMERGENCIA: {patient_name} activó alerta de pánico. Hospital cercano: {hospital}. {maps_url}",
        "sms.access": "VIDA: Acceso medico a {patient_name} por {accessor_name}. {maps_url}",
        "sms.access_no_location": "VIDA: Acceso medico a {patient_name} por {accessor_name}.",
        "whatsapp.emergency": "🚨 EMERGENCIA VIDA\n\n{patient_name} activó alerta de pánico.\n\n📍 Ubicación: {maps_url}",
        "whatsapp.hospital": "\n\n🏥 Hospital cercano: {hospital}",
        "whatsapp.access": "⚠️ ALERTA VIDA\n\nAcceso médico a {patient_name} por {accessor_name}.",
        "whatsapp.location": "\n\n📍 {maps_url}",
        "whatsapp.note": "\n\n💬 {message}",
        "email.subject.emergency": "🚨 ALERTA EMERGENCIA - {patient_name} ha activado el botón de pánico",
        "email.subject.access": "⚠️ ALERTA VIDA - Acceso a información médica de {patient_name}",
        "email.title.emergency": "🚨 EMERGENCIA",
        "email.title.access": "⚠️ ALERTA VIDA",
        "email.lead.emergency": "<strong>{patient_name}</strong> ha activado el botón de pánico y necesita ayuda inmediata.",
        "email.lead.access": "Se ha accedido a la información médica de <strong>{patient_name}</strong>.",
        "email.accessor": "Acceso realizado por:",
        "email.location": "📍 Ubicación",
        "email.open_map": "Ver en Google Maps",
        "email.nearest": "Hospital más cercano:",
        "email.nearby": "Hospitales Cercanos:",
        "email.distance": "A {distance}",
        "email.call": "Llamar",
        "email.footer": "Este mensaje fue enviado automáticamente por el Sistema VIDA.",
        "default.medical_staff": "personal médico",
        "default.unknown_hospital": "No identificado",
    },
    "en": {
        "sms.emergency": "EMERGENCY: {patient_name} triggered a panic alert. {maps_url}",
        "sms.emergency_hospital": "EMERGENCY: {patient_name} triggered a panic alert. Nearest hospital: {hospital}. {maps_url}",
        "sms.access": "VIDA: Medical access to {patient_name} by {accessor_name}. {maps_url}",
        "sms.access_no_location": "VIDA: Medical access to {patient_name} by {accessor_name}.",
        "whatsapp.emergency": "🚨 VIDA EMERGENCY\n\n{patient_name} triggered a panic alert.\n\n📍 Location: {maps_url}",
        "whatsapp.hospital": "\n\n🏥 Nearest hospital: {hospital}",
        "whatsapp.access": "⚠️ VIDA ALERT\n\nMedical access to {patient_name} by {accessor_name}.",
        "whatsapp.location": "\n\n📍 {maps_url}",
        "whatsapp.note": "\n\n💬 {message}",
        "email.subject.emergency": "🚨 EMERGENCY ALERT - {patient_name} pressed the panic button",
        "email.subject.access": "⚠️ VIDA ALERT - {patient_name}'s medical information was accessed",
        "email.title.emergency": "🚨 EMERGENCY",
        "email.title.access": "⚠️ VIDA ALERT",
        "email.lead.emergency": "<strong>{patient_name}</strong> pressed the panic button and needs immediate help.",
        "email.lead.access": "The medical information of <strong>{patient_name}</strong> was accessed.",
        "email.accessor": "Accessed by:",
        "email.location": "📍 Location",
        "email.open_map": "Open in Google Maps",
        "email.nearest": "Nearest hospital:",
        "email.nearby": "Nearby Hospitals:",
        "email.distance": "{distance} away",
        "email.call": "Call",
        "email.footer": "This message was sent automatically by the VIDA System.",
        "default.medical_staff": "medical staff",
        "default.unknown_hospital": "Not identified",
    },
}


def resolve_locale(locale: Optional[str]) -> str:
    """'en-US' → 'en'; unknown or empty → 'es'."""
    if not locale:
        return DEFAULT_LOCALE
    base = locale.replace("_", "-").split("-")[0].lower()
    return base if base in _CATALOGUES else DEFAULT_LOCALE


def t(key: str, locale: Optional[str] = None, **values: object) -> str:
    catalogue = _CATALOGUES[resolve_locale(locale)]
    template = catalogue.get(key) or _CATALOGUES[DEFAULT_LOCALE][key]
    return template.format(**values)


def location_url(params: NotificationParams) -> Optional[str]:
    if not params.has_location:
        return None
    return maps_url(params.latitude, params.longitude)


def accessor_label(params: NotificationParams) -> str:
    return params.accessor_name or t("default.medical_staff", params.locale)


def hospital_label(params: NotificationParams) -> str:
    return params.nearest_hospital or t("default.unknown_hospital", params.locale)


# ── SMS ──

def build_sms_text(params: NotificationParams) -> str:
    url = location_url(params) or ""
    if params.event_type == EventType.PANIC:
        if params.nearest_hospital:
            return t(
                "sms.emergency_hospital", params.locale,
                patient_name=params.patient_name,
                hospital=params.nearest_hospital,
                maps_url=url,
            ).rstrip()
        return t(
            "sms.emergency", params.locale,
            patient_name=params.patient_name, maps_url=url,
        ).rstrip()

    key = "sms.access" if url else "sms.access_no_location"
    return t(
        key, params.locale,
        patient_name=params.patient_name,
        accessor_name=accessor_label(params),
        maps_url=url,
    )


# ── WhatsApp ──

def build_whatsapp_text(params: NotificationParams) -> str:
    url = location_url(params)
    if params.event_type == EventType.PANIC:
        body = t(
            "whatsapp.emergency", params.locale,
            patient_name=params.patient_name, maps_url=url or "",
        )
        if params.nearest_hospital:
            body += t("whatsapp.hospital", params.locale, hospital=params.nearest_hospital)
        if params.message:
            body += t("whatsapp.note", params.locale, message=params.message)
        return body

    body = t(
        "whatsapp.access", params.locale,
        patient_name=params.patient_name,
        accessor_name=accessor_label(params),
    )
    if url:
        body += t("whatsapp.location", params.locale, maps_url=url)
    return body


# ── Email ──

def build_email_subject(params: NotificationParams) -> str:
    key = (
        "email.subject.emergency"
        if params.event_type == EventType.PANIC
        else "email.subject.access"
    )
    return t(key, params.locale, patient_name=params.patient_name)


def _hospitals_table(hospitals: List[HospitalContact], locale: str) -> str:
    if not hospitals:
        return ""
    rows = []
    for h in hospitals:
        call = ""
        if h.phone:
            call = (
                f'<a href="tel:{escape(h.phone)}" style="background:#dc2626;color:white;'
                f'padding:8px 16px;border-radius:20px;text-decoration:none;">'
                f'{t("email.call", locale)}</a>'
            )
        rows.append(
            f'<tr style="border-bottom:1px solid #e5e7eb;">'
            f'<td style="padding:10px 0;"><strong>{escape(h.name)}</strong><br>'
            f'<span style="color:#6b7280;font-size:14px;">'
            f'{t("email.distance", locale, distance=format_distance(h.distance_km))}</span></td>'
            f'<td style="text-align:right;padding:10px 0;">{call}</td>'
            f'</tr>'
        )
    return (
        f'<h3 style="color:#0284c7;margin-top:20px;">{t("email.nearby", locale)}</h3>'
        f'<table style="width:100%;border-collapse:collapse;">{"".join(rows)}</table>'
    )


def build_email_html(params: NotificationParams, sent_at: Optional[datetime] = None) -> str:
    """Render the HTML email body."""
    locale = params.locale
    is_panic = params.event_type == EventType.PANIC
    patient_name = escape(params.patient_name)
    colour = "#dc2626" if is_panic else "#f59e0b"
    sent_at = sent_at or datetime.now(timezone.utc)

    title = t("email.title.emergency" if is_panic else "email.title.access", locale)
    lead = t(
        "email.lead.emergency" if is_panic else "email.lead.access",
        locale, patient_name=patient_name,
    )

    accessor_html = ""
    if not is_panic and params.accessor_name:
        accessor_html = (
            f'<p style="color:#6b7280;"><strong>{t("email.accessor", locale)}</strong> '
            f'{escape(params.accessor_name)}</p>'
        )

    location_html = ""
    url = location_url(params)
    if url:
        nearest_html = ""
        if params.nearest_hospital:
            nearest_html = (
                f'<p style="color:#6b7280;margin-top:10px;">{t("email.nearest", locale)} '
                f'<strong>{escape(params.nearest_hospital)}</strong></p>'
            )
        location_html = (
            f'<div style="background:#f9fafb;border-radius:12px;padding:16px;margin:20px 0;">'
            f'<h3 style="color:#374151;margin:0 0 10px 0;">{t("email.location", locale)}</h3>'
            f'<a href="{escape(url)}" style="display:inline-block;background:#2563eb;color:white;'
            f'padding:12px 24px;border-radius:8px;text-decoration:none;font-weight:600;">'
            f'{t("email.open_map", locale)}</a>{nearest_html}</div>'
        )

    return f"""<!DOCTYPE html>
<html>
<head><meta charset="utf-8"><meta name="viewport" content="width=device-width, initial-scale=1.0"></head>
<body style="font-family:-apple-system,BlinkMacSystemFont,'Segoe UI',Roboto,sans-serif;margin:0;padding:20px;background:#f3f4f6;">
  <div style="max-width:600px;margin:0 auto;background:white;border-radius:16px;overflow:hidden;">
    <div style="background:{colour};color:white;padding:24px;text-align:center;">
      <h1 style="margin:0;font-size:24px;">{title}</h1>
    </div>
    <div style="padding:24px;">
      <p style="font-size:18px;color:#1f2937;margin-bottom:20px;">{lead}</p>
      {accessor_html}
      {location_html}
      {_hospitals_table(params.nearby_hospitals, locale)}
      <div style="margin-top:24px;padding-top:20px;border-top:1px solid #e5e7eb;">
        <p style="color:#9ca3af;font-size:14px;margin:0;">
          {t("email.footer", locale)}<br>{sent_at.strftime('%Y-%m-%d %H:%M UTC')}
        </p>
      </div>
    </div>
  </div>
</body>
</html>
"""


def build_email_text(params: NotificationParams) -> str:
    """Plain-text alternative part for SMTP."""
    lines = [build_email_subject(params), ""]
    lines.append(build_whatsapp_text(params))
    for h in params.nearby_hospitals:
        phone = f" ({h.phone})" if h.phone else ""
        lines.append(f"- {h.name}: {format_distance(h.distance_km)}{phone}")
    return "\n".join(lines)
