"""
Tests for the channel providers.

Covers:
    - Twilio / MSG91 SMS request shape and error mapping
    - WABA template-first delivery with free-text fallback
    - Twilio WhatsApp content templates
    - Resend and SMTP email
    - FallbackProvider and guarded_send
    - Provider factory
    - Phone normalisation and message rendering

HTTP providers run against httpx.MockTransport; nothing leaves the process.

Run with: pytest tests/test_channels.py -v
"""

from __future__ import annotations

import asyncio
import base64
import json
import smtplib
from typing import Callable, List
from urllib.parse import parse_qs

import httpx
import pytest

from backend.app.alerts.channels import email_alert
from backend.app.alerts.channels.base import FallbackProvider, guarded_send
from backend.app.alerts.channels.email_alert import ResendEmailProvider, SMTPEmailProvider
from backend.app.alerts.channels.factory import build_channel, build_channel_providers
from backend.app.alerts.channels.messages import (
    build_email_html,
    build_email_subject,
    build_email_text,
    build_sms_text,
    build_whatsapp_text,
    resolve_locale,
)
from backend.app.alerts.channels.phone_utils import (
    format_phone_for_waba,
    normalize_to_e164,
)
from backend.app.alerts.channels.sms_gateway import Msg91SMSProvider, TwilioSMSProvider
from backend.app.alerts.channels.whatsapp import TwilioWhatsAppProvider, WABAProvider
from backend.app.alerts.models import EventType, HospitalContact, NotificationParams
from backend.app.core.config import Settings

MAPS = "https://www.google.com/maps?q=19.4326,-99.1332"


def _make_params(**overrides) -> NotificationParams:
    values = dict(
        to="55 1234 5678",
        patient_name="Ana García",
        latitude=19.4326,
        longitude=-99.1332,
        event_type=EventType.PANIC,
        nearest_hospital="Instituto Nacional de Enfermedades Respiratorias",
    )
    values.update(overrides)
    return NotificationParams(**values)


def _mock_client(handler: Callable[[httpx.Request], httpx.Response]) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class _Recorder:
    """MockTransport handler that replays scripted responses and keeps requests."""

    def __init__(self, *responses: httpx.Response):
        self.responses = list(responses)
        self.requests: List[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.responses.pop(0)

    def form(self, index: int = 0):
        return {k: v[0] for k, v in parse_qs(self.requests[index].content.decode()).items()}

    def json(self, index: int = 0):
        return json.loads(self.requests[index].content)


# ═══════════════════════════════════════════════════════════════════════════
# Section 1: SMS
# ═══════════════════════════════════════════════════════════════════════════

class TestTwilioSMS:

    @pytest.mark.asyncio
    async def test_sends_form_with_basic_auth(self):
        rec = _Recorder(httpx.Response(201, json={"sid": "SM123", "status": "queued"}))
        provider = TwilioSMSProvider("AC1", "secret", "+15550001111", client=_mock_client(rec))

        result = await provider.send(_make_params())

        assert result.success and result.message_id == "SM123"
        assert result.provider == "twilio-sms"
        request = rec.requests[0]
        assert str(request.url).endswith("/Accounts/AC1/Messages.json")
        expected = base64.b64encode(b"AC1:secret").decode()
        assert request.headers["Authorization"] == f"Basic {expected}"
        form = rec.form()
        assert form["To"] == "+525512345678"
        assert form["From"] == "+15550001111"
        assert form["Body"].startswith("EMERGENCIA: Ana García")
        assert form["Body"].endswith(MAPS)

    @pytest.mark.asyncio
    async def test_error_body_becomes_failed_result(self):
        rec = _Recorder(httpx.Response(400, json={"code": 21211, "message": "Invalid 'To' Phone Number"}))
        provider = TwilioSMSProvider("AC1", "secret", "+15550001111", client=_mock_client(rec))

        result = await provider.send(_make_params())

        assert not result.success
        assert result.error == "Invalid 'To' Phone Number"

    @pytest.mark.asyncio
    async def test_network_error_becomes_failed_result(self):
        def handler(request):
            raise httpx.ConnectError("connection refused", request=request)

        provider = TwilioSMSProvider("AC1", "secret", "+1555", client=_mock_client(handler))
        result = await provider.send(_make_params())
        assert not result.success
        assert "connection refused" in result.error

    @pytest.mark.asyncio
    async def test_unconfigured_does_not_call_network(self):
        rec = _Recorder()
        provider = TwilioSMSProvider("", "", "", client=_mock_client(rec))
        assert not provider.is_available()
        result = await provider.send(_make_params())
        assert not result.success
        assert rec.requests == []


class TestMsg91SMS:

    @pytest.mark.asyncio
    async def test_flow_payload(self):
        rec = _Recorder(httpx.Response(200, json={"type": "success", "message": "req-42"}))
        provider = Msg91SMSProvider("key", "tmpl-1", client=_mock_client(rec))

        result = await provider.send(_make_params())

        assert result.success and result.message_id == "req-42"
        assert rec.requests[0].headers["authkey"] == "key"
        body = rec.json()
        assert body["template_id"] == "tmpl-1"
        recipient = body["recipients"][0]
        assert recipient["mobiles"] == "525512345678"
        assert recipient["maps_url"] == MAPS
        assert recipient["hospital"].startswith("Instituto")
        assert recipient["event"] == "PANIC"

    @pytest.mark.asyncio
    async def test_type_error_with_http_200_is_failure(self):
        rec = _Recorder(httpx.Response(200, json={"type": "error", "message": "Invalid template"}))
        provider = Msg91SMSProvider("key", "tmpl-1", client=_mock_client(rec))
        result = await provider.send(_make_params())
        assert not result.success
        assert result.error == "Invalid template"

    def test_requires_key_and_template(self):
        assert not Msg91SMSProvider("key", "").is_available()
        assert Msg91SMSProvider("key", "tmpl").is_available()


# ═══════════════════════════════════════════════════════════════════════════
# Section 2: WhatsApp
# ═══════════════════════════════════════════════════════════════════════════

class TestWABA:

    def _provider(self, rec, **kw) -> WABAProvider:
        kw.setdefault("template_emergency", "vida_emergency")
        return WABAProvider("1234", "token", client=_mock_client(rec), **kw)

    @pytest.mark.asyncio
    async def test_template_first(self):
        rec = _Recorder(httpx.Response(200, json={"messages": [{"id": "wamid.A"}]}))
        result = await self._provider(rec).send(_make_params(nearest_hospital=None))

        assert result.success and result.message_id == "wamid.A"
        assert len(rec.requests) == 1
        request = rec.requests[0]
        assert str(request.url) == "https://graph.facebook.com/v18.0/1234/messages"
        assert request.headers["Authorization"] == "Bearer token"
        body = rec.json()
        assert body["to"] == "525512345678"
        assert body["type"] == "template"
        assert body["template"]["language"] == {"code": "es_MX"}
        texts = [p["text"] for p in body["template"]["components"][0]["parameters"]]
        assert texts == ["Ana García", MAPS, "No identificado"]

    @pytest.mark.asyncio
    async def test_rejected_template_falls_back_to_text(self):
        rec = _Recorder(
            httpx.Response(400, json={"error": {"message": "Template name does not exist"}}),
            httpx.Response(200, json={"messages": [{"id": "wamid.B"}]}),
        )
        result = await self._provider(rec).send(_make_params())

        assert result.success and result.message_id == "wamid.B"
        assert [rec.json(i)["type"] for i in range(2)] == ["template", "text"]
        assert "🏥" in rec.json(1)["text"]["body"]

    @pytest.mark.asyncio
    async def test_text_failure_reports_graph_error(self):
        rec = _Recorder(
            httpx.Response(400, json={"error": {"message": "bad template"}}),
            httpx.Response(401, json={"error": {"message": "Invalid OAuth access token"}}),
        )
        result = await self._provider(rec).send(_make_params())
        assert not result.success
        assert result.error == "Invalid OAuth access token"

    @pytest.mark.asyncio
    async def test_hung_template_leaves_time_for_text(self):
        sent_types = []

        async def handler(request):
            kind = json.loads(request.content)["type"]
            sent_types.append(kind)
            if kind == "template":
                await asyncio.sleep(5)
            return httpx.Response(200, json={"messages": [{"id": "wamid.T"}]})

        provider = self._provider(handler, timeout_seconds=1.0)
        assert provider.template_timeout_seconds == pytest.approx(0.4)

        result = await guarded_send(provider, _make_params(), 1.0)

        assert result.success and result.message_id == "wamid.T"
        assert sent_types == ["template", "text"]

    @pytest.mark.asyncio
    async def test_no_template_configured_sends_text(self):

        rec = _Recorder(httpx.Response(200, json={"messages": [{"id": "wamid.C"}]}))
        provider = WABAProvider("1234", "token", client=_mock_client(rec))
        result = await provider.send(_make_params(event_type=EventType.QR_ACCESS, accessor_name="Dra. Ruiz"))
        assert result.success
        assert rec.json()["type"] == "text"
        assert "Dra. Ruiz" in rec.json()["text"]["body"]


class TestTwilioWhatsApp:

    @pytest.mark.asyncio
    async def test_content_template_for_panic(self):
        rec = _Recorder(httpx.Response(201, json={"sid": "MM1"}))
        provider = TwilioWhatsAppProvider(
            "AC1", "secret", "+14155238886", template_sid="HX99", client=_mock_client(rec),
        )
        result = await provider.send(_make_params())

        assert result.success and result.message_id == "MM1"
        form = rec.form()
        assert form["From"] == "whatsapp:+14155238886"
        assert form["To"] == "whatsapp:+525512345678"
        assert form["ContentSid"] == "HX99"
        variables = json.loads(form["ContentVariables"])
        assert variables["1"] == "Ana García"
        assert variables["2"] == MAPS
        assert "Body" not in form

    @pytest.mark.asyncio
    async def test_template_failure_falls_back_to_body(self):
        rec = _Recorder(
            httpx.Response(400, json={"message": "Content not approved"}),
            httpx.Response(201, json={"sid": "MM2"}),
        )
        provider = TwilioWhatsAppProvider(
            "AC1", "secret", "+14155238886", template_sid="HX99", client=_mock_client(rec),
        )
        result = await provider.send(_make_params())
        assert result.success and result.message_id == "MM2"
        assert "Body" in rec.form(1)

    @pytest.mark.asyncio
    async def test_access_event_never_uses_template(self):
        rec = _Recorder(httpx.Response(201, json={"sid": "MM3"}))
        provider = TwilioWhatsAppProvider(
            "AC1", "secret", "+14155238886", template_sid="HX99", client=_mock_client(rec),
        )
        await provider.send(_make_params(event_type=EventType.QR_ACCESS))
        assert "ContentSid" not in rec.form()


# ═══════════════════════════════════════════════════════════════════════════
# Section 3: Email
# ═══════════════════════════════════════════════════════════════════════════

class TestResend:

    @pytest.mark.asyncio
    async def test_sends_html(self):
        rec = _Recorder(httpx.Response(200, json={"id": "re_1"}))
        provider = ResendEmailProvider("re_key", "vida@example.org", client=_mock_client(rec))

        result = await provider.send(_make_params(to="carlos@example.com"))

        assert result.success and result.message_id == "re_1"
        assert rec.requests[0].headers["Authorization"] == "Bearer re_key"
        body = rec.json()
        assert body["to"] == ["carlos@example.com"]
        assert body["subject"].startswith("🚨 ALERTA EMERGENCIA")
        assert "<html>" in body["html"]

    @pytest.mark.asyncio
    async def test_validation_error(self):
        rec = _Recorder(httpx.Response(422, json={"name": "validation_error", "message": "Invalid `to` field"}))
        provider = ResendEmailProvider("re_key", "vida@example.org", client=_mock_client(rec))
        result = await provider.send(_make_params(to="nope"))
        assert not result.success
        assert result.error == "Invalid `to` field"


class _FakeSMTP:
    sent: list = []
    fail_with = None

    def __init__(self, host, port, timeout=None):
        self.host = host

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def starttls(self):
        pass

    def login(self, user, password):
        pass

    def send_message(self, msg):
        if _FakeSMTP.fail_with is not None:
            raise _FakeSMTP.fail_with
        _FakeSMTP.sent.append(msg)


class TestSMTP:

    @pytest.fixture(autouse=True)
    def fake_smtp(self, monkeypatch):
        _FakeSMTP.sent = []
        _FakeSMTP.fail_with = None
        monkeypatch.setattr(email_alert.smtplib, "SMTP", _FakeSMTP)

    @pytest.mark.asyncio
    async def test_delivers_multipart_message(self):
        provider = SMTPEmailProvider("smtp.example.org", from_address="vida@example.org")
        result = await provider.send(_make_params(to="carlos@example.com"))

        assert result.success
        assert result.message_id.endswith("@smtp.example.org")
        msg = _FakeSMTP.sent[0]
        assert msg["To"] == "carlos@example.com"
        assert msg.get_body(preferencelist=("html",)) is not None

    @pytest.mark.asyncio
    async def test_smtp_error_is_failure(self):
        _FakeSMTP.fail_with = smtplib.SMTPRecipientsRefused({"x": (550, b"no")})
        provider = SMTPEmailProvider("smtp.example.org", from_address="vida@example.org")
        result = await provider.send(_make_params(to="x"))
        assert not result.success

    def test_unavailable_without_host(self):
        assert not SMTPEmailProvider(None, from_address="vida@example.org").is_available()


# ═══════════════════════════════════════════════════════════════════════════
# Section 4: Fallback + guarded send
# ═══════════════════════════════════════════════════════════════════════════

class TestFallbackProvider:

    def test_name_and_availability(self, fake_provider):
        p = fake_provider("a", available=False)
        s = fake_provider("b")
        fb = FallbackProvider(p, s, channel="sms")
        assert fb.get_name() == "a+fallback:b"
        assert fb.is_available()
        s.available = False
        assert not fb.is_available()

    @pytest.mark.asyncio
    async def test_primary_success_skips_secondary(self, fake_provider):
        p, s = fake_provider("a"), fake_provider("b")
        result = await FallbackProvider(p, s).send(_make_params())
        assert result.provider == "a"
        assert s.calls == []

    @pytest.mark.asyncio
    @pytest.mark.parametrize("outcome", ["fail", "raise"])
    async def test_primary_failure_uses_secondary(self, fake_provider, outcome):
        p, s = fake_provider("a", outcome=outcome), fake_provider("b")
        result = await FallbackProvider(p, s).send(_make_params())
        assert result.success and result.provider == "b"
        assert len(p.calls) == 1

    @pytest.mark.asyncio
    async def test_primary_timeout_uses_secondary(self, fake_provider):
        p, s = fake_provider("a", delay=5), fake_provider("b")
        result = await FallbackProvider(p, s, timeout_seconds=0.05).send(_make_params())
        assert result.success and result.provider == "b"

    @pytest.mark.asyncio
    async def test_unavailable_primary_is_not_called(self, fake_provider):
        p, s = fake_provider("a", available=False), fake_provider("b")
        result = await FallbackProvider(p, s).send(_make_params())
        assert result.provider == "b"
        assert p.calls == []

    @pytest.mark.asyncio
    async def test_primary_error_kept_when_secondary_unavailable(self, fake_provider):
        p, s = fake_provider("a", outcome="fail"), fake_provider("b", available=False)
        result = await FallbackProvider(p, s).send(_make_params())
        assert not result.success
        assert result.error == "a rejected"

    @pytest.mark.asyncio
    async def test_nothing_available(self, fake_provider):
        p, s = fake_provider("a", available=False), fake_provider("b", available=False)
        result = await FallbackProvider(p, s, channel="sms").send(_make_params())
        assert not result.success
        assert result.error == "No sms provider available"

    @pytest.mark.asyncio
    async def test_both_fail_reports_secondary(self, fake_provider):
        p, s = fake_provider("a", outcome="fail"), fake_provider("b", outcome="fail")
        result = await FallbackProvider(p, s).send(_make_params())
        assert not result.success
        assert result.error == "b rejected"


class TestGuardedSend:

    @pytest.mark.asyncio
    async def test_timeout(self, fake_provider):
        result = await guarded_send(fake_provider("slow", delay=5), _make_params(), 0.05)
        assert not result.success
        assert result.error.startswith("Timed out after")

    @pytest.mark.asyncio
    async def test_exception(self, fake_provider):
        result = await guarded_send(fake_provider("bad", outcome="raise"), _make_params(), 1)
        assert not result.success
        assert "exploded" in result.error


# ═══════════════════════════════════════════════════════════════════════════
# Section 5: Factory
# ═══════════════════════════════════════════════════════════════════════════

class TestFactory:

    def _settings(self, **overrides) -> Settings:
        return Settings(_env_file=None, **overrides)

    def test_defaults_are_simulated(self):
        providers = build_channel_providers(self._settings())
        assert providers.sms.get_name() == "twilio-sms"
        assert providers.whatsapp.get_name() == "twilio-whatsapp"
        assert providers.email.get_name() == "resend"
        assert not providers.sms.is_available()

    def test_fallback_wraps_other_implementation(self):
        s = self._settings(SMS_PROVIDER="msg91", SMS_FALLBACK_ENABLED=True)
        provider = build_channel("sms", s.SMS_PROVIDER, True, s)
        assert isinstance(provider, FallbackProvider)
        assert provider.get_name() == "msg91+fallback:twilio-sms"

    def test_waba_primary(self):
        s = self._settings(WABA_PHONE_NUMBER_ID="1", WABA_ACCESS_TOKEN="t")
        provider = build_channel("whatsapp", "WABA", False, s)
        assert provider.get_name() == "waba"
        assert provider.is_available()

    def test_unknown_provider_rejected(self):
        with pytest.raises(ValueError, match="Unknown sms provider"):
            build_channel("sms", "carrier-pigeon", False, self._settings())


# ═══════════════════════════════════════════════════════════════════════════
# Section 6: Phone numbers + message text
# ═══════════════════════════════════════════════════════════════════════════

class TestPhoneNormalisation:

    @pytest.mark.parametrize("raw,expected", [
        ("55 1234-5678", "+525512345678"),
        ("525512345678", "+525512345678"),
        ("+52 (55) 1234 5678", "+525512345678"),
        ("55+12345678", "+525512345678"),
        ("+52 1 55 1234 5678", "+5215512345678"),
    ])
    def test_e164(self, raw, expected):
        assert normalize_to_e164(raw) == expected

    def test_waba_drops_plus(self):
        assert format_phone_for_waba("55 1234 5678") == "525512345678"


class TestMessages:

    def test_sms_with_and_without_hospital(self):
        with_h = build_sms_text(_make_params())
        without = build_sms_text(_make_params(nearest_hospital=None))
        assert "Hospital cercano" in with_h
        assert "Hospital" not in without
        assert without == f"EMERGENCIA: Ana García activó alerta de pánico. {MAPS}"

    def test_access_sms_without_location(self):
        text = build_sms_text(_make_params(
            event_type=EventType.QR_ACCESS, latitude=None, longitude=None,
        ))
        assert text == "VIDA: Acceso medico a Ana García por personal médico."

    def test_whatsapp_hospital_line_only_when_known(self):
        assert "🏥" in build_whatsapp_text(_make_params())
        assert "🏥" not in build_whatsapp_text(_make_params(nearest_hospital=None))

    def test_english_catalogue(self):
        params = _make_params(locale="en-US", nearest_hospital=None)
        assert build_sms_text(params).startswith("EMERGENCY: Ana García")
        assert build_email_subject(params).startswith("🚨 EMERGENCY ALERT")

    def test_unknown_locale_falls_back_to_spanish(self):
        assert resolve_locale("fr") == "es"
        assert resolve_locale(None) == "es"
        assert resolve_locale("EN_gb") == "en"

    def test_email_html_escapes_user_text(self):
        params = _make_params(
            patient_name="<script>alert(1)</script>",
            nearby_hospitals=[HospitalContact("Clínica & Co", 2.345, "55 1111 2222")],
        )
        html = build_email_html(params)
        assert "<script>" not in html
        assert "&lt;script&gt;" in html
        assert "Clínica &amp; Co" in html
        assert 'href="tel:55 1111 2222"' in html
        assert "A 2.3 km" in html

    def test_short_distances_render_in_metres(self):
        params = _make_params(
            locale="en",
            nearby_hospitals=[HospitalContact("Cruz Roja Polanco", 0.45, None)],
        )
        assert "450 m away" in build_email_html(params)
        assert "- Cruz Roja Polanco: 450 m" in build_email_text(params)
