import asyncio
import json

import httpx
import pytest

from finamanage.clients import ai_gateway, asaas, pwned_passwords, supabase_auth, whatsapp
from finamanage.core.config import settings

_RealAsyncClient = httpx.AsyncClient


@pytest.fixture
def transport(monkeypatch):
    """Troca o AsyncClient dos clients por um que responde via `handler(request)`."""
    requests = []

    def install(handler):
        def recording(request):
            requests.append(request)
            return handler(request)

        def factory(*args, **kwargs):
            kwargs["transport"] = httpx.MockTransport(recording)
            return _RealAsyncClient(*args, **kwargs)

        monkeypatch.setattr(httpx, "AsyncClient", factory)
        return requests

    return install


@pytest.fixture(autouse=True)
def upstream_settings(monkeypatch):
    monkeypatch.setattr(settings, "ASAAS_API_URL", "https://asaas.test/v3")
    monkeypatch.setattr(settings, "ASAAS_API_KEY", "asaas-key")
    monkeypatch.setattr(settings, "WHATSAPP_API_BASE_URL", "https://graph.test/v17.0")
    monkeypatch.setattr(settings, "WHATSAPP_PHONE_NUMBER_ID", "1234")
    monkeypatch.setattr(settings, "WHATSAPP_ACCESS_TOKEN", "wa-token")
    monkeypatch.setattr(settings, "SUPABASE_URL", "https://project.supabase.test")
    monkeypatch.setattr(settings, "PWNED_PASSWORDS_URL", "https://pwned.test/range")
    monkeypatch.setattr(settings, "AI_GATEWAY_URL", "https://ai.test/v1/chat/completions")
    monkeypatch.setattr(settings, "AI_GATEWAY_API_KEY", "ai-key")


def test_whatsapp_send_text(transport):
    requests = transport(lambda req: httpx.Response(200, json={"messages": [{"id": "wamid.1"}]}))

    resp = asyncio.run(whatsapp.send_text("5511999999999", "Olá"))

    assert whatsapp.message_id(resp) == "wamid.1"
    sent = requests[0]
    assert str(sent.url) == "https://graph.test/v17.0/1234/messages"
    assert sent.headers["Authorization"] == "Bearer wa-token"
    assert json.loads(sent.content) == {"messaging_product": "whatsapp", "to": "5511999999999",
                                        "type": "text", "text": {"body": "Olá"}}


def test_whatsapp_buttons_are_capped_at_three(transport):
    requests = transport(lambda req: httpx.Response(200, json={"messages": []}))
    buttons = [{"id": f"b{i}", "title": f"B{i}"} for i in range(5)]

    asyncio.run(whatsapp.send_buttons("5511999999999", "Escolha", buttons))

    action = json.loads(requests[0].content)["interactive"]["action"]
    assert [b["reply"]["id"] for b in action["buttons"]] == ["b0", "b1", "b2"]


def test_whatsapp_error(transport):
    transport(lambda req: httpx.Response(401, json={"error": {"message": "bad token"}}))
    with pytest.raises(whatsapp.WhatsAppHttpError):
        asyncio.run(whatsapp.send_text("5511999999999", "Olá"))


def test_asaas_business_error_message(transport):
    requests = transport(lambda req: httpx.Response(400, json={"errors": [{"description": "CPF inválido"}]}))

    with pytest.raises(asaas.AsaasHttpError) as exc:
        asyncio.run(asaas.create_subscription({"customer": "cus_1"}))

    assert str(exc.value) == "CPF inválido"
    assert requests[0].headers["access_token"] == "asaas-key"


def test_asaas_list_payments(transport):
    requests = transport(lambda req: httpx.Response(200, json={"data": [{"id": "pay_1"}]}))
    assert asyncio.run(asaas.list_subscription_payments("sub_1")) == [{"id": "pay_1"}]
    assert requests[0].url.params["subscription"] == "sub_1"


def test_asaas_missing_qrcode_is_none(transport):
    transport(lambda req: httpx.Response(404, json={}))
    assert asyncio.run(asaas.get_pix_qrcode("pay_1")) is None


def test_pwned_range_request(transport):
    requests = transport(lambda req: httpx.Response(200, text="ABC:1"))

    assert asyncio.run(pwned_passwords.fetch_range("5BAA6")) == "ABC:1"
    assert str(requests[0].url) == "https://pwned.test/range/5BAA6"
    assert requests[0].headers["Add-Padding"] == "true"

    with pytest.raises(ValueError):
        asyncio.run(pwned_passwords.fetch_range("5BAA61E4"))


@pytest.mark.parametrize("status, expected", [(200, True), (400, False), (401, False)])
def test_supabase_verify_password(transport, status, expected):
    requests = transport(lambda req: httpx.Response(status, json={}))
    assert asyncio.run(supabase_auth.verify_password("ana@example.com", "x")) is expected
    assert requests[0].url.params["grant_type"] == "password"


def test_supabase_verify_password_upstream_failure(transport):
    transport(lambda req: httpx.Response(500))
    with pytest.raises(supabase_auth.SupabaseAuthError):
        asyncio.run(supabase_auth.verify_password("ana@example.com", "x"))


def test_ai_gateway_limits(transport):
    transport(lambda req: httpx.Response(429, json={}))
    with pytest.raises(ai_gateway.AiGatewayRateLimited):
        asyncio.run(ai_gateway.extract_receipt("aGVsbG8="))

    transport(lambda req: httpx.Response(402, json={}))
    with pytest.raises(ai_gateway.AiGatewayPaymentRequired):
        asyncio.run(ai_gateway.extract_receipt("aGVsbG8="))


def test_ai_gateway_forces_tool_call(transport):
    requests = transport(lambda req: httpx.Response(200, json={"choices": []}))

    asyncio.run(ai_gateway.extract_receipt("aGVsbG8=", "image/png"))

    body = json.loads(requests[0].content)
    assert body["tool_choice"]["function"]["name"] == "extract_receipt"
    image = body["messages"][0]["content"][1]["image_url"]["url"]
    assert image == "data:image/png;base64,aGVsbG8="
    assert requests[0].headers["Authorization"] == "Bearer ai-key"


def test_ai_gateway_requires_key(monkeypatch):
    monkeypatch.setattr(settings, "AI_GATEWAY_API_KEY", "")
    with pytest.raises(ai_gateway.AiGatewayError):
        asyncio.run(ai_gateway.extract_receipt("aGVsbG8="))
