from starlette.requests import Request

from finamanage.core.config import settings
from finamanage.utils.rate_limit import client_ip, coupon_limit


def _request(headers, client=("9.9.9.9", 1234)):
    return Request({
        "type": "http",
        "headers": [(k.encode(), v.encode()) for k, v in headers.items()],
        "client": client,
    })


def test_client_ip_precedence():
    assert client_ip(_request({"x-forwarded-for": "1.2.3.4, 5.6.7.8", "x-real-ip": "7.7.7.7"})) == "1.2.3.4"
    assert client_ip(_request({"x-real-ip": "7.7.7.7"})) == "7.7.7.7"
    assert client_ip(_request({"cf-connecting-ip": "8.8.8.8"})) == "8.8.8.8"
    assert client_ip(_request({})) == "9.9.9.9"
    assert client_ip(_request({}, client=None)) == "unknown"


def test_coupon_limit_follows_settings(monkeypatch):
    assert coupon_limit() == f"{settings.COUPON_RATE_LIMIT} per {settings.COUPON_RATE_WINDOW_S} seconds"
    monkeypatch.setattr(settings, "COUPON_RATE_LIMIT", 3)
    monkeypatch.setattr(settings, "COUPON_RATE_WINDOW_S", 30)
    assert coupon_limit() == "3 per 30 seconds"


def test_coupon_validation_is_rate_limited_per_ip(client, monkeypatch):
    monkeypatch.setattr(settings, "COUPON_RATE_LIMIT", 1)
    monkeypatch.setattr(settings, "COUPON_RATE_WINDOW_S", 60)
    url = "/api/v1/fair/coupons/validate"
    body = {"couponCode": "FEIRA-NOPE00"}

    first = client.post(url, json=body, headers={"X-Forwarded-For": "10.0.0.1"})
    assert first.status_code == 200
    assert first.json() == {"valid": False, "message": "Cupom não encontrado"}

    second = client.post(url, json=body, headers={"X-Forwarded-For": "10.0.0.1"})
    assert second.status_code == 429
    assert second.json() == {"valid": False, "message": "Muitas tentativas. Tente novamente em alguns segundos."}
    assert second.headers["Retry-After"] == "60"

    other_ip = client.post(url, json=body, headers={"X-Forwarded-For": "10.0.0.2"})
    assert other_ip.status_code == 200
