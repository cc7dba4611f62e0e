"""
Tests for the Asaas billing gateway
"""
import httpx
import pytest
from datetime import datetime, date
from unittest.mock import patch, Mock
from vibephoto.exceptions import AsaasAPIError
from vibephoto.services.billing_gateway import (
    AsaasGateway,
    AsaasRateLimiter,
    customer_data_from_user,
    format_asaas_date,
    format_customer_for_asaas,
    get_billing_gateway,
    handle_asaas_error,
    validate_customer_data,
)


@pytest.fixture
def gateway():
    return AsaasGateway(api_key="asaas_key", environment="sandbox", webhook_token="hook-token")


class TestAsaasRateLimiter:
    """Outgoing request window"""

    def test_blocks_after_max_requests(self):
        now = [0.0]
        limiter = AsaasRateLimiter(max_requests=2, time_window=60, clock=lambda: now[0])
        limiter.record_request()
        now[0] = 10.0
        limiter.record_request()

        assert limiter.can_make_request() is False
        assert limiter.get_wait_time() == 50.0

    def test_window_slides(self):
        now = [0.0]
        limiter = AsaasRateLimiter(max_requests=1, time_window=60, clock=lambda: now[0])
        limiter.record_request()
        now[0] = 61.0
        assert limiter.can_make_request() is True
        assert limiter.get_wait_time() == 0.0


class TestAsaasGateway:
    """HTTP calls"""

    def test_base_url_per_environment(self):
        assert AsaasGateway("k", "production").base_url == "https://www.asaas.com/api/v3"
        assert AsaasGateway("k").base_url == "https://sandbox.asaas.com/api/v3"

    def test_requires_api_key(self):
        with pytest.raises(ValueError):
            AsaasGateway("")

    def test_get_payment_sends_access_token(self, gateway):
        response = httpx.Response(200, json={"id": "pay_1", "status": "CONFIRMED"})
        with patch("vibephoto.services.billing_gateway.httpx.request", return_value=response) as request:
            payment = gateway.get_payment("pay_1")

        assert payment["status"] == "CONFIRMED"
        assert request.call_args[0] == ("GET", "https://sandbox.asaas.com/api/v3/payments/pay_1")
        assert request.call_args[1]["headers"]["access_token"] == "asaas_key"
        assert request.call_args[1]["json"] is None

    def test_error_descriptions_are_joined(self, gateway):
        response = httpx.Response(400, json={"errors": [
            {"code": "invalid_cpfCnpj", "description": "CPF inválido"},
            {"code": "invalid_email", "description": "Email inválido"},
        ]})
        with patch("vibephoto.services.billing_gateway.httpx.request", return_value=response):
            with pytest.raises(AsaasAPIError) as exc_info:
                gateway.create_customer({"name": "Maria", "email": "bad"})

        assert exc_info.value.status_code == 400
        assert exc_info.value.message == "CPF inválido; Email inválido"
        assert len(exc_info.value.errors) == 2

    def test_network_error_maps_to_503(self, gateway):
        with patch("vibephoto.services.billing_gateway.httpx.request", side_effect=httpx.ReadTimeout("slow")):
            with pytest.raises(AsaasAPIError) as exc_info:
                gateway.get_balance()
        assert exc_info.value.status_code == 503

    def test_local_rate_limit(self):
        limiter = Mock(can_make_request=Mock(return_value=False), get_wait_time=Mock(return_value=12.0))
        gateway = AsaasGateway("k", rate_limiter=limiter)
        with pytest.raises(AsaasAPIError) as exc_info:
            gateway.get_payment("pay_1")
        assert exc_info.value.status_code == 429

    def test_list_payments_drops_empty_params(self, gateway):
        with patch.object(gateway, "_make_request", return_value={"data": []}) as request:
            gateway.list_payments(status="PENDING")
        params = request.call_args[1]["params"]
        assert params["status"] == "PENDING"

    def test_find_customer_by_email(self, gateway):
        with patch.object(gateway, "_make_request", return_value={"data": [{"id": "cus_1"}]}):
            assert gateway.find_customer_by_email("a@b.com") == {"id": "cus_1"}
        with patch.object(gateway, "_make_request", return_value={"data": []}):
            assert gateway.find_customer_by_email("a@b.com") is None

    def test_verify_webhook_signature(self, gateway):
        assert gateway.verify_webhook_signature(b"{}", "hook-token")
        assert not gateway.verify_webhook_signature(b"{}", "other")
        assert not AsaasGateway("k").verify_webhook_signature(b"{}", "hook-token")

    def test_parse_webhook_event(self, gateway):
        event = gateway.parse_webhook_event({
            "event": "PAYMENT_CONFIRMED",
            "payment": {
                "id": "pay_1",
                "subscription": "sub_1",
                "customer": "cus_1",
                "status": "CONFIRMED",
                "value": 89.9,
                "externalReference": "subscription-user-1-PREMIUM-MONTHLY",
            },
        })
        assert event["event_type"] == "PAYMENT_CONFIRMED"
        assert event["subscription_id"] == "sub_1"
        assert event["external_reference"] == "subscription-user-1-PREMIUM-MONTHLY"


class TestCustomerHelpers:
    """Customer payload formatting and validation"""

    def test_format_customer_keeps_digits(self):
        formatted = format_customer_for_asaas({
            "name": "Maria",
            "email": "maria@example.com",
            "cpfCnpj": "529.982.247-25",
            "postalCode": "01310-100",
            "city": "São Paulo",
            "complement": "",
            "unknown": "dropped",
        })
        assert formatted == {
            "name": "Maria",
            "email": "maria@example.com",
            "cpfCnpj": "52998224725",
            "postalCode": "01310100",
            "city": "São Paulo",
        }

    def test_validate_customer_data(self):
        assert validate_customer_data({"name": "Maria", "email": "maria@example.com"})["is_valid"]
        result = validate_customer_data({"name": "M", "email": "x", "cpfCnpj": "123", "state": "ZZ"})
        assert result["errors"] == ["Nome deve ter pelo menos 2 caracteres", "Email inválido",
                                    "CPF/CNPJ inválido", "Estado inválido"]

    def test_customer_data_from_user(self, mock_user):
        mock_user.name = None
        mock_user.phone = None
        mock_user.mobile_phone = None
        mock_user.address = mock_user.address_number = mock_user.complement = None
        mock_user.province = mock_user.city = mock_user.state = mock_user.postal_code = None
        data = customer_data_from_user(mock_user, {"cpfCnpj": "52998224725", "city": ""})
        assert data["name"] == "test"
        assert data["cpfCnpj"] == "52998224725"
        assert data["city"] is None
        assert data["externalReference"] == "user-123"

    def test_format_asaas_date(self):
        assert format_asaas_date(datetime(2026, 3, 4, 15, 0)) == "2026-03-04"
        assert format_asaas_date(date(2026, 3, 4)) == "2026-03-04"
        assert format_asaas_date("2026-03-04T10:00:00") == "2026-03-04"


class TestErrorHandling:
    """Portuguese error messages"""

    def test_known_status(self):
        result = handle_asaas_error(AsaasAPIError(401, "invalid key"))
        assert result == {"message": "Chave de API inválida ou expirada", "code": "401", "details": "invalid key"}

    def test_unknown_status_keeps_message(self):
        assert handle_asaas_error(AsaasAPIError(409, "duplicate"))["message"] == "duplicate"

    def test_parses_message_format(self):
        result = handle_asaas_error(RuntimeError("Asaas API Error (404): not found"))
        assert result["code"] == "404"
        assert result["message"] == "Recurso não encontrado"

    def test_generic_error(self):
        assert handle_asaas_error(RuntimeError("boom"))["code"] is None

    def test_factory_rejects_unknown_provider(self):
        with pytest.raises(ValueError):
            get_billing_gateway("stripe")

    def test_factory_requires_api_key(self):
        with pytest.raises(ValueError):
            get_billing_gateway("asaas", config=Mock(ASAAS_API_KEY=None))
