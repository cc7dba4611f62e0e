"""
Billing Gateway - Abstract interface for payment providers
Asaas (Brazilian gateway: PIX, boleto, credit card)
"""
from abc import ABC, abstractmethod
from typing import Optional, Dict, Any, List, Callable
from datetime import date, datetime
import hmac
import logging
import re
import time

import httpx

from ..exceptions import AsaasAPIError
from ..utils.brazilian_validators import (
    only_digits,
    validate_cpf_cnpj,
    validate_cep,
    validate_phone,
    validate_email,
    validate_state,
)

logger = logging.getLogger(__name__)


class BillingGateway(ABC):
    """Abstract base class for payment providers"""

    @abstractmethod
    def create_customer(self, customer_data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a customer in the payment provider"""
        pass

    @abstractmethod
    def create_subscription(self, subscription_data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a subscription"""
        pass

    @abstractmethod
    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        """Cancel a subscription"""
        pass

    @abstractmethod
    def create_payment(self, payment_data: Dict[str, Any]) -> Dict[str, Any]:
        """Create a one-off payment"""
        pass

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Verify webhook signature"""
        pass

    @abstractmethod
    def parse_webhook_event(self, payload: Dict) -> Dict[str, Any]:
        """Parse webhook event into standardized format"""
        pass


class AsaasRateLimiter:
    """Sliding-window limiter for outgoing Asaas requests (100 per minute)"""

    def __init__(self, max_requests: int = 100, time_window: float = 60.0, clock: Callable[[], float] = time.monotonic):
        self.max_requests = max_requests
        self.time_window = time_window
        self._clock = clock
        self._requests: List[float] = []

    def _prune(self, now: float):
        self._requests = [t for t in self._requests if now - t < self.time_window]

    def can_make_request(self) -> bool:
        self._prune(self._clock())
        return len(self._requests) < self.max_requests

    def record_request(self):
        self._requests.append(self._clock())

    def get_wait_time(self) -> float:
        """Seconds until the oldest request leaves the window"""
        now = self._clock()
        self._prune(now)
        if len(self._requests) < self.max_requests or not self._requests:
            return 0.0
        return max(0.0, self.time_window - (now - min(self._requests)))


class AsaasGateway(BillingGateway):
    """Asaas payment gateway"""

    PRODUCTION_URL = "https://www.asaas.com/api/v3"
    SANDBOX_URL = "https://sandbox.asaas.com/api/v3"

    def __init__(
        self,
        api_key: str,
        environment: str = "sandbox",
        webhook_token: Optional[str] = None,
        rate_limiter: Optional[AsaasRateLimiter] = None,
        timeout: float = 15.0
    ):
        """
        Initialize Asaas gateway

        Args:
            api_key: Asaas API key
            environment: 'sandbox' or 'production'
            webhook_token: Token Asaas sends in the asaas-access-token header
            rate_limiter: Outgoing request limiter
            timeout: Request timeout in seconds
        """
        if not api_key:
            raise ValueError("ASAAS_API_KEY is required")
        self.api_key = api_key
        self.environment = environment
        self.webhook_token = webhook_token
        self.base_url = self.PRODUCTION_URL if environment == "production" else self.SANDBOX_URL
        self.rate_limiter = rate_limiter or AsaasRateLimiter()
        self.timeout = timeout

    def _make_request(
        self,
        method: str,
        endpoint: str,
        data: Optional[Dict] = None,
        params: Optional[Dict] = None
    ) -> Dict[str, Any]:
        """Make HTTP request to Asaas API"""
        if not self.rate_limiter.can_make_request():
            wait = self.rate_limiter.get_wait_time()
            raise AsaasAPIError(429, f"Local rate limit reached, retry in {wait:.0f}s")

        url = f"{self.base_url}{endpoint}"
        headers = {
            "access_token": self.api_key,
            "Content-Type": "application/json",
            "User-Agent": "VibePhoto/1.0"
        }

        self.rate_limiter.record_request()
        try:
            response = httpx.request(
                method,
                url,
                headers=headers,
                json=data if method in ("POST", "PUT") else None,
                params={k: v for k, v in (params or {}).items() if v is not None} or None,
                timeout=self.timeout
            )
        except httpx.HTTPError as e:
            logger.error(f"Asaas API request failed: {e}")
            raise AsaasAPIError(503, f"Network error: {e}")

        if response.status_code >= 400:
            message = response.reason_phrase
            errors: List[Dict[str, Any]] = []
            try:
                body = response.json()
                errors = body.get("errors") or []
                if errors:
                    message = "; ".join(e.get("description", "") for e in errors if e.get("description")) or message
                else:
                    message = body.get("message") or body.get("error") or message
            except ValueError:
                message = response.text or message
            logger.error(f"Asaas API error {response.status_code} on {method} {endpoint}: {message}")
            raise AsaasAPIError(response.status_code, message, errors)

        if not response.content:
            return {}
        return response.json()

    # Customers

    def create_customer(self, customer_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._make_request("POST", "/customers", format_customer_for_asaas(customer_data))

    def get_customer(self, customer_id: str) -> Dict[str, Any]:
        return self._make_request("GET", f"/customers/{customer_id}")

    def update_customer(self, customer_id: str, customer_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._make_request("POST", f"/customers/{customer_id}", format_customer_for_asaas(customer_data))

    def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        result = self._make_request("GET", "/customers", params={"email": email})
        customers = result.get("data") or []
        return customers[0] if customers else None

    # Subscriptions

    def create_subscription(self, subscription_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._make_request("POST", "/subscriptions", subscription_data)

    def get_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._make_request("GET", f"/subscriptions/{subscription_id}")

    def update_subscription(self, subscription_id: str, data: Dict[str, Any]) -> Dict[str, Any]:
        return self._make_request("POST", f"/subscriptions/{subscription_id}", data)

    def cancel_subscription(self, subscription_id: str) -> Dict[str, Any]:
        return self._make_request("DELETE", f"/subscriptions/{subscription_id}")

    def get_subscription_payments(self, subscription_id: str, status: Optional[str] = None) -> List[Dict[str, Any]]:
        result = self._make_request("GET", f"/subscriptions/{subscription_id}/payments", params={"status": status})
        return result.get("data") or []

    # Payments

    def create_payment(self, payment_data: Dict[str, Any]) -> Dict[str, Any]:
        return self._make_request("POST", "/payments", payment_data)

    def get_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._make_request("GET", f"/payments/{payment_id}")

    def list_payments(
        self,
        customer: Optional[str] = None,
        status: Optional[str] = None,
        date_created_from: Optional[str] = None,
        offset: int = 0,
        limit: int = 100
    ) -> Dict[str, Any]:
        return self._make_request("GET", "/payments", params={
            "customer": customer,
            "status": status,
            "dateCreated[ge]": date_created_from,
            "offset": offset,
            "limit": limit,
        })

    def get_pix_qr_code(self, payment_id: str) -> Dict[str, Any]:
        """Returns encodedImage (base64 PNG), payload and expirationDate"""
        return self._make_request("GET", f"/payments/{payment_id}/pixQrCode")

    def get_boleto_identification_field(self, payment_id: str) -> Dict[str, Any]:
        return self._make_request("GET", f"/payments/{payment_id}/identificationField")

    # Account

    def get_account_info(self) -> Dict[str, Any]:
        return self._make_request("GET", "/myAccount")

    def get_balance(self) -> Dict[str, Any]:
        return self._make_request("GET", "/finance/balance")

    # Webhooks

    def create_webhook(self, url: str, email: str, auth_token: Optional[str] = None, enabled: bool = True) -> Dict[str, Any]:
        return self._make_request("POST", "/webhooks", {
            "url": url,
            "email": email,
            "enabled": enabled,
            "interrupted": False,
            "authToken": auth_token or self.webhook_token,
        })

    def get_webhooks(self) -> Dict[str, Any]:
        return self._make_request("GET", "/webhooks")

    def verify_webhook_signature(self, payload: bytes, signature: str) -> bool:
        """Asaas sends the configured token verbatim in the asaas-access-token header"""
        if not self.webhook_token or not signature:
            return False
        return hmac.compare_digest(self.webhook_token.encode(), signature.encode())

    def parse_webhook_event(self, payload: Dict) -> Dict[str, Any]:
        """Parse Asaas webhook event"""
        payment = payload.get("payment") or {}
        subscription = payload.get("subscription") or {}
        return {
            "event_type": payload.get("event", ""),
            "provider_event_id": payload.get("id"),
            "payment_id": payment.get("id"),
            "subscription_id": payment.get("subscription") or subscription.get("id"),
            "customer_id": payment.get("customer") or subscription.get("customer"),
            "status": payment.get("status") or subscription.get("status"),
            "value": payment.get("value"),
            "billing_type": payment.get("billingType"),
            "external_reference": payment.get("externalReference") or subscription.get("externalReference"),
            "description": payment.get("description"),
            "date_created": payload.get("dateCreated") or payment.get("dateCreated"),
            "raw_data": payment or subscription,
        }


def format_asaas_date(value) -> str:
    """date/datetime -> 'YYYY-MM-DD'"""
    if isinstance(value, datetime):
        value = value.date()
    if isinstance(value, date):
        return value.isoformat()
    return str(value)[:10]


def validate_customer_data(customer: Dict[str, Any]) -> Dict[str, Any]:
    """Validate Asaas customer fields; returns {is_valid, errors} with Portuguese messages"""
    errors: List[str] = []

    if len((customer.get("name") or "").strip()) < 2:
        errors.append("Nome deve ter pelo menos 2 caracteres")
    if not validate_email(customer.get("email") or ""):
        errors.append("Email inválido")
    if customer.get("cpfCnpj") and not validate_cpf_cnpj(customer["cpfCnpj"]):
        errors.append("CPF/CNPJ inválido")
    if customer.get("phone") and not validate_phone(customer["phone"]):
        errors.append("Telefone inválido")
    if customer.get("mobilePhone") and not validate_phone(customer["mobilePhone"]):
        errors.append("Celular inválido")
    if customer.get("postalCode") and not validate_cep(customer["postalCode"]):
        errors.append("CEP inválido")
    if customer.get("state") and not validate_state(customer["state"]):
        errors.append("Estado inválido")

    return {"is_valid": not errors, "errors": errors}


_DIGIT_FIELDS = ("cpfCnpj", "phone", "mobilePhone", "postalCode")
_COPY_FIELDS = (
    "address", "addressNumber", "complement", "province", "city", "state",
    "externalReference", "observations", "notificationDisabled",
)


def format_customer_for_asaas(customer: Dict[str, Any]) -> Dict[str, Any]:
    """Keep known fields, digits only for documents, phones and CEP"""
    formatted: Dict[str, Any] = {
        "name": customer.get("name") or "",
        "email": customer.get("email") or "",
    }
    for field in _DIGIT_FIELDS:
        if customer.get(field):
            formatted[field] = only_digits(customer[field])
    for field in _COPY_FIELDS:
        if customer.get(field) is not None and customer.get(field) != "":
            formatted[field] = customer[field]
    return formatted


def customer_data_from_user(user, overrides: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    """Asaas customer payload built from a User row plus request overrides"""
    data = {
        "name": user.name or user.email.split("@")[0],
        "email": user.email,
        "cpfCnpj": user.cpf_cnpj,
        "phone": user.phone,
        "mobilePhone": user.mobile_phone,
        "address": user.address,
        "addressNumber": user.address_number,
        "complement": user.complement,
        "province": user.province,
        "city": user.city,
        "state": user.state,
        "postalCode": user.postal_code,
        "externalReference": user.id,
    }
    data.update({k: v for k, v in (overrides or {}).items() if v})
    return data


ASAAS_ERROR_MESSAGES = {
    400: "Dados inválidos fornecidos",
    401: "Chave de API inválida ou expirada",
    403: "Acesso negado - verifique as permissões",
    404: "Recurso não encontrado",
    429: "Limite de requisições excedido - tente novamente em instantes",
    500: "Erro interno do Asaas - tente novamente mais tarde",
}


def handle_asaas_error(error: Exception) -> Dict[str, Any]:
    """User-facing (Portuguese) message for an Asaas failure"""
    if isinstance(error, AsaasAPIError):
        return {
            "message": ASAAS_ERROR_MESSAGES.get(error.status_code, error.message),
            "code": str(error.status_code),
            "details": error.message,
        }

    match = re.match(r"Asaas API Error \((\d+)\): (.+)", str(error))
    if match:
        status_code, message = int(match.group(1)), match.group(2)
        return {
            "message": ASAAS_ERROR_MESSAGES.get(status_code, message),
            "code": str(status_code),
            "details": message,
        }

    return {"message": "Erro interno - tente novamente mais tarde", "code": None, "details": str(error)}


_gateway: Optional[AsaasGateway] = None


def get_billing_gateway(provider: str = "asaas", config=None) -> BillingGateway:
    """
    Factory function to get the billing gateway

    Args:
        provider: 'asaas'
        config: Config object with payment provider settings

    Returns:
        BillingGateway instance (cached when built from the global config)
    """
    global _gateway

    if provider != "asaas":
        raise ValueError(f"Unknown billing provider: {provider}")

    if config is None:
        if _gateway is None:
            from ..config import config as app_config
            _gateway = _build_asaas(app_config)
        return _gateway
    return _build_asaas(config)


def _build_asaas(config) -> AsaasGateway:
    if not config.ASAAS_API_KEY:
        raise ValueError("Asaas API key not configured")
    return AsaasGateway(
        api_key=config.ASAAS_API_KEY,
        environment=config.ASAAS_ENVIRONMENT,
        webhook_token=config.ASAAS_WEBHOOK_TOKEN
    )
