import httpx

from settlement.domain.checkout import CheckoutRequest, CheckoutSession
from shared.core import get_logger

logger = get_logger(__name__)


class PaymentGatewayError(Exception):
    """The gateway could not be reached or refused the request."""


class HttpPaymentGateway:
    """Hosted-checkout client for the external payment gateway."""

    def __init__(self, base_url: str, api_key: str, timeout: float = 5.0):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.timeout = timeout

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            # Retrying checkout for the same order must not open a second session
            "Idempotency-Key": f"checkout-order-{request.order_id}-{request.expires_at:%Y%m%d%H%M}",
        }
        try:
            with httpx.Client(timeout=self.timeout) as client:
                response = client.post(
                    f"{self.base_url}/v1/checkout/sessions",
                    json=request.to_payload(),
                    headers=headers,
                )
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPError as e:
            logger.error(
                f"Checkout session request failed: {e}",
                extra={"extra_fields": {"order_id": request.order_id}},
            )
            raise PaymentGatewayError(str(e)) from e

        session_id = data.get("id")
        url = data.get("url")
        if not session_id or not url:
            raise PaymentGatewayError("Gateway response is missing the session id or url")
        return CheckoutSession(session_id=session_id, url=url)
