"""Payment gateway port.

The contract every payment gateway adapter implements. Order and payment
services only talk to this interface, so StripeGateway (production) and
FakeGateway (development and tests) are interchangeable. All ids are opaque
strings owned by the gateway.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field


@dataclass(frozen=True)
class GatewayCustomer:
    id: str
    email: str
    name: str | None = None


@dataclass(frozen=True)
class LineItem:
    """A checkout line, already converted to the currency's minor unit."""

    name: str
    unit_amount: int
    quantity: int
    currency: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str | None = None
    # open, complete, expired
    status: str | None = None
    # paid, unpaid, no_payment_required
    payment_status: str | None = None
    payment_intent: str | None = None
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class RefundResult:
    id: str
    status: str
    amount: int | None = None


@dataclass(frozen=True)
class GatewayEvent:
    """A parsed webhook event; ``data`` is the event's object payload."""

    id: str
    type: str
    data: dict = field(default_factory=dict)

    @property
    def object_id(self):
        return self.data.get('id')


class PaymentGatewayError(Exception):
    """Raised by adapters when the gateway rejects or fails a request."""


class PaymentGateway(ABC):
    name = 'gateway'

    @abstractmethod
    def find_customer(self, email: str) -> GatewayCustomer | None:
        """Return the customer registered under ``email``, if any."""

    @abstractmethod
    def create_customer(self, email: str, name: str | None = None) -> GatewayCustomer:
        """Register a new customer."""

    @abstractmethod
    def create_checkout_session(
        self,
        customer_id: str,
        line_items: list[LineItem],
        success_url: str,
        cancel_url: str,
        metadata: dict,
    ) -> CheckoutSession:
        """Open a hosted checkout session for the given lines."""

    @abstractmethod
    def retrieve_checkout_session(self, session_id: str) -> CheckoutSession:
        """Fetch the current state of a checkout session."""

    @abstractmethod
    def create_refund(
        self,
        gateway_payment_id: str,
        amount: int | None = None,
        reason: str | None = None,
        idempotency_key: str | None = None,
    ) -> RefundResult:
        """Refund a captured payment, fully when ``amount`` is None."""

    @abstractmethod
    def verify_webhook_signature(self, payload: bytes, signature: str, secret: str) -> bool:
        """Check that ``payload`` was signed by the gateway with ``secret``."""

    @abstractmethod
    def parse_webhook_event(self, payload: bytes) -> GatewayEvent:
        """Decode a verified webhook payload; raises ValueError if malformed."""
