"""Wiring of the commerce services from the loaded settings."""
from .config import load_settings
from .gateway import get_gateway
from .notifications import Notifier
from .orders import OrderLifecycleManager
from .payments import PaymentLedger
from .webhooks import WebhookReconciler


def order_manager(config=None):
    config = config or load_settings()
    return OrderLifecycleManager(config, notifier=Notifier(config))


def payment_ledger(config=None, gateway=None):
    config = config or load_settings()
    return PaymentLedger(config, gateway or get_gateway(), notifier=Notifier(config))


def webhook_reconciler(config=None, gateway=None):
    config = config or load_settings()
    return WebhookReconciler(config, gateway or get_gateway(), ledger=payment_ledger(config, gateway))
