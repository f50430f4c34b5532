"""Shipping and payment state machines.

The two statuses on an order evolve independently; each has its own table of
allowed moves. Terminal states have no outgoing edges.
"""
from .exceptions import InvalidTransition
from .models import PaymentStatus, ShippingStatus

SHIPPING_TRANSITIONS = {
    ShippingStatus.PENDING: {ShippingStatus.PROCESSING, ShippingStatus.CANCELLED, ShippingStatus.REFUNDED},
    ShippingStatus.PROCESSING: {ShippingStatus.SHIPPED, ShippingStatus.CANCELLED, ShippingStatus.REFUNDED},
    ShippingStatus.SHIPPED: {ShippingStatus.DELIVERED, ShippingStatus.REFUNDED},
    ShippingStatus.DELIVERED: set(),
    ShippingStatus.CANCELLED: set(),
    ShippingStatus.REFUNDED: set(),
}

# Refunded is only reachable as a side effect of a payment refund.
REFUND_ONLY_SHIPPING_STATES = {ShippingStatus.REFUNDED}

NON_CANCELLABLE_SHIPPING_STATES = {
    ShippingStatus.SHIPPED,
    ShippingStatus.DELIVERED,
    ShippingStatus.CANCELLED,
    ShippingStatus.REFUNDED,
}

PAYMENT_TRANSITIONS = {
    PaymentStatus.PENDING: {
        PaymentStatus.PROCESSING,
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.PROCESSING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.CANCELLED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED, PaymentStatus.CANCELLED},
    # a failed attempt can be retried with a new checkout session
    PaymentStatus.FAILED: {PaymentStatus.PENDING, PaymentStatus.CANCELLED},
    PaymentStatus.REFUNDED: set(),
    PaymentStatus.CANCELLED: set(),
}


def can_transition_shipping(current, target):
    return ShippingStatus(target) in SHIPPING_TRANSITIONS[ShippingStatus(current)]


def can_transition_payment(current, target):
    return PaymentStatus(target) in PAYMENT_TRANSITIONS[PaymentStatus(current)]


def assert_shipping_transition(current, target, *, via_refund=False):
    current, target = ShippingStatus(current), ShippingStatus(target)
    if target in REFUND_ONLY_SHIPPING_STATES and not via_refund:
        raise InvalidTransition(f"Shipping status {target.label} can only be set by a payment refund.")
    if not can_transition_shipping(current, target):
        raise InvalidTransition(f"Cannot change shipping status from {current.label} to {target.label}.")


def assert_payment_transition(current, target):
    current, target = PaymentStatus(current), PaymentStatus(target)
    if not can_transition_payment(current, target):
        raise InvalidTransition(f"Cannot change payment status from {current.label} to {target.label}.")


def is_terminal_shipping(status):
    return not SHIPPING_TRANSITIONS[ShippingStatus(status)]
