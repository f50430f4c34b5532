import pytest

from commerce.exceptions import InvalidTransition
from commerce.models import PaymentStatus as P
from commerce.models import ShippingStatus as S
from commerce.transitions import (
    assert_payment_transition,
    assert_shipping_transition,
    can_transition_payment,
    can_transition_shipping,
    is_terminal_shipping,
)


@pytest.mark.parametrize('current,target', [
    (S.PENDING, S.PROCESSING),
    (S.PROCESSING, S.SHIPPED),
    (S.SHIPPED, S.DELIVERED),
    (S.PENDING, S.CANCELLED),
    (S.PROCESSING, S.CANCELLED),
])
def test_allowed_shipping_moves(current, target):
    assert can_transition_shipping(current, target)
    assert_shipping_transition(current, target)


@pytest.mark.parametrize('current,target', [
    (S.SHIPPED, S.CANCELLED),
    (S.DELIVERED, S.CANCELLED),
    (S.CANCELLED, S.PENDING),
    (S.PENDING, S.SHIPPED),
    (S.DELIVERED, S.PROCESSING),
])
def test_rejected_shipping_moves(current, target):
    assert not can_transition_shipping(current, target)
    with pytest.raises(InvalidTransition):
        assert_shipping_transition(current, target)


def test_refunded_only_through_refund():
    with pytest.raises(InvalidTransition):
        assert_shipping_transition(S.PROCESSING, S.REFUNDED)
    assert_shipping_transition(S.PROCESSING, S.REFUNDED, via_refund=True)


@pytest.mark.parametrize('status', [S.DELIVERED, S.CANCELLED, S.REFUNDED])
def test_terminal_shipping_states(status):
    assert is_terminal_shipping(status)
    for target in S:
        assert not can_transition_shipping(status, target)


@pytest.mark.parametrize('current,target,allowed', [
    (P.PENDING, P.COMPLETED, True),
    (P.PENDING, P.PROCESSING, True),
    (P.PROCESSING, P.FAILED, True),
    (P.COMPLETED, P.REFUNDED, True),
    (P.FAILED, P.PENDING, True),
    (P.PENDING, P.REFUNDED, False),
    (P.REFUNDED, P.COMPLETED, False),
    (P.CANCELLED, P.PENDING, False),
])
def test_payment_moves(current, target, allowed):
    assert can_transition_payment(current, target) is allowed
    if not allowed:
        with pytest.raises(InvalidTransition):
            assert_payment_transition(current, target)
