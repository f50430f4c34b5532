"""Relations that may be eager-loaded per entity.

Callers pick from a closed enum instead of passing field names around; the
mapping to ``select_related`` / ``prefetch_related`` lives only here.
"""
from enum import Enum

from .models import Order, Payment


class OrderRelation(Enum):
    ITEMS = 'items'
    PAYMENTS = 'payments'


class PaymentRelation(Enum):
    ORDER = 'order'
    PAYMENT_METHOD = 'payment_method'


# relation -> (loader, lookup)
_ORDER_LOADERS = {
    OrderRelation.ITEMS: ('prefetch', 'items'),
    OrderRelation.PAYMENTS: ('prefetch', 'payments'),
}

_PAYMENT_LOADERS = {
    PaymentRelation.ORDER: ('select', 'order'),
    PaymentRelation.PAYMENT_METHOD: ('select', 'payment_method'),
}


def _apply(queryset, loaders, relations, relation_type):
    for relation in relations:
        if not isinstance(relation, relation_type):
            raise TypeError(f"{relation!r} is not a {relation_type.__name__}")
        loader, lookup = loaders[relation]
        if loader == 'select':
            queryset = queryset.select_related(lookup)
        else:
            queryset = queryset.prefetch_related(lookup)
    return queryset


def orders(*relations):
    return _apply(Order.objects.all(), _ORDER_LOADERS, relations, OrderRelation)


def payments(*relations):
    return _apply(Payment.objects.all(), _PAYMENT_LOADERS, relations, PaymentRelation)


ALL_ORDER_RELATIONS = (OrderRelation.ITEMS, OrderRelation.PAYMENTS)
