"""Dobles y constructores compartidos por los tests"""
from tests.fixtures.doubles import FakeGateway, RecordingNotifier
from tests.fixtures.factories import (
    attendees,
    make_event,
    make_form_field,
    make_payment,
    make_promo,
    make_ticket_type,
    make_user,
    order_request,
    reload,
)

__all__ = [
    "FakeGateway",
    "RecordingNotifier",
    "attendees",
    "make_event",
    "make_form_field",
    "make_payment",
    "make_promo",
    "make_ticket_type",
    "make_user",
    "order_request",
    "reload",
]
