"""
Tests for the local order → IIKO delivery payload translation.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

from app.iiko.translator import (
    format_complete_before,
    missing_product_mappings,
    to_external_order,
)


def make_item(**overrides):
    fields = {
        "product_id": 7,
        "iiko_product_id": "iiko-prod-7",
        "quantity": 2,
        "price": Decimal("250.00"),
        "customization": None,
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


def make_order(**overrides):
    fields = {
        "id": 1,
        "order_no": "1001",
        "customer_name": "Anna",
        "customer_phone": "+79990000000",
        "delivery_address": None,
        "delivery_notes": None,
        "scheduled_time": None,
        "notes": None,
        "items": [make_item()],
    }
    fields.update(overrides)
    return SimpleNamespace(**fields)


CONFIG = SimpleNamespace(organization_id="org-1", terminal_group_id="tg-1")


class TestToExternalOrder:

    def test_basic_payload(self):
        payload = to_external_order(make_order(), CONFIG)

        assert payload == {
            "organizationId": "org-1",
            "terminalGroupId": "tg-1",
            "externalNumber": "1001",
            "customer": {"name": "Anna", "phone": "+79990000000"},
            "order": {
                "items": [
                    {"productId": "iiko-prod-7", "type": "Product", "amount": 2, "price": 250.0}
                ]
            },
        }

    def test_no_delivery_address_means_no_delivery_point(self):
        payload = to_external_order(make_order(delivery_address=None), CONFIG)

        assert "deliveryPoint" not in payload

    def test_delivery_address_sets_street(self):
        order = make_order(delivery_address="Lenina 10", delivery_notes="Door code 12")

        payload = to_external_order(order, CONFIG)

        assert payload["deliveryPoint"]["address"]["street"] == "Lenina 10"
        assert payload["deliveryPoint"]["address"]["comment"] == "Door code 12"

    def test_missing_customer_defaults(self):
        payload = to_external_order(make_order(customer_name=None, customer_phone=None), CONFIG)

        assert payload["customer"] == {"name": "Guest", "phone": ""}

    def test_terminal_group_omitted_when_not_configured(self):
        config = SimpleNamespace(organization_id="org-1", terminal_group_id=None)

        payload = to_external_order(make_order(), config)

        assert "terminalGroupId" not in payload

    def test_notes_and_customization_become_comments(self):
        order = make_order(notes="Less ice", items=[make_item(customization="50% sugar")])

        payload = to_external_order(order, CONFIG)

        assert payload["order"]["comment"] == "Less ice"
        assert payload["order"]["items"][0]["comment"] == "50% sugar"

    def test_missing_mapping_falls_back_to_local_id(self):
        order = make_order(items=[make_item(iiko_product_id=None, product_id=42)])

        payload = to_external_order(order, CONFIG)

        assert payload["order"]["items"][0]["productId"] == "42"
        assert missing_product_mappings(order) == [42]

    def test_scheduled_time_as_utc_timestamp(self):
        order = make_order(scheduled_time=datetime(2026, 10, 17, 9, 30, 0, 123000))

        payload = to_external_order(order, CONFIG)

        assert payload["completeBefore"] == "2026-10-17T09:30:00.123Z"

    def test_no_scheduled_time_means_no_complete_before(self):
        assert "completeBefore" not in to_external_order(make_order(), CONFIG)

    def test_same_input_same_output(self):
        order = make_order(delivery_address="Lenina 10")

        assert to_external_order(order, CONFIG) == to_external_order(order, CONFIG)


class TestFormatCompleteBefore:

    def test_aware_datetime_converted_to_utc(self):
        moscow = timezone(timedelta(hours=3))
        value = datetime(2026, 10, 17, 12, 30, tzinfo=moscow)

        assert format_complete_before(value) == "2026-10-17T09:30:00.000Z"
