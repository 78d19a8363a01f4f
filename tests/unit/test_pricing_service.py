"""Unit tests for the pricing resolver."""

from unittest.mock import MagicMock
from uuid import uuid4

import pytest

from booking.errors import ServiceNotFoundError
from booking.services.pricing_service import (
    Default,
    Override,
    ServiceAssignmentOverride,
    ServiceBaseValues,
    normalize_int,
    resolve_final_service_values,
    resolve_service_pricing,
)
from tests.helpers import result_with

BASE = ServiceBaseValues(duration_min=60, price_cents=10000, deposit_cents=3000, buffer_min=15)


class TestResolveFinalServiceValues:
    def test_deposit_override_above_price_is_capped(self):
        """Override deposit 15000 on a 10000 service resolves to 10000."""
        override = ServiceAssignmentOverride(
            use_service_defaults=False,
            deposit_cents=Override(15000),
        )

        values = resolve_final_service_values(BASE, override)

        assert values.deposit_cents == 10000
        assert values.price_cents == 10000
        assert values.duration_min == 60
        assert values.buffer_min == 15

    def test_no_override_equals_base(self):
        values = resolve_final_service_values(BASE)
        assert values.to_dict() == {
            "duration_min": 60,
            "price_cents": 10000,
            "deposit_cents": 3000,
            "buffer_min": 15,
        }

    @pytest.mark.parametrize("use_defaults", [True, None])
    def test_overrides_ignored_unless_defaults_explicitly_disabled(self, use_defaults):
        override = ServiceAssignmentOverride(
            use_service_defaults=use_defaults,
            price_cents=Override(500),
            duration_min=Override(15),
        )

        assert resolve_final_service_values(BASE, override) == resolve_final_service_values(BASE)

    def test_all_default_fields_equal_base(self):
        override = ServiceAssignmentOverride(use_service_defaults=False)
        assert resolve_final_service_values(BASE, override) == resolve_final_service_values(BASE)

    def test_price_override_lowers_deposit_cap(self):
        override = ServiceAssignmentOverride(
            use_service_defaults=False,
            price_cents=Override(2000),
        )
        values = resolve_final_service_values(BASE, override)
        assert values.price_cents == 2000
        assert values.deposit_cents == 2000

    def test_negative_values_clamped_to_zero(self):
        base = ServiceBaseValues(duration_min=-30, price_cents=-1, deposit_cents=-5, buffer_min=-10)
        values = resolve_final_service_values(base)
        assert values.to_dict() == {
            "duration_min": 0,
            "price_cents": 0,
            "deposit_cents": 0,
            "buffer_min": 0,
        }

    def test_string_and_float_values_normalized(self):
        base = ServiceBaseValues(duration_min="45", price_cents=9999.6, deposit_cents="1000", buffer_min=None)
        values = resolve_final_service_values(base)
        assert values.duration_min == 45
        assert values.price_cents == 10000
        assert values.deposit_cents == 1000
        assert values.buffer_min == 0

    def test_unparseable_override_falls_back_to_base(self):
        override = ServiceAssignmentOverride(
            use_service_defaults=False,
            price_cents=Override("abc"),
            buffer_min=Override(float("nan")),
        )
        values = resolve_final_service_values(BASE, override)
        assert values.price_cents == 10000
        assert values.buffer_min == 15

    def test_zero_override_is_not_default(self):
        override = ServiceAssignmentOverride(
            use_service_defaults=False,
            deposit_cents=Override(0),
        )
        assert resolve_final_service_values(BASE, override).deposit_cents == 0

    @pytest.mark.parametrize(
        "base",
        [
            ServiceBaseValues(60, 10000, 3000, 15),
            ServiceBaseValues("x", "y", "z", "w"),
            ServiceBaseValues(10, 100, 100000, 0),
            ServiceBaseValues(None, None, None, None),
        ],
    )
    def test_invariants_hold(self, base):
        values = resolve_final_service_values(base)
        assert values.duration_min >= 0
        assert values.price_cents >= 0
        assert 0 <= values.deposit_cents <= values.price_cents
        assert values.buffer_min >= 0


class TestNormalizeInt:
    @pytest.mark.parametrize(
        "value,expected",
        [
            (10, 10),
            (10.4, 10),
            ("7", 7),
            (" 12.6 ", 13),
            ("", None),
            ("abc", None),
            (True, None),
            (None, None),
            (float("inf"), None),
        ],
    )
    def test_normalize(self, value, expected):
        assert normalize_int(value) == expected


class TestAssignmentOverrideFromRow:
    def test_null_columns_become_default(self):
        row = MagicMock(
            use_service_defaults=False,
            override_duration_min=None,
            override_price_cents=5000,
            override_deposit_cents=None,
            override_buffer_min=0,
        )

        override = ServiceAssignmentOverride.from_row(row)

        assert override.duration_min == Default()
        assert override.price_cents == Override(5000)
        assert override.deposit_cents == Default()
        assert override.buffer_min == Override(0)


class TestResolveServicePricing:
    @pytest.mark.asyncio
    async def test_missing_service_raises(self, mock_session):
        mock_session.get.return_value = None

        with pytest.raises(ServiceNotFoundError):
            await resolve_service_pricing(mock_session, uuid4())

    @pytest.mark.asyncio
    async def test_inactive_service_raises(self, mock_session):
        mock_session.get.return_value = MagicMock(is_active=False)

        with pytest.raises(ServiceNotFoundError):
            await resolve_service_pricing(mock_session, uuid4())

    @pytest.mark.asyncio
    async def test_preferred_assignment_wins(self, mock_session):
        service_id = uuid4()
        service = MagicMock(
            id=service_id,
            is_active=True,
            base_duration_min=60,
            base_price_cents=10000,
            base_deposit_cents=3000,
            base_buffer_min=15,
        )
        service.name = "Corte"
        oldest = MagicMock(
            id=uuid4(),
            use_service_defaults=False,
            override_duration_min=None,
            override_price_cents=8000,
            override_deposit_cents=None,
            override_buffer_min=None,
        )
        preferred = MagicMock(
            id=uuid4(),
            use_service_defaults=False,
            override_duration_min=90,
            override_price_cents=None,
            override_deposit_cents=None,
            override_buffer_min=None,
        )
        mock_session.get.return_value = service
        mock_session.execute.return_value = result_with(scalars=[oldest, preferred])

        pricing = await resolve_service_pricing(mock_session, service_id, preferred.id)

        assert pricing.assignment_id == preferred.id
        assert pricing.values.duration_min == 90
        assert pricing.values.price_cents == 10000

    @pytest.mark.asyncio
    async def test_oldest_assignment_used_by_default(self, mock_session):
        service = MagicMock(
            id=uuid4(),
            is_active=True,
            base_duration_min=60,
            base_price_cents=10000,
            base_deposit_cents=3000,
            base_buffer_min=15,
        )
        oldest = MagicMock(
            id=uuid4(),
            use_service_defaults=False,
            override_duration_min=None,
            override_price_cents=8000,
            override_deposit_cents=None,
            override_buffer_min=None,
        )
        mock_session.get.return_value = service
        mock_session.execute.return_value = result_with(scalars=[oldest])

        pricing = await resolve_service_pricing(mock_session, service.id)

        assert pricing.assignment_id == oldest.id
        assert pricing.values.price_cents == 8000
        assert pricing.values.deposit_cents == 3000
