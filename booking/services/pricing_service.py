"""
Pricing resolver - merges a service's base values with an assignment override.

The resolver is a pure function over an injected catalog snapshot:

    values = resolve_final_service_values(base, override)

Stored catalog data may be stale or malformed (strings, floats, negatives,
deposit above price). It is normalized on read instead of rejected:
- numeric strings are parsed, floats are rounded
- unparseable values fall back to the base value (or 0 for base fields)
- every field is floored at 0
- the deposit is capped to the final price

Overrides are explicit tagged values per field: `Default()` keeps the base
value, `Override(value)` replaces it. `ServiceAssignmentOverride.from_row()`
maps NULL columns to `Default()`.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from booking.errors import ServiceNotFoundError
from database.models import Service, ServiceAssignment

logger = logging.getLogger(__name__)


# ============================================================================
# Override variants
# ============================================================================


@dataclass(frozen=True)
class Default:
    """Field not overridden: use the service base value."""


@dataclass(frozen=True)
class Override:
    """Field overridden with `value` (normalized on resolution)."""

    value: Any


OverrideField = Default | Override


def _from_nullable(value: Any) -> OverrideField:
    return Default() if value is None else Override(value)


@dataclass(frozen=True)
class ServiceBaseValues:
    """Base configuration of a service as supplied by the catalog."""

    duration_min: Any = 0
    price_cents: Any = 0
    deposit_cents: Any = 0
    buffer_min: Any = 0

    @classmethod
    def from_service(cls, service: Service) -> "ServiceBaseValues":
        return cls(
            duration_min=service.base_duration_min,
            price_cents=service.base_price_cents,
            deposit_cents=service.base_deposit_cents,
            buffer_min=service.base_buffer_min,
        )


@dataclass(frozen=True)
class ServiceAssignmentOverride:
    """
    Per-context override of a service's base values.

    Only an explicit `use_service_defaults=False` enables the per-field
    merge; True or None keep every base value.
    """

    use_service_defaults: bool | None = True
    duration_min: OverrideField = field(default_factory=Default)
    price_cents: OverrideField = field(default_factory=Default)
    deposit_cents: OverrideField = field(default_factory=Default)
    buffer_min: OverrideField = field(default_factory=Default)

    @classmethod
    def from_row(cls, row: ServiceAssignment) -> "ServiceAssignmentOverride":
        return cls(
            use_service_defaults=row.use_service_defaults,
            duration_min=_from_nullable(row.override_duration_min),
            price_cents=_from_nullable(row.override_price_cents),
            deposit_cents=_from_nullable(row.override_deposit_cents),
            buffer_min=_from_nullable(row.override_buffer_min),
        )


@dataclass(frozen=True)
class ResolvedServiceValues:
    """Final billable values. deposit_cents <= price_cents, all >= 0."""

    duration_min: int
    price_cents: int
    deposit_cents: int
    buffer_min: int

    def to_dict(self) -> dict[str, int]:
        return {
            "duration_min": self.duration_min,
            "price_cents": self.price_cents,
            "deposit_cents": self.deposit_cents,
            "buffer_min": self.buffer_min,
        }


# ============================================================================
# Resolver
# ============================================================================


def normalize_int(value: Any) -> int | None:
    """
    Best-effort integer coercion.

    Returns None for values that cannot be read as a finite number.
    """
    # bool is an int subclass but never a valid amount
    if isinstance(value, bool):
        return None

    if isinstance(value, int):
        return value

    if isinstance(value, float):
        return round(value) if math.isfinite(value) else None

    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return None
        return round(parsed) if math.isfinite(parsed) else None

    return None


def _floor_zero(value: Any, fallback: int) -> int:
    normalized = normalize_int(value)
    return max(0, fallback if normalized is None else normalized)


def _merge(field_value: OverrideField, base: int) -> int:
    if isinstance(field_value, Override):
        return _floor_zero(field_value.value, base)
    return base


def resolve_final_service_values(
    base: ServiceBaseValues,
    override: ServiceAssignmentOverride | None = None,
) -> ResolvedServiceValues:
    """
    Resolve final service values from base values and an optional override.

    Never raises: invalid numbers are normalized, negatives clamped to zero
    and the deposit capped to the resolved price.
    """
    base_duration = _floor_zero(base.duration_min, 0)
    base_price = _floor_zero(base.price_cents, 0)
    base_deposit = min(base_price, _floor_zero(base.deposit_cents, 0))
    base_buffer = _floor_zero(base.buffer_min, 0)

    if override is None or override.use_service_defaults is not False:
        return ResolvedServiceValues(
            duration_min=base_duration,
            price_cents=base_price,
            deposit_cents=base_deposit,
            buffer_min=base_buffer,
        )

    price = _merge(override.price_cents, base_price)
    deposit = min(price, _merge(override.deposit_cents, base_deposit))

    return ResolvedServiceValues(
        duration_min=_merge(override.duration_min, base_duration),
        price_cents=price,
        deposit_cents=deposit,
        buffer_min=_merge(override.buffer_min, base_buffer),
    )


# ============================================================================
# Catalog lookup
# ============================================================================


@dataclass(frozen=True)
class ServicePricing:
    """Resolved values together with the catalog rows they came from."""

    service_id: UUID
    service_name: str
    assignment_id: UUID | None
    values: ResolvedServiceValues


async def resolve_service_pricing(
    session: AsyncSession,
    service_id: UUID,
    preferred_assignment_id: UUID | None = None,
) -> ServicePricing:
    """
    Load the catalog snapshot for a service and resolve its final values.

    The preferred assignment is used when it belongs to the service;
    otherwise the oldest assignment applies. A service without assignments
    resolves from its base values alone.

    Raises:
        ServiceNotFoundError: If the service does not exist or is inactive
    """
    service = await session.get(Service, service_id)
    if service is None or not service.is_active:
        logger.warning(f"Pricing requested for missing/inactive service {service_id}")
        raise ServiceNotFoundError(details={"service_id": str(service_id)})

    result = await session.execute(
        select(ServiceAssignment)
        .where(ServiceAssignment.service_id == service_id)
        .order_by(ServiceAssignment.created_at.asc(), ServiceAssignment.id.asc())
    )
    assignments = list(result.scalars().all())

    picked: ServiceAssignment | None = None
    if preferred_assignment_id is not None:
        picked = next((a for a in assignments if a.id == preferred_assignment_id), None)
    if picked is None and assignments:
        picked = assignments[0]

    values = resolve_final_service_values(
        ServiceBaseValues.from_service(service),
        ServiceAssignmentOverride.from_row(picked) if picked else None,
    )

    logger.debug(
        f"Resolved pricing for service {service_id}: {values.to_dict()} "
        f"(assignment={picked.id if picked else None})"
    )

    return ServicePricing(
        service_id=service.id,
        service_name=service.name,
        assignment_id=picked.id if picked else None,
        values=values,
    )
