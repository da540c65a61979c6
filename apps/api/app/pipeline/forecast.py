from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

UNASSIGNED_BUCKET = "Unassigned"

_ZERO = Decimal("0")
_HUNDRED = Decimal("100")


def weighted_value(deal_value: Decimal | int | float | None, probability: int | None) -> Decimal:
    if deal_value is None or probability is None:
        return _ZERO
    return Decimal(str(deal_value)) * Decimal(probability) / _HUNDRED


@dataclass(frozen=True, slots=True)
class ForecastLine:
    deal_value: Decimal | None
    probability: int | None
    product_name: str | None
    partner_name: str | None

    @classmethod
    def from_deal(cls, deal: Any) -> ForecastLine:
        return cls(
            deal_value=deal.deal_value,
            probability=deal.deal_stage_probability,
            product_name=deal.product_name,
            partner_name=deal.partner_name,
        )

    @property
    def weighted(self) -> Decimal:
        return weighted_value(self.deal_value, self.probability)


@dataclass(slots=True)
class BreakdownBucket:
    name: str
    count: int = 0
    value: Decimal = _ZERO

    def add(self, amount: Decimal) -> None:
        self.count += 1
        self.value += amount


@dataclass(slots=True)
class ForecastAggregate:
    total_weighted_forecast: Decimal = _ZERO
    total_deal_count: int = 0
    by_product: dict[str, BreakdownBucket] = field(default_factory=dict)
    by_partner: dict[str, BreakdownBucket] = field(default_factory=dict)

    def breakdowns(self) -> list[tuple[str, BreakdownBucket]]:
        rows = [("product", bucket) for bucket in self.by_product.values()]
        rows.extend(("partner", bucket) for bucket in self.by_partner.values())
        return rows


def _bucket(groups: dict[str, BreakdownBucket], name: str | None) -> BreakdownBucket:
    key = name or UNASSIGNED_BUCKET
    bucket = groups.get(key)
    if bucket is None:
        bucket = BreakdownBucket(name=key)
        groups[key] = bucket
    return bucket


def aggregate_forecast(lines: Iterable[ForecastLine]) -> ForecastAggregate:
    aggregate = ForecastAggregate()
    for line in lines:
        amount = line.weighted
        aggregate.total_weighted_forecast += amount
        aggregate.total_deal_count += 1
        _bucket(aggregate.by_product, line.product_name).add(amount)
        _bucket(aggregate.by_partner, line.partner_name).add(amount)
    return aggregate
