"""Display metrics projected from a position snapshot."""
from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal

from ..models import Position, PositionMetrics

_ONE = Decimal(1)


@dataclass(frozen=True)
class MetricsProjector:
    danger_threshold_percent: Decimal = Decimal(75)

    def project(self, position: Position) -> PositionMetrics:
        equity = position.collateral_value - position.debt_value
        leverage = position.collateral_value / equity if equity > 0 else _ONE
        ltv_percent = Decimal(position.ltv_bps) / 100
        return PositionMetrics(
            equity=equity,
            leverage_multiple=leverage,
            ltv_percent=ltv_percent,
            danger=ltv_percent > self.danger_threshold_percent,
        )
