"""
Allocation Optimizer Module
===========================

Target-weight construction for the rebalancing engine.

Pipeline (each stage renormalizes to a unit sum):
- Baseline: top-N assets by market cap, equal weight, box-clamped
- Diversification: penalize assets highly correlated with the rest
- Risk parity: blend with inverse-volatility weights (no target return only)
- Projection: scale-and-clip onto [min_weight, max_weight] with sum 1

The optimizer never raises on missing data: unknown volatility falls back to
a default, unknown market cap ranks last, zero prices yield zero amounts.

Author: Algo Trading Platform
License: MIT
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Mapping, Sequence

import numpy as np
from numpy.typing import NDArray

from config.settings import OptimizerSettings, get_logger
from core.types import (
    Allocation,
    Asset,
    CorrelationMatrix,
    OptimizationConstraints,
    PortfolioMetrics,
)

logger = get_logger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class OptimizerConfig:
    """
    Optimizer tuning constants.

    Attributes:
        default_volatility: Volatility assumed when an asset reports none
        correlation_threshold: |correlation| above which a pair is penalized
        correlation_penalty: Penalty per unit of average |correlation|
        max_correlation_penalty: Cap on the per-asset penalty
        blend_factor: Share of diversified weights in the risk-parity blend
        weight_tolerance: Tolerance for the unit-sum and box checks
    """
    default_volatility: float = 0.2
    correlation_threshold: float = 0.7
    correlation_penalty: float = 0.3
    max_correlation_penalty: float = 0.5
    blend_factor: float = 0.5
    weight_tolerance: float = 1e-9

    @classmethod
    def from_settings(cls, settings: OptimizerSettings) -> "OptimizerConfig":
        return cls(
            default_volatility=settings.default_volatility,
            correlation_threshold=settings.correlation_threshold,
            correlation_penalty=settings.correlation_penalty,
            max_correlation_penalty=settings.max_correlation_penalty,
            blend_factor=settings.blend_factor,
            weight_tolerance=settings.weight_tolerance,
        )


# =============================================================================
# UTILITY FUNCTIONS
# =============================================================================

def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """
    Pearson correlation of two equal-length series.

    Returns 0.0 for empty or mismatched series and when either series has
    zero variance.
    """
    if len(x) != len(y) or len(x) == 0:
        return 0.0

    xa = np.asarray(x, dtype=np.float64)
    ya = np.asarray(y, dtype=np.float64)
    if not (np.all(np.isfinite(xa)) and np.all(np.isfinite(ya))):
        return 0.0

    dx = xa - xa.mean()
    dy = ya - ya.mean()
    denominator = math.sqrt(float(np.dot(dx, dx)) * float(np.dot(dy, dy)))
    if denominator == 0.0:
        return 0.0

    return float(np.clip(np.dot(dx, dy) / denominator, -1.0, 1.0))


def calculate_correlation_matrix(returns: Mapping[str, Sequence[float]]) -> CorrelationMatrix:
    """
    Build a symmetric correlation matrix from per-symbol return histories.

    Args:
        returns: symbol -> return series

    Returns:
        symbol -> symbol -> correlation, diagonal 1.0
    """
    symbols = list(returns.keys())
    matrix: CorrelationMatrix = {s: {} for s in symbols}

    for i, s1 in enumerate(symbols):
        matrix[s1][s1] = 1.0
        for s2 in symbols[i + 1:]:
            corr = pearson_correlation(returns[s1], returns[s2])
            matrix[s1][s2] = corr
            matrix[s2][s1] = corr

    return matrix


def normalize_weights(weights: Mapping[str, float]) -> dict[str, float]:
    """Scale weights to sum to 1; all-zero input is returned unchanged."""
    total = sum(weights.values())
    if total == 0:
        return dict(weights)
    return {s: w / total for s, w in weights.items()}


def blend_weights(
    weights1: Mapping[str, float],
    weights2: Mapping[str, float],
    alpha: float,
) -> dict[str, float]:
    """Convex combination alpha * w1 + (1 - alpha) * w2, renormalized."""
    symbols = list(dict.fromkeys([*weights1.keys(), *weights2.keys()]))
    blended = {
        s: alpha * weights1.get(s, 0.0) + (1 - alpha) * weights2.get(s, 0.0)
        for s in symbols
    }
    return normalize_weights(blended)


def inverse_volatility_weights(volatilities: Mapping[str, float]) -> dict[str, float]:
    """Inverse-volatility (naive risk parity) weights summing to 1."""
    if not volatilities:
        return {}
    inverse = {s: 1.0 / v for s, v in volatilities.items()}
    return normalize_weights(inverse)


def project_to_bounds(
    weights: Mapping[str, float],
    min_weight: float,
    max_weight: float,
    tolerance: float = 1e-9,
) -> dict[str, float]:
    """
    Project weights onto {w : sum(w) = 1, min_weight <= w_i <= max_weight}.

    Finds the scale t for which sum(clip(t * w, min, max)) = 1 by bisection,
    which keeps the ordering of the input weights. When the box cannot hold a
    unit sum the weights are only renormalized.
    """
    symbols = list(weights.keys())
    n = len(symbols)
    if n == 0:
        return {}

    if n * min_weight > 1 + tolerance or n * max_weight < 1 - tolerance:
        logger.warning(
            f"Weight bounds [{min_weight}, {max_weight}] infeasible for {n} assets; "
            f"renormalizing only"
        )
        return normalize_weights(weights)

    base: NDArray[np.float64] = np.array(
        [max(weights[s], 0.0) for s in symbols], dtype=np.float64
    )
    if base.sum() <= 0:
        base = np.full(n, 1.0 / n)
    base = base / base.sum()

    if np.all(base >= min_weight - tolerance) and np.all(base <= max_weight + tolerance):
        return dict(zip(symbols, base.tolist()))

    def clipped_sum(t: float) -> float:
        return float(np.clip(t * base, min_weight, max_weight).sum())

    positive = base[base > 0]
    lo, hi = 0.0, max(1.0, max_weight / positive.min()) * 2.0
    for _ in range(200):
        mid = 0.5 * (lo + hi)
        if clipped_sum(mid) < 1.0:
            lo = mid
        else:
            hi = mid
        if hi - lo < 1e-15:
            break

    result = np.clip(hi * base, min_weight, max_weight)

    # Push the bisection residual onto the unclamped entries
    residual = 1.0 - result.sum()
    free = (result > min_weight) & (result < max_weight)
    if abs(residual) > 0 and free.any():
        free_total = result[free].sum()
        if free_total > 0:
            result[free] += residual * result[free] / free_total
        else:
            result[free] += residual / free.sum()

    return dict(zip(symbols, result.tolist()))


# =============================================================================
# ALLOCATION OPTIMIZER
# =============================================================================

class AllocationOptimizer:
    """
    Allocation optimizer over an upserted asset universe.

    Example:
        optimizer = AllocationOptimizer()
        optimizer.add_assets(assets)

        allocations = optimizer.optimize(
            expected_returns={"BTC": 0.08, "ETH": 0.08},
            constraints=OptimizationConstraints(max_assets=2),
            return_history=history,
        )
        deltas = optimizer.rebalance(allocations, holdings, portfolio_value)
    """

    def __init__(self, config: OptimizerConfig | None = None):
        """
        Initialize optimizer.

        Args:
            config: Tuning constants (defaults when omitted)
        """
        self.config = config or OptimizerConfig()
        self._assets: dict[str, Asset] = {}

    # -------------------------------------------------------------------------
    # Universe
    # -------------------------------------------------------------------------

    def add_asset(self, asset: Asset) -> None:
        """Insert or replace an asset by symbol."""
        self._assets[asset.symbol] = asset

    def add_assets(self, assets: Iterable[Asset]) -> None:
        for asset in assets:
            self.add_asset(asset)

    def get_asset(self, symbol: str) -> Asset | None:
        return self._assets.get(symbol)

    @property
    def assets(self) -> list[Asset]:
        """Assets in insertion order."""
        return list(self._assets.values())

    def _volatility_of(self, symbol: str) -> float:
        asset = self._assets.get(symbol)
        vol = asset.volatility if asset else None
        if vol is None or not math.isfinite(vol) or vol <= 0:
            return self.config.default_volatility
        return vol

    def price_of(self, symbol: str) -> float:
        asset = self._assets.get(symbol)
        if asset is None or not math.isfinite(asset.price) or asset.price < 0:
            return 0.0
        return asset.price

    def _market_cap_of(self, symbol: str) -> float:
        asset = self._assets.get(symbol)
        if asset is None or not math.isfinite(asset.market_cap):
            return 0.0
        return asset.market_cap

    # -------------------------------------------------------------------------
    # Correlation
    # -------------------------------------------------------------------------

    @staticmethod
    def calculate_correlation_matrix(returns: Mapping[str, Sequence[float]]) -> CorrelationMatrix:
        """Correlation snapshot for one optimization cycle."""
        return calculate_correlation_matrix(returns)

    # -------------------------------------------------------------------------
    # Optimization
    # -------------------------------------------------------------------------

    def optimize(
        self,
        expected_returns: Mapping[str, float],
        constraints: OptimizationConstraints,
        target_return: float | None = None,
        return_history: Mapping[str, Sequence[float]] | None = None,
        correlation_matrix: CorrelationMatrix | None = None,
    ) -> list[Allocation]:
        """
        Compute target weights.

        Args:
            expected_returns: symbol -> expected return; keys define eligibility
            constraints: Weight and count constraints
            target_return: Explicit target; disables the risk-parity blend
            return_history: Per-symbol returns used to build the correlation matrix
            correlation_matrix: Precomputed matrix (ignored when history is given)

        Returns:
            One allocation per selected symbol, weights summing to 1
        """
        errors = constraints.validate()
        if errors:
            logger.error(f"Invalid optimization constraints: {'; '.join(errors)}")
            return []

        symbols = self._select_symbols(expected_returns, constraints)
        if not symbols:
            logger.warning("No eligible symbols for optimization")
            return []

        weights = self._equal_weights(symbols, constraints)

        if return_history:
            correlation_matrix = self.calculate_correlation_matrix(return_history)
        if correlation_matrix:
            weights = self._apply_diversification(weights, symbols, correlation_matrix)

        if target_return is None:
            risk_parity = self.calculate_risk_parity_weights(symbols)
            weights = blend_weights(weights, risk_parity, self.config.blend_factor)

        weights = project_to_bounds(
            weights,
            constraints.min_weight,
            constraints.max_weight,
            self.config.weight_tolerance,
        )

        logger.info(
            "Optimized allocation: "
            + ", ".join(f"{s}={weights[s]:.4f}" for s in symbols)
        )

        return [Allocation(symbol=s, target_weight=weights[s]) for s in symbols]

    def _select_symbols(
        self,
        expected_returns: Mapping[str, float],
        constraints: OptimizationConstraints,
    ) -> list[str]:
        """Top symbols by market cap among those with a usable expected return."""
        candidates = []
        for symbol, expected in expected_returns.items():
            if expected is None or not math.isfinite(expected):
                logger.debug(f"Skipping {symbol}: no usable expected return")
                continue
            if (
                constraints.min_expected_return is not None
                and expected < constraints.min_expected_return
            ):
                logger.debug(f"Skipping {symbol}: expected return {expected:.4f} below floor")
                continue
            candidates.append(symbol)

        # Stable sort keeps caller order among equal caps
        candidates.sort(key=self._market_cap_of, reverse=True)
        return candidates[: constraints.max_assets]

    def _equal_weights(
        self,
        symbols: list[str],
        constraints: OptimizationConstraints,
    ) -> dict[str, float]:
        equal = 1.0 / len(symbols)
        clamped = max(constraints.min_weight, min(constraints.max_weight, equal))
        return normalize_weights({s: clamped for s in symbols})

    def _apply_diversification(
        self,
        weights: dict[str, float],
        symbols: list[str],
        correlation_matrix: CorrelationMatrix,
    ) -> dict[str, float]:
        """Reduce weights of assets highly correlated with the rest of the selection."""
        adjusted = dict(weights)
        cfg = self.config

        for s1 in symbols:
            correlated = [
                abs(correlation_matrix.get(s1, {}).get(s2, 0.0))
                for s2 in symbols
                if s2 != s1
            ]
            correlated = [c for c in correlated if c > cfg.correlation_threshold]
            if not correlated:
                continue

            avg_correlation = sum(correlated) / len(correlated)
            penalty = min(cfg.max_correlation_penalty, avg_correlation * cfg.correlation_penalty)
            adjusted[s1] *= 1 - penalty

            logger.debug(
                f"Diversification penalty {penalty:.3f} on {s1} "
                f"(avg |corr| {avg_correlation:.3f} over {len(correlated)} peers)"
            )

        return normalize_weights(adjusted)

    def calculate_risk_parity_weights(self, symbols: Sequence[str]) -> dict[str, float]:
        """Inverse-volatility weights for the given symbols."""
        return inverse_volatility_weights({s: self._volatility_of(s) for s in symbols})

    # -------------------------------------------------------------------------
    # Analytics and rebalancing
    # -------------------------------------------------------------------------

    def calculate_portfolio_metrics(
        self,
        allocations: Sequence[Allocation],
        expected_returns: Mapping[str, float],
        correlation_matrix: CorrelationMatrix | None = None,
    ) -> PortfolioMetrics:
        """
        Ex-ante return, volatility and diversification of an allocation.

        Missing correlations are treated as 0 off the diagonal.
        """
        if not allocations:
            return PortfolioMetrics()

        matrix = correlation_matrix or {}
        symbols = [a.symbol for a in allocations]
        w = np.array([a.target_weight for a in allocations], dtype=np.float64)
        vols = np.array([self._volatility_of(s) for s in symbols], dtype=np.float64)
        mu = np.array([expected_returns.get(s, 0.0) or 0.0 for s in symbols], dtype=np.float64)

        corr = np.eye(len(symbols))
        for i, s1 in enumerate(symbols):
            for j, s2 in enumerate(symbols):
                if i != j:
                    corr[i, j] = matrix.get(s1, {}).get(s2, 0.0)

        cov = np.outer(vols, vols) * corr
        variance = float(w @ cov @ w)
        vol = math.sqrt(variance) if variance > 0 else 0.0
        expected = float(w @ mu)

        total_value = sum(a.current_amount * self.price_of(a.symbol) for a in allocations)

        return PortfolioMetrics(
            total_value=total_value,
            expected_return=expected,
            volatility=vol,
            sharpe_ratio=expected / vol if vol > 0 else 0.0,
            diversification_ratio=float(w @ vols) / vol if vol > 0 else 1.0,
        )

    def rebalance(
        self,
        targets: Sequence[Allocation],
        current_holdings: Mapping[str, float],
        portfolio_value: float,
    ) -> list[Allocation]:
        """
        Diff target weights against current holdings.

        Held symbols absent from the targets get a zero target so they are
        sold down.

        Args:
            targets: Target allocations
            current_holdings: symbol -> quantity held
            portfolio_value: Total portfolio value

        Returns:
            Allocations with current/target amounts and rebalance deltas
        """
        target_weights = {a.symbol: a.target_weight for a in targets}
        for symbol, quantity in current_holdings.items():
            if symbol not in target_weights and quantity:
                target_weights[symbol] = 0.0

        result = []
        for symbol, target_weight in target_weights.items():
            current_amount = current_holdings.get(symbol, 0.0) or 0.0
            price = self.price_of(symbol)
            current_value = current_amount * price
            current_weight = current_value / portfolio_value if portfolio_value > 0 else 0.0

            target_value = target_weight * portfolio_value
            target_amount = target_value / price if price > 0 else 0.0

            result.append(
                Allocation(
                    symbol=symbol,
                    target_weight=target_weight,
                    current_weight=current_weight,
                    target_amount=target_amount,
                    current_amount=current_amount,
                    rebalance_amount=target_amount - current_amount,
                )
            )

        return result


__all__ = [
    "OptimizerConfig",
    "AllocationOptimizer",
    "pearson_correlation",
    "calculate_correlation_matrix",
    "normalize_weights",
    "blend_weights",
    "inverse_volatility_weights",
    "project_to_bounds",
]
