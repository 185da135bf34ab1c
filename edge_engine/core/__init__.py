"""Core mathematics and configuration for the tick edge engine.

This package contains pure, stateless building blocks:

- ``statistics``: mean/SD, Pearson correlation, percentiles, VaR/CVaR,
  Sharpe, EMA and the ``BetaDistribution`` type
- ``kelly``: Kelly criterion sizing for accumulator payouts
- ``regimes``: market-regime labels and their fixed parameter records
- ``engine_config``: frozen configuration bundles (with env overrides)
- ``errors``: the engine's exception taxonomy

Nothing in this package imports from ``edge_engine.services``.
All modules are side-effect-free and unit-testable in isolation.
"""
