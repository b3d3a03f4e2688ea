"""Core mathematics and configuration for the PaperBet engine.

This package contains pure, sport-agnostic building blocks:

- ``odds_math``    — odds conversion, expected value, parlay pricing, payouts
- ``sport_config`` — per-sport scoring baselines and provider sport keys
- ``errors``       — domain exceptions shared by every layer

Nothing in this package imports from ``paperbet.services`` or ``paperbet.models``.
All modules are side-effect-free and unit-testable in isolation.
"""
