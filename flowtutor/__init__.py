"""
FlowTutor Core

Adaptive difficulty and progress ledger for a language-tutoring assistant.

The package provides:
1. Adaptive learning engine: per-turn scoring, flow-state detection and
   difficulty recommendations with an emergency override
2. Gamification ledger: XP and levels, daily streaks with freezes, and the
   mistake garden, persisted through optimistic transactions
"""

__version__ = "1.0.0"
