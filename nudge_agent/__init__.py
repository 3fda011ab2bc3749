"""
Adaptive recommendation engine for a personal life tracker.

Ranks candidate "nudges" (start a pomodoro, take a walk, do a check-in...)
with per-action Bayesian linear models over a 50-feature context vector,
and learns from multi-timescale reward signals.
"""

__version__ = "0.3.0"
