"""
Points Economy

Ledger-backed achievement points for a tutor/student platform: awards,
a finite-inventory reward catalog, tutor-approved redemptions and a
balance leaderboard. Every balance change is explained by a ledger entry.
"""

__version__ = "1.0.0"
