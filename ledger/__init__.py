"""
Referral rewards ledger.

Multi-level commission distribution, referral tree placement and the
points ledger that backs virtual referrals and cash conversion.
"""

__version__ = "1.0.0"
