"""
Standard type definitions for database models.

Provides consistent types for monetary and percentage fields across all models.
"""

from sqlalchemy import DECIMAL

# Standard money type for cash balances, commissions and fund amounts
# Precision: 18 digits total, 8 after decimal point
# Range: up to 9,999,999,999.99999999
MoneyType = DECIMAL(18, 8)

# Commission percentage type
# The halving schedule goes down to 0.09375% at level 5 and further
# halvings need more places, hence 6 decimal places
# Range: 0.000000 to 999999.999999
RatePercentType = DECIMAL(12, 6)
