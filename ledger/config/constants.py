"""
Business defaults for the rewards program.

Used to seed the first program settings version. Once a version exists,
the live values are whatever the admin published last; nothing in the
core reads these constants at operation time.
"""

from decimal import Decimal

# Commission allocation (percent of order amount)
DEFAULT_DIRECT_COMMISSION_PERCENT = Decimal("3")
DEFAULT_TREE_COMMISSION_POOL_PERCENT = Decimal("3")
DEFAULT_TRUST_FUND_PERCENT = Decimal("3")
DEFAULT_DEVELOPMENT_FUND_PERCENT = Decimal("1")
DEFAULT_TOTAL_ALLOCATION_PERCENT = Decimal("10")

# Halving schedule for tree commission (level -> percent of order amount)
DEFAULT_TREE_COMMISSION_LEVELS = {
    1: Decimal("1.5"),
    2: Decimal("0.75"),
    3: Decimal("0.375"),
    4: Decimal("0.1875"),
    5: Decimal("0.09375"),
}

# Virtual referrals bought with points
DEFAULT_VIRTUAL_TREES_ENABLED = True
DEFAULT_POINTS_PER_VIRTUAL_TREE = 100
DEFAULT_MAX_VIRTUAL_TREES_PER_USER = 5
DEFAULT_VIRTUAL_AUTO_CREATE_ENABLED = True

# Manual points -> cash conversion
DEFAULT_CASH_CONVERSION_ENABLED = True
DEFAULT_POINTS_PER_CONVERSION = 50
DEFAULT_CASH_PER_CONVERSION = Decimal("25")

# Virtual users never log in; they get a system mailbox
VIRTUAL_USER_EMAIL_DOMAIN = "system.local"

# Referral code alphabet and length
REFERRAL_CODE_LENGTH = 8
VIRTUAL_REFERRAL_CODE_PREFIX = "VIR"
