"""
Centralized subscription tier configuration constants.

Every tier quota, price and feature flag for Base Coach lives here so that
limit checks, the pricing page and trial warnings all read the same numbers.
"""

from decimal import Decimal

UNLIMITED = -1  # Sentinel for unbounded quotas

# Free Tier Configuration
FREE_MAX_TEAMS = 1
FREE_MAX_PLAYERS_PER_TEAM = 15
FREE_AI_INSIGHTS_PER_MONTH = 0
FREE_SESSION_HISTORY_DAYS = 30
FREE_PRICE_MONTHLY = Decimal("0")
FREE_PRICE_ANNUAL = Decimal("0")

# Pro Tier Configuration
PRO_MAX_TEAMS = 5
PRO_MAX_PLAYERS_PER_TEAM = UNLIMITED
PRO_AI_INSIGHTS_PER_MONTH = 5
PRO_SESSION_HISTORY_DAYS = UNLIMITED
PRO_PRICE_MONTHLY = Decimal("49")
PRO_PRICE_ANNUAL = Decimal("490")  # Two months free

# Premium Tier Configuration
PREMIUM_MAX_TEAMS = UNLIMITED
PREMIUM_MAX_PLAYERS_PER_TEAM = UNLIMITED
PREMIUM_AI_INSIGHTS_PER_MONTH = UNLIMITED
PREMIUM_SESSION_HISTORY_DAYS = UNLIMITED
PREMIUM_PRICE_MONTHLY = Decimal("149")
PREMIUM_PRICE_ANNUAL = Decimal("1490")

# Enterprise Tier Configuration (custom contracts, priced on request)
ENTERPRISE_MAX_TEAMS = UNLIMITED
ENTERPRISE_MAX_PLAYERS_PER_TEAM = UNLIMITED
ENTERPRISE_AI_INSIGHTS_PER_MONTH = UNLIMITED
ENTERPRISE_SESSION_HISTORY_DAYS = UNLIMITED
ENTERPRISE_PRICE_MONTHLY = None
ENTERPRISE_PRICE_ANNUAL = None

# Display order only, never used for arithmetic comparisons
TIER_ORDER = ("free", "pro", "premium", "enterprise")

# Trial Configuration
TRIAL_DAYS = 14
TRIAL_TIER = "pro"
MILESTONE_DAYS = {7: "7days", 3: "3days", 0: "expired"}
HEALTHY_PHASE_MIN_DAYS = 7

# Quota slot lease, covers the gap between a slot claim and its release
SLOT_LEASE_SECONDS = 60

# Pricing Configuration
CURRENCY = "BRL"
CURRENCY_SYMBOL = "R$"

# Feature flags per tier
TIER_FEATURES = {
    "free": {
        "radar_charts": False,
        "evolution_charts": False,
        "ai_insights": False,
        "pdf_export": False,
        "csv_export": False,
        "attendance_tracking": False,
        "session_templates": False,
        "custom_valences": False,
        "parent_portal": False,
        "multi_coach": False,
        "api_access": False,
        "custom_branding": "none",
    },
    "pro": {
        "radar_charts": True,
        "evolution_charts": True,
        "ai_insights": True,
        "pdf_export": True,
        "csv_export": True,
        "attendance_tracking": True,
        "session_templates": True,
        "custom_valences": False,
        "parent_portal": False,
        "multi_coach": False,
        "api_access": False,
        "custom_branding": "logo",
    },
    "premium": {
        "radar_charts": True,
        "evolution_charts": True,
        "ai_insights": True,
        "pdf_export": True,
        "csv_export": True,
        "attendance_tracking": True,
        "session_templates": True,
        "custom_valences": True,
        "parent_portal": True,
        "multi_coach": True,
        "api_access": False,
        "custom_branding": "full",
    },
    "enterprise": {
        "radar_charts": True,
        "evolution_charts": True,
        "ai_insights": True,
        "pdf_export": True,
        "csv_export": True,
        "attendance_tracking": True,
        "session_templates": True,
        "custom_valences": True,
        "parent_portal": True,
        "multi_coach": True,
        "api_access": True,
        "custom_branding": "white-label",
    },
}

# Descriptions for the pricing page
FREE_DESCRIPTION = "Try the platform with a single team"
PRO_DESCRIPTION = "For serious coaches who want charts, exports and AI insights"
PREMIUM_DESCRIPTION = "For academies running several teams"
ENTERPRISE_DESCRIPTION = "For clubs and organizations, priced on request"
