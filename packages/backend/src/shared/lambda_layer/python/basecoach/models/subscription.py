from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pydantic import BaseModel, ConfigDict, Field, computed_field, model_validator
from typing import FrozenSet, Optional

from basecoach.constants.subscription_tiers import UNLIMITED


class SubscriptionError(Exception):
    """Base exception for subscription and entitlement errors"""

    pass


class TrialNotEligible(SubscriptionError):
    """The user cannot start a trial in their current state"""

    def __init__(self, user_id: str, reason: str = "not eligible for a trial"):
        self.user_id = user_id
        self.reason = reason
        super().__init__(f"User {user_id} {reason}")


class TrialAlreadyUsed(TrialNotEligible):
    """The user already consumed their trial"""

    def __init__(self, user_id: str):
        super().__init__(user_id, reason="already used their trial")


class StorageUnavailable(SubscriptionError):
    """The subscription store could not be reached or rejected the call"""

    pass


class DataIntegrityError(SubscriptionError):
    """Stored subscription data is malformed"""

    pass


class QuotaExceeded(SubscriptionError):
    """A resource creation was denied by the tier quota"""

    def __init__(self, decision: "LimitDecision"):
        self.decision = decision
        super().__init__(
            f"{decision.resource_type.value} limit reached ({decision.limit}) on {decision.tier.value} tier"
        )


class SubscriptionTier(str, Enum):
    """Subscription tier enumeration"""
    FREE = "free"
    PRO = "pro"
    PREMIUM = "premium"
    ENTERPRISE = "enterprise"


class SubscriptionStatus(str, Enum):
    """Subscription status enumeration"""
    ACTIVE = "active"
    TRIALING = "trialing"
    EXPIRED = "expired"


class ResourceType(str, Enum):
    """Quota-gated resources"""
    TEAMS = "teams"
    PLAYERS = "players"
    AI_INSIGHTS = "ai_insights"


class MilestoneKey(str, Enum):
    """One-time trial warnings"""
    SEVEN_DAYS = "7days"
    THREE_DAYS = "3days"
    EXPIRED = "expired"


class TrialPhase(str, Enum):
    """Severity of the trial countdown, drives presentation only"""
    HEALTHY = "healthy"
    URGENT = "urgent"
    EXPIRED = "expired"


class TierLimits(BaseModel):
    """Resource quotas and prices for a tier, -1 means unlimited"""
    model_config = ConfigDict(frozen=True)

    max_teams: int = Field(description="Active teams allowed per coach")
    max_players_per_team: int = Field(description="Active players allowed per team")
    ai_insights_per_month: int = Field(description="AI insights allowed per month")
    session_history_days: int = Field(description="Days of session history visible")
    monthly_price: Optional[Decimal] = Field(default=None, description="None means custom quote")
    annual_price: Optional[Decimal] = Field(default=None, description="None means custom quote")

    def limit_for(self, resource_type: ResourceType) -> int:
        return {
            ResourceType.TEAMS: self.max_teams,
            ResourceType.PLAYERS: self.max_players_per_team,
            ResourceType.AI_INSIGHTS: self.ai_insights_per_month,
        }[resource_type]


class TierFeatures(BaseModel):
    """Feature flags unlocked by a tier"""
    model_config = ConfigDict(frozen=True)

    radar_charts: bool = False
    evolution_charts: bool = False
    ai_insights: bool = False
    pdf_export: bool = False
    csv_export: bool = False
    attendance_tracking: bool = False
    session_templates: bool = False
    custom_valences: bool = False
    parent_portal: bool = False
    multi_coach: bool = False
    api_access: bool = False
    custom_branding: str = Field(default="none", description="none, logo, full or white-label")


class Subscription(BaseModel):
    """The authoritative subscription record of a user"""
    user_id: str = Field(description="Unique user identifier")
    tier: SubscriptionTier = Field(default=SubscriptionTier.FREE)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)
    trial_ends_at: Optional[datetime] = Field(default=None)
    trial_used: bool = Field(default=False, description="Set once the user starts a trial, never cleared")
    trial_id: Optional[str] = Field(default=None, description="Id of the latest trial instance")

    # AI insight usage for the current month
    ai_insights_used: int = Field(default=0)
    ai_insights_reset_at: Optional[datetime] = Field(default=None)

    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @model_validator(mode="after")
    def check_trial_window(self) -> "Subscription":
        trialing = self.status == SubscriptionStatus.TRIALING
        if trialing != (self.trial_ends_at is not None):
            raise ValueError("trial_ends_at must be set if and only if status is trialing")
        return self

    @property
    def is_trialing(self) -> bool:
        return self.status == SubscriptionStatus.TRIALING

    @computed_field
    @property
    def effective_tier(self) -> SubscriptionTier:
        """Tier whose limits apply right now, the trial tier while trialing"""
        return self.tier

    @computed_field
    @property
    def billing_tier(self) -> SubscriptionTier:
        """Tier the user actually pays for"""
        if self.is_trialing:
            return SubscriptionTier.FREE
        return self.tier


class MilestoneLog(BaseModel):
    """Milestones already shown for one trial instance"""
    trial_id: Optional[str] = None
    keys: FrozenSet[MilestoneKey] = frozenset()

    def __contains__(self, key: MilestoneKey) -> bool:
        return key in self.keys


class LimitDecision(BaseModel):
    """Outcome of a quota check, -1 limit/remaining means unlimited"""
    resource_type: ResourceType
    tier: SubscriptionTier
    allowed: bool
    limit: int
    remaining: int
    current_count: int

    @computed_field
    @property
    def unlimited(self) -> bool:
        return self.limit == UNLIMITED

    @computed_field
    @property
    def upgrade_required(self) -> bool:
        return not self.allowed


class HistoryEntry(BaseModel):
    """A recorded subscription transition"""
    user_id: str
    event: str
    from_tier: Optional[SubscriptionTier] = None
    to_tier: SubscriptionTier
    from_status: Optional[SubscriptionStatus] = None
    to_status: SubscriptionStatus
    at: datetime
