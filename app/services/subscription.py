# app/services/subscription.py
import logging
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from app.models.account_models import SubscriptionDetails, SubscriptionTier, TierFeatures
from .usage import UsageService, add_months, day_of
from .user_store import FREE_TRIAL_DAYS, UserStore

log = logging.getLogger("tablextract")

MB = 1024 * 1024

SUBSCRIPTION_FEATURES: Dict[SubscriptionTier, TierFeatures] = {
    SubscriptionTier.free: TierFeatures(
        extractions_per_day=3, max_file_size=5 * MB,
        advanced_export=False, multiple_tables_support=False, priority=False,
    ),
    SubscriptionTier.monthly: TierFeatures(
        extractions_per_day=20, max_file_size=20 * MB,
        advanced_export=True, multiple_tables_support=True, priority=False,
    ),
    SubscriptionTier.yearly: TierFeatures(
        extractions_per_day=50, max_file_size=50 * MB,
        advanced_export=True, multiple_tables_support=True, priority=True,
    ),
    SubscriptionTier.lifetime: TierFeatures(
        extractions_per_day=100, max_file_size=100 * MB,
        advanced_export=True, multiple_tables_support=True, priority=True,
    ),
}

# ceiling for any upload before the plan check narrows it
MAX_UPLOAD_SIZE = max(f.max_file_size for f in SUBSCRIPTION_FEATURES.values())


def default_end_date(tier: SubscriptionTier, start: datetime) -> Optional[datetime]:
    if tier == SubscriptionTier.lifetime:
        return None
    if tier == SubscriptionTier.monthly:
        return add_months(start, 1)
    if tier == SubscriptionTier.yearly:
        return add_months(start, 12)
    # free tier lapses after a week to encourage an upgrade
    return start + timedelta(days=FREE_TRIAL_DAYS)


class SubscriptionService:
    def __init__(self, users: UserStore, usage: UsageService):
        self.users = users
        self.usage = usage

    def get_subscription_details(self, user_id: str) -> Optional[SubscriptionDetails]:
        user = self.users.get_user(user_id)
        if user is None:
            log.warning(f"[subscription] no user row for {user_id}")
            return None
        tier = user.subscription_tier
        end = user.subscription_end
        is_active = tier == SubscriptionTier.lifetime or (end is not None and self.users.now() < end)
        return SubscriptionDetails(
            tier=tier,
            start_date=user.subscription_start,
            end_date=end,
            is_active=is_active,
            features=SUBSCRIPTION_FEATURES[tier],
        )

    def update_subscription(self, user_id: str, tier: SubscriptionTier, end_date: Optional[datetime] = None) -> bool:
        now = self.users.now()
        if tier == SubscriptionTier.lifetime:
            end = None
        elif end_date is not None:
            end = end_date
        else:
            end = default_end_date(tier, now)
        log.info(f"[subscription] {user_id} -> {tier.value} until {end}")
        return self.users.update_user(
            user_id, subscription_tier=tier, subscription_start=now, subscription_end=end,
        )

    def can_perform_extraction(self, user_id: str, file_size: Optional[int] = None) -> Tuple[bool, Optional[str]]:
        sub = self.get_subscription_details(user_id)
        if sub is None:
            return False, "Subscription details not found"
        if not sub.is_active:
            return False, "Subscription is not active"

        features = sub.features
        if file_size and file_size > features.max_file_size:
            return False, (
                "File size exceeds the limit for your subscription tier "
                f"({round(features.max_file_size / MB)}MB)"
            )

        usage = self.usage.get_user_usage(user_id)
        if usage is None:
            return False, "Could not verify usage limits"
        today = day_of(self.users.now())
        used_today = usage.extractions_today if usage.last_extraction_date[:10] == today else 0
        if used_today >= features.extractions_per_day:
            return False, f"You have reached your daily extraction limit ({features.extractions_per_day} per day)"
        return True, None
