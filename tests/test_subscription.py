from datetime import datetime, timedelta, timezone

import pytest

from app.models.account_models import SubscriptionTier
from app.services.subscription import MAX_UPLOAD_SIZE, MB, SUBSCRIPTION_FEATURES, SubscriptionService, default_end_date
from app.services.usage import UsageService
from app.services.user_store import UserStore


@pytest.fixture
def subs(r, clock):
    users = UserStore(r, now=clock)
    users.ensure_user("u1")
    return SubscriptionService(users, UsageService(users))


def test_free_tier_defaults(subs, clock):
    details = subs.get_subscription_details("u1")
    assert details.tier == SubscriptionTier.free
    assert details.is_active is True
    assert details.end_date == clock.now + timedelta(days=7)
    assert details.features == SUBSCRIPTION_FEATURES[SubscriptionTier.free]
    assert details.features.extractions_per_day == 3
    assert details.features.max_file_size == 5 * MB


def test_trial_expires(subs, clock):
    clock.now += timedelta(days=8)
    assert subs.get_subscription_details("u1").is_active is False
    assert subs.can_perform_extraction("u1") == (False, "Subscription is not active")


def test_missing_user(subs):
    assert subs.get_subscription_details("ghost") is None
    assert subs.can_perform_extraction("ghost") == (False, "Subscription details not found")
    assert subs.update_subscription("ghost", SubscriptionTier.monthly) is False


def test_file_size_limit(subs):
    ok, reason = subs.can_perform_extraction("u1", file_size=6 * MB)
    assert ok is False
    assert reason == "File size exceeds the limit for your subscription tier (5MB)"
    assert subs.can_perform_extraction("u1", file_size=4 * MB) == (True, None)


def test_daily_limit(subs, clock):
    for _ in range(3):
        assert subs.can_perform_extraction("u1") == (True, None)
        subs.usage.track_extraction("u1")
    assert subs.can_perform_extraction("u1") == (
        False, "You have reached your daily extraction limit (3 per day)",
    )
    # the count belongs to yesterday once the date rolls over
    clock.now += timedelta(days=1)
    assert subs.can_perform_extraction("u1") == (True, None)


def test_upgrade_to_monthly(subs, clock):
    assert subs.update_subscription("u1", SubscriptionTier.monthly) is True
    details = subs.get_subscription_details("u1")
    assert details.tier == SubscriptionTier.monthly
    assert details.start_date == clock.now
    assert details.end_date == datetime(2024, 4, 15, 12, 0, tzinfo=timezone.utc)
    assert details.features.advanced_export is True
    assert subs.can_perform_extraction("u1", file_size=15 * MB) == (True, None)


def test_explicit_end_date(subs):
    end = datetime(2030, 1, 1, tzinfo=timezone.utc)
    subs.update_subscription("u1", SubscriptionTier.yearly, end)
    assert subs.get_subscription_details("u1").end_date == end


def test_lifetime_never_ends(subs, clock):
    subs.update_subscription("u1", SubscriptionTier.lifetime, datetime(2000, 1, 1, tzinfo=timezone.utc))
    details = subs.get_subscription_details("u1")
    assert details.end_date is None
    assert details.is_active is True
    clock.now += timedelta(days=3650)
    assert subs.get_subscription_details("u1").is_active is True


@pytest.mark.parametrize("tier,expected", [
    (SubscriptionTier.free, datetime(2024, 1, 8, tzinfo=timezone.utc)),
    (SubscriptionTier.monthly, datetime(2024, 2, 1, tzinfo=timezone.utc)),
    (SubscriptionTier.yearly, datetime(2025, 1, 1, tzinfo=timezone.utc)),
    (SubscriptionTier.lifetime, None),
])
def test_default_end_date(tier, expected):
    assert default_end_date(tier, datetime(2024, 1, 1, tzinfo=timezone.utc)) == expected


def test_upload_ceiling_is_the_largest_plan_limit():
    assert MAX_UPLOAD_SIZE == SUBSCRIPTION_FEATURES[SubscriptionTier.lifetime].max_file_size == 100 * MB
