# app/services/usage.py
import calendar, json, logging
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

import redis

from app.models.account_models import HistoryEntry, UsageData, UsageStatistics
from .user_store import UserStore, user_key

log = logging.getLogger("tablextract")

HISTORY_DAYS = 30


def day_of(dt: datetime) -> str:
    return dt.date().isoformat()


def default_usage(now: datetime) -> UsageData:
    return UsageData(extractions_today=0, last_extraction_date=now.isoformat(),
                     total_extractions=0, extraction_history=[])


def add_months(dt: datetime, months: int) -> datetime:
    """Calendar month arithmetic, clamping the day (Jan 31 + 1 month -> Feb 28/29)."""
    idx = dt.month - 1 + months
    year, month = dt.year + idx // 12, idx % 12 + 1
    day = min(dt.day, calendar.monthrange(year, month)[1])
    return dt.replace(year=year, month=month, day=day)


def _entry_start(entry: HistoryEntry) -> datetime:
    d = date.fromisoformat(entry.date)
    return datetime(d.year, d.month, d.day, tzinfo=timezone.utc)


def bump_usage(usage: UsageData, now: datetime) -> UsageData:
    """One more extraction at ``now``; pure, so the redis transaction can retry it."""
    today = day_of(now)
    same_day = usage.last_extraction_date[:10] == today
    history: List[HistoryEntry] = [HistoryEntry(**e.model_dump()) for e in usage.extraction_history]
    for e in history:
        if e.date == today:
            e.count += 1
            break
    else:
        history.append(HistoryEntry(date=today, count=1))
    history.sort(key=lambda e: e.date)
    return UsageData(
        extractions_today=usage.extractions_today + 1 if same_day else 1,
        last_extraction_date=now.isoformat(),
        total_extractions=usage.total_extractions + 1,
        extraction_history=history[-HISTORY_DAYS:],
    )


class UsageService:
    def __init__(self, users: UserStore):
        self.users = users

    @property
    def r(self) -> redis.Redis:
        return self.users.r

    def get_user_usage(self, user_id: str) -> Optional[UsageData]:
        user = self.users.get_user(user_id)
        if user is None:
            return None
        if not user.usage_data:
            return default_usage(self.users.now())
        return UsageData.model_validate(user.usage_data)

    def track_extraction(self, user_id: str) -> bool:
        hk = user_key(user_id)
        result = {"ok": False}

        def txn(pipe: redis.client.Pipeline) -> None:
            if not pipe.exists(hk):
                result["ok"] = False
                return
            raw = pipe.hget(hk, "usage_data")
            now = self.users.now()
            current = UsageData.model_validate(json.loads(raw)) if raw else default_usage(now)
            updated = bump_usage(current, now)
            pipe.multi()
            pipe.hset(hk, "usage_data", updated.model_dump_json())
            result["ok"] = True

        # WATCH/MULTI: concurrent requests for the same user retry instead of losing a count
        self.r.transaction(txn, hk)
        log.info(f"[usage] track {user_id} -> {'ok' if result['ok'] else 'no such user'}")
        return result["ok"]

    def get_usage_statistics(self, user_id: str) -> Optional[UsageStatistics]:
        usage = self.get_user_usage(user_id)
        if usage is None:
            return None
        now = self.users.now()
        history = sorted(usage.extraction_history, key=lambda e: e.date)

        week_ago = now - timedelta(days=7)
        month_ago = add_months(now, -1)
        this_week = sum(e.count for e in history if _entry_start(e) >= week_ago)
        this_month = sum(e.count for e in history if _entry_start(e) >= month_ago)
        today = usage.extractions_today if usage.last_extraction_date[:10] == day_of(now) else 0
        daily_average = round(usage.total_extractions / len(history), 1) if history else 0.0

        return UsageStatistics(
            today=today,
            this_week=this_week,
            this_month=this_month,
            total=usage.total_extractions,
            daily_average=daily_average,
            history=history,
        )

    def reset_usage(self, user_id: str) -> bool:
        log.info(f"[usage] reset {user_id}")
        return self.users.update_user(user_id, usage_data=default_usage(self.users.now()).model_dump())
