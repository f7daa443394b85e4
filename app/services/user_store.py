# app/services/user_store.py
import json, logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

import redis

from app.models.account_models import SubscriptionTier, UserRecord

log = logging.getLogger("tablextract")

HPFX = "tablextract:user:"          # one hash per user

FREE_TRIAL_DAYS = 7


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def user_key(user_id: str) -> str:
    return f"{HPFX}{user_id}"


def _dt(v: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(v) if v else None


def _encode(fields: Dict[str, Any]) -> Dict[str, str]:
    # redis hashes only hold strings; None is stored as ""
    out: Dict[str, str] = {}
    for k, v in fields.items():
        if v is None:
            out[k] = ""
        elif isinstance(v, datetime):
            out[k] = v.isoformat()
        elif isinstance(v, SubscriptionTier):
            out[k] = v.value
        elif isinstance(v, (dict, list)):
            out[k] = json.dumps(v, ensure_ascii=False)
        else:
            out[k] = str(v)
    return out


def decode_user(data: Dict[str, str]) -> UserRecord:
    usage = None
    if data.get("usage_data"):
        try:
            usage = json.loads(data["usage_data"])
        except ValueError as e:
            log.warning(f"[redis] user {data.get('id')} usage_data is not JSON: {e}")
    return UserRecord(
        id=data["id"],
        email=data.get("email", ""),
        created_at=_dt(data.get("created_at")),
        subscription_tier=SubscriptionTier(data.get("subscription_tier") or "free"),
        subscription_start=_dt(data.get("subscription_start")) or _dt(data.get("created_at")),
        subscription_end=_dt(data.get("subscription_end")),
        usage_data=usage,
    )


class UserStore:
    def __init__(self, r: redis.Redis, now: Callable[[], datetime] = utcnow):
        self.r = r
        self.now = now

    def get_user(self, user_id: str) -> Optional[UserRecord]:
        hk = user_key(user_id)
        data = self.r.hgetall(hk)
        log.info(f"[redis] HGETALL {hk} -> {'hit' if data else 'miss'}")
        if not data:
            return None
        return decode_user(data)

    def ensure_user(self, user_id: str, email: str = "") -> UserRecord:
        """First sight of an identity creates a free-tier row."""
        user = self.get_user(user_id)
        if user:
            return user
        now = self.now()
        fields = {
            "id": user_id,
            "email": email,
            "created_at": now,
            "subscription_tier": SubscriptionTier.free,
            "subscription_start": now,
            "subscription_end": now + timedelta(days=FREE_TRIAL_DAYS),
            "usage_data": None,
        }
        hk = user_key(user_id)
        log.info(f"[redis] HSETNX/HSET {hk} new free-tier user")
        # hsetnx on id guards against two first requests racing
        if self.r.hsetnx(hk, "id", user_id):
            self.r.hset(hk, mapping=_encode(fields))
        return self.get_user(user_id)

    def update_user(self, user_id: str, **fields: Any) -> bool:
        hk = user_key(user_id)
        if not self.r.exists(hk):
            log.warning(f"[redis] update {hk}: no such user")
            return False
        log.info(f"[redis] HSET {hk} {sorted(fields)}")
        self.r.hset(hk, mapping=_encode(fields))
        return True
