# app/services/extraction_store.py
import json, logging, uuid
from datetime import datetime
from typing import Callable, Dict, List, Optional

import redis

from app.models.account_models import ExtractionMetadata, ExtractionRecord
from app.models.table_models import ExtractionData, ExtractionResult
from .user_store import utcnow

log = logging.getLogger("tablextract")

HPFX = "tablextract:extraction:"       # one hash per extraction
ZPFX = "tablextract:user_extractions:" # per-user sorted set, score = created_at


def _hkey(extraction_id: str) -> str:
    return f"{HPFX}{extraction_id}"


def _zkey(user_id: str) -> str:
    return f"{ZPFX}{user_id}"


def new_extraction_id() -> str:
    return uuid.uuid4().hex


def decode_record(data: Dict[str, str]) -> ExtractionRecord:
    return ExtractionRecord(
        id=data["id"],
        user_id=data["user_id"],
        extraction_data=ExtractionData.model_validate(json.loads(data["extraction_data"])),
        metadata=ExtractionMetadata.model_validate(json.loads(data["metadata"])),
        visible=data.get("visible", "1") == "1",
        created_at=datetime.fromisoformat(data["created_at"]),
        updated_at=datetime.fromisoformat(data["updated_at"]),
    )


class ExtractionStore:
    def __init__(self, r: redis.Redis, now: Callable[[], datetime] = utcnow):
        self.r = r
        self.now = now

    def save_extraction(self, user_id: str, result: ExtractionResult, metadata: ExtractionMetadata) -> ExtractionRecord:
        if not result.success or result.data is None:
            raise ValueError("Cannot save unsuccessful extraction")
        extraction_id = new_extraction_id()
        now = self.now()
        hk = _hkey(extraction_id)
        payload = {
            "id": extraction_id,
            "user_id": user_id,
            "extraction_data": result.data.model_dump_json(by_alias=True, exclude_none=True),
            "metadata": metadata.model_dump_json(),
            "visible": "1",
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }
        log.info(f"[redis] HSET {hk} + ZADD {_zkey(user_id)} rows={len(result.data.rows)}")
        p = self.r.pipeline()
        p.hset(hk, mapping=payload)
        p.zadd(_zkey(user_id), {extraction_id: now.timestamp()})
        p.execute()
        return decode_record(payload)

    def _load(self, ids: List[str]) -> List[ExtractionRecord]:
        if not ids:
            return []
        p = self.r.pipeline()
        for i in ids:
            p.hgetall(_hkey(i))
        out = []
        for i, data in zip(ids, p.execute()):
            if not data:
                log.warning(f"[redis] {_hkey(i)} listed but missing")
                continue
            out.append(decode_record(data))
        return out

    def get_extraction_history(self, user_id: str, limit: int = 10, offset: int = 0,
                               include_hidden: bool = False) -> List[ExtractionRecord]:
        """Newest first."""
        zk = _zkey(user_id)
        if include_hidden:
            ids = self.r.zrevrange(zk, offset, offset + limit - 1)
            return self._load(ids)
        # hidden rows are interleaved, so filter before paging
        records = [rec for rec in self._load(self.r.zrevrange(zk, 0, -1)) if rec.visible]
        return records[offset:offset + limit]

    def get_extraction(self, extraction_id: str, user_id: str) -> Optional[ExtractionRecord]:
        data = self.r.hgetall(_hkey(extraction_id))
        log.info(f"[redis] HGETALL {_hkey(extraction_id)} -> {'hit' if data else 'miss'}")
        if not data or data.get("user_id") != user_id:
            return None
        return decode_record(data)

    def delete_extraction(self, extraction_id: str, user_id: str) -> bool:
        if self.get_extraction(extraction_id, user_id) is None:
            return False
        log.info(f"[redis] DEL {_hkey(extraction_id)} + ZREM")
        p = self.r.pipeline()
        p.delete(_hkey(extraction_id))
        p.zrem(_zkey(user_id), extraction_id)
        p.execute()
        return True

    def toggle_extractions_visibility(self, user_id: str, extraction_ids: List[str], visible: bool) -> int:
        """Only rows owned by ``user_id`` change. Returns how many did."""
        now = self.now().isoformat()
        changed = 0
        p = self.r.pipeline()
        for i in extraction_ids:
            if self.r.hget(_hkey(i), "user_id") != user_id:
                continue
            p.hset(_hkey(i), mapping={"visible": "1" if visible else "0", "updated_at": now})
            changed += 1
        p.execute()
        log.info(f"[redis] visibility={visible} for {changed}/{len(extraction_ids)} extractions")
        return changed
