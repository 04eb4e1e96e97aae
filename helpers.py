import calendar
import time
from datetime import datetime, timezone
from typing import Any, Optional, Dict, Tuple
from fastapi import Request, UploadFile

# ---------------------------
# Simple internal TTL cache (in-memory)
# ---------------------------
CacheStore = Dict[str, Tuple[float, Any]]
# value is stored as: key -> (expires_at_epoch, data)

def cache_get(store: CacheStore, key: str) -> Optional[Any]:
    """
    Return cached value if not expired, else None.
    """
    if not store:
        return None
    hit = store.get(key)
    if not hit:
        return None

    expires_at, data = hit
    if time.time() >= expires_at:
        store.pop(key, None)
        return None
    return data


def cache_set(store: CacheStore, key: str, value: Any, ttl_seconds: int) -> None:
    """
    Set cached value with ttl.
    """
    if ttl_seconds <= 0:
        # treat as "no cache"
        store.pop(key, None)
        return
    store[key] = (time.time() + ttl_seconds, value)


def cache_clear_prefix(store: CacheStore, prefix: str) -> int:
    """
    Remove all keys starting with prefix. Returns number removed.
    """
    if not store:
        return 0
    keys = [k for k in store.keys() if k.startswith(prefix)]
    for k in keys:
        store.pop(k, None)
    return len(keys)


def tenant_prefix(tenant_id: str) -> str:
    return f"tenant={tenant_id}:"


def clear_tenant_cache(request: Request, tenant_id: str) -> int:
    """
    Drop the tenant's cached dashboard data after a write that changes scores, alerts or invoices.
    """
    cache = getattr(request.app.state, "ttl_cache", None)
    return cache_clear_prefix(cache, tenant_prefix(tenant_id)) if cache is not None else 0


# ---------------------------
# Time
# ---------------------------

def utcnow() -> datetime:
    """
    Naive UTC timestamp (all DateTime columns are stored naive).
    """
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ---------------------------
# Uploads
# ---------------------------

async def read_upload(file: UploadFile, max_bytes: int) -> bytes:
    """
    Read an uploaded file fully; refuses payloads larger than max_bytes.
    """
    data = await file.read(max_bytes + 1)
    if len(data) > max_bytes:
        raise ValueError(f"file exceeds {max_bytes} bytes")
    return data


def months_ago(now: datetime, months: int) -> datetime:
    """
    Same day-of-month `months` calendar months back (clamped to month length).
    """
    total = now.year * 12 + (now.month - 1) - months
    year, month = divmod(total, 12)
    day = min(now.day, calendar.monthrange(year, month + 1)[1])
    return now.replace(year=year, month=month + 1, day=day)
