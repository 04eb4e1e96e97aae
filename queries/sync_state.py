from sqlalchemy.orm import Session
from models.sync_state import SyncState


def get_state(db: Session, tenant_id: str, key: str) -> str | None:
    row = (
        db.query(SyncState)
        .filter(SyncState.tenant_id == tenant_id, SyncState.key == key)
        .first()
    )
    return row.value if row else None


def set_state(db: Session, tenant_id: str, key: str, value: str | None) -> None:
    row = (
        db.query(SyncState)
        .filter(SyncState.tenant_id == tenant_id, SyncState.key == key)
        .first()
    )
    if not row:
        row = SyncState(tenant_id=tenant_id, key=key, value=value)
        db.add(row)
    else:
        row.value = value
    db.commit()
