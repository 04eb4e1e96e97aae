from fastapi import Header, HTTPException, status


def get_tenant_id(x_tenant_id: str = Header(default="")) -> str:
    """
    Resolve the calling tenant from the X-Tenant-ID header.
    Every query downstream filters by this value.
    """
    tenant_id = (x_tenant_id or "").strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return tenant_id
