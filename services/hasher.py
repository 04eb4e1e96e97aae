import hashlib
import json


def canonical_lines(lines: list[dict]) -> list[dict]:
    """
    Same line content always yields the same list: rounded numbers,
    stripped text, ordered by line number. Unknown keys are dropped.
    """
    normalized: list[dict] = []

    for pos, ln in enumerate(lines or [], start=1):
        normalized.append(
            {
                "line_number": int(ln.get("line_number") or pos),
                "description": (ln.get("description") or "").strip(),
                "quantity": round(float(ln.get("quantity") or 0), 4),
                "unit_price": round(float(ln.get("unit_price") or 0), 4),
                "line_total": round(float(ln.get("line_total") or 0), 2),
            }
        )

    normalized.sort(key=lambda x: (x["line_number"], x["description"]))

    return normalized


def lines_hash(lines: list[dict]) -> str:
    payload = canonical_lines(lines)
    raw = json.dumps(payload, separators=(",", ":"), ensure_ascii=False)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
