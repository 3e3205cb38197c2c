"""Read-only aggregate views over documents, profiles and the audit log."""

from typing import Dict, List, Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from docflow import audit, store
from docflow.models import Document, DocumentStatus, Profile

# Order used by the reports page
BREAKDOWN_ORDER = (
    DocumentStatus.APPROVED,
    DocumentStatus.REJECTED,
    DocumentStatus.PENDING,
    DocumentStatus.DRAFT,
)


def _empty_counts() -> Dict[str, int]:
    return {status.value: 0 for status in DocumentStatus}


def document_stats(db: Session) -> Dict[str, int]:
    """Counts per status plus the total, from a single grouped query."""
    counts = _empty_counts()
    rows = db.query(Document.status, func.count(Document.id)).group_by(Document.status).all()
    for status, count in rows:
        counts[status.value] = count
    counts["total"] = sum(counts[s.value] for s in DocumentStatus)
    return counts


def percentages(values: List[int]) -> List[int]:
    """
    Whole-number percentages of ``values`` that add up to exactly 100.

    Each share is its exact percentage rounded down or up; the leftover points
    go to the largest fractional parts first (earlier entries win ties).
    All zeros for an empty total.
    """
    total = sum(values)
    if total == 0:
        return [0] * len(values)
    exact = [v * 100 / total for v in values]
    result = [int(x) for x in exact]
    leftover = 100 - sum(result)
    by_remainder = sorted(range(len(values)), key=lambda i: (-(exact[i] - result[i]), i))
    for i in by_remainder[:leftover]:
        result[i] += 1
    return result


def breakdown(stats: Dict[str, int]) -> List[Dict[str, object]]:
    values = [stats[s.value] for s in BREAKDOWN_ORDER]
    return [
        {"label": status.value.capitalize(), "status": status, "value": value, "pct": pct}
        for status, value, pct in zip(BREAKDOWN_ORDER, values, percentages(values))
    ]


def user_breakdown(db: Session) -> List[Dict[str, object]]:
    """Documents per owner, split by status, with profile details where known."""
    per_user: Dict[str, Dict[str, object]] = {}

    def entry(user_id: str, profile: Optional[Profile] = None) -> Dict[str, object]:
        if user_id not in per_user:
            per_user[user_id] = {
                "user_id": user_id,
                "name": user_id,
                "role": None,
                **_empty_counts(),
                "total": 0,
            }
        row = per_user[user_id]
        if profile is not None:
            row["name"] = profile.display_name
            row["role"] = profile.role
        return row

    for profile in db.query(Profile).all():
        entry(profile.user_id, profile)

    rows = (
        db.query(Document.owner_id, Document.status, func.count(Document.id))
        .group_by(Document.owner_id, Document.status)
        .all()
    )
    for owner_id, status, count in rows:
        row = entry(owner_id)
        row[status.value] = count
        row["total"] += count

    return sorted(per_user.values(), key=lambda r: (-r["total"], r["user_id"]))


def dashboard(db: Session, limit: int = 5) -> Dict[str, object]:
    """Everything the dashboard shows, read inside one session transaction."""
    stats = document_stats(db)
    return {
        "stats": stats,
        "breakdown": breakdown(stats),
        "users": db.query(func.count(Profile.user_id)).scalar() or 0,
        "recent_documents": store.list_documents(db, limit=limit),
        "recent_activity": audit.list_recent(db, limit),
    }
