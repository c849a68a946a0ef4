from decimal import Decimal
from typing import Any, Dict, List

from sqlalchemy import func
from sqlalchemy.orm import Session

from . import models

TOP_N = 5
RECENT_TRANSACTIONS = 50


def _date_label(value) -> str:
    return f"{value:%b} {value.day}, {value.year}"


def get_user_analytics(db: Session, user_id: str) -> Dict[str, Any]:
    """
    Creator-facing rollup: per-file views/purchases/revenue plus totals,
    leaderboards and the most recent sales. Views come from the view log.
    """
    files = db.query(models.File).filter(models.File.owner_id == user_id).all()

    transactions = (
        db.query(models.Transaction)
        .filter(models.Transaction.creator_id == user_id)
        .order_by(models.Transaction.created_at.desc())
        .limit(RECENT_TRANSACTIONS)
        .all()
    )

    view_rows = (
        db.query(models.FileView.file_id, func.count(models.FileView.id))
        .join(models.File, models.File.id == models.FileView.file_id)
        .filter(models.File.owner_id == user_id)
        .group_by(models.FileView.file_id)
        .all()
    )
    views_by_file = dict(view_rows)

    revenue_by_file: Dict[str, Decimal] = {}
    for tx in transactions:
        revenue_by_file[tx.file_id] = revenue_by_file.get(tx.file_id, Decimal("0")) + Decimal(tx.amount)

    file_analytics: List[Dict[str, Any]] = []
    for file in files:
        revenue = revenue_by_file.get(file.id, Decimal(file.price) * file.total_purchases)
        file_analytics.append({
            "id": file.id,
            "title": file.title,
            "views": views_by_file.get(file.id, 0),
            "purchases": file.total_purchases,
            "revenue": float(revenue),
        })

    top_viewed = sorted(file_analytics, key=lambda item: item["views"], reverse=True)[:TOP_N]
    top_selling = sorted(file_analytics, key=lambda item: item["revenue"], reverse=True)[:TOP_N]

    return {
        "totals": {
            "revenue": sum(item["revenue"] for item in file_analytics),
            "views": sum(item["views"] for item in file_analytics),
            "files": len(files),
        },
        "file_analytics": file_analytics,
        "top_viewed": top_viewed,
        "top_selling": top_selling,
        "recent_transactions": [
            {
                "id": tx.id,
                "amount": float(tx.amount),
                "currency": tx.currency,
                "created_at_label": _date_label(tx.created_at),
                "file_id": tx.file_id,
            }
            for tx in transactions
        ],
    }
