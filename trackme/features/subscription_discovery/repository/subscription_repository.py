"""
Read-only access to the user's active subscriptions.
"""

from trackme.db.helpers import fetch_one
from trackme.features.subscription_discovery.domain import Subscription


def escape_like(value: str) -> str:
    """Escape LIKE/ILIKE wildcards so a service name matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


class SubscriptionRepository:
    @classmethod
    async def find_active_match(cls, user_id: str, service_name: str) -> Subscription | None:
        """First active subscription whose name contains service_name, case-insensitively."""
        row = await fetch_one(
            r"""
            SELECT id, user_id, name, price, currency, billing_cycle, status
            FROM subscriptions
            WHERE user_id = %s
              AND status = 'active'
              AND name ILIKE %s ESCAPE '\'
            ORDER BY created_at
            LIMIT 1
            """,
            (user_id, f"%{escape_like(service_name.strip())}%"),
        )
        if not row:
            return None

        return Subscription(
            id=str(row["id"]),
            user_id=str(row["user_id"]),
            name=row["name"],
            price=float(row["price"]) if row.get("price") is not None else 0.0,
            currency=row.get("currency"),
            billing_cycle=row.get("billing_cycle") or "",
            status=row.get("status") or "active",
        )
