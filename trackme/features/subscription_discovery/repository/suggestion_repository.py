"""
Persistence for subscription_suggestions.

(user_id, message_id) uniqueness is enforced here rather than by a table
constraint: the existence check and the insert run in one transaction that
first takes a transaction-scoped advisory lock on the pair, so concurrent
ingest workers handling the same message serialize on that lock.
"""

from trackme.db.helpers import DatabaseError, fetch_one, fetch_val
from trackme.db.pool import get_db_transaction
from trackme.features.subscription_discovery.domain import Suggestion
from trackme.infrastructure.observability.logging import get_logger

logger = get_logger(__name__)


class SuggestionRepository:
    @classmethod
    async def exists(cls, user_id: str, message_id: str) -> bool:
        found = await fetch_val(
            "SELECT 1 FROM subscription_suggestions WHERE user_id = %s AND message_id = %s LIMIT 1",
            (user_id, message_id),
        )
        return found is not None

    @classmethod
    async def insert_if_absent(cls, suggestion: Suggestion) -> str | None:
        """
        Insert the suggestion unless one already exists for (user, message).

        Returns:
            The new suggestion id, or None when another writer got there first.
        """
        try:
            async with await get_db_transaction() as conn:
                await conn.execute(
                    "SELECT pg_advisory_xact_lock(hashtext(%s))",
                    (f"suggestion:{suggestion.user_id}:{suggestion.message_id}",),
                )

                existing = await fetch_val(
                    """
                    SELECT id FROM subscription_suggestions
                    WHERE user_id = %s AND message_id = %s
                    LIMIT 1
                    """,
                    (suggestion.user_id, suggestion.message_id),
                    connection=conn,
                )
                if existing is not None:
                    return None

                row = await fetch_one(
                    """
                    INSERT INTO subscription_suggestions (
                        user_id, message_id, subject, snippet, sender, message_date,
                        service_name, price, currency, billing_cycle, next_payment_date,
                        confidence, status, subscription_id
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING id
                    """,
                    (
                        suggestion.user_id,
                        suggestion.message_id,
                        suggestion.subject,
                        suggestion.snippet,
                        suggestion.sender,
                        suggestion.message_date,
                        suggestion.service_name,
                        suggestion.price,
                        suggestion.currency,
                        suggestion.billing_cycle,
                        suggestion.next_payment_date,
                        suggestion.confidence,
                        suggestion.status,
                        suggestion.subscription_id,
                    ),
                    connection=conn,
                )
        except DatabaseError:
            raise
        except Exception as e:
            logger.error(
                "Suggestion insert failed",
                user_id=suggestion.user_id,
                message_id=suggestion.message_id,
                error=str(e),
            )
            raise DatabaseError(
                f"Suggestion insert failed: {e}", operation="insert_suggestion"
            ) from e

        return str(row["id"])

    @classmethod
    async def count_pending(cls, user_id: str) -> int:
        count = await fetch_val(
            """
            SELECT COUNT(*) FROM subscription_suggestions
            WHERE user_id = %s AND status = 'pending'
            """,
            (user_id,),
        )
        return int(count or 0)
