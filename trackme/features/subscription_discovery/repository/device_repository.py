from trackme.db.helpers import fetch_all
from trackme.features.subscription_discovery.domain import Device


class DeviceRepository:
    @classmethod
    async def list_logged_in(cls, user_id: str) -> list[Device]:
        rows = await fetch_all(
            """
            SELECT user_id, device_token
            FROM devices
            WHERE user_id = %s AND logged_in = true AND device_token IS NOT NULL
            """,
            (user_id,),
        )
        return [
            Device(user_id=str(row["user_id"]), device_token=row["device_token"]) for row in rows
        ]
