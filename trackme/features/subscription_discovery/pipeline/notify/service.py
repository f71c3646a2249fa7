"""
Notify stage: push a "new suggestions" alert to a user's devices.

Triggered once per new suggestion by the database webhook. The worker sleeps a
fixed delay first so that a scan producing many suggestions still ends in
roughly one push per device: by the time the earliest trigger wakes, the
pending count covers the whole burst. Later triggers in the same burst send
again with the up-to-date count.
"""

import asyncio
from collections.abc import Callable
from dataclasses import asdict, dataclass

from trackme.config import PipelineConfig
from trackme.features.subscription_discovery.pipeline.base import new_worker_id
from trackme.infrastructure.observability.logging import get_logger, worker_log_context
from trackme.services.fcm_push_service import FcmPushError, FcmPushService

logger = get_logger(__name__)

NOTIFICATION_TITLE = "New Subscriptions Found!"
NOTIFICATION_TYPE = "suggestions"


def notification_body(count: int) -> str:
    noun = "subscription" if count == 1 else "subscriptions"
    return f"We found {count} {noun} for you to review"


@dataclass(slots=True)
class NotificationOutcome:
    user_id: str
    pending: int = 0
    devices: int = 0
    sent: int = 0
    failed: int = 0
    reason: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


class NotificationWorker:
    stage = "notify"

    def __init__(
        self,
        config: PipelineConfig,
        suggestions,
        devices,
        push_factory: Callable[[], FcmPushService],
        worker_id: str | None = None,
        sleep=asyncio.sleep,
    ):
        self.config = config
        self.suggestions = suggestions
        self.devices = devices
        self.push_factory = push_factory
        self.worker_id = worker_id
        self.sleep = sleep

    async def notify(self, user_id: str) -> NotificationOutcome:
        """Wait out the batching delay, then push the pending count to every logged-in device."""
        worker_id = self.worker_id or new_worker_id(self.stage)
        with worker_log_context(worker_id=worker_id, stage=self.stage, user_id=user_id):
            await self.sleep(self.config.notification_delay_seconds)

            outcome = NotificationOutcome(user_id=user_id)
            outcome.pending = await self.suggestions.count_pending(user_id)
            if outcome.pending == 0:
                outcome.reason = "No pending suggestions"
                logger.info("Nothing to notify", **outcome.to_dict())
                return outcome

            devices = await self.devices.list_logged_in(user_id)
            outcome.devices = len(devices)
            if not devices:
                outcome.reason = "No logged-in devices"
                logger.info("Nothing to notify", **outcome.to_dict())
                return outcome

            try:
                push = self.push_factory()
                access_token = await push.get_access_token()
            except FcmPushError as e:
                outcome.failed = len(devices)
                outcome.reason = e.message
                logger.error("Could not authenticate with FCM", error=e.message)
                return outcome

            body = notification_body(outcome.pending)
            data = {"type": NOTIFICATION_TYPE, "count": str(outcome.pending)}

            for device in devices:
                try:
                    await push.send(
                        access_token, device.device_token, NOTIFICATION_TITLE, body, data
                    )
                    outcome.sent += 1
                except FcmPushError as e:
                    outcome.failed += 1
                    logger.warning(
                        "Push to device failed", status_code=e.status_code, error=e.message
                    )

            logger.info("Notifications sent", **outcome.to_dict())
            return outcome

    async def notify_in_background(self, user_id: str) -> None:
        """Background-task entry point; failures are logged, never raised."""
        try:
            await self.notify(user_id)
        except Exception as e:
            logger.error(
                "Notification run failed",
                user_id=user_id,
                error=str(e),
                error_type=type(e).__name__,
            )
