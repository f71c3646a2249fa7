from trackme.features.subscription_discovery.pipeline.notify.service import (
    NOTIFICATION_TITLE,
    NotificationOutcome,
    NotificationWorker,
    notification_body,
)

__all__ = ["NOTIFICATION_TITLE", "NotificationOutcome", "NotificationWorker", "notification_body"]
