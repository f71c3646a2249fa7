"""
Subscription discovery feature package.

Everything that turns a connected Gmail mailbox into subscription suggestions
lives here: the queue tables, the scan/parse/ingest/notify stages, their
repositories, the connection service and the HTTP routes.
"""

# Re-export the primary building blocks for easy access.
from .api.router import router as discovery_router  # noqa: F401
from .pipeline.ingest import IngestWorker  # noqa: F401
from .pipeline.notify import NotificationWorker  # noqa: F401
from .pipeline.parse import ParseWorker  # noqa: F401
from .pipeline.scan import ScanWorker  # noqa: F401
from .services import gmail_connection_service  # noqa: F401
