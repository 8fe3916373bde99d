"""Storage backends for FormFlow.

Example:
    ```python
    from formflow.storage import FormflowStorage, InMemoryStorage

    async with FormflowStorage(settings.database_url) as storage:
        await storage.append_log("info", "worker started")
    ```
"""

from .base import Repository, RetryBackend, Storage
from .client import FormflowStorage
from .memory import InMemoryStorage
from .retry import db_retry
from .sql import DEFAULT_DATABASE_URL

__all__ = [
    "DEFAULT_DATABASE_URL",
    "FormflowStorage",
    "InMemoryStorage",
    "Repository",
    "RetryBackend",
    "Storage",
    "db_retry",
]
