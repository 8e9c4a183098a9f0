"""Periodic subscription maintenance tasks.

Each task opens its own Mongo connection and event loop, runs one sweep
through the entitlement engine and returns a JSON-serializable summary.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable

from stackbit_api.workers.celery_app import celery_app

logger = logging.getLogger(__name__)


async def run_with_engine(handler: Callable[[Any], Awaitable[Any]]) -> Any:
    """Build an ``EntitlementEngine`` on env-configured collaborators and run ``handler``."""
    from stackbit_api.services.analytics import SegmentAnalytics
    from stackbit_api.services.entitlements import EntitlementEngine
    from stackbit_api.services.notifications import CustomerIoEmailSender
    from stackbit_api.services.split_tests import NoopSplitTestCleaner
    from stackbit_api.storage.mongo import MongoStore

    analytics = SegmentAnalytics()
    async with MongoStore.from_env() as store:
        engine = EntitlementEngine(
            projects=store.projects,
            users=store.users,
            email=CustomerIoEmailSender(),
            analytics=analytics,
            split_tests=NoopSplitTestCleaner(),
        )
        try:
            return await handler(engine)
        finally:
            await analytics.flush()


@celery_app.task(bind=True, max_retries=3, queue="subscriptions")
def auto_downgrade_expired_projects(self) -> dict:
    """Downgrade every project whose trial or paid period has ended."""
    logger.info("Starting auto-downgrade sweep")
    try:
        summary = asyncio.run(
            run_with_engine(lambda engine: engine.auto_downgrade_expired_projects())
        )
    except Exception as exc:
        logger.exception("Auto-downgrade sweep failed: %s", exc)
        raise self.retry(exc=exc, countdown=60 * (2**self.request.retries))

    return {
        "status": "success",
        "checked": summary["checked"],
        "downgraded": summary["downgraded"],
        "failed": summary["failed"],
    }


@celery_app.task(bind=True, queue="subscriptions")
def detect_out_of_sync_paid_projects(self) -> dict:
    """Report paid projects whose billing cycle ended without a renewal."""
    project_ids = asyncio.run(
        run_with_engine(lambda engine: engine.detect_out_of_sync_paid_projects())
    )
    return {"status": "success", "project_ids": project_ids, "count": len(project_ids)}
