# hostelhub/tasks/subscription_tasks.py
import asyncio
import logging

from hostelhub.core.celery_app import celery_app
from hostelhub.core.database import service_db_manager
from hostelhub.modules.subscription.service import subscription_service

logger = logging.getLogger(__name__)


async def _expire_subscriptions() -> int:
    # Runs outside any user session, so it needs the elevated connection
    async with service_db_manager.async_session_maker() as db:
        return await subscription_service.expire_overdue_subscriptions(db)


@celery_app.task(name="tasks.expire_subscriptions")
def expire_subscriptions() -> int:
    """
    A periodic task that marks active subscriptions past their expiry as 'expired'.

    Access never depends on this running: an overdue subscription is refused
    by the expiry check even while its status still says 'active'.
    """
    logger.info("Running periodic task: expiring overdue subscriptions")
    try:
        return asyncio.run(_expire_subscriptions())
    except Exception as e:
        logger.error(f"Error during expire_subscriptions task: {e}")
        raise
