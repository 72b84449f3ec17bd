import logging

from celery import shared_task

from .escalation import EscalationPoller

logger = logging.getLogger(__name__)


@shared_task(name="escalate_overdue_alerts")
def escalate_overdue_alerts():
    logger.info("Starting escalation check for overdue alerts...")
    summary = EscalationPoller().tick()
    if summary.get('skipped'):
        logger.info("Escalation check skipped; previous run still in progress.")
    else:
        logger.info(f"Finished escalation check: {summary['escalated']} escalated, {summary['notifications_sent']} notified.")
    return summary
