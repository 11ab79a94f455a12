"""
Base Celery task class with logging and Sentry reporting.
"""
import logging

import sentry_sdk
from celery import Task

logger = logging.getLogger(__name__)


class LoggedTask(Task):
    """
    Base task class that logs start, completion and failure.

    Failures are sent to Sentry with the task context and re-raised.
    """

    def __call__(self, *args, **kwargs):
        task_id = self.request.id
        task_name = self.name

        logger.info(
            f"Task started: {task_name}",
            extra={'task_id': task_id, 'task_name': task_name, 'task_kwargs': sorted(kwargs)}
        )
        sentry_sdk.add_breadcrumb(
            category="task",
            message=f"Task started: {task_name}",
            level="info",
            data={'task_id': task_id},
        )

        try:
            result = super().__call__(*args, **kwargs)
        except Exception as exc:
            logger.error(
                f"Task failed: {task_name}",
                extra={'task_id': task_id, 'task_name': task_name, 'exception': str(exc)},
                exc_info=True
            )
            with sentry_sdk.new_scope() as scope:
                scope.set_context('task', {'task_id': task_id, 'task_name': task_name})
                sentry_sdk.capture_exception(exc)
            raise

        logger.info(
            f"Task completed: {task_name}",
            extra={'task_id': task_id, 'task_name': task_name, 'result': str(result)[:200]}
        )
        return result
