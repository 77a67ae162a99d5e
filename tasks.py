"""Background task processing via RQ with an in-process thread pool fallback.

When Redis and RQ are available, tasks are enqueued for a worker process
(run it with ``rq worker --with-scheduler`` so delayed jobs fire).
Otherwise tasks run on a ThreadPoolExecutor inside the web process, each in
its own app context. With TASKS_EAGER set (tests), tasks run inline.

Tasks are fire-and-forget: the caller never sees a task's exception; it is
logged here instead.

Usage:
    from tasks import enqueue, enqueue_in
    enqueue(some_function, arg1, arg2)
    enqueue_in(2, some_function, arg1)  # delayed by 2 seconds
"""

from __future__ import annotations

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

from flask import current_app, has_app_context

logger = logging.getLogger(__name__)

_queue = None
_executor: ThreadPoolExecutor | None = None
_eager = False
_app = None


def init_tasks(app) -> None:
    """Pick the task backend. Call once from create_app()."""
    global _queue, _executor, _eager, _app

    _app = app
    _queue = None
    _eager = bool(app.config.get("TASKS_EAGER", False))

    redis_url = app.config.get("REDIS_URL", "")
    if redis_url and not _eager:
        try:
            import redis
            from rq import Queue
            conn = redis.Redis.from_url(redis_url)
            conn.ping()
            _queue = Queue("grading", connection=conn)
            app.logger.info("Task backend: RQ (%s)", redis_url)
            return
        except Exception as e:
            app.logger.warning("Task backend: thread pool (Redis error: %s)", e)

    if _eager:
        app.logger.info("Task backend: eager (inline)")
        return

    _get_executor(app)
    app.logger.info("Task backend: thread pool")


def _get_executor(app) -> ThreadPoolExecutor:
    """Return the shared thread pool, creating it on first use."""
    global _executor
    if _executor is None:
        _executor = ThreadPoolExecutor(
            max_workers=int(app.config.get("TASK_WORKERS", 4)),
            thread_name_prefix="task",
        )
    return _executor


def _run_logged(func, args, kwargs):
    try:
        return func(*args, **kwargs)
    except Exception:
        logger.exception("Background task %s failed", func.__name__)
        return None


def _run_in_app(app, delay_seconds: float, func, args, kwargs):
    if delay_seconds > 0:
        time.sleep(delay_seconds)
    with app.app_context():
        return _run_logged(func, args, kwargs)


def enqueue(func, *args, **kwargs):
    """Run a task as soon as possible. See enqueue_in()."""
    return enqueue_in(0, func, *args, **kwargs)


def enqueue_in(delay_seconds: float, func, *args, **kwargs):
    """Schedule ``func(*args, **kwargs)`` after a delay without waiting for it.

    Returns the RQ Job, the thread-pool Future, or (eager mode) the function's
    return value.
    """
    if _queue is not None:
        try:
            if delay_seconds > 0:
                job = _queue.enqueue_in(timedelta(seconds=delay_seconds), func, *args, **kwargs)
            else:
                job = _queue.enqueue(func, *args, **kwargs)
            logger.debug("Enqueued %s with %ss delay (job=%s)", func.__name__, delay_seconds, job.id)
            return job
        except Exception as e:
            logger.warning("RQ enqueue failed (%s), falling back to thread pool: %s", func.__name__, e)
            app = current_app._get_current_object() if has_app_context() else _app
            return _get_executor(app).submit(_run_in_app, app, delay_seconds, func, args, kwargs)

    if _eager or _executor is None:
        logger.debug("Running %s inline (delay=%ss ignored)", func.__name__, delay_seconds)
        return _run_logged(func, args, kwargs)

    app = current_app._get_current_object() if has_app_context() else _app
    future = _executor.submit(_run_in_app, app, delay_seconds, func, args, kwargs)
    logger.debug("Submitted %s to thread pool with %ss delay", func.__name__, delay_seconds)
    return future


def is_async_available() -> bool:
    """True when tasks leave the calling thread (RQ or thread pool)."""
    return _queue is not None or (not _eager and _executor is not None)


def backend_name() -> str:
    if _queue is not None:
        return "rq"
    if _eager or _executor is None:
        return "eager"
    return "thread_pool"
