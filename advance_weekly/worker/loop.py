"""
Worker loop - executes queued operations out of the triggering process.

Flow:
1. Poll: list up to ``claim_limit`` queued operations, oldest first
2. Dispatch: hand each to the dispatcher on a thread pool; the dispatcher
   claims atomically, so several workers can poll the same table
3. Sleep ``poll_interval`` seconds when nothing was queued
"""

from __future__ import annotations

import signal
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Optional

import structlog
from sqlalchemy.orm import sessionmaker

from ..config import get_settings
from ..db.operation_store import OperationStore
from ..logging_config import configure_logging
from .dispatcher import Dispatcher
from .registry import build_dispatcher

logger = structlog.get_logger()


class WorkerLoop:
    """Main worker loop for processing queued operations."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        session_factory: Optional[sessionmaker] = None,
        poll_interval: Optional[int] = None,
        claim_limit: Optional[int] = None,
    ):
        """Initialize worker loop.

        Args:
            dispatcher: Dispatcher executing each operation
            session_factory: Sessions for polling (default: the dispatcher's)
            poll_interval: Seconds between poll cycles (default from config)
            claim_limit: Max operations dispatched per cycle (default from config)
        """
        settings = get_settings()
        self.dispatcher = dispatcher
        self.session_factory = session_factory or dispatcher.session_factory
        self.poll_interval = poll_interval or settings.worker_poll_interval
        self.claim_limit = claim_limit or settings.worker_claim_limit
        self.running = False
        self.worker_id = f"worker-{uuid.uuid4().hex[:8]}"
        self.log = logger.bind(worker_id=self.worker_id)

        self.log.info(
            "worker_initialized",
            poll_interval=self.poll_interval,
            claim_limit=self.claim_limit,
        )

    def start(self) -> None:
        """Start the worker loop. Runs until stopped."""
        self.running = True
        self.log.info("worker_starting")

        # Set up signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

        with ThreadPoolExecutor(
            max_workers=self.claim_limit, thread_name_prefix=self.worker_id
        ) as pool:
            try:
                while self.running:
                    try:
                        if self.run_once(pool) == 0:
                            time.sleep(self.poll_interval)
                    except Exception as e:
                        self.log.exception("worker_cycle_failed", error=str(e))
                        # Sleep on error to avoid tight loop
                        time.sleep(self.poll_interval)
            finally:
                self.log.info("worker_stopped")

    def stop(self) -> None:
        """Signal the worker to stop after the current cycle."""
        self.log.info("worker_stopping")
        self.running = False

    def _signal_handler(self, signum, frame) -> None:
        self.log.info("worker_signal_received", signum=signum)
        self.stop()

    def run_once(self, pool: Optional[ThreadPoolExecutor] = None) -> int:
        """Dispatch one batch of queued operations and wait for it.

        Returns:
            Number of operations handed to the dispatcher
        """
        db = self.session_factory()
        try:
            operation_ids = [
                operation.id
                for operation in OperationStore(db).list_queued(limit=self.claim_limit)
            ]
        finally:
            db.close()

        if not operation_ids:
            return 0

        self.log.info("worker_batch_found", count=len(operation_ids))
        if pool is None:
            for operation_id in operation_ids:
                self._dispatch(operation_id)
        else:
            for future in [pool.submit(self._dispatch, op_id) for op_id in operation_ids]:
                future.result()
        return len(operation_ids)

    def _dispatch(self, operation_id: str) -> None:
        try:
            self.dispatcher.dispatch(operation_id)
        except Exception as e:
            self.log.exception(
                "worker_dispatch_failed", operation_id=operation_id, error=str(e)
            )


def run_worker(
    poll_interval: Optional[int] = None,
    claim_limit: Optional[int] = None,
) -> None:
    """Run the worker loop.

    Args:
        poll_interval: Seconds between poll cycles
        claim_limit: Max operations dispatched per poll cycle
    """
    configure_logging()

    worker = WorkerLoop(
        build_dispatcher(),
        poll_interval=poll_interval,
        claim_limit=claim_limit,
    )
    worker.start()
