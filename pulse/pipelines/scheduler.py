"""
Run triggers for the triage pipeline.

``trigger`` hands a run to a worker thread and returns its id straight away;
``run_forever`` is the daily schedule. Overlapping runs are allowed.
"""

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, Dict, Optional
import argparse
import logging
import threading
import time
import uuid

from pulse.config.settings import Settings
from pulse.pipelines.triage import TriagePipeline


logger = logging.getLogger(__name__)


class TriageScheduler:
    """Start triage runs asynchronously and track their outcome by run id."""

    def __init__(self, config: Settings,
                 pipeline_factory: Optional[Callable[[Settings], TriagePipeline]] = None,
                 max_concurrent_runs: int = 2,
                 max_tracked_runs: int = 100):
        self.config = config
        self.pipeline_factory = pipeline_factory or TriagePipeline
        self.max_tracked_runs = max_tracked_runs
        self.executor = ThreadPoolExecutor(max_workers=max_concurrent_runs, thread_name_prefix="triage-run")
        self._runs: Dict[str, Future] = {}
        self._lock = threading.Lock()

    def _execute(self, run_id: str) -> dict:
        # Each run gets its own pipeline and therefore its own connection.
        pipeline = self.pipeline_factory(self.config)
        try:
            return pipeline.run(run_id=run_id)
        except Exception:
            logger.exception(f"Triage run {run_id} failed")
            raise

    def trigger(self) -> str:
        """Start a run and return its id without waiting for it."""
        run_id = str(uuid.uuid4())
        with self._lock:
            self._runs[run_id] = self.executor.submit(self._execute, run_id)
            self._forget_finished_runs()
        logger.info(f"Triage run started: {run_id}")
        return run_id

    def _forget_finished_runs(self) -> None:
        """Drop the oldest finished runs beyond max_tracked_runs; running ones are kept."""
        for old_id in list(self._runs)[:-1]:
            if len(self._runs) <= self.max_tracked_runs:
                break
            if self._runs[old_id].done():
                del self._runs[old_id]

    def _future(self, run_id: str) -> Future:
        with self._lock:
            if run_id not in self._runs:
                raise KeyError(f"Unknown run id: {run_id}")
            return self._runs[run_id]

    def status(self, run_id: str) -> str:
        """``running``, ``complete`` or ``failed``."""
        future = self._future(run_id)
        if not future.done():
            return "running"
        return "failed" if future.exception() is not None else "complete"

    def result(self, run_id: str, timeout: Optional[float] = None) -> dict:
        """Wait for a run; re-raises the run's error if it failed."""
        return self._future(run_id).result(timeout=timeout)

    def run_forever(self, interval_seconds: Optional[int] = None,
                    max_runs: Optional[int] = None,
                    sleep: Callable[[float], None] = time.sleep) -> None:
        """
        Trigger a run, wait for it, then sleep until the next one.

        A failed run is logged and does not stop the schedule.
        """
        interval = interval_seconds if interval_seconds is not None else self.config.schedule_interval_seconds
        runs = 0
        while max_runs is None or runs < max_runs:
            run_id = self.trigger()
            try:
                result = self.result(run_id)
                logger.info(f"Scheduled run {run_id} complete: {result['report'].summary}")
            except Exception as e:
                logger.error(f"Scheduled run {run_id} failed: {e}")
            runs += 1
            if max_runs is None or runs < max_runs:
                sleep(interval)

    def shutdown(self, wait: bool = True) -> None:
        self.executor.shutdown(wait=wait)


def main():
    """Main entry point for the daily triage schedule."""
    config = Settings()

    logging.basicConfig(
        level=config.log_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )

    parser = argparse.ArgumentParser(description='Run the triage pipeline on a fixed schedule.')
    parser.add_argument('--interval', type=int, help='Seconds between runs (default from config: daily)')
    args = parser.parse_args()

    scheduler = TriageScheduler(config)
    try:
        scheduler.run_forever(interval_seconds=args.interval)
    except KeyboardInterrupt:
        logger.info("Schedule stopped")
    finally:
        scheduler.shutdown(wait=False)


if __name__ == "__main__":
    main()
