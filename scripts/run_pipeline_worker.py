"""Run the video pipeline worker pool under the termination controller."""

from __future__ import annotations

import argparse
import json
import signal
import threading

from src.core.logger import get_logger
from src.core.observability import init_sentry
from src.orchestrator.runtime import get_pipeline_runtime
from src.storage.db import load_models


logger = get_logger("loomreach.worker")


def run_worker() -> None:
    load_models()
    init_sentry()
    runtime = get_pipeline_runtime()
    stop = threading.Event()

    def _handle_signal(signum, frame) -> None:
        del frame
        logger.info("worker_signal_received", signal=signum)
        stop.set()

    signal.signal(signal.SIGINT, _handle_signal)
    signal.signal(signal.SIGTERM, _handle_signal)

    runtime.controller.start()
    logger.info("worker_process_started", queue=runtime.queue.name)
    stop.wait()
    drained = runtime.controller.shutdown()
    logger.info("worker_process_stopped", drained=drained)


def main() -> None:
    parser = argparse.ArgumentParser(description="Run loomreach pipeline workers.")
    parser.add_argument("--status", action="store_true", help="Print queue counts and exit.")
    parser.add_argument(
        "--requeue-expired",
        action="store_true",
        help="Redeliver or dead-letter jobs with expired leases and exit.",
    )
    args = parser.parse_args()

    if args.status or args.requeue_expired:
        queue = get_pipeline_runtime().queue
        payload = {"queue": queue.name, **queue.counts()}
        if args.requeue_expired:
            requeued, dead_lettered = queue.requeue_expired()
            payload["requeued"] = requeued
            payload["dead_lettered"] = dead_lettered
        print(json.dumps(payload, ensure_ascii=True, separators=(",", ":"), sort_keys=True))
        return

    run_worker()


if __name__ == "__main__":
    main()
