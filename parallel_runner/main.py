# parallel_runner/main.py
"""
Process entry point: runs the build with its jobs dispatched to workers.

Usage:
    parallel-runner                      # runs settings.build_command
    parallel-runner -- gatsby build --prefix-paths
    python -m parallel_runner --log-level debug

Exits with the build process's exit code.
"""
from __future__ import annotations

import argparse
import asyncio
import signal
import sys

from parallel_runner.config import Settings, settings as default_settings, validate_or_warn
from parallel_runner.core.correlation import CorrelationTable
from parallel_runner.core.dispatcher import Dispatcher
from parallel_runner.core.job_types import build_registry
from parallel_runner.core.job_types.registry import parse_enabled_job_types
from parallel_runner.core.router import ResponseRouter
from parallel_runner.core.timeouts import TimeoutSupervisor
from parallel_runner.core.transport_selector import TransportSelector
from parallel_runner.infra.blob_store import get_blob_store
from parallel_runner.infra.logging_config import get_logger, setup_logging
from parallel_runner.infra.message_bus import close_message_bus, get_message_bus
from parallel_runner.infra.metrics import get_metrics_collector, job_metrics
from parallel_runner.transport.build_process import BuildProcess
from parallel_runner.transport.worker_subscriber import WorkerSubscriber, subscription_name

logger = get_logger("parallel_runner")


async def run(settings: Settings, command: list[str] | None = None) -> int:
    """Run the build until it exits. Returns its exit code."""
    validate_or_warn(settings)

    registry = build_registry(parse_enabled_job_types(settings.enabled_job_types))
    bus = get_message_bus(settings)
    selector = TransportSelector(
        bus,
        get_blob_store(settings),
        worker_topic=settings.worker_topic,
        staging_bucket=settings.staging_bucket,
        max_message_size=settings.max_message_size_bytes,
    )
    build = BuildProcess(command or settings.build_command, cwd=settings.build_cwd)

    table = CorrelationTable()
    timeouts = TimeoutSupervisor()
    dispatcher = Dispatcher(
        registry,
        selector,
        build,
        topic_hint=settings.topic,
        max_job_time=settings.max_job_time_seconds,
        table=table,
        timeouts=timeouts,
    )
    router = ResponseRouter(table, build, timeouts)
    subscriber = WorkerSubscriber(
        bus,
        router,
        topic=settings.topic,
        subscription=subscription_name(settings.subscription_prefix),
    )

    await subscriber.start()
    await build.start()

    # One task per host message: a slow staged upload must not hold up the next job
    in_progress: set[asyncio.Task] = set()

    def _track(task: asyncio.Task) -> None:
        in_progress.add(task)
        task.add_done_callback(in_progress.discard)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, lambda: _track(asyncio.create_task(build.terminate())))

    try:
        async for message in build.messages():
            _track(asyncio.create_task(dispatcher.handle_host_message(message)))
        code = await build.wait()
        logger.info(f"Build process exited: code={code}")
    finally:
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.remove_signal_handler(sig)
        for task in list(in_progress):
            task.cancel()
        await subscriber.stop()
        await dispatcher.close()
        await close_message_bus()
        logger.info(f"Dispatch summary: {job_metrics.summary()}")
        logger.debug(f"Dispatch stats: {get_metrics_collector().get_metrics()}")

    return code


def main(argv: list[str] | None = None) -> None:
    """CLI entry point."""
    parser = argparse.ArgumentParser(
        description="Run a build and dispatch its jobs to an external worker pool",
    )
    parser.add_argument("--log-level", "-l", help="Log level (overrides LOG_LEVEL)")
    parser.add_argument("--json-logs", action="store_true", help="Emit JSON log lines")
    parser.add_argument("command", nargs=argparse.REMAINDER, help="Build command (overrides BUILD_COMMAND)")
    args = parser.parse_args(argv)

    command = args.command
    if command and command[0] == "--":
        command = command[1:]

    setup_logging(
        level=args.log_level or default_settings.log_level,
        use_json=args.json_logs or default_settings.log_json,
    )

    sys.exit(asyncio.run(run(default_settings, command or None)))


if __name__ == "__main__":
    main()
