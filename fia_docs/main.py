from __future__ import annotations

import argparse
import asyncio
import logging
import shlex
import signal
from datetime import timedelta
from pathlib import Path

import httpx

from fia_docs.core.cancellation import StopToken
from fia_docs.core.config import Settings, get_settings
from fia_docs.core.signing import ObjectStorageSigner, SigningCredentials
from fia_docs.core.telemetry import (
    configure_ingester_logging,
    setup_ingester_telemetry,
    shutdown_ingester_telemetry,
)
from fia_docs.jobs.pipeline import DocumentPipeline
from fia_docs.jobs.runner import IngestionRunner, current_year
from fia_docs.services.cache import LocalCache
from fia_docs.services.feed_client import FeedClient, feed_url_templates
from fia_docs.services.renderer import MagickRenderer
from fia_docs.services.repository import PostgresRepository, RepositoryError, get_repository
from fia_docs.services.scratch import ScratchIOError, clear_scratch_dir
from fia_docs.services.storage_client import ObjectStorageClient

logger = logging.getLogger(__name__)


class StartupError(Exception):
    """Raised when the process cannot start ingesting; always fatal."""


async def bootstrap(settings: Settings, repository: PostgresRepository, renderer: MagickRenderer) -> None:
    missing = settings.missing_required()
    if missing:
        raise StartupError(f"missing required settings: {', '.join(missing)}")
    if not renderer.is_available():
        raise StartupError(f"render command not found: {settings.render_command}")
    try:
        clear_scratch_dir(Path(settings.scratch_dir))
    except ScratchIOError as exc:
        raise StartupError(str(exc)) from exc
    try:
        await repository.ping()
        if settings.database_apply_schema:
            await repository.apply_schema()
    except RepositoryError as exc:
        raise StartupError(str(exc)) from exc


def install_signal_handlers(stop_token: StopToken) -> None:
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(signum, stop_token.set, signum.name)
        except NotImplementedError:  # pragma: no cover - platforms without loop signal support
            signal.signal(
                signum,
                lambda received, _frame: loop.call_soon_threadsafe(stop_token.set, signal.Signals(received).name),
            )


async def run_ingester(*, once: bool = False) -> int:
    settings = get_settings()
    configure_ingester_logging(settings)
    telemetry_runtime = setup_ingester_telemetry(settings)
    repository = get_repository()
    scratch_dir = Path(settings.scratch_dir)
    renderer = MagickRenderer(
        shlex.split(settings.render_command),
        scratch_dir,
        density=settings.render_density,
        quality=settings.render_quality,
    )

    try:
        try:
            await bootstrap(settings, repository, renderer)
        except StartupError as exc:
            logger.error("ingester cannot start: %s", exc)
            return 1

        stop_token = StopToken()
        install_signal_handlers(stop_token)
        signer = ObjectStorageSigner(
            SigningCredentials(
                access_key=settings.storage_access_key or "",
                secret_key=settings.storage_secret_key or "",
                region=settings.storage_region,
            )
        )

        async with httpx.AsyncClient(timeout=settings.http_timeout_seconds, follow_redirects=True) as client:
            pipeline = DocumentPipeline(
                client=client,
                repository=repository,
                storage=ObjectStorageClient(client, signer, settings.storage_base_url),
                renderer=renderer,
                scratch_dir=scratch_dir,
                user_agent=settings.user_agent,
            )
            runner = IngestionRunner(
                repository=repository,
                cache=LocalCache(timedelta(hours=settings.document_refresh_interval_hours)),
                feeds=FeedClient(
                    client,
                    feed_url_templates(settings),
                    season_id=settings.fia_season_id,
                    user_agent=settings.user_agent,
                ),
                pipeline=pipeline,
                scratch_dir=scratch_dir,
                stop_token=stop_token,
            )
            await runner.run_forever(
                interval_seconds=settings.cycle_interval_seconds,
                min_delay_seconds=settings.cycle_min_delay_seconds,
                year_provider=lambda: settings.season_year or current_year(),
                max_cycles=1 if once else None,
            )
        return 0
    finally:
        await repository.close()
        shutdown_ingester_telemetry(telemetry_runtime)


def main() -> None:
    parser = argparse.ArgumentParser(description="Mirror FIA championship documents into object storage.")
    parser.add_argument("--once", action="store_true", help="Run a single cycle and exit")
    args = parser.parse_args()
    raise SystemExit(asyncio.run(run_ingester(once=args.once)))


if __name__ == "__main__":
    main()
