# analytics/management/commands/run_analytics_ingestion.py
"""
Management command to run the analytics ingestion job.

Usage:
    # Run one cycle and exit
    python manage.py run_analytics_ingestion

    # Run continuously (daemon mode); interval defaults to
    # ANALYTICS_INGEST_POLL_INTERVAL_SECONDS (never below 15s)
    python manage.py run_analytics_ingestion --daemon

    # Override the interval and batch size
    python manage.py run_analytics_ingestion --daemon --interval 30 --batch-size 500

    # Show pipeline status without running anything
    python manage.py run_analytics_ingestion --status
"""

import json

from django.core.management.base import BaseCommand, CommandError

from analytics.conf import IngestionSettings
from analytics.ingestion import IngestionJob, IngestionScheduler
from analytics.pipeline import get_pipeline_status


class Command(BaseCommand):
    """Deliver pending analytics events to the warehouse."""

    help = "Run the analytics warehouse ingestion job"

    def add_arguments(self, parser):
        parser.add_argument(
            "--daemon",
            action="store_true",
            help="Run continuously on a fixed interval",
        )
        parser.add_argument(
            "--interval",
            type=int,
            help=(
                "Seconds between daemon cycles, minimum 15 "
                "(default: ANALYTICS_INGEST_POLL_INTERVAL_SECONDS)"
            ),
        )
        parser.add_argument(
            "--batch-size",
            type=int,
            help="Events per cycle (default: ANALYTICS_INGEST_BATCH_SIZE)",
        )
        parser.add_argument(
            "--triggered-by",
            type=str,
            default="manual",
            help="Label recorded on the pipeline run (default: manual)",
        )
        parser.add_argument(
            "--status",
            action="store_true",
            help="Print pipeline status as JSON and exit",
        )

    def handle(self, *args, **options):
        if options.get("status"):
            self.stdout.write(json.dumps(get_pipeline_status(), indent=2, default=str))
            return

        config = IngestionSettings.from_django()
        if options.get("batch_size") is not None:
            if options["batch_size"] < 1:
                raise CommandError("--batch-size must be at least 1")
            config = config.with_overrides(batch_size=options["batch_size"])

        if not config.ingest_endpoint:
            self.stdout.write(
                self.style.WARNING(
                    "ANALYTICS_INGEST_ENDPOINT is not set; batches will be marked failed."
                )
            )

        job = IngestionJob(config=config)

        if options.get("daemon"):
            self._run_daemon(job, options.get("interval") or config.poll_interval_seconds)
        else:
            self._run_once(job, options.get("triggered_by"))

    def _run_once(self, job, triggered_by):
        """Run a single cycle and report it."""
        result = job.run_cycle(triggered_by=triggered_by)

        summary = (
            f"Cycle {result.status}: delivered={result.delivered} "
            f"failed={result.failed} backfilled={result.backfilled} purged={result.purged}"
        )
        if result.status == "failed":
            self.stdout.write(self.style.ERROR(summary))
            if result.error:
                self.stdout.write(self.style.ERROR(f"  {result.error}"))
        else:
            self.stdout.write(self.style.SUCCESS(summary))

    def _run_daemon(self, job, interval):
        """Run cycles continuously until interrupted."""
        scheduler = IngestionScheduler(job, interval_seconds=interval)
        self.stdout.write(
            f"Starting daemon mode (interval: {scheduler.interval_seconds}s, Ctrl+C to stop)"
        )

        try:
            scheduler.run_forever()
        except KeyboardInterrupt:
            scheduler.stop()
            self.stdout.write(self.style.WARNING("\nDaemon stopped."))
