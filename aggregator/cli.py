"""Command-line entry point.

    job-aggregator run                 one synchronous aggregation run
    job-aggregator cleanup [--dry-run] apply the retention policy
    job-aggregator classify --title .. classify one listing's text
    job-aggregator reclassify          re-run the classifier over stored jobs
    job-aggregator schedule            run the scheduler in the foreground
    job-aggregator serve               start the HTTP API with uvicorn
    job-aggregator init-db             create the schema
"""
from __future__ import annotations

import argparse
import json
import logging
import sys
import threading

from aggregator.config import Settings, configure_logging, parse_sources
from aggregator.core.listing import SourceKind

log = logging.getLogger(__name__)


def _print(payload) -> None:
    print(json.dumps(payload, indent=2, default=str))


def _ensure_schema() -> None:
    from aggregator.db.models import Base
    from aggregator.db.session import ENGINE, current_engine_url

    log.info("schema-check url=%s", current_engine_url())
    Base.metadata.create_all(bind=ENGINE)


def cmd_init_db(args, settings: Settings) -> int:
    _ensure_schema()
    log.info("init-db done")
    return 0


def cmd_run(args, settings: Settings) -> int:
    from aggregator.errors import RunAlreadyInProgress
    from aggregator.pipeline.coordinator import RunCoordinator
    from aggregator.pipeline.stats import Trigger

    if args.sources:
        settings.enabled_sources = parse_sources(args.sources)
    _ensure_schema()
    coordinator = RunCoordinator.from_settings(settings)
    try:
        stats = coordinator.run_now(Trigger.MANUAL)
    except RunAlreadyInProgress as exc:
        log.error("run-rejected reason=%s", exc)
        return 2
    _print(stats.to_dict())
    return 1 if stats.completed_with_errors and args.strict else 0


def cmd_cleanup(args, settings: Settings) -> int:
    from aggregator.errors import ConfigurationError
    from aggregator.pipeline.coordinator import RunCoordinator

    if args.inactive_days is not None:
        settings.inactive_days = args.inactive_days
    if args.delete_days is not None:
        settings.delete_days = args.delete_days
    _ensure_schema()
    coordinator = RunCoordinator.from_settings(settings)
    try:
        stats = coordinator.trigger_cleanup(dry_run=args.dry_run, source=args.source)
    except ConfigurationError as exc:
        log.error("cleanup-refused error=%s", exc)
        return 2
    except ValueError:
        log.error("cleanup-refused unknown source=%s", args.source)
        return 2
    _print({"cleanup": stats.to_dict(), "store": coordinator.store.stats()})
    return 0


def cmd_classify(args, settings: Settings) -> int:
    from aggregator.core.visa import get_classifier

    classifier = get_classifier(args.signals or settings.signal_table_path)
    description = args.description
    if description == "-":
        description = sys.stdin.read()
    result = classifier.detect(args.title, description or "", args.company)
    _print(result.model_dump())
    return 0


def cmd_reclassify(args, settings: Settings) -> int:
    from aggregator.core.visa import get_classifier
    from aggregator.db.crud import JobStore
    from aggregator.pipeline.reclassify import ReclassifyFilter, batch_reclassify

    if args.source:
        try:
            SourceKind(args.source.upper())
        except ValueError:
            log.error("reclassify-refused unknown source=%s", args.source)
            return 2
    result = batch_reclassify(
        JobStore(),
        get_classifier(settings.signal_table_path),
        ReclassifyFilter(source=args.source, limit=args.limit, only_unanalyzed=args.only_unanalyzed),
    )
    payload = result.to_dict()
    if not args.verbose:
        payload.pop("results")
    _print(payload)
    return 0


def cmd_schedule(args, settings: Settings) -> int:
    from aggregator.pipeline.coordinator import RunCoordinator
    from aggregator.pipeline.scheduler import Scheduler

    coordinator = RunCoordinator.from_settings(settings)
    scheduler = Scheduler(coordinator, coordinator.refresh_rule,
                          coordinator.cleanup_rule if args.with_cleanup else None)
    log.info("schedule next_run=%s", coordinator.get_next_scheduled_run())
    scheduler.start()
    try:
        threading.Event().wait()
    except KeyboardInterrupt:
        log.info("schedule interrupted")
    finally:
        scheduler.stop()
    return 0


def cmd_serve(args, settings: Settings) -> int:
    import uvicorn

    uvicorn.run("aggregator.api.main:app", host=args.host, port=args.port, log_level=args.log_level.lower())
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="job-aggregator", description="Job aggregation pipeline")
    parser.add_argument("--log-level", default=None, help="Overrides AGG_LOG_LEVEL (default INFO)")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("run", help="Run one aggregation synchronously")
    p.add_argument("--sources", default=None, help="Comma-separated sources (overrides AGG_SOURCES)")
    p.add_argument("--strict", action="store_true", help="Exit 1 when any source failed")
    p.set_defaults(func=cmd_run)

    p = sub.add_parser("cleanup", help="Deactivate and delete stale listings")
    p.add_argument("--dry-run", action="store_true", help="Count only; do not modify rows")
    p.add_argument("--source", default=None, help="Limit cleanup to one source")
    p.add_argument("--inactive-days", type=int, default=None, help="Overrides AGG_INACTIVE_DAYS")
    p.add_argument("--delete-days", type=int, default=None, help="Overrides AGG_DELETE_DAYS")
    p.set_defaults(func=cmd_cleanup)

    p = sub.add_parser("classify", help="Classify one listing for visa sponsorship")
    p.add_argument("--title", default="")
    p.add_argument("--description", default="", help="Text, or '-' to read stdin")
    p.add_argument("--company", default="")
    p.add_argument("--signals", default=None, help="YAML signal table (overrides AGG_SIGNAL_TABLE)")
    p.set_defaults(func=cmd_classify)

    p = sub.add_parser("reclassify", help="Re-run the classifier over stored listings")
    p.add_argument("--source", default=None)
    p.add_argument("--limit", type=int, default=100)
    p.add_argument("--only-unanalyzed", action="store_true")
    p.add_argument("--verbose", action="store_true", help="Include per-job results")
    p.set_defaults(func=cmd_reclassify)

    p = sub.add_parser("schedule", help="Run the daily scheduler in the foreground")
    p.add_argument("--with-cleanup", action="store_true", help="Also run cleanup on AGG_CLEANUP_SCHEDULE")
    p.set_defaults(func=cmd_schedule)

    p = sub.add_parser("serve", help="Serve the HTTP API")
    p.add_argument("--host", default="127.0.0.1")
    p.add_argument("--port", type=int, default=8000)
    p.set_defaults(func=cmd_serve)

    p = sub.add_parser("init-db", help="Create database tables")
    p.set_defaults(func=cmd_init_db)
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    if args.log_level is None:
        args.log_level = logging.getLevelName(logging.getLogger().level)
    settings = Settings.from_env()
    return args.func(args, settings)


if __name__ == "__main__":
    # When executed as `python -m aggregator.cli ...`
    sys.exit(main())
