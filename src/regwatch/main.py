"""CLI entrypoint for pipeline runs, event queries, feedback, status and scheduling."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List

from pydantic import ValidationError

from .ai import AINormalizer, PatternDetector, Summarizer
from .alerts import build_alert_contract, subscribers_from_lists
from .config import KNOWN_SOURCES, PipelineConfig, load_pipeline_config
from .database import EventFilter, EventStore
from .errors import SourceRunError, UnknownSourceError
from .feature_flags import load_feature_flags
from .models import FeedbackIn, PipelineRunResult
from .notify import AlertNotifier, EmailSender, SmsSender, send_daily_digest
from .pipeline import AICollaborators, Pipeline, build_pipeline
from .scheduler import SchedulerOptions, start_scheduler
from .settings import (
    get_alert_sender,
    get_brevo_api_key,
    get_db_path,
    get_log_level,
    get_recipients,
    get_twilio_credentials,
    load_environment,
)
from .status import aggregate_status

logger = logging.getLogger(__name__)

EXIT_SOURCE_FAILURE = 1
EXIT_CLIENT_FAULT = 2


@dataclass
class Runtime:
    config: PipelineConfig
    flags: dict[str, Any]
    store: EventStore
    pipeline: Pipeline
    summarizer: Summarizer | None


def _build_ai(config: PipelineConfig, flags: dict[str, Any]) -> AICollaborators:
    return AICollaborators(
        normalizer=AINormalizer() if flags.get("ai_normalization_enabled") else None,
        detector=PatternDetector() if flags.get("pattern_detection_enabled") else None,
        summarizer=(
            Summarizer(
                fallback_chars=config.summary_fallback_chars,
                spacing_seconds=config.summarizer_spacing_seconds,
            )
            if flags.get("summarization_enabled")
            else None
        ),
    )


def _email_sender(config: PipelineConfig) -> EmailSender:
    sender_email, sender_name = get_alert_sender()
    return EmailSender(
        get_brevo_api_key(),
        sender_email,
        sender_name,
        timeout=config.request_timeout_seconds,
    )


def _build_notifier(config: PipelineConfig, flags: dict[str, Any]) -> AlertNotifier | None:
    if not flags.get("notifications_enabled"):
        return None
    sms_enabled = bool(flags.get("sms_enabled"))
    sms = SmsSender(*get_twilio_credentials(), timeout=config.request_timeout_seconds) if sms_enabled else None
    return AlertNotifier(
        email=_email_sender(config),
        subscribers=subscribers_from_lists(get_recipients("alert"), get_recipients("sms") if sms_enabled else []),
        sms=sms,
        sms_enabled=sms_enabled,
    )


def build_runtime(args: argparse.Namespace) -> Runtime:
    config = load_pipeline_config(Path(args.config) if args.config else None)
    flags = load_feature_flags(Path(args.flags) if args.flags else None)
    store = EventStore(Path(args.db) if args.db else get_db_path(), retention_limit=config.retention_limit)
    ai = _build_ai(config, flags)
    pipeline = build_pipeline(
        config,
        store,
        ai=ai,
        notifier=_build_notifier(config, flags),
        persist_window=bool(flags.get("persist_signature_window", True)),
    )
    return Runtime(config=config, flags=flags, store=store, pipeline=pipeline, summarizer=ai.summarizer)


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False, default=str))


def _run_payload(result: PipelineRunResult) -> dict:
    return {
        "source": result.source,
        "dry_run": result.dry_run,
        "fetched_at": result.fetched_at.isoformat(),
        "fetched_count": result.fetched_count,
        "duplicate_count": result.duplicate_count,
        "summarized_count": result.summarized_count,
        "count": result.count,
        "alerts_contract": build_alert_contract(result.events),
        "events": [e.model_dump(mode="json", exclude={"raw"}) for e in result.events],
    }


def cmd_run_source(args: argparse.Namespace) -> int:
    runtime = build_runtime(args)
    try:
        result = asyncio.run(runtime.pipeline.run_source(args.source, dry_run=args.dry_run))
    except UnknownSourceError as exc:
        _print({"error": str(exc), "enabled_sources": list(runtime.pipeline.adapters)})
        return EXIT_CLIENT_FAULT
    except SourceRunError as exc:
        _print({"error": str(exc), "source": exc.source})
        return EXIT_SOURCE_FAILURE
    _print(_run_payload(result))
    return 0


def cmd_run_all(args: argparse.Namespace) -> int:
    runtime = build_runtime(args)
    outcomes = asyncio.run(runtime.pipeline.run_all(dry_run=args.dry_run))
    payload: dict[str, Any] = {}
    failed = False
    for name, outcome in outcomes.items():
        if isinstance(outcome, PipelineRunResult):
            payload[name] = _run_payload(outcome)
        else:
            failed = True
            payload[name] = {"error": str(outcome)}
    _print(payload)
    return EXIT_SOURCE_FAILURE if failed else 0


def cmd_list_events(args: argparse.Namespace) -> int:
    runtime = build_runtime(args)
    events = runtime.store.query(EventFilter(category=args.category, source=args.source, limit=args.limit))
    _print([e.model_dump(mode="json", exclude={"raw"}) for e in events])
    return 0


def cmd_feedback(args: argparse.Namespace) -> int:
    runtime = build_runtime(args)
    try:
        feedback = FeedbackIn(event_id=args.event_id, helpful=args.helpful)
    except ValidationError as exc:
        _print({"error": "invalid feedback", "details": exc.errors(include_url=False)})
        return EXIT_CLIENT_FAULT
    if runtime.store.get(feedback.event_id) is None:
        _print({"error": f"Unknown event {feedback.event_id!r}"})
        return EXIT_CLIENT_FAULT
    stored = runtime.store.add_feedback(feedback)
    _print(stored.model_dump(mode="json"))
    return 0


def cmd_status(args: argparse.Namespace) -> int:
    runtime = build_runtime(args)
    statuses = runtime.pipeline.tracker.snapshot(runtime.config.enabled_sources)
    _print(aggregate_status(statuses, ai_usage=runtime.pipeline.gate.usage()))
    return 0


def cmd_send_digest(args: argparse.Namespace) -> int:
    runtime = build_runtime(args)
    result = asyncio.run(
        send_daily_digest(
            runtime.store,
            runtime.pipeline.tracker,
            runtime.summarizer,
            _email_sender(runtime.config),
            get_recipients("digest"),
            dry_run=args.dry_run,
            gate=runtime.pipeline.gate,
            tz=runtime.config.timezone,
        )
    )
    if not args.dry_run:
        runtime.pipeline.save_state()
    _print(
        {
            "subject": result.subject,
            "event_count": len(result.events),
            "sent": result.sent,
            "deliveries": result.deliveries,
            "body": result.body if args.dry_run else None,
        }
    )
    return 0


def cmd_schedule(args: argparse.Namespace) -> int:
    runtime = build_runtime(args)

    def run_once() -> None:
        outcomes = asyncio.run(runtime.pipeline.run_all())
        failed = [name for name, outcome in outcomes.items() if not isinstance(outcome, PipelineRunResult)]
        logger.info("Scheduled run finished: %d sources, %d failed %s", len(outcomes), len(failed), failed or "")

    def digest_once() -> None:
        asyncio.run(
            send_daily_digest(
                runtime.store,
                runtime.pipeline.tracker,
                runtime.summarizer,
                _email_sender(runtime.config),
                get_recipients("digest"),
                gate=runtime.pipeline.gate,
                tz=runtime.config.timezone,
            )
        )
        runtime.pipeline.save_state()

    start_scheduler(
        run_once,
        SchedulerOptions(
            interval_minutes=args.interval_minutes,
            max_runs=args.max_runs,
            digest_hour=args.digest_hour,
            timezone=runtime.config.timezone,
        ),
        send_digest=digest_once,
    )
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="regwatch", description="Regulatory event ingestion and alert scoring")
    parser.add_argument("--config", help="Pipeline config JSON (default: config/regwatch.json)")
    parser.add_argument("--flags", help="Feature flag JSON (default: config/feature_flags.json)")
    parser.add_argument("--db", help="SQLite database path (default: REGWATCH_DB_PATH or ~/.regwatch/regwatch.db)")
    subparsers = parser.add_subparsers(dest="command", required=True)

    run_parser = subparsers.add_parser("run-source", help="Run one source pipeline")
    run_parser.add_argument("source", choices=KNOWN_SOURCES)
    run_parser.add_argument("--dry-run", action="store_true", help="Compute events without changing any state")
    run_parser.set_defaults(func=cmd_run_source)

    run_all_parser = subparsers.add_parser("run-all", help="Run every enabled source concurrently")
    run_all_parser.add_argument("--dry-run", action="store_true")
    run_all_parser.set_defaults(func=cmd_run_all)

    list_parser = subparsers.add_parser("list-events", help="List persisted events, newest first")
    list_parser.add_argument("--category", choices=["Urgent", "Informational", "Digest", "Suppressed"])
    list_parser.add_argument("--source", help="Source label, e.g. openFDA or 'Federal Register'")
    list_parser.add_argument("--limit", type=int, default=50)
    list_parser.set_defaults(func=cmd_list_events)

    feedback_parser = subparsers.add_parser("feedback", help="Record whether an alert was helpful")
    feedback_parser.add_argument("event_id")
    helpful = feedback_parser.add_mutually_exclusive_group(required=True)
    helpful.add_argument("--helpful", dest="helpful", action="store_true")
    helpful.add_argument("--not-helpful", dest="helpful", action="store_false")
    feedback_parser.set_defaults(func=cmd_feedback)

    status_parser = subparsers.add_parser("status", help="Show per-source health and AI usage")
    status_parser.set_defaults(func=cmd_status)

    digest_parser = subparsers.add_parser("send-digest", help="E-mail today's Digest-tier events")
    digest_parser.add_argument("--dry-run", action="store_true")
    digest_parser.set_defaults(func=cmd_send_digest)

    schedule_parser = subparsers.add_parser("schedule", help="Run all sources on an interval")
    schedule_parser.add_argument("--interval-minutes", type=int, default=60)
    schedule_parser.add_argument("--max-runs", type=int, help="Stop after N runs")
    schedule_parser.add_argument("--digest-hour", type=int, help="Hour of day to send the digest")
    schedule_parser.set_defaults(func=cmd_schedule)

    return parser


def main(argv: List[str] | None = None) -> int:
    load_environment()
    logging.basicConfig(
        level=get_log_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        return args.func(args)
    except ValidationError as exc:
        logger.error("Invalid configuration: %s", exc)
        return EXIT_CLIENT_FAULT


if __name__ == "__main__":
    raise SystemExit(main())
