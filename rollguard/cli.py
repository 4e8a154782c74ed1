"""rollguard command line."""

import argparse
import json
import time

import pandas as pd
from rich.console import Console
from rich.table import Table

from .config import get_config
from .engine import RollIntegrityEngine, error_response
from .exceptions import RollGuardError
from .logger import get_logger, log_timing
from .models import DeathRecord
from .persistence import create_store
from .services import ServiceContext
from .utils.progress import get_progress
from .workers import ClusterSweepWorker

console = Console(force_terminal=True)
logger = get_logger("rollguard")

IMPORT_CHUNK = 500


def build_engine() -> RollIntegrityEngine:
    config = get_config()
    context = ServiceContext(config=config, store=create_store(config))
    return RollIntegrityEngine(context)


def print_json(data) -> None:
    console.print_json(json.dumps(data, default=str))


def cluster_table(flags: list) -> Table:
    table = Table(title="Address clusters")
    table.add_column("Cluster", style="dim")
    table.add_column("Address")
    table.add_column("Voters", justify="right")
    table.add_column("Risk", justify="right")
    table.add_column("Level")
    table.add_column("Status")
    for flag in flags:
        level = flag["risk_level"]
        style = "bold red" if level in ("high", "critical") else ""
        table.add_row(
            flag["cluster_id"][:12],
            flag["normalized_address"] or "-",
            str(flag["voter_count"]),
            f"{flag['risk_score']:.2f}",
            f"[{style}]{level}[/]" if style else level,
            flag["status"],
        )
    return table


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------

def cmd_init_db(engine, args):
    engine.store.init_db()
    logger.info("✅ Schema ready")


def cmd_validate_address(engine, args):
    result = engine.validate_address({
        "house_number": args.house_number,
        "street": args.street,
        "village_city": args.city,
        "district": args.district,
        "state": args.state,
        "pin_code": args.pin,
    })
    print_json(result)


def cmd_validate_name(engine, args):
    print_json(engine.validate_name(args.name, args.role))


def cmd_detect_clusters(engine, args):
    thresholds = {"low": args.low, "medium": args.medium, "high": args.high}
    result = engine.detect_address_clusters({k: v for k, v in thresholds.items() if v is not None})
    console.print(cluster_table(result["flags"]))
    logger.info(
        f"🔎 {result['clusters_found']} clusters, {result['new_flags']} new flags, "
        f"{result['skipped']} skipped, {result['suspicious']} suspicious"
    )


def cmd_dry_run(engine, args):
    scope = {
        "region": args.region,
        "district": args.district,
        "state": args.state,
        "start_date": args.start_date,
        "end_date": args.end_date,
    }
    result = engine.run_dry_run(scope, created_by=args.actor)
    if not args.verbose:
        result.pop("flags")
    print_json(result)


def cmd_commit(engine, args):
    print_json(engine.commit_batch(args.batch_id, committed_by=args.actor))


def cmd_cancel(engine, args):
    print_json(engine.cancel_batch(args.batch_id, cancelled_by=args.actor))


def cmd_verify_chain(engine, args):
    result = engine.verify_hash_chain(verified_by=args.actor)
    colour = "green" if result["chain_health"] == "healthy" else "bold red"
    console.print(f"[{colour}]Chain {result['chain_health']}[/] "
                  f"({result['invalid_blocks']}/{result['total_blocks']} invalid)")
    print_json(result)


def cmd_seed_names(engine, args):
    written = engine.names.seed_name_frequencies()
    logger.info(f"✅ Seeded {written} name frequency rows")


def cmd_import_deaths(engine, args):
    df = pd.read_csv(args.csv_path, dtype=str).fillna("")
    missing = {"national_id", "death_date"} - set(df.columns)
    if missing:
        logger.error(f"❌ CSV is missing column(s): {', '.join(sorted(missing))}")
        return 1

    records = [
        DeathRecord(
            national_id=row["national_id"],
            death_date=row["death_date"],
            source=row.get("source") or "registry",
        )
        for row in df.to_dict(orient="records")
        if row["national_id"] and row["death_date"]
    ]

    imported = 0
    progress = get_progress()
    with progress:
        task = progress.add_task("Importing death records", total=len(records))
        for start in range(0, len(records), IMPORT_CHUNK):
            chunk = records[start:start + IMPORT_CHUNK]
            imported += engine.revisions.import_death_records(chunk, imported_by=args.actor)
            progress.advance(task, len(chunk))

    logger.info(f"✅ Imported {imported} death records ({len(df) - len(records)} rows skipped)")


def cmd_worker(engine, args):
    worker = ClusterSweepWorker(
        engine.context,
        detector=engine.clusters,
        interval_seconds=args.interval_minutes * 60 if args.interval_minutes else None,
    )
    worker.start()
    try:
        while True:
            time.sleep(1)
            for message in worker.drain_alerts():
                if message["type"] == "cluster_alert":
                    logger.warning(
                        f"🚨 {message['risk_level']} cluster {message['cluster_id'][:12]} "
                        f"({message['voter_count']} voters) {message['normalized_address']}"
                    )
                else:
                    logger.info(f"Sweep complete: {message['clusters_found']} clusters")
    except KeyboardInterrupt:
        logger.info("Stopping worker")
    finally:
        worker.stop()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="RollGuard roll integrity engine")
    parser.add_argument("--actor", default="cli", help="Actor recorded in the audit log")
    sub = parser.add_subparsers(dest="command", required=True)

    p = sub.add_parser("init-db", help="Create database tables")
    p.set_defaults(func=cmd_init_db)

    p = sub.add_parser("validate-address", help="Normalize, geocode and score an address")
    p.add_argument("--house-number", default="")
    p.add_argument("--street", default="")
    p.add_argument("--city", default="")
    p.add_argument("--district", default="")
    p.add_argument("--state", default="")
    p.add_argument("--pin", default="")
    p.set_defaults(func=cmd_validate_address)

    p = sub.add_parser("validate-name", help="Score a personal name")
    p.add_argument("name")
    p.add_argument("--role", default="first_name")
    p.set_defaults(func=cmd_validate_name)

    p = sub.add_parser("detect-clusters", help="Run one address cluster sweep")
    p.add_argument("--low", type=int)
    p.add_argument("--medium", type=int)
    p.add_argument("--high", type=int)
    p.set_defaults(func=cmd_detect_clusters)

    p = sub.add_parser("dry-run", help="Create a draft revision batch")
    p.add_argument("--region", default="all")
    p.add_argument("--district")
    p.add_argument("--state")
    p.add_argument("--start-date")
    p.add_argument("--end-date")
    p.add_argument("--verbose", action="store_true", help="Include every flag in the output")
    p.set_defaults(func=cmd_dry_run)

    p = sub.add_parser("commit", help="Commit a draft revision batch")
    p.add_argument("batch_id")
    p.set_defaults(func=cmd_commit)

    p = sub.add_parser("cancel", help="Cancel a draft revision batch")
    p.add_argument("batch_id")
    p.set_defaults(func=cmd_cancel)

    p = sub.add_parser("verify-chain", help="Verify the audit log hash chain")
    p.set_defaults(func=cmd_verify_chain)

    p = sub.add_parser("seed-names", help="Load the built-in name corpus into the store")
    p.set_defaults(func=cmd_seed_names)

    p = sub.add_parser("import-deaths", help="Import death registry rows from CSV")
    p.add_argument("csv_path")
    p.set_defaults(func=cmd_import_deaths)

    p = sub.add_parser("worker", help="Run the periodic cluster sweep")
    p.add_argument("--interval-minutes", type=float)
    p.set_defaults(func=cmd_worker)

    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)
    start_time = time.perf_counter()

    try:
        engine = build_engine()
        code = args.func(engine, args) or 0
    except RollGuardError as e:
        response = error_response(e)
        logger.error(f"❌ {e.message}")
        print_json(response)
        code = 1

    log_timing(logger, args.command, time.perf_counter() - start_time)
    return code

