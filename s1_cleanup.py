#!/usr/bin/env python3
"""
SentinelOne duplicate agent cleanup.

For every active site, finds agents that share a computer name and
decommissions all but the most recently updated registration. Agents that are
still reporting as active are never decommissioned; they are counted as
warnings instead.

Usage:
    python3 s1_cleanup.py --url https://usea1.sentinelone.net --simulate
    python3 s1_cleanup.py --url https://usea1.sentinelone.net --site "London" --site "Paris" --log
    python3 s1_cleanup.py --url https://usea1.sentinelone.net --report duplicates.ndjson
"""

import argparse
import dataclasses
import datetime as dt
import getpass
import json
import os
import sys

from s1_api import AgentListingError, SentinelOneClient, SiteListingError
from s1_duplicates import candidates_from_groups, find_duplicates

# =========================
# CONFIG (env overrides)
# =========================
S1_API_URL = os.environ.get("S1_API_URL", "")
S1_API_TOKEN = os.environ.get("S1_API_TOKEN", "")
S1_LOG_DIR = os.environ.get("S1_LOG_DIR", "logs")

LOG_PREFIX = "s1_duplicate_cleanup"
REQUEST_TIMEOUT_SECONDS = 30

EXIT_OK = 0
EXIT_SITE_LISTING_FAILED = 1
EXIT_AGENT_LISTING_FAILED = 2
EXIT_CONFIG_ERROR = 3
# =========================


def now_local():
    return dt.datetime.now().isoformat(timespec="seconds")


def run_stamp():
    return dt.datetime.now().strftime("%Y%m%d_%H%M%S")


@dataclasses.dataclass
class RunStats:
    decommissions: int = 0
    errors: int = 0
    warnings: int = 0


class RunLog:
    """Console output, mirrored to an optional log file as '<timestamp>| <message>'."""

    def __init__(self, path=None):
        self.path = path
        self._fh = open(path, "a", encoding="utf-8") if path else None

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        if self._fh:
            self._fh.close()
            self._fh = None

    def _emit(self, message, stream):
        print(message, file=stream)
        if self._fh:
            self._fh.write(f"{now_local()}| {message}\n")
            self._fh.flush()

    def info(self, message):
        self._emit(message, sys.stdout)

    def warning(self, message):
        self._emit(f"WARNING: {message}", sys.stderr)

    def error(self, message):
        self._emit(f"ERROR: {message}", sys.stderr)


def resolve_log_path(log_dir):
    log_dir = os.path.abspath(os.path.expanduser(log_dir))
    os.makedirs(log_dir, exist_ok=True)
    return os.path.join(log_dir, f"{LOG_PREFIX}_{run_stamp()}.log")


def describe(agent):
    return f"id={agent.id} uuid={agent.uuid} updatedAt={agent.updated_at or 'N/A'}"


def write_report(report, site, candidate, action, error=""):
    if report is None:
        return
    entry = {
        "site": {"id": site.id, "name": site.name},
        "name": candidate.computer_name or "<EMPTY_NAME>",
        "keep": {
            "id": candidate.keep.id,
            "uuid": candidate.keep.uuid,
            "updatedAt": candidate.keep.updated_at,
        },
        "remove": {
            "id": candidate.agent.id,
            "uuid": candidate.agent.uuid,
            "updatedAt": candidate.agent.updated_at,
            "isActive": candidate.agent.is_active,
        },
        "action": action,
    }
    if error:
        entry["error"] = error
    report.write(json.dumps(entry, ensure_ascii=False, default=str) + "\n")


def decommission_candidates(client, site, candidates, stats, log, simulate=False, report=None):
    for candidate in candidates:
        agent = candidate.agent
        label = f'"{candidate.computer_name}" {describe(agent)}'

        if agent.is_active:
            stats.warnings += 1
            log.warning(f"Skipping {label}: agent is still active (keeping {describe(candidate.keep)})")
            write_report(report, site, candidate, "skipped_active")
            continue

        if simulate:
            stats.decommissions += 1
            log.info(f"[DRY RUN] Would decommission {label} (keeping {describe(candidate.keep)})")
            write_report(report, site, candidate, "simulated")
            continue

        result = client.decommission_agent(agent.id)
        if result.ok:
            stats.decommissions += 1
            log.info(f"Decommissioned {label} (keeping {describe(candidate.keep)})")
            write_report(report, site, candidate, "decommissioned")
        else:
            stats.errors += 1
            log.error(f"Failed to decommission {label}: {result.error}")
            write_report(report, site, candidate, "failed", result.error)

    return stats


def process_site(client, site, stats, log, simulate=False, report=None):
    roster, tally = client.collect_agents(site.id)
    groups = find_duplicates(roster, tally)
    log.info(
        f'Site "{site.name}" ({site.id}): {len(roster)} agents, '
        f"{len(groups)} computer names with duplicates"
    )
    candidates = candidates_from_groups(groups)
    return decommission_candidates(client, site, candidates, stats, log, simulate=simulate, report=report)


def summarize(stats, simulate=False):
    prefix = "[DRY RUN] " if simulate else ""
    return (
        f"{prefix}Decommissioned: {stats.decommissions}, "
        f"Errors: {stats.errors}, Warnings: {stats.warnings}"
    )


def run(client, log, site_filters=None, simulate=False, report=None):
    """Walk every matching site and return (exit_code, stats)."""
    stats = RunStats()
    try:
        for site in client.iter_sites(site_filters):
            process_site(client, site, stats, log, simulate=simulate, report=report)
    except SiteListingError as e:
        log.error(f"Unable to list sites: {e}")
        return EXIT_SITE_LISTING_FAILED, stats
    except AgentListingError as e:
        log.error(f"Unable to list agents: {e}")
        return EXIT_AGENT_LISTING_FAILED, stats

    log.info(summarize(stats, simulate))
    return EXIT_OK, stats


def parse_args(argv=None):
    p = argparse.ArgumentParser(
        description="Decommission duplicate SentinelOne agents, keeping the most recently updated one per computer name.",
    )
    p.add_argument("--url", default=S1_API_URL, help="Management console URL (env: S1_API_URL)")
    p.add_argument("--token", default=S1_API_TOKEN, help="API token (env: S1_API_TOKEN). Prompted if not set.")
    p.add_argument(
        "--site",
        dest="sites",
        action="append",
        default=[],
        help="Only process sites whose name contains this text. Repeatable.",
    )
    p.add_argument("--simulate", "--dry-run", dest="simulate", action="store_true", help="Log decisions without decommissioning")
    p.add_argument("--log", action="store_true", help="Write a timestamped log file")
    p.add_argument("--log-dir", default=S1_LOG_DIR, help="Directory for log files (env: S1_LOG_DIR, default: logs)")
    p.add_argument("--report", help="Write an NDJSON report of every duplicate decision")
    p.add_argument("--timeout", type=int, default=REQUEST_TIMEOUT_SECONDS, help="Per-request timeout in seconds")
    return p.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)

    if not args.url:
        print("ERROR: Set --url or S1_API_URL to your management console URL.", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    token = (args.token or "").strip()
    if not token:
        token = getpass.getpass("SentinelOne API token: ").strip()
    if not token:
        print("ERROR: An API token is required.", file=sys.stderr)
        return EXIT_CONFIG_ERROR

    log_path = resolve_log_path(args.log_dir) if args.log else None

    report_fh = open(args.report, "w", encoding="utf-8") if args.report else None
    try:
        with RunLog(log_path) as log, SentinelOneClient(args.url, token, timeout=args.timeout) as client:
            if log_path:
                log.info(f"Logging to {log_path}")
            if args.simulate:
                log.info("Simulate mode: no agents will be decommissioned.")
            exit_code, _ = run(client, log, site_filters=args.sites, simulate=args.simulate, report=report_fh)
    finally:
        if report_fh:
            report_fh.close()

    if args.report:
        print(f"Wrote duplicate report: {args.report}")
    return exit_code


if __name__ == "__main__":
    raise SystemExit(main())
