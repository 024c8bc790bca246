"""
Console script entrypoint for jira-worklog-report.

Without dates it serves the HTTP API; with --start-date/--end-date it runs the
report pipeline once and writes the workbook to disk.
"""
from __future__ import annotations

import argparse
import logging
import os
import sys

import requests
from dotenv import load_dotenv

from jira_worklog_report import core

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Export Jira worklogs in a date range to .xlsx.")
    p.add_argument("--config", default="config.ini", help="Path to config.ini (default: ./config.ini)")
    p.add_argument("--host", default="127.0.0.1", help="Bind address for the HTTP API")
    p.add_argument("--port", type=int, default=3000, help="Port for the HTTP API (default=3000)")
    p.add_argument("--start-date", default="", help="Inclusive start (YYYY-MM-DD or ISO date-time); writes a file instead of serving")
    p.add_argument("--end-date", default="", help="Inclusive end (YYYY-MM-DD or ISO date-time)")
    p.add_argument("--out", default="", help="Output .xlsx; default Worklog_Report_<start>_to_<end>.xlsx")
    p.add_argument("--timeout", type=int, default=0, help="Per-request timeout in seconds (overrides config)")
    p.add_argument("--insecure", action="store_true", help="Disable SSL verification (NOT RECOMMENDED)")
    p.add_argument("--verbose", action="store_true", help="Debug logging")
    return p.parse_args(argv)


def write_report(cfg, start_date: str, end_date: str, out: str) -> int:
    """Run the pipeline once and write the workbook; returns an exit code."""
    session = core.session_from_config(cfg)
    try:
        rows, data = core.generate_report(session, cfg, start_date, end_date, progress=True)
    except core.InvalidDateError as e:
        logger.error("%s", e)
        return 2
    except core.UpstreamError as e:
        logger.error("Jira search failed: %s %s", e.status_code, e.reason)
        return 3
    except requests.RequestException as e:
        logger.error("Jira request failed: %s", e)
        return 3
    finally:
        session.close()

    out_path = out.strip() or core.report_filename(start_date, end_date)
    if not out_path.lower().endswith(".xlsx"):
        out_path += ".xlsx"
    try:
        os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
        with open(out_path, "wb") as fh:
            fh.write(data)
    except OSError as e:
        logger.error("Failed to write Excel file %s: %s", out_path, e)
        return 4

    print(f"Done. Worklogs exported: {len(rows)}")
    print(f"File written: {out_path}")
    return 0


def main(argv=None) -> None:
    load_dotenv()
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    cfg = core.read_config(args.config)
    if args.timeout > 0:
        cfg["timeout"] = args.timeout
    if args.insecure:
        cfg["verify_ssl"] = False

    if args.start_date or args.end_date:
        sys.exit(write_report(cfg, args.start_date, args.end_date, args.out))

    from jira_worklog_report.web import create_app

    app = create_app(cfg)
    logger.info("Server running at http://%s:%s", args.host, args.port)
    app.run(host=args.host, port=args.port)


if __name__ == "__main__":
    main()
