"""
jira_worklog_report package

- core: Jira fetch, worklog flattening/filtering and .xlsx rendering.
- web: Flask app exposing POST /api/generate-report.
- cli: console entrypoint (serve the API or write a report once).
"""

from jira_worklog_report.core import (  # noqa: F401
    COLS,
    InvalidDateError,
    UpstreamError,
    build_rows,
    generate_report,
    read_config,
    render_workbook,
    report_filename,
    sort_rows,
)


def main() -> None:
    """Package entrypoint. Delegates to the CLI main()."""
    from jira_worklog_report.cli import main as _main
    _main()
