"""
Jira worklog report core.

- Reads connection settings from config.ini with environment fallbacks.
- Fetches issues with embedded worklogs from /rest/api/<2|3>/search in one call
  (static JQL, no pagination loop, no retries).
- Flattens worklogs into report rows, keeping only entries whose start
  instant falls inside [start, end] (both inclusive).
- Renders a single-sheet .xlsx (header + banded rows) in memory.
"""

import configparser
import logging
import os
import uuid
from datetime import date, datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from io import BytesIO
from typing import Any, Dict, Iterable, List, Optional, Tuple

import pandas as pd
import requests
import urllib3
from dateutil import parser as date_parser
from openpyxl.styles import Font, PatternFill
from openpyxl.utils import get_column_letter
from tqdm import tqdm
from werkzeug.utils import secure_filename

logger = logging.getLogger(__name__)

DEFAULT_TZ = timezone.utc
DEFAULT_BASE_URL = "https://projectmanagementzone.atlassian.net"
DEFAULT_JQL = "timespent > 0"
DEFAULT_FIELDS = "worklog,summary,assignee,project,key"
DEFAULT_EXPAND = "worklog"
DEFAULT_API_VERSION = "2"
DEFAULT_TIMEOUT = 120

SHEET_NAME = "Worklog Report"
HEADER_FILL = "FFA500"
EVEN_ROW_FILL = "FFFFFF"
ODD_ROW_FILL = "D3D3D3"

COLS = [
    "Date",
    "Assignee",
    "ProjectName",
    "ProjectID",
    "IssueID",
    "UpdatedBy",
    "Issue",
    "Comment",
    "Hours",
]

NO_TITLE = "No title available"
UNASSIGNED = "Unassigned"
NO_PROJECT_NAME = "No project name"
NO_PROJECT_ID = "No project ID"
NO_ISSUE_ID = "No issue ID"
NO_COMMENT = "No comment"


class UpstreamError(Exception):
    """Raised when the Jira search endpoint answers with a non-2xx status."""

    def __init__(self, status_code: int, reason: str):
        super().__init__(f"{status_code} {reason}")
        self.status_code = status_code
        self.reason = reason


class InvalidDateError(ValueError):
    """Raised when a requested range bound cannot be parsed."""


def _truthy(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


def read_config(path: Optional[str]) -> Dict[str, Any]:
    """Read connection and report settings from an INI file.

    Every value missing from the file falls back to the environment and then
    to the built-in default. Missing credentials only produce a warning: the
    upstream call will then fail with 401, which is reported to the caller.

    Args:
        path: Path to config.ini. A missing file is treated as empty.

    Returns:
        Dict[str, Any]: Normalized settings.
    """
    cp = configparser.ConfigParser()
    if path:
        cp.read(path, encoding="utf-8")
    jira = cp["jira"] if "jira" in cp else {}
    report = cp["report"] if "report" in cp else {}

    def pick(section, key: str, *env_names: str, default: str = "") -> str:
        val = (section.get(key, "") or "").strip()
        for name in env_names:
            if val:
                break
            val = os.environ.get(name, "").strip()
        return val or default

    base_url = pick(jira, "base_url", "JIRA_BASE_URL", default=DEFAULT_BASE_URL).rstrip("/")
    username = pick(jira, "username", "JIRA_USERNAME", "JIRA_EMAIL")
    token    = pick(jira, "api_token", "JIRA_TOKEN", "JIRA_API_TOKEN")
    if not (username and token):
        logger.warning("Jira username/api_token not configured; upstream calls will be rejected.")

    timeout_raw = pick(jira, "timeout", default=str(DEFAULT_TIMEOUT))
    try:
        timeout = int(timeout_raw)
    except ValueError:
        logger.warning("Invalid timeout %r; using %s seconds.", timeout_raw, DEFAULT_TIMEOUT)
        timeout = DEFAULT_TIMEOUT

    return {
        "base_url": base_url,
        "username": username,
        "token": token,
        "jql": pick(jira, "jql", "JIRA_JQL", default=DEFAULT_JQL),
        "fields": pick(jira, "fields", default=DEFAULT_FIELDS),
        "expand": pick(jira, "expand", default=DEFAULT_EXPAND),
        "api_version": pick(jira, "api_version", "JIRA_API_VERSION", default=DEFAULT_API_VERSION),
        "timeout": timeout,
        "verify_ssl": _truthy(pick(jira, "verify_ssl", default="true")),
        "ca_bundle": pick(jira, "ca_bundle"),
        "http_proxy": pick(jira, "http_proxy"),
        "https_proxy": pick(jira, "https_proxy"),
        "report_dir": pick(report, "report_dir", "REPORT_DIR"),
    }


def make_session(username: str, token: str, verify: Optional[bool]=True, ca_bundle: Optional[str]="",
                 http_proxy: str="", https_proxy: str="") -> requests.Session:
    """Create a requests.Session with Basic auth and JSON accept header.

    Args:
        username: Jira account (email) used as the Basic auth user.
        token: Jira API token used as the Basic auth password.
        verify: Whether to verify SSL certs (ignored if ca_bundle provided).
        ca_bundle: Path to CA bundle to use for SSL verification.
        http_proxy: HTTP proxy URL.
        https_proxy: HTTPS proxy URL.

    Returns:
        requests.Session: Configured session instance.
    """
    s = requests.Session()
    s.auth = (username, token)
    s.headers.update({"Accept": "application/json"})
    proxies = {}
    if http_proxy:
        proxies["http"] = http_proxy
    if https_proxy:
        proxies["https"] = https_proxy
    if proxies:
        s.proxies.update(proxies)
    if ca_bundle:
        s.verify = ca_bundle
    else:
        s.verify = verify
    return s


def session_from_config(cfg: Dict[str, Any]) -> requests.Session:
    """Build the Jira session described by a read_config() result."""
    verify = bool(cfg.get("verify_ssl", True))
    ca_bundle = cfg.get("ca_bundle", "")
    if not verify and not ca_bundle:
        logger.warning("SSL certificate verification is DISABLED. Use only for testing.")
        urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)
    return make_session(cfg.get("username", ""), cfg.get("token", ""), verify=verify,
                        ca_bundle=ca_bundle, http_proxy=cfg.get("http_proxy", ""),
                        https_proxy=cfg.get("https_proxy", ""))


def search_url(base_url: str, api_version: str=DEFAULT_API_VERSION) -> str:
    """Search endpoint; REST v2 returns plain-text comments, v3 returns ADF."""
    return f"{base_url.rstrip('/')}/rest/api/{api_version}/search"


def search_params(cfg: Dict[str, Any]) -> Dict[str, str]:
    return {
        "jql": cfg.get("jql", DEFAULT_JQL),
        "fields": cfg.get("fields", DEFAULT_FIELDS),
        "expand": cfg.get("expand", DEFAULT_EXPAND),
    }


def fetch_issues(session: requests.Session, url: str, params: Dict[str, str],
                 timeout: int=DEFAULT_TIMEOUT) -> List[Dict[str, Any]]:
    """Run the static Jira search once and return its issues.

    Raises:
        UpstreamError: the endpoint answered with a non-2xx status.
        requests.RequestException: transport failure.
    """
    r = session.get(url, params=params, timeout=timeout)
    if not 200 <= r.status_code < 300:
        logger.error("Jira search failed (%s %s): %s", r.status_code, r.reason, getattr(r, "text", "")[:200])
        raise UpstreamError(r.status_code, r.reason or "")
    data = r.json() or {}
    issues = data.get("issues") or []
    logger.debug("Jira search returned %d issues (total=%s)", len(issues), data.get("total"))
    return issues


def parse_instant(value: Any) -> Optional[datetime]:
    """Parse an ISO-8601 string into an aware datetime; naive input is UTC.

    Accepts Jira's '+0000' offsets and plain dates ('2024-01-15' is midnight UTC).
    Returns None when the value cannot be parsed.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        dt = date_parser.isoparse(value.strip())
    except (ValueError, OverflowError):
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=DEFAULT_TZ)
    return dt


def parse_date_range(start_str: Any, end_str: Any) -> Tuple[datetime, datetime]:
    """Parse the requested bounds; both are inclusive instants.

    Raises:
        InvalidDateError: a bound is missing or not an ISO-8601 date/date-time.
    """
    start = parse_instant(start_str)
    if start is None:
        raise InvalidDateError(f"Invalid startDate: {start_str!r}")
    end = parse_instant(end_str)
    if end is None:
        raise InvalidDateError(f"Invalid endDate: {end_str!r}")
    return start, end


def adf_to_text(adf: Any) -> str:
    """Convert Atlassian Document Format (ADF) content to plain text."""
    if isinstance(adf, str):
        return adf
    if not isinstance(adf, dict):
        return ""
    lines: List[str] = []

    def walk(node: Any):
        t = node.get("type") if isinstance(node, dict) else None
        if t in ("paragraph", "heading", "blockquote"):
            segs: List[str] = []
            for c in node.get("content", []):
                if c.get("type") == "hardBreak":
                    segs.append("\n")
                elif isinstance(c.get("text"), str):
                    segs.append(c["text"])
            lines.append("".join(segs))
        elif t == "listItem":
            before = len(lines)
            for c in node.get("content", []):
                walk(c)
            for i in range(before, len(lines)):
                if lines[i].strip():
                    lines[i] = "- " + lines[i]
        elif isinstance(node, dict):
            for c in node.get("content", []):
                walk(c)

    walk(adf)
    return "\n".join(line.rstrip() for line in lines).strip()


def format_hours(seconds: Any) -> str:
    """Seconds -> hours as a string with exactly two decimals."""
    hours = Decimal((seconds or 0) / 3600)
    return str(hours.quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _display_name(person: Any) -> Optional[str]:
    if isinstance(person, dict):
        return person.get("displayName") or None
    return None


def issue_rows(issue: Dict[str, Any], start: datetime, end: datetime) -> List[Dict[str, Any]]:
    """Map one issue's worklogs inside [start, end] to report rows."""
    f = issue.get("fields") or {}
    project = f.get("project") or {}

    title        = f.get("summary") or NO_TITLE
    assignee     = _display_name(f.get("assignee")) or UNASSIGNED
    project_name = project.get("name") or NO_PROJECT_NAME
    project_id   = project.get("key") or NO_PROJECT_ID
    issue_id     = issue.get("key") or NO_ISSUE_ID

    rows: List[Dict[str, Any]] = []
    for wl in (f.get("worklog") or {}).get("worklogs") or []:
        started = parse_instant(wl.get("started"))
        if started is None:
            logger.debug("Skipping worklog %s on %s: unparsable start %r", wl.get("id"), issue_id, wl.get("started"))
            continue
        if not (start <= started <= end):
            continue

        comment = adf_to_text(wl.get("comment")) if wl.get("comment") else ""
        rows.append({
            "Date": started.astimezone(DEFAULT_TZ).date().isoformat(),
            "Assignee": assignee,
            "ProjectName": project_name,
            "ProjectID": project_id,
            "IssueID": issue_id,
            "UpdatedBy": _display_name(wl.get("updateAuthor")) or assignee,
            "Issue": title,
            "Comment": comment or NO_COMMENT,
            "Hours": format_hours(wl.get("timeSpentSeconds")),
        })
    return rows


def build_rows(issues: Iterable[Dict[str, Any]], start: datetime, end: datetime,
               progress: bool=False) -> List[Dict[str, Any]]:
    """Flatten every issue's worklogs into rows, filtered by [start, end]."""
    rows: List[Dict[str, Any]] = []
    for issue in tqdm(issues, desc="Processing issues", unit="issue", disable=not progress):
        rows.extend(issue_rows(issue, start, end))
    return rows


def sort_rows(rows: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Stable sort by the parsed row date, ascending."""
    return sorted(rows, key=lambda row: date.fromisoformat(row["Date"]))


def render_workbook(rows: List[Dict[str, Any]]) -> bytes:
    """Render rows into a styled single-sheet workbook and return its bytes.

    The header always comes from COLS, so an empty row list still yields a
    valid workbook with only the header row.
    """
    df = pd.DataFrame(rows, columns=COLS)
    buf = BytesIO()
    with pd.ExcelWriter(buf, engine="openpyxl") as writer:
        df.to_excel(writer, index=False, sheet_name=SHEET_NAME)
        ws = writer.sheets[SHEET_NAME]

        header_fill = PatternFill(start_color=HEADER_FILL, end_color=HEADER_FILL, fill_type="solid")
        header_font = Font(bold=True)
        for cell in ws[1]:
            cell.fill = header_fill
            cell.font = header_font

        even = PatternFill(start_color=EVEN_ROW_FILL, end_color=EVEN_ROW_FILL, fill_type="solid")
        odd  = PatternFill(start_color=ODD_ROW_FILL, end_color=ODD_ROW_FILL, fill_type="solid")
        for i, row in enumerate(ws.iter_rows(min_row=2, max_row=len(df) + 1)):
            fill = even if i % 2 == 0 else odd
            for cell in row:
                cell.fill = fill
                # Jira free text starting with "=" must stay literal text
                if cell.data_type == "f":
                    cell.data_type = "s"

        for idx, col in enumerate(COLS, start=1):
            longest = max([len(col)] + [len(str(v)) for v in df[col]])
            ws.column_dimensions[get_column_letter(idx)].width = min(longest + 2, 60)
    return buf.getvalue()


def report_filename(start_str: str, end_str: str, suffix: str="") -> str:
    """'Worklog_Report_<start>_to_<end>[_<suffix>].xlsx'."""
    tail = f"_{suffix}" if suffix else ""
    return f"Worklog_Report_{start_str}_to_{end_str}{tail}.xlsx"


def generate_report(session: requests.Session, cfg: Dict[str, Any], start_str: Any, end_str: Any,
                    progress: bool=False) -> Tuple[List[Dict[str, Any]], bytes]:
    """Fetch, flatten, filter, sort and render one report.

    Returns:
        tuple[list, bytes]: (sorted rows, workbook bytes).
    """
    start, end = parse_date_range(start_str, end_str)
    logger.info("Generating worklog report for %s .. %s", start.isoformat(), end.isoformat())
    url = search_url(cfg["base_url"], cfg.get("api_version", DEFAULT_API_VERSION))
    issues = fetch_issues(session, url, search_params(cfg),
                          timeout=cfg.get("timeout", DEFAULT_TIMEOUT))
    rows = sort_rows(build_rows(issues, start, end, progress=progress))
    logger.info("Issues analysed: %d, worklogs exported: %d", len(issues), len(rows))
    return rows, render_workbook(rows)


def save_report(data: bytes, directory: str, start_str: str, end_str: str) -> str:
    """Write an archive copy under a request-unique name and return its path."""
    os.makedirs(directory, exist_ok=True)
    name = secure_filename(report_filename(start_str, end_str, suffix=uuid.uuid4().hex[:8]))
    path = os.path.join(directory, name)
    with open(path, "wb") as fh:
        fh.write(data)
    return path
