import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import httpx
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

USER_AGENT = "Mozilla/5.0 (compatible; e-Panchayath/1.0)"

# Words a report table header is expected to contain
EXPECTED_KEYWORDS = [
    "mandal", "panchayat", "report", "reporting", "date",
    "attendance", "status", "time", "dsr",
]

RECORD_FIELDS = (
    "Mandal",
    "Panchayat",
    "ReportingDate",
    "AttendanceStatus",
    "AttendanceTime",
    "DSR_Entry_Status",
)

DETAILS_LIMIT = 500


class ReportError(Exception):
    """Base class for errors rendered as a JSON error envelope."""
    status_code = 500
    error = "Server error"

    def __init__(self, details: str = "", status_code: Optional[int] = None):
        super().__init__(details or self.error)
        self.details = details
        if status_code is not None:
            self.status_code = status_code

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.error}
        if self.details:
            body["details"] = self.details
        return body


class InvalidInput(ReportError):
    status_code = 400
    error = "uid must contain digits"


class UpstreamError(ReportError):
    error = "External site error"


class NetworkError(ReportError):
    error = "Server error"


# --- Table selection ---

def _cell_text(cell) -> str:
    return cell.get_text().strip()


def header_cells(table) -> list:
    """Header candidates of a table: the th cells of its first row, else its td cells."""
    first_row = table.find("tr")
    if first_row is None:
        return []
    return first_row.find_all("th") or first_row.find_all("td")


def score_table(table) -> float:
    headers = [_cell_text(c).lower() for c in header_cells(table)]
    headers = [h for h in headers if h]

    score = 0.0
    for header in headers:
        for keyword in EXPECTED_KEYWORDS:
            if keyword in header:
                score += 1
    # wider tables win near-ties
    score += len(headers) * 0.1
    return score


def select_table(soup: BeautifulSoup):
    """Return the table that looks most like the attendance report, or None.

    Tables are scored in document order and only a strictly higher score
    replaces the current best, so the first of several equal tables wins.
    """
    best_table = None
    best_score = -1.0

    for i, table in enumerate(soup.find_all("table")):
        score = score_table(table)
        logger.debug("Table %d scored %.1f", i + 1, score)
        if score > best_score:
            best_score = score
            best_table = table

    return best_table


# --- Row extraction and normalization ---

def normalize_key(header: str, index: int) -> str:
    """Turn header text into a RawRow key, e.g. 'Reporting Date' -> 'reporting_date'."""
    raw = header.strip() if header else ""
    if not raw:
        raw = f"col{index}"
    key = re.sub(r"\s+", "_", raw)
    key = re.sub(r"[^\w\-]", "", key, flags=re.ASCII)
    return key.lower()


def extract_raw_rows(table) -> List[Dict[str, str]]:
    rows = table.find_all("tr")
    if not rows:
        return []

    headers = [_cell_text(c) for c in rows[0].find_all(["th", "td"])]

    raw_rows = []
    for tr in rows[1:]:
        cells = tr.find_all("td")
        if not cells:
            continue
        row = {}
        for j, td in enumerate(cells):
            header = headers[j] if j < len(headers) else ""
            row[normalize_key(header, j)] = _cell_text(td)
        if any(row.values()):
            raw_rows.append(row)
    return raw_rows


def parse_html_to_rows(html: str, parser: str = "html.parser") -> List[Dict[str, str]]:
    """Pick the best table in ``html`` and return its data rows keyed by header."""
    soup = BeautifulSoup(html or "", parser)
    table = select_table(soup)
    if table is None:
        logger.info("📊 No tables found in upstream HTML")
        return []
    rows = extract_raw_rows(table)
    logger.info("📊 Extracted %d rows from best table", len(rows))
    return rows


def _contains(*words: str) -> Callable[[str], bool]:
    return lambda key: any(w in key for w in words)


@dataclass(frozen=True)
class FieldRule:
    target: str
    matches: Callable[[str], bool]
    # only fill the target while it is still empty
    fallback: bool = False


# Order matters: each key is claimed by the first rule it matches.
FIELD_RULES = (
    FieldRule("Mandal", _contains("mandal")),
    FieldRule("Panchayat", _contains("panchay")),
    FieldRule("ReportingDate", _contains("report")),
    FieldRule("ReportingDate", _contains("date"), fallback=True),
    FieldRule("AttendanceTime", _contains("time")),
    FieldRule(
        "DSR_Entry_Status",
        lambda key: _contains("attendance", "status")(key) and _contains("dsr", "entry")(key),
    ),
    FieldRule("AttendanceStatus", _contains("attendance", "status")),
    FieldRule("DSR_Entry_Status", _contains("dsr")),
)

PANCHAYAT_FALLBACK = re.compile(r"panch|gram", re.IGNORECASE)


def normalize_row(raw_row: Dict[str, str]) -> Dict[str, str]:
    """Map a header-keyed row onto the fixed report schema.

    Keys are visited in column order. A field keeps the value of the first key
    that a primary rule assigns to it; the ``date`` fallback only fills an
    empty ReportingDate, and a later ``report`` column still replaces it.
    """
    record = {field: "" for field in RECORD_FIELDS}
    assigned = set()

    for key, value in raw_row.items():
        kl = key.lower()
        for rule in FIELD_RULES:
            if not rule.matches(kl):
                continue
            if rule.fallback:
                if not record[rule.target]:
                    record[rule.target] = value or ""
            elif rule.target not in assigned:
                record[rule.target] = value or ""
                assigned.add(rule.target)
            break

    if not record["Panchayat"]:
        for key, value in raw_row.items():
            if PANCHAYAT_FALLBACK.search(key):
                record["Panchayat"] = value or ""
                break

    return record


def number_rows(items: list) -> List[Dict[str, Any]]:
    """Prefix each item with a 1-based SNO. Non-object items are kept under 'value'."""
    numbered = []
    for i, item in enumerate(items, start=1):
        if isinstance(item, dict):
            numbered.append({"SNO": i, **item})
        else:
            numbered.append({"SNO": i, "value": item})
    return numbered


# --- Upstream fetch ---

class PortalScraper:
    """Fetches the report page from the upstream portal, once per request."""

    def __init__(self, base_url: str, path: str, timeout: float, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.url = f"{base_url.removesuffix('/')}{path}"
        self.timeout = timeout
        self.transport = transport
        self.headers = {"User-Agent": USER_AGENT}

    def url_for(self, parameter: str) -> str:
        return f"{self.url}?Parameter1={parameter}"

    async def fetch(self, parameter: str) -> httpx.Response:
        url = self.url_for(parameter)
        logger.info("🌐 Fetching %s", url)

        async with httpx.AsyncClient(
            headers=self.headers,
            timeout=self.timeout,
            follow_redirects=True,
            transport=self.transport,
        ) as client:
            try:
                response = await client.get(url)
                response.raise_for_status()
            except httpx.HTTPStatusError as e:
                status = e.response.status_code or 500
                body = e.response.text
                if not body:
                    raise NetworkError(str(e))
                raise UpstreamError(body[:DETAILS_LIMIT], status_code=status)
            except httpx.RequestError as e:
                raise NetworkError(str(e) or e.__class__.__name__)

        logger.info("✅ Upstream answered %s (%d chars)", response.status_code, len(response.text))
        return response
