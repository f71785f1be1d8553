from __future__ import annotations

import os
import re
import time
import urllib.parse
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional, Tuple

import httpx
from bs4 import BeautifulSoup

from arborist_permits.dates import format_us_date, same_utc_day
from arborist_permits.logs import get_logger
from arborist_permits.normalize import clean_text
from arborist_permits.permits.base import PermitExtractor
from arborist_permits.permits.models import ENRICHMENT_FIELDS, RawRecord


"""Atlanta (GA) Accela Citizen Access building permits.

- `parse_results_page()`, `parse_detail_page()` and the form builders are pure
  and fixture-tested.
- LIVE HTTP is only allowed when `LIVE=1`.
- The portal is ASP.NET WebForms: searching and paging are form postbacks that
  must echo the page's hidden state (__VIEWSTATE and friends).
"""


BASE_URL = "https://aca-prod.accela.com/atlanta_ga/"
SEARCH_PATH = "Cap/CapHome.aspx?module=Building&TabName=Building"
PERMIT_TYPE = "Arborist Dead Dying Hazardous Tree"
CITY = "Atlanta"
USER_AGENT = "arborist-permits/0.0.1 (+civic permit map; batch, 1 req/sec)"

_POSTBACK_RE = re.compile(r"__doPostBack\('([^']*)'")
_PAGER_RES = (
    re.compile(r"^<\s*Prev", re.I),
    re.compile(r"Next\s*>$", re.I),
    re.compile(r"^\d+(\s+\d+)*$"),
)
_CHROME_MARKERS = ("Login", "Register", "Create a New Collection")

# Candidate ids, most specific first; later entries are substring matches.
_FIELD_IDS = {
    "search_type": ["ctl00_PlaceHolderMain_ddlSearchType", "ddlSearchType"],
    "permit_type": ["ctl00_PlaceHolderMain_generalSearchForm_ddlGSPermitType", "ddlGSPermitType"],
    "date_type": ["ctl00_PlaceHolderMain_generalSearchForm_ddlGSDateType", "ddlGSDateType"],
    "from_date": [
        "ctl00_PlaceHolderMain_generalSearchForm_txtGSFromDate",
        "ctl00_PlaceHolderMain_generalSearchForm_txtGSStartDate",
        "FromDate",
        "StartDate",
    ],
    "to_date": [
        "ctl00_PlaceHolderMain_generalSearchForm_txtGSToDate",
        "ctl00_PlaceHolderMain_generalSearchForm_txtGSEndDate",
        "ToDate",
        "EndDate",
    ],
    "city": ["ctl00_PlaceHolderMain_generalSearchForm_txtGSCity", "txtGSCity"],
}
_SEARCH_BUTTON = "ctl00$PlaceHolderMain$btnNewSearch"
_DATE_TYPE_RE = re.compile(r"Applied|Application|Submitted|Record|Created", re.I)

# Labels inside the "More Details" application-specific info block.
_DETAIL_LABELS = (
    ("tree_dbh", re.compile(r"Tree Size \(DBH\)", re.I)),
    ("tree_location", re.compile(r"Tree location", re.I)),
    ("reason_removal", re.compile(r"Reason for Removal", re.I)),
    ("tree_description", re.compile(r"Description of Tree", re.I)),
    ("tree_number", re.compile(r"Tree number", re.I)),
    ("species", re.compile(r"Species", re.I)),
)
_TEXT_FALLBACKS = (
    ("tree_number", re.compile(r"^\s*Tree number:\s*(\d+)", re.I | re.M)),
    ("tree_dbh", re.compile(r"^\s*Tree Size \(DBH\):\s*(.+?)\s*$", re.I | re.M)),
    ("species", re.compile(r"^\s*Species:\s*(.+?)\s*$", re.I | re.M)),
    ("tree_location", re.compile(r"^\s*Tree location:\s*(.+?)\s*$", re.I | re.M)),
    ("reason_removal", re.compile(r"^\s*Reason for Removal:\s*(.+?)\s*$", re.I | re.M)),
    ("tree_description", re.compile(r"^\s*Description of Tree:\s*(.+?)\s*$", re.I | re.M)),
)
_OWNER_TEXT_RE = re.compile(r"Owner:\s*([A-Za-z][A-Za-z .,'&-]*?)\s*(?:\*|$)", re.M)

logger = get_logger("extract")


def _is_live_enabled() -> bool:
    return os.environ.get("LIVE", "0") == "1"


def _text(node) -> str:
    if node is None:
        return ""
    return " ".join(node.get_text(" ", strip=True).split())


@dataclass
class ResultsPage:
    rows: List[RawRecord] = field(default_factory=list)
    next_target: Optional[str] = None


def _is_permit_table(table) -> bool:
    text = _text(table)
    if "BLD-" not in text and "Record" not in text:
        return False
    return not any(marker in text for marker in _CHROME_MARKERS)


def _own_rows(table) -> list:
    return [tr for tr in table.find_all("tr") if tr.find_parent("table") is table]


def _is_pager_row(joined: str) -> bool:
    return any(rx.search(joined) for rx in _PAGER_RES)


def _resolve_detail_href(href: Optional[str], base_url: str) -> Optional[str]:
    if not href:
        return None
    candidate = href.strip()
    if candidate.lower().startswith("javascript:"):
        # e.g. javascript:openWindow('https://...') or javascript:go(/Cap/CapDetail.aspx?...)
        m = re.search(r"'(https?:[^']+)'", candidate, re.I) or re.search(
            r"\(\s*'?([^)',]+)'?\s*\)", candidate
        )
        if not m or "__doPostBack" in candidate:
            return None
        candidate = m.group(1)
    if not re.match(r"^https?:", candidate, re.I):
        candidate = urllib.parse.urljoin(base_url, candidate)
    return candidate


def find_next_target(soup) -> Optional[str]:
    for a in soup.find_all("a"):
        if not re.search(r"Next\s*>", _text(a), re.I):
            continue
        m = _POSTBACK_RE.search(a.get("href") or "")
        if m:
            return m.group(1)
    return None


def parse_results_page(content: str, base_url: str = BASE_URL) -> ResultsPage:
    """Parse one page of the permit search results grid.

    Fixture contract: a table whose header row (within its first 10 rows)
    mentions Date, Record Number, Address and Status.
    """

    soup = BeautifulSoup(content, "html.parser")
    page = ResultsPage(next_target=find_next_target(soup))

    for table in soup.find_all("table"):
        if not _is_permit_table(table):
            continue
        rows = _own_rows(table)
        header_idx = -1
        headers: list[str] = []
        for i, tr in enumerate(rows[:10]):
            row_text = _text(tr)
            if all(word in row_text for word in ("Date", "Record Number", "Address", "Status")):
                header_idx = i
                headers = [_text(c) for c in tr.find_all(["th", "td"], recursive=False)]
                break
        if header_idx < 0:
            continue

        def col(pattern: str) -> int:
            rx = re.compile(pattern, re.I)
            for i, h in enumerate(headers):
                if rx.search(h):
                    return i
            return -1

        idx_record = col(r"Record")
        idx_address = col(r"Address")
        idx_date = col(r"Date")
        idx_status = col(r"Status")
        idx_type = col(r"Type")
        idx_desc = col(r"Description")

        for tr in rows[header_idx + 1:]:
            cells = tr.find_all("td", recursive=False)
            if not cells:
                continue
            values = [_text(c) for c in cells]
            if _is_pager_row(" ".join(values).strip()):
                continue

            def cell(i: int) -> Optional[str]:
                if i < 0 or i >= len(values):
                    return None
                return values[i] or None

            detail_url = None
            if 0 <= idx_record < len(cells):
                link = cells[idx_record].find("a")
                if link is not None:
                    detail_url = _resolve_detail_href(link.get("href"), base_url)

            page.rows.append(
                RawRecord(
                    record=cell(idx_record),
                    address=cell(idx_address),
                    date=cell(idx_date),
                    status=cell(idx_status),
                    permit_type=cell(idx_type),
                    description=cell(idx_desc),
                    detail_url=detail_url,
                )
            )
    return page


def filter_rows_for_day(
    rows: List[RawRecord], day: datetime
) -> Tuple[List[RawRecord], Optional[datetime]]:
    """Keep rows dated `day`; also report the newest date seen on the page."""

    kept: List[RawRecord] = []
    newest: Optional[datetime] = None
    for row in rows:
        parsed = row.day
        if parsed is not None and (newest is None or parsed > newest):
            newest = parsed
        if not same_utc_day(parsed, day):
            continue
        if (row.address and len(row.address) > 5) or (row.record and len(row.record) > 3):
            kept.append(row)
    return kept, newest


def _owner_from_labels(soup) -> Optional[str]:
    for node in soup.select(".ACA_SmLabelBolder, .font11px, .ACA_Label"):
        if not re.match(r"^Owner\b", _text(node), re.I):
            continue
        container = node.find_parent(class_="MoreDetail_ItemCol") or node.parent
        for candidate in (container, node.parent):
            if candidate is None:
                continue
            sib = candidate.find_next_sibling()
            value = clean_text(_text(sib)) if sib is not None else None
            if value:
                return value
    for span in soup.select('span[id*="owner"]'):
        if not re.search(r"Owner", _text(span), re.I) or span.parent is None:
            continue
        for td in span.parent.find_all("td"):
            value = _text(td)
            if len(value) > 2 and not re.search(r"Owner", value, re.I):
                value = re.sub(r"\s*\*\s*$", "", value).strip()
                if value:
                    return value
    return None


def parse_detail_page(content: str) -> Dict[str, Optional[str]]:
    """Extract owner and tree details from a record's detail page."""

    soup = BeautifulSoup(content, "html.parser")
    out: Dict[str, Optional[str]] = {name: None for name in ENRICHMENT_FIELDS}

    out["owner"] = _owner_from_labels(soup)

    root = soup.find(id="trASITList")
    if root is not None:
        for label_col in root.select(".MoreDetail_Item .MoreDetail_ItemCol1"):
            label = _text(label_col)
            value_col = label_col.find_next_sibling()
            value = clean_text(_text(value_col)) if value_col is not None else None
            for name, rx in _DETAIL_LABELS:
                if rx.search(label) and value:
                    out[name] = value

    page_text = soup.get_text("\n")
    for name, rx in _TEXT_FALLBACKS:
        if out[name]:
            continue
        m = rx.search(page_text)
        if m:
            out[name] = clean_text(m.group(1))

    if not out["owner"]:
        m = _OWNER_TEXT_RE.search(page_text)
        if m:
            name = m.group(1).strip()
            if 1 < len(name) < 50:
                out["owner"] = name

    return out


def _find_field(soup, key: str):
    for i, candidate in enumerate(_FIELD_IDS[key]):
        if i == 0 or candidate.startswith("ctl00_"):
            node = soup.find(id=candidate)
        else:
            node = soup.find(
                lambda tag: tag.name in ("input", "select")
                and candidate in ((tag.get("id") or "") + " " + (tag.get("name") or ""))
            )
        if node is not None and node.get("name"):
            return node
    return None


def collect_form_fields(soup) -> Dict[str, str]:
    """Current values of every successful control in the page's form."""

    fields: Dict[str, str] = {}
    for inp in soup.find_all("input"):
        name = inp.get("name")
        if not name:
            continue
        kind = (inp.get("type") or "text").lower()
        if kind in ("submit", "button", "image", "reset", "file"):
            continue
        if kind in ("checkbox", "radio") and not inp.has_attr("checked"):
            continue
        fields[name] = inp.get("value") or ""
    for sel in soup.find_all("select"):
        name = sel.get("name")
        if not name:
            continue
        chosen = sel.find("option", selected=True) or sel.find("option")
        fields[name] = (chosen.get("value") if chosen is not None else "") or ""
    for area in soup.find_all("textarea"):
        if area.get("name"):
            fields[area["name"]] = area.get_text()
    return fields


def _form_action(soup, page_url: str) -> str:
    form = soup.find("form")
    action = form.get("action") if form is not None else None
    return urllib.parse.urljoin(page_url, action or page_url)


def _select_option(select, pattern: re.Pattern) -> Optional[str]:
    for option in select.find_all("option"):
        if pattern.search(_text(option)):
            return option.get("value") or _text(option)
    return None


def build_search_form(
    content: str,
    page_url: str,
    day: datetime,
    *,
    permit_type: str = PERMIT_TYPE,
    city: str = CITY,
) -> Tuple[str, Dict[str, str]]:
    """Form post for a general search scoped to one permit type and day."""

    soup = BeautifulSoup(content, "html.parser")
    fields = collect_form_fields(soup)
    day_text = format_us_date(day)

    search_type = _find_field(soup, "search_type")
    if search_type is not None:
        value = _select_option(search_type, re.compile(r"General Search", re.I))
        if value:
            fields[search_type["name"]] = value

    permit_select = _find_field(soup, "permit_type")
    if permit_select is not None:
        value = _select_option(permit_select, re.compile(re.escape(permit_type), re.I))
        if value:
            fields[permit_select["name"]] = value
        else:
            logger.warning("permit type %r not offered by the search form", permit_type)

    date_type = _find_field(soup, "date_type")
    if date_type is not None:
        value = _select_option(date_type, _DATE_TYPE_RE)
        if value:
            fields[date_type["name"]] = value

    from_field = _find_field(soup, "from_date")
    to_field = _find_field(soup, "to_date")
    if from_field is None:
        logger.warning("date fields not found; searching without a date filter")
    else:
        fields[from_field["name"]] = day_text
    if to_field is not None:
        fields[to_field["name"]] = day_text

    city_field = _find_field(soup, "city")
    if city_field is not None:
        fields[city_field["name"]] = city

    button = soup.find("a", id=re.compile(r"btnNewSearch"))
    target = _SEARCH_BUTTON
    if button is not None:
        m = _POSTBACK_RE.search(button.get("href") or "")
        if m:
            target = m.group(1)
    fields["__EVENTTARGET"] = target
    fields["__EVENTARGUMENT"] = ""
    return _form_action(soup, page_url), fields


def build_postback_form(content: str, page_url: str, target: str) -> Tuple[str, Dict[str, str]]:
    soup = BeautifulSoup(content, "html.parser")
    fields = collect_form_fields(soup)
    fields["__EVENTTARGET"] = target
    fields["__EVENTARGUMENT"] = ""
    return _form_action(soup, page_url), fields


class AccelaPermitsExtractor(PermitExtractor):
    name = "accela"

    def __init__(
        self,
        *,
        base_url: str = BASE_URL,
        permit_type: str = PERMIT_TYPE,
        city: str = CITY,
        max_pages: int = 50,
        delay_seconds: float = 1.05,
        timeout: float = 60.0,
        client: Optional[httpx.Client] = None,
        sleep_fn: Callable[[float], None] = time.sleep,
        debug_log_records: bool = False,
        live: Optional[bool] = None,
    ):
        self.base_url = base_url
        self.search_url = urllib.parse.urljoin(base_url, SEARCH_PATH)
        self.permit_type = permit_type
        self.city = city
        self.max_pages = max(1, int(max_pages))
        self.delay_seconds = delay_seconds
        self.timeout = timeout
        self.sleep_fn = sleep_fn
        self.debug_log_records = debug_log_records
        self.live = _is_live_enabled() if live is None else bool(live)
        self._client = client

    def fetch_raw_records_for_date(self, day: datetime) -> List[RawRecord]:
        if self._client is None and not self.live:
            raise RuntimeError(
                "Live permit portal access is disabled. Re-run with LIVE=1 to enable network access."
            )

        client = self._client or httpx.Client(
            headers={"User-Agent": USER_AGENT, "Accept": "text/html"},
            follow_redirects=True,
            timeout=self.timeout,
        )
        try:
            rows = self._search(client, day)
            logger.info("collected %d rows for %s", len(rows), format_us_date(day))
            return [self._enrich(client, row) for row in rows]
        finally:
            if self._client is None:
                client.close()

    def _search(self, client: httpx.Client, day: datetime) -> List[RawRecord]:
        resp = self._request(client, "GET", self.search_url)
        action, fields = build_search_form(
            resp.text, str(resp.url), day, permit_type=self.permit_type, city=self.city
        )
        resp = self._request(client, "POST", action, data=fields)

        collected: List[RawRecord] = []
        for page_num in range(1, self.max_pages + 1):
            page = parse_results_page(resp.text, str(resp.url))
            kept, newest = filter_rows_for_day(page.rows, day)
            collected.extend(kept)
            if self.debug_log_records:
                for row in kept:
                    logger.debug("row: %s", row.model_dump())
            logger.info(
                "page %d: %d rows, %d on target day, total %d",
                page_num,
                len(page.rows),
                len(kept),
                len(collected),
            )
            # Results are newest first; once a page is entirely older than the
            # target day, later pages are too.
            if newest is not None and newest < day:
                break
            if not page.next_target:
                break
            action, fields = build_postback_form(resp.text, str(resp.url), page.next_target)
            resp = self._request(client, "POST", action, data=fields)
        else:
            logger.warning("stopped after %d pages", self.max_pages)
        return collected

    def _enrich(self, client: httpx.Client, row: RawRecord) -> RawRecord:
        if not row.record or not row.detail_url:
            return row
        try:
            resp = self._request(client, "GET", row.detail_url)
            detail = parse_detail_page(resp.text)
        except Exception as exc:
            logger.warning("detail enrichment failed for %s: %s", row.record, exc)
            return row
        update = {k: v for k, v in detail.items() if v}
        return row.model_copy(update=update) if update else row

    def _request(self, client: httpx.Client, method: str, url: str, data=None) -> httpx.Response:
        last_err: Exception | None = None
        for attempt in range(1, 4):
            self.sleep_fn(self.delay_seconds)
            try:
                resp = client.request(method, url, data=data)
                if resp.status_code >= 400:
                    raise RuntimeError(f"HTTP {resp.status_code}")
                return resp
            except (httpx.HTTPError, RuntimeError) as e:
                last_err = e
                # Exponential backoff capped ~16s.
                self.sleep_fn(min(2**attempt, 16))

        raise RuntimeError(f"Failed to fetch {url!r}: {last_err!r}")
