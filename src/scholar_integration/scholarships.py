"""
Adapter for scholarship records.

Scholarship documents reach the client from Firestore, the search index and
the matching API, and the same field can arrive under several names
(``Scholarship_Name`` from the index, ``title``/``name`` from older
documents). ``adapt_scholarship`` resolves each field through a fixed
priority order and returns a typed ``Scholarship``; nothing downstream looks
at raw key names.

Field priority (first non-empty wins):

    id           id, _id, wrapper id, "scholarship-<index>"
    title        Scholarship_Name, title, name, "Untitled Scholarship"
    location     Country, location, country
    type         Scholarship_Type, type, scholarship_type
    description  Scholarship_Info, description, ""
    amount       Funding_Level, Funding_Details, amount, funding_level
    deadline     End_Date, deadline
    url          Url, official_url, url
    degree       Required_Degree, degree_level
    min_gpa      Min_Gpa, min_gpa
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from typing import Any, Iterable

logger = logging.getLogger(__name__)

MAX_TAGS = 3
MAX_REQUIREMENTS = 3
MAX_AMOUNT_LENGTH = 80
URGENT_WITHIN_DAYS = 30


@dataclass(frozen=True)
class Scholarship:
    id: str
    title: str
    description: str = ""
    location: str | None = None
    type: str | None = None
    amount: str | None = None
    deadline: str | None = None
    deadline_date: date | None = None
    official_url: str | None = None
    wanted_degree: str | None = None
    tags: list[str] = field(default_factory=list)
    requirements: list[str] = field(default_factory=list)
    is_urgent: bool = False

    @property
    def deadline_display(self) -> str | None:
        """Deadline as DD/MM/YYYY, or the raw value when it is not a date."""
        if self.deadline_date is not None:
            return self.deadline_date.strftime("%d/%m/%Y")
        return self.deadline


def _first(source: dict, *keys: str) -> Any:
    for key in keys:
        value = source.get(key)
        if value not in (None, ""):
            return value
    return None


def parse_deadline(value: Any) -> date | None:
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        return datetime.fromisoformat(text).date()
    except ValueError:
        pass
    for fmt in ("%d/%m/%Y", "%Y/%m/%d", "%d-%m-%Y"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def is_deadline_urgent(deadline: date | None, today: date | None = None) -> bool:
    """Deadline falls within the next 30 days (and has not passed)."""
    if deadline is None:
        return False
    days_left = (deadline - (today or datetime.now(timezone.utc).date())).days
    return 0 < days_left <= URGENT_WITHIN_DAYS


def _first_of_list(value: Any) -> str | None:
    if not value:
        return None
    head = str(value).split(",")[0].strip()
    return head or None


def adapt_scholarship(record: dict, index: int = 0, today: date | None = None) -> Scholarship:
    """
    Build a ``Scholarship`` from one raw record.

    Args:
        record: Raw record, optionally wrapped as ``{"id": ..., "source": {...}}``.
        index: Position in the result list, used for a fallback id.
        today: Reference date for the urgency flag (defaults to today, UTC).

    Raises:
        ValueError: If the record is not a mapping.
    """
    if not isinstance(record, dict):
        raise ValueError(f"Scholarship record must be an object, got {type(record).__name__}")
    source = record.get("source") if isinstance(record.get("source"), dict) else record

    scholarship_id = _first(source, "id", "_id") or record.get("id") or f"scholarship-{index}"

    tags: list[str] = []
    if source.get("For_Vietnamese"):
        tags.append("For Vietnamese")
    if isinstance(source.get("tags"), list):
        tags.extend(str(t) for t in source["tags"])

    amount = _first(source, "Funding_Level", "Funding_Details", "amount", "funding_level")
    if amount is not None:
        amount = str(amount)
        if len(amount) > MAX_AMOUNT_LENGTH:
            amount = amount[: MAX_AMOUNT_LENGTH - 3] + "..."

    requirements: list[str] = []
    degree = _first_of_list(_first(source, "Required_Degree", "degree_level"))
    if degree:
        requirements.append(degree)
    gpa = _first(source, "Min_Gpa", "min_gpa")
    if gpa:
        requirements.append(f"Min GPA: {gpa}")
    language = _first_of_list(source.get("Language_Certificate"))
    if language:
        requirements.append(language)
    if source.get("min_ielts"):
        requirements.append(f"Min IELTS: {source['min_ielts']}")
    if isinstance(source.get("requirements"), list):
        requirements.extend(str(r) for r in source["requirements"][:2])

    raw_deadline = _first(source, "End_Date", "deadline")
    deadline_date = parse_deadline(raw_deadline)

    return Scholarship(
        id=str(scholarship_id),
        title=str(_first(source, "Scholarship_Name", "title", "name") or "Untitled Scholarship"),
        description=str(_first(source, "Scholarship_Info", "description") or ""),
        location=_first(source, "Country", "location", "country"),
        type=_first(source, "Scholarship_Type", "type", "scholarship_type"),
        amount=amount,
        deadline=str(raw_deadline) if raw_deadline is not None else None,
        deadline_date=deadline_date,
        official_url=_first(source, "Url", "official_url", "url"),
        wanted_degree=source.get("Wanted_Degree"),
        tags=tags[:MAX_TAGS],
        requirements=requirements[:MAX_REQUIREMENTS],
        is_urgent=bool(source.get("is_urgent")) or is_deadline_urgent(deadline_date, today),
    )


def adapt_scholarships(records: Iterable[dict], today: date | None = None) -> list[Scholarship]:
    """Adapt a result list, skipping (and logging) records that cannot be read."""
    results: list[Scholarship] = []
    for index, record in enumerate(records or []):
        try:
            results.append(adapt_scholarship(record, index, today))
        except (ValueError, TypeError, AttributeError) as exc:
            logger.warning("Skipping scholarship at index %d: %s", index, exc)
    return results
