"""
Cache-or-fetch paths between the WaniKani API and the local cache.

Single-record paths (profile, review queue, subject summaries) consult the
freshness policy and refetch in one go. Subject details go through
:func:`synchronize_details`, which fetches one id at a time and reports
progress as it goes.
"""
import datetime
import logging
import os
import time
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional

from . import db
from .client import WaniKaniClient
from .errors import HttpError, NetworkError, RateLimitError, ValidationError
from .events import (
    CompleteEvent,
    ErrorEvent,
    ProgressEvent,
    RateLimitEvent,
    StartEvent,
    SyncEvent,
)
from .freshness import is_fresh

logger = logging.getLogger(__name__)

SUBJECT_TYPES = ("radical", "kanji", "vocabulary", "kana_vocabulary")
# Pause between consecutive detail fetches; the provider throttles bursts.
PACING_DELAY = int(os.environ.get("WK_PACING_DELAY_MS", "200")) / 1000.0


def parse_timestamp(value: Optional[str]) -> Optional[datetime.datetime]:
    if not value:
        return None
    return datetime.datetime.fromisoformat(value.replace("Z", "+00:00"))


def srs_flags(stage: Optional[int]) -> Dict[str, bool]:
    """Progress flags derived from a cached SRS stage."""
    return {
        "unlocked": stage is not None,
        "started": stage is not None and stage > 0,
        "passed": stage is not None and stage >= 5,
        "burned": stage == 9,
    }


# ----------------------------------------------------------------------
# Normalization of API resources into cache records
# ----------------------------------------------------------------------

def normalize_profile(user: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "username": user["username"],
        "level": user["level"],
        "max_level": (user.get("subscription") or {}).get("max_level_granted", user["level"]),
        "profile_url": user.get("profile_url"),
    }


def normalize_review(assignment: Dict[str, Any]) -> Dict[str, Any]:
    data = assignment["data"]
    return {
        "id": assignment["id"],
        "subject_id": data["subject_id"],
        "subject_type": data["subject_type"],
        "srs_stage": data.get("srs_stage"),
        "available_at": parse_timestamp(data.get("available_at")),
    }


def normalize_subject_summary(resource: Dict[str, Any]) -> Dict[str, Any]:
    data = resource["data"]
    return {
        "id": resource["id"],
        "type": resource["object"],
        "level": data["level"],
        "characters": data.get("characters") or data.get("slug"),
        "meanings": [m["meaning"] for m in data.get("meanings") or []],
        "readings": [r["reading"] for r in data.get("readings") or []],
    }


def normalize_subject_detail(resource: Dict[str, Any]) -> Dict[str, Any]:
    data = resource["data"]
    record = normalize_subject_summary(resource)
    record.update({
        "component_subject_ids": list(data.get("component_subject_ids") or []),
        "amalgamation_subject_ids": list(data.get("amalgamation_subject_ids") or []),
        "meaning_mnemonic": data.get("meaning_mnemonic") or "",
        "meaning_hint": data.get("meaning_hint") or "",
        "reading_mnemonic": data.get("reading_mnemonic") or "",
        "reading_hint": data.get("reading_hint") or "",
        "context_sentences": [
            {"ja": s.get("ja", ""), "en": s.get("en", "")}
            for s in data.get("context_sentences") or []
        ],
        "parts_of_speech": list(data.get("parts_of_speech") or []),
    })
    return record


# ----------------------------------------------------------------------
# Input validation
# ----------------------------------------------------------------------

def validate_ids(ids: Iterable[Any]) -> List[int]:
    """Coerce subject ids to ints, drop duplicates (first occurrence wins) and reject bad input."""
    subject_ids: List[int] = []
    for raw in ids:
        try:
            subject_id = int(raw)
        except (TypeError, ValueError):
            raise ValidationError(f"Invalid subject id: {raw!r}") from None
        if isinstance(raw, bool) or (isinstance(raw, float) and not raw.is_integer()) or subject_id <= 0:
            raise ValidationError(f"Invalid subject id: {raw!r}")
        subject_ids.append(subject_id)
    if not subject_ids:
        raise ValidationError("At least one subject id is required")
    return list(dict.fromkeys(subject_ids))


def validate_levels(levels: Iterable[Any]) -> List[int]:
    parsed: List[int] = []
    for raw in levels:
        try:
            parsed.append(int(raw))
        except (TypeError, ValueError):
            continue
    parsed = [level for level in dict.fromkeys(parsed) if level > 0]
    if not parsed:
        raise ValidationError("Invalid levels parameter")
    return parsed


def validate_types(types: Optional[Iterable[str]]) -> List[str]:
    """Unknown subject types are dropped silently."""
    if not types:
        return []
    return [t for t in dict.fromkeys(types) if t in SUBJECT_TYPES]


# ----------------------------------------------------------------------
# Single-record sync paths
# ----------------------------------------------------------------------

def get_profile(client: WaniKaniClient, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
    cached = db.get_singleton("profile")
    if cached is not None and is_fresh("profile", cached.fetched_at, now):
        logger.debug("Profile served from cache")
        return {"source": "cache", "data": cached.to_dict()}

    record = normalize_profile(client.fetch_user())
    db.upsert_one("profile", record)
    return {"source": "api", "data": record}


def get_reviews(client: WaniKaniClient, now: Optional[datetime.datetime] = None) -> Dict[str, Any]:
    """
    The review queue is a snapshot: it is served whole from cache while fresh and
    otherwise replaced whole, never merged with what was cached before.
    """
    cached = db.list_all("reviews")
    if cached and all(is_fresh("reviews", row.fetched_at, now) for row in cached):
        logger.debug("Review queue served from cache (%d)", len(cached))
        return {"source": "cache", "count": len(cached), "data": [row.to_dict() for row in cached]}

    records = [normalize_review(a) for a in client.fetch_review_assignments()]
    db.replace_all("reviews", records)
    rows = db.list_all("reviews")
    return {"source": "api", "count": len(rows), "data": [row.to_dict() for row in rows]}


def get_subjects(
    client: WaniKaniClient,
    levels: Iterable[Any],
    types: Optional[Iterable[str]] = None,
    now: Optional[datetime.datetime] = None,
) -> Dict[str, Any]:
    """
    Subject summaries for the given levels, with the learner's SRS stage.

    The cache is used only when every requested level is present and every
    row is inside the summary freshness window. Without a type filter the
    rows must also come from an unfiltered fetch of their level. Otherwise the levels are
    refetched, their assignments looked up, and the merged rows persisted.
    """
    level_list = validate_levels(levels)
    type_list = validate_types(types)

    cached = db.query_subjects(level_list, type_list)
    cached_levels = {row.level for row in cached}
    if (
        cached
        and cached_levels.issuperset(level_list)
        and (type_list or all(row.complete_level for row in cached))
        and all(is_fresh("subjects", row.fetched_at, now) for row in cached)
    ):
        logger.debug("Subjects for levels %s served from cache (%d)", level_list, len(cached))
        return {
            "source": "cache",
            "count": len(cached),
            "data": [dict(row.to_dict(), **srs_flags(row.srs_stage)) for row in cached],
        }

    subjects = [normalize_subject_summary(s) for s in client.fetch_subjects(level_list, type_list)]
    assignments = client.fetch_assignments_for_subjects([s["id"] for s in subjects])

    data: List[Dict[str, Any]] = []
    for subject in subjects:
        assignment = assignments.get(subject["id"]) or {}
        subject["srs_stage"] = assignment.get("srs_stage")
        data.append(dict(
            subject,
            unlocked=assignment.get("unlocked_at") is not None,
            started=assignment.get("started_at") is not None,
            passed=assignment.get("passed_at") is not None,
            burned=assignment.get("burned_at") is not None,
        ))

    _expire_contradicted_details(subjects)
    if not type_list:
        # Type-filtered fetches leave the flag of existing rows untouched.
        subjects = [dict(s, complete_level=True) for s in subjects]
    db.upsert_many("subjects", subjects)
    return {"source": "api", "count": len(data), "data": data}


def _expire_contradicted_details(subjects: List[Dict[str, Any]]) -> None:
    """Invalidate cached details whose shared fields no longer match a fresh summary."""
    details = db.get_many("subject_details", [s["id"] for s in subjects])
    stale = [
        s["id"] for s in subjects
        if s["id"] in details and any(
            getattr(details[s["id"]], key) != s[key]
            for key in ("characters", "meanings", "readings")
        )
    ]
    if stale:
        logger.info("Summary changed for %d cached subject detail(s), expiring them", len(stale))
        db.invalidate("subject_details", stale)


def get_cached_details(ids: Iterable[Any]) -> Dict[str, Any]:
    """Detail records already in the cache; never calls upstream."""
    subject_ids = validate_ids(ids)
    found = db.get_many("subject_details", subject_ids)
    return {
        "count": len(found),
        "missing": [i for i in subject_ids if i not in found],
        "data": [found[i].to_dict() for i in subject_ids if i in found],
    }


def force_resync() -> Dict[str, int]:
    """Expire profile, review queue and subject summaries so the next reads go upstream."""
    cleared = {kind: db.invalidate(kind) for kind in ("profile", "reviews", "subjects")}
    logger.info("Cache invalidated: %s", cleared)
    return cleared


# ----------------------------------------------------------------------
# Batch detail synchronizer
# ----------------------------------------------------------------------

def plan_detail_fetch(subject_ids: List[int], force: bool = False) -> List[int]:
    """Ids from ``subject_ids`` that need an upstream call, in request order."""
    if force:
        return list(subject_ids)
    stamps = db.fetch_timestamps("subject_details", subject_ids)
    return [
        i for i in subject_ids
        if i not in stamps or not is_fresh("subject_details", stamps[i])
    ]


def synchronize_details(
    ids: Iterable[Any],
    client: WaniKaniClient,
    force: bool = False,
    pacing_delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Iterator[SyncEvent]:
    """
    Bring the detail records for ``ids`` into the cache, yielding progress events.

    Input validation, the cached/to-fetch split and the credential check
    happen immediately, so bad calls fail before anything is streamed. The
    returned iterator then does the upstream work lazily: ids are fetched one
    at a time with ``pacing_delay`` seconds between calls, each record is
    persisted as soon as it arrives, a failing id is reported and skipped,
    and a 429 ends the batch at once.

    Closing the iterator (e.g. the HTTP client disconnected) stops further
    upstream calls at the next suspension point.

    Raises:
        ValidationError: ids empty or not integers.
        AuthError: something needs fetching but no credential is configured.
    """
    subject_ids = validate_ids(ids)
    to_fetch = plan_detail_fetch(subject_ids, force)
    if to_fetch:
        client.require_credentials()
    delay = PACING_DELAY if pacing_delay is None else pacing_delay
    return _detail_events(subject_ids, to_fetch, client, delay, sleep)


def _detail_events(
    subject_ids: List[int],
    to_fetch: List[int],
    client: WaniKaniClient,
    pacing_delay: float,
    sleep: Callable[[float], None],
) -> Iterator[SyncEvent]:
    total = len(to_fetch)
    cached = len(subject_ids) - total
    fetched = 0
    failed = 0
    logger.info("Detail sync: %d to fetch, %d cached", total, cached)

    try:
        yield StartEvent(total=total, cached=cached)

        for index, subject_id in enumerate(to_fetch):
            if index > 0 and pacing_delay > 0:
                sleep(pacing_delay)
            try:
                record = normalize_subject_detail(client.fetch_subject(subject_id))
            except RateLimitError as e:
                logger.warning("Rate limited after %d of %d subject details", fetched, total)
                yield RateLimitEvent(fetched=fetched, remaining=total - index, retry_after=e.retry_after)
                return
            except (HttpError, NetworkError, KeyError, TypeError, ValueError) as e:
                failed += 1
                logger.warning("Failed to fetch subject %d: %s", subject_id, e)
                yield ErrorEvent(id=subject_id, message=str(e))
                continue

            db.upsert_one("subject_details", record)
            fetched += 1
            yield ProgressEvent(
                current=index + 1,
                total=total,
                id=subject_id,
                characters=record["characters"],
                parts_of_speech=record["parts_of_speech"],
            )

        present = db.existing_ids("subject_details", subject_ids)
        logger.info("Detail sync complete: %d fetched, %d failed, %d cached", fetched, failed, cached)
        yield CompleteEvent(fetched=fetched, failed=failed, cached=cached, total=len(present))
    except GeneratorExit:
        logger.info("Detail sync stopped by consumer after %d of %d", fetched, total)
        raise


def fetch_details(
    ids: Iterable[Any],
    client: WaniKaniClient,
    force: bool = False,
    pacing_delay: Optional[float] = None,
    sleep: Callable[[float], None] = time.sleep,
) -> Dict[str, Any]:
    """Run :func:`synchronize_details` to the end and return the cached records."""
    subject_ids = validate_ids(ids)
    fetched = 0
    cached = 0
    errors: List[Dict[str, Any]] = []
    rate_limited = False

    for event in synchronize_details(subject_ids, client, force, pacing_delay, sleep):
        if isinstance(event, StartEvent):
            cached = event.cached
        elif isinstance(event, ProgressEvent):
            fetched += 1
        elif isinstance(event, ErrorEvent):
            errors.append({"id": event.id, "message": event.message})
        elif isinstance(event, RateLimitEvent):
            rate_limited = True

    found = db.get_many("subject_details", subject_ids)
    return {
        "fetched": fetched,
        "cached": cached,
        "rate_limited": rate_limited,
        "errors": errors,
        "data": [found[i].to_dict() for i in subject_ids if i in found],
    }


def cached_corpus(levels: Iterable[Any]) -> Dict[str, Any]:
    """Cached summaries for ``levels`` plus whatever detail records exist for them."""
    level_list = validate_levels(levels)
    subjects = [row.to_dict() for row in db.query_subjects(level_list)]
    details = {
        subject_id: row.to_dict()
        for subject_id, row in db.get_many("subject_details", [s["id"] for s in subjects]).items()
    }
    return {"subjects": subjects, "details": details}
