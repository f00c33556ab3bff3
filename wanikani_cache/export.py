"""
Filtering and export of cached subjects.

Pure functions: they take summary dicts (``Subject.to_dict()`` shape) and
detail dicts keyed by id, and never touch the database or the network.
"""
import csv
import io
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set

EMPTY_POS = "(empty)"
SRS_BUCKETS = ("locked", "lesson", "apprentice", "guru", "master", "enlightened", "burned")
SRS_LABELS = {
    None: "Locked",
    0: "Lesson",
    1: "Apprentice I",
    2: "Apprentice II",
    3: "Apprentice III",
    4: "Apprentice IV",
    5: "Guru I",
    6: "Guru II",
    7: "Master",
    8: "Enlightened",
    9: "Burned",
}
TRANSITIVITY_TAGS = ("transitive verb", "intransitive verb")
DAN_TAGS = ("ichidan verb", "godan verb")


def srs_bucket(stage: Optional[int]) -> str:
    if stage is None:
        return "locked"
    if stage == 0:
        return "lesson"
    if 1 <= stage <= 4:
        return "apprentice"
    if 5 <= stage <= 6:
        return "guru"
    if stage == 7:
        return "master"
    if stage == 8:
        return "enlightened"
    if stage == 9:
        return "burned"
    return "locked"


def srs_label(stage: Optional[int]) -> str:
    return SRS_LABELS.get(stage, "Locked")


@dataclass
class FilterCriteria:
    """Which subjects to keep. ``None`` for a field means "don't filter on it"."""
    types: Optional[Set[str]] = None
    srs: Optional[Set[str]] = None
    parts_of_speech: Optional[Set[str]] = None

    @classmethod
    def from_params(cls, types: str = "", srs: str = "", pos: str = "") -> "FilterCriteria":
        """Build criteria from comma separated query strings; blanks mean no filter."""
        def split(value: str) -> Optional[Set[str]]:
            items = {v.strip() for v in (value or "").split(",") if v.strip()}
            return items or None
        return cls(types=split(types), srs=split(srs), parts_of_speech=split(pos))


def parts_of_speech_vocabulary(details: Iterable[Mapping[str, Any]]) -> List[str]:
    """Every tag seen across ``details``, sorted, plus the (empty) pseudo tag."""
    tags: Set[str] = set()
    for detail in details:
        tags.update(detail.get("parts_of_speech") or [])
    return [EMPTY_POS] + sorted(tags)


def _matches(subject: Mapping[str, Any], detail: Optional[Mapping[str, Any]], criteria: FilterCriteria) -> bool:
    if criteria.types is not None and subject.get("type") not in criteria.types:
        return False
    if criteria.srs is not None and srs_bucket(subject.get("srs_stage")) not in criteria.srs:
        return False
    # Items we have no detail for yet can't be judged on tags, so keep them.
    if criteria.parts_of_speech is not None and detail is not None:
        tags = detail.get("parts_of_speech") or []
        if not tags:
            return EMPTY_POS in criteria.parts_of_speech
        return any(tag in criteria.parts_of_speech for tag in tags)
    return True


def filter_subjects(
    subjects: Iterable[Mapping[str, Any]],
    details: Mapping[int, Mapping[str, Any]],
    criteria: FilterCriteria,
) -> List[Mapping[str, Any]]:
    kept = [s for s in subjects if _matches(s, details.get(s["id"]), criteria)]
    return sorted(kept, key=lambda s: s.get("level") or 0)


def _first(tags: List[str], wanted: Iterable[str]) -> str:
    return next((t for t in tags if t in wanted), "")


def _write(header: List[str], rows: Iterable[List[Any]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(header)
    writer.writerows(rows)
    return buf.getvalue()


def export_csv(subjects: Iterable[Mapping[str, Any]], details: Mapping[int, Mapping[str, Any]]) -> str:
    rows = []
    for s in subjects:
        detail = details.get(s["id"]) or {}
        tags = list(detail.get("parts_of_speech") or [])
        rows.append([
            s.get("characters") or "",
            "; ".join(s.get("readings") or []),
            "; ".join(s.get("meanings") or []),
            "; ".join(tags),
            _first(tags, TRANSITIVITY_TAGS),
            _first(tags, DAN_TAGS),
            s.get("type") or "",
            s.get("level") or "",
            srs_label(s.get("srs_stage")),
        ])
    header = ["Characters", "Readings", "Meanings", "Parts of Speech", "Transitivity", "Dan", "Type", "Level", "SRS Stage"]
    return _write(header, rows)


def export_context_sentences(subjects: Iterable[Mapping[str, Any]], details: Mapping[int, Mapping[str, Any]]) -> str:
    """One row per context sentence; subjects without sentences still get one row."""
    rows = []
    for s in subjects:
        base = [
            s.get("characters") or "",
            "; ".join(s.get("readings") or []),
            "; ".join(s.get("meanings") or []),
        ]
        sentences = (details.get(s["id"]) or {}).get("context_sentences") or []
        if not sentences:
            rows.append(base + ["", ""])
        for sentence in sentences:
            rows.append(base + [sentence.get("ja", ""), sentence.get("en", "")])
    return _write(["Characters", "Readings", "Meanings", "Japanese", "English"], rows)


def export_list(subjects: Iterable[Mapping[str, Any]]) -> str:
    return ", ".join(s["characters"] for s in subjects if s.get("characters"))


EXPORT_FORMATS: Dict[str, str] = {
    "csv": "text/csv",
    "sentences": "text/csv",
    "list": "text/plain",
}


def render(fmt: str, subjects: List[Mapping[str, Any]], details: Mapping[int, Mapping[str, Any]]) -> str:
    if fmt == "csv":
        return export_csv(subjects, details)
    if fmt == "sentences":
        return export_context_sentences(subjects, details)
    if fmt == "list":
        return export_list(subjects)
    raise ValueError(f"Unknown export format: {fmt}")
