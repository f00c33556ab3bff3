from __future__ import annotations
from sqlalchemy import create_engine, select, update, Integer, String, DateTime, Text, JSON, Boolean
from sqlalchemy.orm import DeclarativeBase, sessionmaker, Session, Mapped, mapped_column, validates
import datetime
import logging
import os
from typing import Optional, List, Any, Dict, Iterable, Set, Type

logger = logging.getLogger(__name__)


class Base(DeclarativeBase):
    pass
DB_PATH: str = os.environ.get("WK_CACHE_DB", "wanikani_cache.db")
engine = create_engine(f"sqlite:///{DB_PATH}")
# Prevent attribute expiration on commit so returned objects remain accessible
SessionLocal = sessionmaker(bind=engine, expire_on_commit=False)

# The profile table only ever holds this one row.
PROFILE_ID = 1
# SRS stages run from 0 (lesson available) to 9 (burned); NULL means locked.
SRS_STAGES = range(0, 10)
# Keep IN (...) lists well under SQLite's bound-parameter ceiling.
_ID_CHUNK = 500


def _utcnow() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


def _check_srs_stage(value: Optional[int]) -> Optional[int]:
    if value is not None and value not in SRS_STAGES:
        raise ValueError(f"SRS stage out of range: {value}")
    return value


class UserProfile(Base):
    __tablename__ = "user"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    username: Mapped[str] = mapped_column(String, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    max_level: Mapped[int] = mapped_column(Integer, nullable=False)
    profile_url: Mapped[Optional[str]] = mapped_column(String)
    fetched_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "username": self.username,
            "level": self.level,
            "max_level": self.max_level,
            "profile_url": self.profile_url,
        }


class Review(Base):
    """One pending assignment, keyed by the upstream assignment id."""
    __tablename__ = "reviews"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    subject_id: Mapped[int] = mapped_column(Integer, nullable=False)
    subject_type: Mapped[str] = mapped_column(String, nullable=False)
    srs_stage: Mapped[Optional[int]] = mapped_column(Integer)
    available_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)
    fetched_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)

    @validates("srs_stage")
    def _validate_srs_stage(self, key: str, value: Optional[int]) -> Optional[int]:
        return _check_srs_stage(value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "assignment_id": self.id,
            "subject_id": self.subject_id,
            "subject_type": self.subject_type,
            "srs_stage": self.srs_stage,
            "available_at": _isoformat(self.available_at),
        }


class Subject(Base):
    """Summary of a radical, kanji, vocabulary or kana_vocabulary item."""
    __tablename__ = "subjects"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    characters: Mapped[Optional[str]] = mapped_column(String)
    meanings: Mapped[List[str]] = mapped_column(JSON, default=list)
    readings: Mapped[List[str]] = mapped_column(JSON, default=list)
    srs_stage: Mapped[Optional[int]] = mapped_column(Integer)  # None = locked
    # True once the row came from a fetch of its whole level, not a type-filtered one
    complete_level: Mapped[bool] = mapped_column(Boolean, default=False)
    fetched_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)

    @validates("srs_stage")
    def _validate_srs_stage(self, key: str, value: Optional[int]) -> Optional[int]:
        return _check_srs_stage(value)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "level": self.level,
            "characters": self.characters,
            "meanings": list(self.meanings or []),
            "readings": list(self.readings or []),
            "srs_stage": self.srs_stage,
        }


class SubjectDetail(Base):
    """Full subject record: summary fields plus mnemonics, relations and sentences."""
    __tablename__ = "subject_details"
    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    type: Mapped[str] = mapped_column(String, nullable=False)
    level: Mapped[int] = mapped_column(Integer, nullable=False)
    characters: Mapped[Optional[str]] = mapped_column(String)
    meanings: Mapped[List[str]] = mapped_column(JSON, default=list)
    readings: Mapped[List[str]] = mapped_column(JSON, default=list)
    component_subject_ids: Mapped[List[int]] = mapped_column(JSON, default=list)
    amalgamation_subject_ids: Mapped[List[int]] = mapped_column(JSON, default=list)
    meaning_mnemonic: Mapped[str] = mapped_column(Text, default="")
    meaning_hint: Mapped[str] = mapped_column(Text, default="")
    reading_mnemonic: Mapped[str] = mapped_column(Text, default="")
    reading_hint: Mapped[str] = mapped_column(Text, default="")
    context_sentences: Mapped[List[Dict[str, str]]] = mapped_column(JSON, default=list)  # [{"ja": ..., "en": ...}]
    parts_of_speech: Mapped[List[str]] = mapped_column(JSON, default=list)
    fetched_at: Mapped[Optional[datetime.datetime]] = mapped_column(DateTime)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "level": self.level,
            "characters": self.characters,
            "meanings": list(self.meanings or []),
            "readings": list(self.readings or []),
            "component_subject_ids": list(self.component_subject_ids or []),
            "amalgamation_subject_ids": list(self.amalgamation_subject_ids or []),
            "meaning_mnemonic": self.meaning_mnemonic or "",
            "meaning_hint": self.meaning_hint or "",
            "reading_mnemonic": self.reading_mnemonic or "",
            "reading_hint": self.reading_hint or "",
            "context_sentences": list(self.context_sentences or []),
            "parts_of_speech": list(self.parts_of_speech or []),
        }


KINDS: Dict[str, Type[Base]] = {
    "profile": UserProfile,
    "reviews": Review,
    "subjects": Subject,
    "subject_details": SubjectDetail,
}
KINDS_TABLES = [model.__tablename__ for model in KINDS.values()]


def _isoformat(value: Optional[datetime.datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=datetime.timezone.utc)
    return value.isoformat().replace("+00:00", "Z")


def _model(kind: str) -> Any:
    try:
        return KINDS[kind]
    except KeyError:
        raise ValueError(f"Unknown cache kind: {kind}") from None


def _chunks(ids: List[int]) -> Iterable[List[int]]:
    for i in range(0, len(ids), _ID_CHUNK):
        yield ids[i:i + _ID_CHUNK]


def is_db_initialized() -> bool:
    """Check if the database is already initialized by checking if tables exist."""
    from sqlalchemy import inspect
    inspector = inspect(engine)
    table_names = inspector.get_table_names()
    return set(KINDS_TABLES).issubset(set(table_names))


def init_db() -> None:
    """Initialize the database by creating all tables."""
    Base.metadata.create_all(bind=engine)


def get_session() -> Session:
    return SessionLocal()


# ----------------------------------------------------------------------
# Cache Store
# ----------------------------------------------------------------------

def get_singleton(kind: str = "profile") -> Optional[Any]:
    model = _model(kind)
    session: Session = get_session()
    try:
        return session.get(model, PROFILE_ID)
    finally:
        session.close()


def get_many(kind: str, ids: Iterable[int]) -> Dict[int, Any]:
    """Return ``{id: record}`` for the ids that are cached; unknown ids are simply absent."""
    model = _model(kind)
    wanted = list(dict.fromkeys(ids))
    found: Dict[int, Any] = {}
    if not wanted:
        return found
    session: Session = get_session()
    try:
        for chunk in _chunks(wanted):
            for row in session.scalars(select(model).where(model.id.in_(chunk))):
                found[row.id] = row
    finally:
        session.close()
    return found


def existing_ids(kind: str, ids: Iterable[int]) -> Set[int]:
    """Like get_many, but only loads the primary keys."""
    model = _model(kind)
    wanted = list(dict.fromkeys(ids))
    present: Set[int] = set()
    if not wanted:
        return present
    session: Session = get_session()
    try:
        for chunk in _chunks(wanted):
            present.update(session.scalars(select(model.id).where(model.id.in_(chunk))))
    finally:
        session.close()
    return present


def fetch_timestamps(kind: str, ids: Iterable[int]) -> Dict[int, Optional[datetime.datetime]]:
    """``{id: fetched_at}`` for the cached ids; cheaper than get_many for freshness checks."""
    model = _model(kind)
    wanted = list(dict.fromkeys(ids))
    stamps: Dict[int, Optional[datetime.datetime]] = {}
    if not wanted:
        return stamps
    session: Session = get_session()
    try:
        for chunk in _chunks(wanted):
            for row_id, fetched_at in session.execute(
                select(model.id, model.fetched_at).where(model.id.in_(chunk))
            ):
                stamps[row_id] = fetched_at
    finally:
        session.close()
    return stamps


def list_all(kind: str) -> List[Any]:
    """All rows of a kind. Reviews come back soonest-available first."""
    model = _model(kind)
    session: Session = get_session()
    try:
        query = select(model)
        if model is Review:
            query = query.order_by(Review.available_at.asc(), Review.id.asc())
        elif model in (Subject, SubjectDetail):
            query = query.order_by(model.level.asc(), model.id.asc())
        return list(session.scalars(query))
    finally:
        session.close()


def query_subjects(levels: Iterable[int], types: Optional[Iterable[str]] = None) -> List[Subject]:
    """Cached subject summaries for the given levels, optionally narrowed by type."""
    session: Session = get_session()
    try:
        query = select(Subject).where(Subject.level.in_(list(levels)))
        type_list = list(types) if types else []
        if type_list:
            query = query.where(Subject.type.in_(type_list))
        return list(session.scalars(query.order_by(Subject.level.asc(), Subject.id.asc())))
    finally:
        session.close()


def _stamp(record: Dict[str, Any], now: datetime.datetime) -> Dict[str, Any]:
    if "fetched_at" not in record:
        record = dict(record, fetched_at=now)
    return record


def _merge(session: Session, model: Any, record: Dict[str, Any]) -> Any:
    row = session.merge(model(**record))
    if model is SubjectDetail:
        _align_summary(session, row)
    return row


def _align_summary(session: Session, detail: SubjectDetail) -> None:
    # A detail record is a superset of the summary; keep the shared fields equal.
    summary = session.get(Subject, detail.id)
    if summary is None:
        return
    summary.type = detail.type
    summary.level = detail.level
    summary.characters = detail.characters
    summary.meanings = list(detail.meanings or [])
    summary.readings = list(detail.readings or [])


def upsert_one(kind: str, record: Dict[str, Any]) -> None:
    """Insert or replace a single record by id. Stamps ``fetched_at`` unless given."""
    upsert_many(kind, [record])


def upsert_many(kind: str, records: Iterable[Dict[str, Any]]) -> int:
    model = _model(kind)
    now = _utcnow()
    session: Session = get_session()
    count = 0
    try:
        for record in records:
            record = _stamp(record, now)
            if model is UserProfile:
                record = dict(record, id=PROFILE_ID)
            _merge(session, model, record)
            count += 1
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
    logger.debug("Upserted %d %s record(s)", count, kind)
    return count


def replace_all(kind: str, records: Iterable[Dict[str, Any]]) -> int:
    """
    Replace every row of ``kind`` with ``records`` in one transaction.

    Readers on other connections keep seeing the previous snapshot until the
    commit, so nobody observes a half-written or empty table in between.
    """
    model = _model(kind)
    now = _utcnow()
    session: Session = get_session()
    try:
        session.query(model).delete()
        rows = [model(**_stamp(record, now)) for record in records]
        session.add_all(rows)
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
    logger.debug("Replaced %s with %d row(s)", kind, len(rows))
    return len(rows)


def invalidate(kind: str, ids: Optional[Iterable[int]] = None) -> int:
    """Clear ``fetched_at`` for the given ids (or every row) so the next read refetches."""
    model = _model(kind)
    session: Session = get_session()
    try:
        if ids is None:
            result = session.execute(update(model).values(fetched_at=None))
            cleared = result.rowcount or 0
        else:
            cleared = 0
            for chunk in _chunks(list(dict.fromkeys(ids))):
                result = session.execute(
                    update(model).where(model.id.in_(chunk)).values(fetched_at=None)
                )
                cleared += result.rowcount or 0
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
    logger.debug("Invalidated %d %s record(s)", cleared, kind)
    return cleared


__all__ = [
    "Base", "UserProfile", "Review", "Subject", "SubjectDetail", "KINDS",
    "get_session", "init_db", "is_db_initialized",
    "get_singleton", "get_many", "existing_ids", "fetch_timestamps", "list_all", "query_subjects",
    "upsert_one", "upsert_many", "replace_all", "invalidate",
]
