#!/usr/bin/env python3
"""
Script to examine the contents of the WaniKani cache database
and how fresh each part of it is.
"""

import sys
import os
import datetime

from wanikani_cache import db, export
from wanikani_cache.freshness import is_fresh


def _age(fetched_at: "datetime.datetime | None") -> str:
    if fetched_at is None:
        return "never / invalidated"
    now = datetime.datetime.now(datetime.UTC).replace(tzinfo=None)
    minutes = (now - fetched_at.replace(tzinfo=None)).total_seconds() / 60
    return f"{minutes:.1f} min ago"


def check_cache_contents() -> None:
    """Print what is cached for every kind."""
    print("🔍 Examining WaniKani Cache Contents")
    print("=" * 60)

    try:
        profile = db.get_singleton("profile")
        print("\n👤 PROFILE:")
        if profile:
            state = "fresh" if is_fresh("profile", profile.fetched_at) else "stale"
            print(f"  {profile.username} | Level {profile.level}/{profile.max_level} | {_age(profile.fetched_at)} ({state})")
        else:
            print("  (not cached)")

        reviews = db.list_all("reviews")
        print(f"\n📝 REVIEWS ({len(reviews)} items):")
        for i, review in enumerate(reviews[:10], 1):  # Show first 10
            print(f"  {i:2d}. {review.subject_type} #{review.subject_id} | Stage {review.srs_stage} | {review.available_at}")
        if len(reviews) > 10:
            print(f"     ... and {len(reviews) - 10} more items")

        subjects = db.list_all("subjects")
        stale = sum(1 for s in subjects if not is_fresh("subjects", s.fetched_at))
        print(f"\n🈷️  SUBJECTS ({len(subjects)} items, {stale} stale):")
        by_bucket: dict = {}
        for s in subjects:
            bucket = export.srs_bucket(s.srs_stage)
            by_bucket[bucket] = by_bucket.get(bucket, 0) + 1
        for bucket in export.SRS_BUCKETS:
            if bucket in by_bucket:
                print(f"     {bucket:<12} {by_bucket[bucket]}")

        details = db.list_all("subject_details")
        print(f"\n📚 SUBJECT DETAILS ({len(details)} items):")
        pos = export.parts_of_speech_vocabulary(d.to_dict() for d in details)
        print(f"     Parts of speech seen: {', '.join(pos[1:]) or 'none'}")
        missing = len({s.id for s in subjects} - {d.id for d in details})
        print(f"     Subjects without details: {missing}")

    except Exception as e:
        print(f"❌ Error examining database: {e}")


if __name__ == "__main__":
    # Check if database exists
    if not os.path.exists(db.DB_PATH):
        print(f"❌ Database file '{db.DB_PATH}' not found!")
        print("   Set WK_CACHE_DB or run from the directory holding the cache.")
        sys.exit(1)

    check_cache_contents()
