from typing import Any, Dict, List

import pytest

from wanikani_cache import export
from wanikani_cache.export import EMPTY_POS, FilterCriteria


def summary(subject_id: int, level: int, type_: str, stage: Any, characters: str) -> Dict[str, Any]:
    return {
        "id": subject_id,
        "type": type_,
        "level": level,
        "characters": characters,
        "meanings": ["meaning", "alt"],
        "readings": ["よみ"],
        "srs_stage": stage,
    }


@pytest.fixture
def corpus() -> Dict[str, Any]:
    subjects = [
        summary(3, 2, "vocabulary", 9, "食べる"),
        summary(1, 1, "kanji", None, "食"),
        summary(2, 1, "vocabulary", 1, "一つ"),
        summary(4, 2, "vocabulary", 7, "行く"),
    ]
    details = {
        2: {"parts_of_speech": [], "context_sentences": []},
        3: {
            "parts_of_speech": ["transitive verb", "ichidan verb"],
            "context_sentences": [
                {"ja": "パンを食べる。", "en": "I eat bread."},
                {"ja": "もう食べた？", "en": "Did you eat already?"},
            ],
        },
        4: {"parts_of_speech": ["godan verb", "intransitive verb"], "context_sentences": []},
    }
    return {"subjects": subjects, "details": details}


@pytest.mark.parametrize("stage,bucket", [
    (None, "locked"), (0, "lesson"), (1, "apprentice"), (4, "apprentice"),
    (5, "guru"), (6, "guru"), (7, "master"), (8, "enlightened"), (9, "burned"),
])
def test_srs_bucket(stage: Any, bucket: str) -> None:
    assert export.srs_bucket(stage) == bucket


def test_srs_label() -> None:
    assert export.srs_label(None) == "Locked"
    assert export.srs_label(3) == "Apprentice III"
    assert export.srs_label(9) == "Burned"


def test_criteria_from_params() -> None:
    criteria = FilterCriteria.from_params("kanji, vocabulary", "", "noun")
    assert criteria.types == {"kanji", "vocabulary"}
    assert criteria.srs is None
    assert criteria.parts_of_speech == {"noun"}


def test_parts_of_speech_vocabulary(corpus: Dict[str, Any]) -> None:
    assert export.parts_of_speech_vocabulary(corpus["details"].values()) == [
        EMPTY_POS, "godan verb", "ichidan verb", "intransitive verb", "transitive verb",
    ]


def test_no_criteria_keeps_everything_sorted_by_level(corpus: Dict[str, Any]) -> None:
    chosen = export.filter_subjects(corpus["subjects"], corpus["details"], FilterCriteria())
    assert [s["level"] for s in chosen] == [1, 1, 2, 2]
    assert len(chosen) == 4


def test_filter_by_type_and_srs(corpus: Dict[str, Any]) -> None:
    criteria = FilterCriteria(types={"vocabulary"}, srs={"burned", "master"})
    chosen = export.filter_subjects(corpus["subjects"], corpus["details"], criteria)
    assert sorted(s["id"] for s in chosen) == [3, 4]


def test_filter_by_part_of_speech(corpus: Dict[str, Any]) -> None:
    criteria = FilterCriteria(parts_of_speech={"godan verb"})
    chosen = export.filter_subjects(corpus["subjects"], corpus["details"], criteria)
    # Subject 1 has no detail record yet and is kept
    assert sorted(s["id"] for s in chosen) == [1, 4]


def test_empty_tag_matches_untagged_items(corpus: Dict[str, Any]) -> None:
    criteria = FilterCriteria(types={"vocabulary"}, parts_of_speech={EMPTY_POS})
    chosen = export.filter_subjects(corpus["subjects"], corpus["details"], criteria)
    assert [s["id"] for s in chosen] == [2]


def test_export_csv(corpus: Dict[str, Any]) -> None:
    chosen = export.filter_subjects(corpus["subjects"], corpus["details"], FilterCriteria(types={"vocabulary"}))
    lines = export.export_csv(chosen, corpus["details"]).splitlines()

    assert lines[0] == ('"Characters","Readings","Meanings","Parts of Speech","Transitivity",'
                        '"Dan","Type","Level","SRS Stage"')
    assert lines[1] == '"一つ","よみ","meaning; alt","","","","vocabulary","1","Apprentice I"'
    assert lines[2] == ('"食べる","よみ","meaning; alt","transitive verb; ichidan verb",'
                        '"transitive verb","ichidan verb","vocabulary","2","Burned"')
    assert len(lines) == 4


def test_export_context_sentences(corpus: Dict[str, Any]) -> None:
    chosen = [s for s in corpus["subjects"] if s["id"] in (2, 3)]
    lines = export.export_context_sentences(chosen, corpus["details"]).splitlines()

    assert lines[0] == '"Characters","Readings","Meanings","Japanese","English"'
    assert lines[1] == '"食べる","よみ","meaning; alt","パンを食べる。","I eat bread."'
    assert lines[2] == '"食べる","よみ","meaning; alt","もう食べた？","Did you eat already?"'
    assert lines[3] == '"一つ","よみ","meaning; alt","",""'


def test_export_list(corpus: Dict[str, Any]) -> None:
    subjects: List[Dict[str, Any]] = corpus["subjects"] + [summary(5, 3, "radical", None, "")]
    assert export.export_list(subjects) == "食べる, 食, 一つ, 行く"


def test_render_rejects_unknown_format(corpus: Dict[str, Any]) -> None:
    assert export.render("list", corpus["subjects"][:1], {}) == "食べる"
    with pytest.raises(ValueError):
        export.render("xlsx", [], {})
