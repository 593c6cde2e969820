"""Lexical corpus scoring tests."""

from __future__ import annotations

from pathlib import Path

import orjson

from pet_context.core.config import PACKAGED_CORPUS_PATH
from pet_context.retrieval.corpus import LexicalCorpus, expand_tokens, tokenize


def test_tokenize_drops_short_tokens_and_punctuation() -> None:
    assert tokenize("우리 강아지가 토를 해요!! a b") == ["우리", "강아지가", "토를", "해요"]


def test_expand_tokens_adds_synonyms_by_containment() -> None:
    expanded = expand_tokens(["설사해요"])
    assert {"설사해요", "묽은변", "소화불량", "장염"} <= expanded


def test_inflected_symptom_ranks_titled_document_first(make_document) -> None:
    corpus = LexicalCorpus(
        [
            make_document("2", "산책 요령", body="설사 이후에는 짧게 산책합니다."),
            make_document("1", "설사", body="설사가 지속되면 병원에 갑니다.", keywords=["설사"]),
            make_document("3", "사료 고르기", body="소화가 잘 되는 사료를 고릅니다."),
        ]
    )

    results = corpus.search("우리 강아지 설사해요")

    assert results
    assert results[0].title == "설사"
    assert results[0].score > 0.1
    assert results[0].source_tag == "local-docs"
    assert results[0].provenance == "corpus:1"


def test_title_match_scores_higher_than_body_match(make_document) -> None:
    corpus = LexicalCorpus([])
    in_title = make_document("a", "구토 관리", body="관리 방법")
    in_body = make_document("b", "소화 관리", body="관리 방법 구토")

    assert corpus.score("구토", in_title) > corpus.score("구토", in_body)


def test_scores_are_bounded(make_document) -> None:
    corpus = LexicalCorpus([])
    document = make_document("a", "기침 기침", body="기침", keywords=["기침"])
    score = corpus.score("기침", document)
    assert 0.0 <= score <= 1.0


def test_threshold_suppresses_weak_matches(make_document) -> None:
    corpus = LexicalCorpus(
        [make_document("a", "피부 관리", body="목욕 주기와 보습 " + "강아지 " * 3)]
    )
    # one body hit out of many expanded tokens stays below the dead zone
    assert corpus.search("강아지 설사 구토 기침") == []


def test_top_n_limits_results(make_document) -> None:
    documents = [make_document(str(idx), f"구토 {idx}", keywords=["구토"]) for idx in range(8)]
    corpus = LexicalCorpus(documents, top_n=5)

    assert len(corpus.search("구토")) == 5
    assert len(corpus.search("구토", limit=2)) == 2
    assert corpus.search("구토", limit=0) == []


def test_load_missing_file_degrades_to_empty(tmp_path: Path) -> None:
    corpus = LexicalCorpus.load(tmp_path / "missing.json")
    assert len(corpus) == 0
    assert corpus.search("설사") == []


def test_load_rejects_non_array_and_skips_bad_entries(tmp_path: Path) -> None:
    not_array = tmp_path / "object.json"
    not_array.write_bytes(orjson.dumps({"id": "1"}))
    assert len(LexicalCorpus.load(not_array)) == 0

    mixed = tmp_path / "mixed.json"
    mixed.write_bytes(
        orjson.dumps(
            [
                {"id": 1, "title": "설사", "content": "본문", "keywords": ["설사"]},
                {"title": "missing id"},
            ]
        )
    )
    corpus = LexicalCorpus.load(mixed)
    assert [doc.id for doc in corpus.documents] == ["1"]


def test_packaged_corpus_answers_diarrhea_question() -> None:
    corpus = LexicalCorpus.load(PACKAGED_CORPUS_PATH)
    assert len(corpus) >= 5

    results = corpus.search("우리 강아지 설사해요")
    assert results[0].title == "강아지 설사"
    assert results[0].provenance.startswith("https://")
