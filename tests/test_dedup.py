"""Tests for canonical identity, deduplication and preprint linking."""

import uuid

from scholar_search.models.paper import Author, CanonicalPaper
from scholar_search.search.dedup import (
    canonical_key,
    dedupe_papers,
    deterministic_author_id,
    deterministic_paper_id,
    exclusion_keys,
    link_preprints,
    normalize_doi,
    normalize_title,
    to_canonical,
)


class TestNormalisation:
    def test_normalize_doi_variants(self):
        assert normalize_doi("https://doi.org/10.1000/ABC") == "10.1000/abc"
        assert normalize_doi("http://dx.doi.org/10.1000/abc ") == "10.1000/abc"
        assert normalize_doi("doi:10.1000/abc") == "10.1000/abc"
        assert normalize_doi(None) == ""

    def test_normalize_title(self):
        assert normalize_title("Deep   Learning: A Survey!") == "deep learning a survey"


class TestDeterministicIds:
    def test_same_doi_same_id_across_sources(self, make_paper):
        a = make_paper("Attention Is All You Need", source="openalex", doi="10.5555/3295222")
        b = make_paper("Attention is all you need.", source="crossref",
                       doi="https://doi.org/10.5555/3295222", authors=["Someone Else"])
        assert deterministic_paper_id(a) == deterministic_paper_id(b)

    def test_id_is_stable_uuid(self, make_paper):
        paper = make_paper("Stable", doi="10.1/stable")
        first = deterministic_paper_id(paper)
        assert first == deterministic_paper_id(make_paper("Stable", doi="10.1/stable"))
        assert uuid.UUID(first).version == 5

    def test_title_author_year_key_without_doi(self, make_paper):
        paper = make_paper("Graph Networks!", authors=["Ada Lovelace", "Alan Turing"], year=2019)
        assert canonical_key(paper) == "title:graph networks|ada lovelace|2019"

    def test_year_distinguishes_works_without_doi(self, make_paper):
        a = make_paper("Annual Review", year=2019)
        b = make_paper("Annual Review", year=2020)
        assert deterministic_paper_id(a) != deterministic_paper_id(b)

    def test_author_id_ignores_case_and_spacing(self):
        assert deterministic_author_id("Ada  Lovelace") == deterministic_author_id("ada lovelace")


class TestToCanonical:
    def test_accepts_mixed_author_shapes(self, make_paper):
        paper = make_paper(
            "Mixed",
            authors=["Ada Lovelace", {"name": "Alan Turing", "affiliation": "Manchester"},
                     Author(name="Grace Hopper"), "", {"affiliation": "nameless"}],
        )
        canonical = to_canonical(paper)
        assert canonical.author_names == ["Ada Lovelace", "Alan Turing", "Grace Hopper"]
        assert canonical.authors[1].affiliation == "Manchester"
        assert canonical.authors[0].id == deterministic_author_id("Ada Lovelace")

    def test_fields(self, make_paper):
        paper = make_paper("Paper", source="crossref", doi="HTTPS://DOI.ORG/10.1/X", year=2021,
                           citations=None, region="NO")
        canonical = to_canonical(paper)
        assert canonical.doi == "10.1/x"
        assert canonical.publication_date == "2021-01-01"
        assert canonical.citation_count == 0
        assert canonical.metadata["api_source"] == "crossref"
        assert canonical.region == "NO"

    def test_canonical_papers_pass_through(self, make_paper):
        canonical = to_canonical(make_paper("Paper"))
        assert to_canonical(canonical) is canonical


class TestDedupePapers:
    def test_first_seen_wins_for_doi_typo(self, make_paper):
        first = make_paper("Transformers for Graphs", source="openalex", doi="10.1/tg", citations=50)
        second = make_paper("Transfromers for Graphs", source="crossref", doi="10.1/TG", citations=7)
        result = dedupe_papers([first, second])
        assert len(result) == 1
        assert result[0].title == "Transformers for Graphs"
        assert result[0].source == "openalex"
        assert result[0].citation_count == 50

    def test_idempotent(self, make_paper):
        papers = [
            make_paper("A", doi="10.1/a"),
            make_paper("B"),
            make_paper("A again", doi="10.1/A"),
            make_paper("B"),
        ]
        once = dedupe_papers(papers)
        twice = dedupe_papers(once)
        assert [p.id for p in once] == [p.id for p in twice]
        assert len(once) == 2

    def test_seen_set_carries_across_calls(self, make_paper):
        seen = set()
        dedupe_papers([make_paper("A", doi="10.1/a")], seen)
        assert dedupe_papers([make_paper("A", doi="10.1/a"), make_paper("C")], seen)[0].title == "C"

    def test_exclusions_by_id_and_doi(self, make_paper):
        by_id = make_paper("Excluded by id")
        by_doi = make_paper("Excluded by doi", doi="10.1/skip")
        kept = make_paper("Kept")
        seen = exclusion_keys([deterministic_paper_id(by_id), "https://doi.org/10.1/SKIP"])
        result = dedupe_papers([by_id, by_doi, kept], seen)
        assert [p.title for p in result] == ["Kept"]


class TestLinkPreprints:
    def test_preprint_folds_into_published_record(self, make_paper):
        journal = to_canonical(make_paper("Graph Attention Networks", source="crossref",
                                          doi="10.1/gat", venue="ICLR"))
        preprint = to_canonical(make_paper("Graph attention networks.", source="arxiv",
                                           pdf_url="https://arxiv.org/pdf/1710.10903"))
        linked = link_preprints([preprint, journal])
        assert len(linked) == 1
        assert linked[0].doi == "10.1/gat"
        assert linked[0].venue == "ICLR"
        assert linked[0].metadata["preprint_url"] == "https://arxiv.org/pdf/1710.10903"
        assert "preprint_url" not in journal.metadata

    def test_unmatched_preprint_kept(self, make_paper):
        preprint = to_canonical(make_paper("Only on arXiv", source="arxiv"))
        other = to_canonical(make_paper("Published", source="crossref", doi="10.1/p"))
        assert len(link_preprints([preprint, other])) == 2

    def test_no_published_records(self, make_paper):
        papers = [to_canonical(make_paper("X", source="arxiv"))]
        assert link_preprints(papers) == papers
        assert isinstance(link_preprints(papers)[0], CanonicalPaper)
