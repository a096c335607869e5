"""Paper store collaborator: the library searched before any external API.

The orchestrator only relies on the ``PaperStore`` protocol. ``SQLitePaperStore``
is a local implementation: paper records and their query stems live in SQLite,
embeddings (when an ``embed`` function is given) in a ChromaDB collection.
Hybrid search blends stem overlap with vector similarity, keyword search is
plain LIKE matching, and upserts are keyed by the deterministic paper id.
"""

from __future__ import annotations

import asyncio
import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import partial
from pathlib import Path
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, Sequence, Union, cast

import chromadb
from chromadb.config import Settings

from scholar_search.models.paper import AcademicPaper, Author, CanonicalPaper
from scholar_search.search.dedup import to_canonical
from scholar_search.utils.observability import timed
from scholar_search.utils.text import tokenize_query

logger = logging.getLogger(__name__)

EmbedFn = Callable[[str], Sequence[float]]

VECTOR_COLLECTION = "library_papers"
# Nearest neighbours fetched per hybrid query, before blending with stems
MIN_SEMANTIC_CANDIDATES = 50


@dataclass(frozen=True)
class IngestResult:
    paper_id: str
    is_new_paper: bool


class PaperStore(Protocol):
    """What the orchestrator needs from the paper library."""

    async def hybrid_search(
        self,
        query: str,
        *,
        limit: int = 20,
        exclude_ids: Sequence[str] = (),
        from_year: Optional[int] = None,
        to_year: Optional[int] = None,
        semantic_weight: float = 0.7,
    ) -> List[Union[AcademicPaper, CanonicalPaper]]:
        ...

    async def keyword_search(
        self, query: str, *, limit: int = 20, exclude_ids: Sequence[str] = ()
    ) -> List[Union[AcademicPaper, CanonicalPaper]]:
        ...

    async def ingest_paper(
        self, paper: Union[AcademicPaper, CanonicalPaper], **options: Any
    ) -> IngestResult:
        ...


def _sanitize_metadata(metadata: Dict[str, Any]) -> Dict[str, Any]:
    """ChromaDB only supports str, int, float, bool metadata values."""
    sanitized = {}
    for key, value in metadata.items():
        if value is None or value == "":
            continue
        elif isinstance(value, (str, int, float, bool)):
            sanitized[key] = value
        elif isinstance(value, list):
            sanitized[key] = ", ".join(str(v) for v in value)
        else:
            sanitized[key] = str(value)
    return sanitized


def _stem_field(text: str) -> str:
    # space padded so a single stem can be matched with instr(' stem ')
    return f" {' '.join(tokenize_query(text))} "


class SQLitePaperStore:
    """
    SQLite-backed paper library with an optional ChromaDB vector index.

    Example:
        store = SQLitePaperStore("./data/papers.sqlite", embed=model.encode)
        await store.ingest_paper(paper, search_query="graph networks")
        papers = await store.hybrid_search("graph neural networks", limit=10)
    """

    def __init__(
        self,
        path: Union[str, Path] = "./data/papers.sqlite",
        *,
        embed: Optional[EmbedFn] = None,
        min_score: float = 0.1,
        vector_dir: Optional[Union[str, Path]] = None,
    ):
        """
        Args:
            path: SQLite database file
            embed: Text -> vector function; without one hybrid search is
                lexical only and no vector index is opened
            min_score: Blended relevance below which papers are dropped
            vector_dir: ChromaDB directory (default: ``<path>.chroma``)
        """
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.embed = embed
        self.min_score = min_score
        self._init_db()

        self.vectors: Any = None
        if embed is not None:
            vector_path = Path(vector_dir) if vector_dir else self.path.with_suffix(".chroma")
            vector_path.mkdir(parents=True, exist_ok=True)
            self._client = chromadb.PersistentClient(
                path=str(vector_path),
                settings=Settings(anonymized_telemetry=False, allow_reset=True),
            )
            self.vectors = cast(
                Any,
                self._client.get_or_create_collection(
                    name=VECTOR_COLLECTION, metadata={"hnsw:space": "cosine"}
                ),
            )
            logger.info(f"Opened vector index at {vector_path}")

    # ------------------------------------------------------------------
    # Connection / schema
    # ------------------------------------------------------------------

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        conn = sqlite3.connect(self.path)
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA journal_mode = WAL")
        try:
            with conn:
                yield conn
        finally:
            conn.close()

    def _init_db(self) -> None:
        with self._connect() as conn:
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS papers (
                    paper_id TEXT PRIMARY KEY,
                    canonical_key TEXT NOT NULL,
                    title TEXT NOT NULL,
                    abstract TEXT,
                    authors TEXT,
                    year INTEGER,
                    venue TEXT,
                    doi TEXT,
                    url TEXT,
                    pdf_url TEXT,
                    citation_count INTEGER DEFAULT 0,
                    source TEXT,
                    metadata TEXT,
                    search_query TEXT,
                    stems TEXT NOT NULL DEFAULT '',
                    added_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_papers_added_at ON papers(added_at)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_papers_year ON papers(year)"
            )
            conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_papers_doi ON papers(doi)"
            )

    async def _run(self, fn: Callable, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, partial(fn, *args, **kwargs))

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    async def ingest_paper(
        self,
        paper: Union[AcademicPaper, CanonicalPaper],
        *,
        search_query: Optional[str] = None,
        **_: Any,
    ) -> IngestResult:
        """Insert or update a paper. Re-ingesting the same work is a no-op id-wise."""
        return await self._run(self._ingest_sync, to_canonical(paper), search_query)

    def _ingest_sync(self, paper: CanonicalPaper, search_query: Optional[str]) -> IngestResult:
        authors = json.dumps([a.to_dict() for a in paper.authors])
        metadata = json.dumps(paper.metadata, default=str)
        now = datetime.now(timezone.utc).isoformat()

        with self._connect() as conn:
            existing = conn.execute(
                "SELECT abstract FROM papers WHERE paper_id = ?", (paper.id,)
            ).fetchone()
            # an update without an abstract keeps the stored one
            abstract = paper.abstract or (existing["abstract"] if existing else "") or ""
            text = f"{paper.title}\n{abstract}".strip()

            conn.execute(
                """
                INSERT INTO papers
                    (paper_id, canonical_key, title, abstract, authors, year, venue,
                     doi, url, pdf_url, citation_count, source, metadata,
                     search_query, stems, added_at)
                VALUES (?,?,?,?,?,?,?,?,?,?,?,?,?,?,?,?)
                ON CONFLICT(paper_id) DO UPDATE SET
                    title=excluded.title,
                    abstract=COALESCE(NULLIF(excluded.abstract, ''), papers.abstract),
                    authors=excluded.authors,
                    year=COALESCE(excluded.year, papers.year),
                    venue=COALESCE(NULLIF(excluded.venue, ''), papers.venue),
                    url=COALESCE(NULLIF(excluded.url, ''), papers.url),
                    pdf_url=COALESCE(NULLIF(excluded.pdf_url, ''), papers.pdf_url),
                    citation_count=MAX(excluded.citation_count, papers.citation_count),
                    metadata=excluded.metadata,
                    stems=excluded.stems
                """,
                (
                    paper.id, paper.canonical_key, paper.title, paper.abstract, authors,
                    paper.year, paper.venue, paper.doi, paper.url, paper.pdf_url,
                    paper.citation_count, paper.source, metadata,
                    search_query, _stem_field(text), now,
                ),
            )

        if self.vectors is not None:
            self.vectors.upsert(
                ids=[paper.id],
                embeddings=[list(self.embed(text))],
                documents=[text],
                metadatas=[_sanitize_metadata(
                    {"title": paper.title, "year": paper.year, "doi": paper.doi}
                )],
            )

        logger.debug(f"Ingested {paper.id} ({'existing' if existing else 'new'}): {paper.title}")
        return IngestResult(paper_id=paper.id, is_new_paper=existing is None)

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    @timed
    async def hybrid_search(
        self,
        query: str,
        *,
        limit: int = 20,
        exclude_ids: Sequence[str] = (),
        from_year: Optional[int] = None,
        to_year: Optional[int] = None,
        semantic_weight: float = 0.7,
    ) -> List[CanonicalPaper]:
        """
        Rank stored papers against ``query``.

        Lexical score is the share of query stems found in title + abstract.
        With a vector index, the cosine similarity of the nearest neighbours
        is blended in by ``semantic_weight`` (papers outside the neighbour set
        count as similarity 0); without one the lexical score is used alone.
        """
        return await self._run(
            self._hybrid_sync, query, limit, set(exclude_ids or ()), from_year, to_year,
            semantic_weight,
        )

    def _semantic_scores(self, query: str, limit: int) -> Dict[str, float]:
        """Paper id -> cosine similarity for the query's nearest neighbours."""
        count = self.vectors.count()
        if count == 0:
            return {}

        results = cast(
            Dict[str, Any],
            self.vectors.query(
                query_embeddings=[list(self.embed(query))],
                n_results=min(count, max(limit * 3, MIN_SEMANTIC_CANDIDATES)),
                include=["distances"],
            ),
        )
        ids = (results.get("ids") or [[]])[0]
        distances = (results.get("distances") or [[]])[0]
        # cosine space: distance = 1 - similarity
        return {paper_id: max(0.0, 1.0 - d) for paper_id, d in zip(ids, distances)}

    def _hybrid_sync(
        self,
        query: str,
        limit: int,
        exclude: set,
        from_year: Optional[int],
        to_year: Optional[int],
        semantic_weight: float,
    ) -> List[CanonicalPaper]:
        terms = set(tokenize_query(query))
        if not terms:
            return []

        semantic = self._semantic_scores(query, limit) if self.vectors is not None else {}

        clauses = ["instr(stems, ?) > 0" for _ in terms]
        params: List[Any] = [f" {term} " for term in terms]
        if semantic:
            clauses.append(f"paper_id IN ({', '.join('?' for _ in semantic)})")
            params.extend(semantic)

        sql = f"SELECT * FROM papers WHERE ({' OR '.join(clauses)})"
        if from_year is not None:
            sql += " AND (year IS NULL OR year >= ?)"
            params.append(from_year)
        if to_year is not None:
            sql += " AND (year IS NULL OR year <= ?)"
            params.append(to_year)

        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()

        scored = []
        for row in rows:
            if row["paper_id"] in exclude:
                continue
            lexical = len(terms & set(row["stems"].split())) / len(terms)
            score = lexical
            if self.vectors is not None:
                similarity = semantic.get(row["paper_id"], 0.0)
                score = semantic_weight * similarity + (1 - semantic_weight) * lexical
            if score >= self.min_score:
                scored.append((score, row))

        scored.sort(key=lambda item: item[0], reverse=True)
        papers = []
        for score, row in scored[:limit]:
            paper = self._row_to_paper(row)
            paper.metadata["relevance_score"] = round(score, 4)
            papers.append(paper)
        return papers

    @timed
    async def keyword_search(
        self, query: str, *, limit: int = 20, exclude_ids: Sequence[str] = ()
    ) -> List[CanonicalPaper]:
        """Papers whose title, abstract or venue contain every query word, newest first."""
        return await self._run(self._keyword_sync, query, limit, set(exclude_ids or ()))

    def _keyword_sync(self, query: str, limit: int, exclude: set) -> List[CanonicalPaper]:
        words = [w for w in query.lower().split() if len(w) > 2]
        if not words:
            return []

        clauses = []
        params: List[Any] = []
        for word in words:
            clauses.append(
                "(LOWER(title) LIKE ? OR LOWER(COALESCE(abstract, '')) LIKE ? "
                "OR LOWER(COALESCE(venue, '')) LIKE ?)"
            )
            pattern = f"%{word}%"
            params.extend([pattern, pattern, pattern])

        sql = f"SELECT * FROM papers WHERE {' AND '.join(clauses)} ORDER BY added_at DESC"
        with self._connect() as conn:
            rows = conn.execute(sql, params).fetchall()

        papers = [self._row_to_paper(row) for row in rows if row["paper_id"] not in exclude]
        return papers[:limit]

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def get_paper(self, paper_id: str) -> Optional[CanonicalPaper]:
        with self._connect() as conn:
            row = conn.execute(
                "SELECT * FROM papers WHERE paper_id = ?", (paper_id,)
            ).fetchone()
            return self._row_to_paper(row) if row else None

    def count(self) -> int:
        with self._connect() as conn:
            return conn.execute("SELECT COUNT(*) FROM papers").fetchone()[0]

    @staticmethod
    def _row_to_paper(row: sqlite3.Row) -> CanonicalPaper:
        authors = [Author(**a) for a in json.loads(row["authors"] or "[]")]
        metadata: Dict[str, Any] = json.loads(row["metadata"] or "{}")
        return CanonicalPaper(
            id=row["paper_id"],
            canonical_key=row["canonical_key"],
            title=row["title"],
            source=row["source"] or "library",
            abstract=row["abstract"] or "",
            authors=authors,
            author_names=[a.name for a in authors],
            year=row["year"],
            publication_date=f"{row['year']}-01-01" if row["year"] else None,
            venue=row["venue"] or "",
            doi=row["doi"] or "",
            url=row["url"] or "",
            pdf_url=row["pdf_url"] or "",
            citation_count=row["citation_count"] or 0,
            metadata=metadata,
        )
