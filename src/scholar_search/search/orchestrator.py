"""
Search Orchestrator

Runs one paper search across the local library and the academic APIs:

1. Primary stage: hybrid library search and the academic source fan-out
   run concurrently. Sources run tier by tier (high reliability first) with
   a bounded number in flight, and lower tiers are skipped once enough
   papers have arrived. The whole stage shares one ``timeout_ms`` deadline.
2. Merge: canonicalise, link preprints, drop exclusions, deduplicate.
3. Fallbacks while under ``min_results``: keyword library search, then
   broader term-combination searches.
4. Rank, apply the regional boost, truncate.
5. Optionally queue the result for background ingestion.

No source failure escapes ``search()``: each one becomes an error string
in the result metadata. Only malformed input raises.
"""

import asyncio
import itertools
import logging
import math
from typing import Any, Dict, List, Mapping, Optional, Sequence, Set, Union

from scholar_search.exceptions import InvalidSearchOptions, SourceError, SourceTimeout
from scholar_search.models.paper import AcademicPaper, CanonicalPaper
from scholar_search.models.search import SearchMetadata, SearchOptions, SearchResult
from scholar_search.processors.ingestion import CostPolicy, IngestionQueue
from scholar_search.search.context import SearchContext
from scholar_search.search.dedup import (
    dedupe_papers,
    exclusion_keys,
    link_preprints,
    to_canonical,
)
from scholar_search.search.scoring import ScoringWeights, apply_regional_boost, rank_papers
from scholar_search.sources import default_adapters, select_adapters
from scholar_search.sources.base import SourceAdapter, SourceQuery
from scholar_search.sources.circuit_breaker import CircuitBreaker
from scholar_search.utils.cache import get_global_cache, make_cache_key
from scholar_search.utils.config import (
    SearchSettings,
    disabled_sources_from_env,
    merge_deny_lists,
)
from scholar_search.utils.observability import new_request_id, set_request_id, timed
from scholar_search.utils.text import term_combinations, tokenize_query

logger = logging.getLogger(__name__)

HYBRID = "hybrid"
ACADEMIC_APIS = "academic_apis"
KEYWORD = "keyword"
BROADER_SEARCH = "broader_search"

BROADER_CONCURRENCY = 3

AnyPaper = Union[AcademicPaper, CanonicalPaper]
OptionsLike = Union[SearchOptions, Mapping[str, Any], None]


def _in_year_range(paper: CanonicalPaper, options: SearchOptions) -> bool:
    # Undated papers are kept
    if not paper.year:
        return True
    if options.from_year is not None and paper.year < options.from_year:
        return False
    if options.to_year is not None and paper.year > options.to_year:
        return False
    return True


def _reason(error: Exception) -> str:
    return str(error) or type(error).__name__


class SearchOrchestrator:
    """
    Unified paper search over a paper store and academic source adapters.

    Example:
        orchestrator = SearchOrchestrator(store=SQLitePaperStore("papers.sqlite"))
        with request_cache_scope():
            result = await orchestrator.search(
                "graph neural networks", {"maxResults": 10, "fromYear": 2018}
            )
        for paper in result.papers:
            print(paper.score, paper.title)
    """

    def __init__(
        self,
        store=None,
        adapters: Optional[Sequence[SourceAdapter]] = None,
        *,
        settings: Optional[SearchSettings] = None,
        cost_policy: Optional[CostPolicy] = None,
        ingestion_queue: Optional[IngestionQueue] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
    ):
        """
        Args:
            store: PaperStore used for hybrid/keyword/broader search and
                ingestion. Library stages are skipped when None.
            adapters: Source adapters; built from config when None
            settings: Defaults for options not given per call
            cost_policy: Ingestion cost ceiling
            ingestion_queue: Queue for force_ingest; created on demand
            circuit_breaker: Skips sources that keep failing; none by default
        """
        self.settings = settings or SearchSettings.from_config()
        self.store = store
        self.adapters: List[SourceAdapter] = (
            list(adapters) if adapters is not None else default_adapters(self.settings)
        )
        self.cost_policy = cost_policy or CostPolicy.from_settings(self.settings)
        self._ingestion_queue = ingestion_queue
        self.circuit_breaker = circuit_breaker
        # The first orchestrator in a process sizes the global fallback cache
        get_global_cache(self.settings.cache_ttl_seconds, self.settings.global_cache_size)

    @property
    def ingestion_queue(self) -> Optional[IngestionQueue]:
        if self._ingestion_queue is None and self.store is not None:
            self._ingestion_queue = IngestionQueue(
                self.store,
                workers=self.settings.ingest_workers,
                max_pending=self.settings.ingest_queue_size,
            )
        return self._ingestion_queue

    async def drain_ingestion(self) -> None:
        """Wait for queued ingestion to finish and stop its workers."""
        if self._ingestion_queue is not None:
            await self._ingestion_queue.join()
            await self._ingestion_queue.close()

    async def close(self) -> None:
        """Drain pending ingestion, then release adapter clients."""
        await self.drain_ingestion()
        for adapter in self.adapters:
            await adapter.close()

    # ------------------------------------------------------------------
    # Entry point
    # ------------------------------------------------------------------

    def _prepare_options(self, options: OptionsLike) -> SearchOptions:
        if options is None:
            options = SearchOptions(
                max_results=self.settings.max_results,
                min_results=self.settings.min_results,
                from_year=self.settings.from_year,
            )
        elif isinstance(options, Mapping):
            options = SearchOptions.from_dict(options)
        elif not isinstance(options, SearchOptions):
            raise InvalidSearchOptions(
                f"options must be SearchOptions or a mapping, got {type(options).__name__}"
            )
        options.validate()
        return options.resolve(self.settings)

    async def search(
        self,
        query: str,
        options: OptionsLike = None,
        *,
        context: Optional[SearchContext] = None,
    ) -> SearchResult:
        """
        Run one orchestrated search.

        Args:
            query: Free-text topic
            options: SearchOptions, or a camelCase/snake_case mapping
            context: Pre-built request context; one is created otherwise

        Returns:
            SearchResult with ranked papers and diagnostics

        Raises:
            InvalidSearchOptions: blank/non-string query or malformed options
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidSearchOptions("query must be a non-empty string", field="query")
        options = self._prepare_options(options)
        query = " ".join(query.split())

        if context is not None and context.request_id:
            request_id = set_request_id(context.request_id)
        else:
            request_id = new_request_id()
        ctx = context or SearchContext.create(options.time_budget_ms, request_id=request_id)
        ctx.request_id = request_id
        rid = ctx.request_id
        metadata = SearchMetadata(request_id=rid)

        logger.info(
            f"[{rid}] Search '{query}' (max={options.max_results}, min={options.min_results}, "
            f"timeout={options.timeout_ms}ms, fast={options.fast_mode})"
        )

        seen: Set[str] = exclusion_keys(options.exclude_paper_ids)

        # -- primary stage ------------------------------------------------
        hybrid_state: Dict[str, Any] = {"ran": False, "failed": False}
        hybrid_papers, source_results, adapters = await self._primary_stage(
            query, options, ctx, hybrid_state
        )

        academic_raw = [p for adapter in adapters for p in source_results.get(adapter.id, [])]
        metadata.hybrid_results = len(hybrid_papers)
        metadata.academic_results = len(academic_raw)
        metadata.source_counts = {
            adapter.id: len(source_results[adapter.id])
            for adapter in adapters
            if adapter.id in source_results
        }

        hybrid_canonical = [to_canonical(p) for p in hybrid_papers]
        hybrid_ids = {p.id for p in hybrid_canonical}
        merged = link_preprints(hybrid_canonical + [to_canonical(p) for p in academic_raw])
        papers = [p for p in dedupe_papers(merged, seen) if _in_year_range(p, options)]

        hybrid_new = sum(1 for p in papers if p.id in hybrid_ids)
        if hybrid_new:
            metadata.search_strategies.append(HYBRID)
        if len(papers) - hybrid_new > 0:
            metadata.search_strategies.append(ACADEMIC_APIS)

        # -- keyword fallback ----------------------------------------------
        if (
            len(papers) < options.min_results
            and options.use_keyword_search
            and self.store is not None
            and ctx.check_budget("keyword search")
        ):
            added = await self._keyword_fallback(query, options, ctx, papers, seen)
            metadata.keyword_results = len(added)
            if added:
                papers.extend(added)
                metadata.search_strategies.append(KEYWORD)

        # -- broader fallback ----------------------------------------------
        if (
            len(papers) < options.min_results
            and options.use_broader_search
            and self.store is not None
            and ctx.check_budget("broader search")
        ):
            added = await self._broader_search(
                query, options.max_results - len(papers), options, ctx, papers, seen
            )
            metadata.broader_search_results = len(added)
            if added:
                papers.extend(added)
                metadata.search_strategies.append(BROADER_SEARCH)

        # -- rank ----------------------------------------------------------
        ranked = rank_papers(papers, ScoringWeights.from_options(options))
        ranked, _ = apply_regional_boost(ranked, options.local_region)
        final = ranked[: options.max_results]

        if options.local_region:
            wanted = options.local_region.strip().lower()
            metadata.local_papers_count = sum(
                1 for p in final if str(p.metadata.get("region", "")).strip().lower() == wanted
            )
            metadata.local_region_boost = metadata.local_papers_count > 0

        other_found = (
            metadata.academic_results + metadata.keyword_results + metadata.broader_search_results
        )
        if hybrid_state["ran"] and not hybrid_state["failed"] and not hybrid_papers and other_found:
            metadata.vector_index_empty = True
            logger.warning(
                f"[{rid}] Hybrid search returned no papers while other strategies found "
                f"{other_found}; possible empty index or cold start. Query: '{query}'"
            )

        # -- ingestion -----------------------------------------------------
        if options.force_ingest and final:
            metadata.ingestion_queued = self._queue_ingestion(query, final, ctx)

        metadata.total_found = len(final)
        metadata.cache_hits = ctx.cache_hits
        metadata.errors = list(ctx.errors)
        metadata.skipped_sources = list(ctx.skipped_sources)
        metadata.time_budget_exhausted = ctx.budget_exhausted
        metadata.search_time_ms = ctx.elapsed_ms()

        logger.info(
            f"[{rid}] Search complete: {len(final)} papers via {metadata.search_strategies or 'nothing'} "
            f"in {metadata.search_time_ms}ms ({len(metadata.errors)} errors, "
            f"{metadata.cache_hits} cache hits)"
        )
        return SearchResult(papers=final, metadata=metadata)

    # ------------------------------------------------------------------
    # Primary stage
    # ------------------------------------------------------------------

    async def _primary_stage(
        self,
        query: str,
        options: SearchOptions,
        ctx: SearchContext,
        hybrid_state: Dict[str, Any],
    ):
        adapters: List[SourceAdapter] = []
        if options.use_academic_apis:
            deny = merge_deny_lists(
                self.settings.disabled_sources,
                disabled_sources_from_env(),
                options.disabled_sources,
            )
            adapters = select_adapters(self.adapters, allow=options.sources, deny=deny)
            logger.debug(f"[{ctx.request_id}] Sources: {[a.id for a in adapters]}")

        hybrid_coro = None
        if options.use_hybrid_search and self.store is not None:
            hybrid_state["ran"] = True
            hybrid_coro = self._hybrid_search(query, options, ctx, hybrid_state)

        source_results: Dict[str, List[AcademicPaper]] = {}
        # every tier shares one deadline of timeout_ms from here
        ctx.start_stage(options.timeout_ms)
        try:
            if hybrid_coro is not None:
                hybrid_papers, _ = await asyncio.gather(
                    hybrid_coro, self._fan_out(query, options, ctx, adapters, source_results)
                )
            else:
                await self._fan_out(query, options, ctx, adapters, source_results)
                hybrid_papers = []
        finally:
            ctx.end_stage()
        return hybrid_papers, source_results, adapters

    async def _hybrid_search(
        self,
        query: str,
        options: SearchOptions,
        ctx: SearchContext,
        state: Dict[str, Any],
    ) -> List[AnyPaper]:
        cache_key = make_cache_key(
            HYBRID,
            query,
            max_results=options.max_results,
            from_year=options.from_year,
            to_year=options.to_year,
            semantic_weight=options.semantic_weight,
            exclude_paper_ids=options.exclude_paper_ids,
        )
        cached = ctx.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"[{ctx.request_id}] Cache hit for hybrid search")
            ctx.cache_hits += 1
            ctx.found += len(cached)
            return cached

        if not ctx.check_budget("hybrid search"):
            state["failed"] = True
            return []

        timeout_ms = ctx.call_timeout_ms(options.timeout_ms)
        try:
            papers = await asyncio.wait_for(
                self.store.hybrid_search(
                    query,
                    limit=options.max_results * 2,
                    exclude_ids=list(options.exclude_paper_ids),
                    from_year=options.from_year,
                    to_year=options.to_year,
                    semantic_weight=options.semantic_weight,
                ),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            state["failed"] = True
            ctx.errors.append(str(SourceTimeout(HYBRID, timeout_ms)))
            logger.warning(f"[{ctx.request_id}] Hybrid search timed out after {timeout_ms:.0f}ms")
            return []
        except Exception as e:
            state["failed"] = True
            ctx.errors.append(f"{HYBRID}: {_reason(e)}")
            logger.warning(f"[{ctx.request_id}] Hybrid search failed: {e}")
            return []

        papers = list(papers or [])
        if papers:
            ctx.cache.set(cache_key, papers)
        ctx.found += len(papers)
        logger.debug(f"[{ctx.request_id}] Hybrid search: {len(papers)} papers")
        return papers

    async def _fan_out(
        self,
        query: str,
        options: SearchOptions,
        ctx: SearchContext,
        adapters: List[SourceAdapter],
        results: Dict[str, List[AcademicPaper]],
    ) -> None:
        """Query adapters tier by tier, skipping the rest once enough papers arrived."""
        if not adapters:
            return

        semaphore = asyncio.Semaphore(options.concurrency_limit)
        source_query = SourceQuery(
            limit=options.max_results,
            from_year=options.from_year,
            to_year=options.to_year,
            fast_mode=options.fast_mode,
        )

        async def run_one(adapter: SourceAdapter) -> None:
            async with semaphore:
                if ctx.found >= options.desired_results:
                    ctx.skipped_sources.append(adapter.id)
                    return
                papers = await self._search_source(adapter, query, options, source_query, ctx)
                results[adapter.id] = papers

        for tier, members in itertools.groupby(adapters, key=lambda a: a.reliability):
            members = list(members)
            if ctx.found >= options.desired_results:
                logger.debug(
                    f"[{ctx.request_id}] Early exit with {ctx.found} papers, "
                    f"skipping {tier.value} tier"
                )
                ctx.skipped_sources.extend(a.id for a in members)
                continue
            await asyncio.gather(*(run_one(adapter) for adapter in members))

    async def _search_source(
        self,
        adapter: SourceAdapter,
        query: str,
        options: SearchOptions,
        source_query: SourceQuery,
        ctx: SearchContext,
    ) -> List[AcademicPaper]:
        """One adapter call with cache, circuit breaker and timeout. Never raises."""
        cache_key = make_cache_key(
            adapter.id,
            query,
            max_results=options.max_results,
            from_year=options.from_year,
            to_year=options.to_year,
            semantic_weight=options.semantic_weight,
            exclude_paper_ids=options.exclude_paper_ids,
        )
        cached = ctx.cache.get(cache_key)
        if cached is not None:
            logger.debug(f"[{ctx.request_id}] Cache hit for {adapter.id}")
            ctx.cache_hits += 1
            ctx.found += len(cached)
            return cached

        if self.circuit_breaker is not None and not self.circuit_breaker.is_available(adapter.id):
            ctx.errors.append(f"{adapter.id}: circuit open")
            ctx.skipped_sources.append(adapter.id)
            return []

        if not ctx.check_budget(f"querying {adapter.id}"):
            ctx.skipped_sources.append(adapter.id)
            return []

        timeout_ms = ctx.call_timeout_ms(options.timeout_ms)
        if timeout_ms <= 0:
            ctx.skipped_sources.append(adapter.id)
            ctx.errors.append(
                f"{adapter.id}: not queried, search deadline of {options.timeout_ms:.0f}ms passed"
            )
            return []
        try:
            papers = await asyncio.wait_for(
                adapter.search(query, source_query), timeout=timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            self._record_failure(adapter, ctx, str(SourceTimeout(adapter.id, timeout_ms)))
            return []
        except SourceError as e:
            self._record_failure(adapter, ctx, str(e))
            return []
        except Exception as e:
            self._record_failure(adapter, ctx, f"{adapter.id}: {_reason(e)}")
            return []

        if self.circuit_breaker is not None:
            self.circuit_breaker.record_success(adapter.id)

        papers = list(papers or [])
        if papers:
            ctx.cache.set(cache_key, papers)
        ctx.found += len(papers)
        return papers

    def _record_failure(self, adapter: SourceAdapter, ctx: SearchContext, message: str) -> None:
        ctx.errors.append(message)
        logger.warning(f"[{ctx.request_id}] {message}")
        if self.circuit_breaker is not None:
            self.circuit_breaker.record_failure(adapter.id)

    # ------------------------------------------------------------------
    # Fallbacks
    # ------------------------------------------------------------------

    @staticmethod
    def _taken_ids(papers: List[CanonicalPaper], options: SearchOptions) -> List[str]:
        return list(options.exclude_paper_ids) + [p.id for p in papers]

    async def _keyword_fallback(
        self,
        query: str,
        options: SearchOptions,
        ctx: SearchContext,
        papers: List[CanonicalPaper],
        seen: Set[str],
    ) -> List[CanonicalPaper]:
        logger.debug(f"[{ctx.request_id}] Keyword fallback ({len(papers)} < {options.min_results})")
        timeout_ms = ctx.call_timeout_ms(options.timeout_ms)
        try:
            found = await asyncio.wait_for(
                self.store.keyword_search(
                    query,
                    limit=options.max_results,
                    exclude_ids=self._taken_ids(papers, options),
                ),
                timeout=timeout_ms / 1000,
            )
        except asyncio.TimeoutError:
            ctx.errors.append(f"Keyword search failed: timed out after {timeout_ms:.0f}ms")
            return []
        except Exception as e:
            ctx.errors.append(f"Keyword search failed: {_reason(e)}")
            logger.warning(f"[{ctx.request_id}] Keyword search failed: {e}")
            return []

        added = [p for p in dedupe_papers(found or [], seen) if _in_year_range(p, options)]
        logger.debug(f"[{ctx.request_id}] Keyword search: {len(added)} new papers")
        return added

    @timed
    async def _broader_search(
        self,
        query: str,
        remaining_slots: int,
        options: SearchOptions,
        ctx: SearchContext,
        papers: List[CanonicalPaper],
        seen: Set[str],
    ) -> List[CanonicalPaper]:
        """Hybrid searches over term pairs, merged in combination order."""
        if remaining_slots <= 0:
            return []
        combinations = term_combinations(tokenize_query(query))
        if not combinations:
            return []

        logger.debug(f"[{ctx.request_id}] Broader search terms: {combinations}")
        slots_per_query = math.ceil(remaining_slots / len(combinations))
        exclude_ids = self._taken_ids(papers, options)
        semaphore = asyncio.Semaphore(BROADER_CONCURRENCY)

        async def run_term(term: str) -> List[AnyPaper]:
            async with semaphore:
                cache_key = make_cache_key(
                    HYBRID,
                    term,
                    max_results=slots_per_query,
                    from_year=options.from_year,
                    to_year=options.to_year,
                    semantic_weight=options.semantic_weight,
                    exclude_paper_ids=exclude_ids,
                )
                cached = ctx.cache.get(cache_key)
                if cached is not None:
                    ctx.cache_hits += 1
                    return cached

                timeout_ms = ctx.call_timeout_ms(options.timeout_ms / 2)
                if timeout_ms <= 0:
                    ctx.check_budget("broader search")
                    return []
                try:
                    found = await asyncio.wait_for(
                        self.store.hybrid_search(
                            term,
                            limit=slots_per_query,
                            exclude_ids=exclude_ids,
                            from_year=options.from_year,
                            to_year=options.to_year,
                            semantic_weight=options.semantic_weight,
                        ),
                        timeout=timeout_ms / 1000,
                    )
                except asyncio.TimeoutError:
                    ctx.errors.append(
                        f"Broader search failed: '{term}' timed out after {timeout_ms:.0f}ms"
                    )
                    return []
                except Exception as e:
                    ctx.errors.append(f"Broader search failed: '{term}': {_reason(e)}")
                    logger.debug(f"[{ctx.request_id}] Broader search for '{term}' failed: {e}")
                    return []

                found = list(found or [])
                if found:
                    ctx.cache.set(cache_key, found)
                return found

        per_term = await asyncio.gather(*(run_term(term) for term in combinations))

        added: List[CanonicalPaper] = []
        for term, found in zip(combinations, per_term):
            new = [p for p in dedupe_papers(found, seen) if _in_year_range(p, options)]
            added.extend(new[: remaining_slots - len(added)])
            logger.debug(f"[{ctx.request_id}]   '{term}': {len(new)} new papers")
            if len(added) >= remaining_slots:
                break
        return added

    # ------------------------------------------------------------------
    # Ingestion
    # ------------------------------------------------------------------

    def _queue_ingestion(
        self, query: str, papers: List[CanonicalPaper], ctx: SearchContext
    ) -> int:
        check = self.cost_policy.validate_ingest_cost(len(papers))
        if not check.allowed:
            ctx.errors.append(f"Auto-ingest blocked: {check.reason}")
            logger.warning(f"[{ctx.request_id}] Auto-ingest blocked: {check.reason}")
            return 0

        queue = self.ingestion_queue
        if queue is None:
            ctx.errors.append("Auto-ingest skipped: no paper store configured")
            return 0

        queued = queue.submit(papers, search_query=query)
        if queued < len(papers):
            ctx.errors.append(
                f"Auto-ingest skipped: ingestion queue full, {len(papers) - queued} papers dropped"
            )
        logger.info(
            f"[{ctx.request_id}] Queued {queued} papers for ingestion "
            f"(est. ${check.estimated_cost:.4f})"
        )
        return queued


async def unified_search(
    query: str,
    options: OptionsLike = None,
    *,
    store=None,
    adapters: Optional[Sequence[SourceAdapter]] = None,
    settings: Optional[SearchSettings] = None,
    **kwargs: Any,
) -> SearchResult:
    """
    One-shot search with a throwaway orchestrator.

    Adapters built here are closed afterwards, and pending ingestion is
    drained before returning.
    """
    orchestrator = SearchOrchestrator(store, adapters, settings=settings, **kwargs)
    try:
        return await orchestrator.search(query, options)
    finally:
        if adapters is None:
            await orchestrator.close()
        elif kwargs.get("ingestion_queue") is None:
            await orchestrator.drain_ingestion()
