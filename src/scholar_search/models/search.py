"""Search request / response shapes for the orchestrator."""

import re
from dataclasses import dataclass, asdict, field, fields, replace
from typing import Any, Dict, List, Mapping, Optional, Tuple

from scholar_search.exceptions import InvalidSearchOptions
from scholar_search.models.paper import CanonicalPaper

DEFAULT_TIMEOUT_MS = 15000
FAST_TIMEOUT_MS = 8000
DEFAULT_CONCURRENCY = 5
FAST_CONCURRENCY = 3
MAX_DESIRED_RESULTS = 40

# camelCase keys that don't survive the generic conversion
_KEY_ALIASES = {
    "useAcademicAPIs": "use_academic_apis",
    "useAcademicApis": "use_academic_apis",
    "excludeIds": "exclude_paper_ids",
    "region": "local_region",
}

_CAMEL_RE = re.compile(r"(?<!^)(?=[A-Z])")

_ID_LISTS = ("exclude_paper_ids", "disabled_sources", "sources")
_FLAGS = (
    "use_hybrid_search", "use_keyword_search", "use_academic_apis",
    "use_broader_search", "force_ingest", "fast_mode",
)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _snake_case(key: str) -> str:
    if key in _KEY_ALIASES:
        return _KEY_ALIASES[key]
    return _CAMEL_RE.sub("_", key).lower()


@dataclass(frozen=True)
class SearchOptions:
    """
    Options for one orchestrated search. Immutable per call.

    ``timeout_ms``, ``concurrency_limit``, ``time_budget_ms`` and
    ``desired_results`` may be left as None; ``resolve()`` fills them in,
    using the reduced fast-mode defaults when ``fast_mode`` is set.
    """

    max_results: int = 20
    min_results: int = 5
    from_year: Optional[int] = 2000
    to_year: Optional[int] = None
    exclude_paper_ids: Tuple[str, ...] = ()
    local_region: Optional[str] = None

    use_hybrid_search: bool = True
    use_keyword_search: bool = True
    use_academic_apis: bool = True
    use_broader_search: bool = True
    force_ingest: bool = False
    fast_mode: bool = False

    sources: Optional[Tuple[str, ...]] = None
    disabled_sources: Tuple[str, ...] = ()
    semantic_weight: float = 0.7
    authority_weight: float = 1.0
    recency_weight: float = 1.0
    source_weights: Dict[str, float] = field(default_factory=dict)

    timeout_ms: Optional[int] = None
    time_budget_ms: Optional[int] = None
    concurrency_limit: Optional[int] = None
    desired_results: Optional[int] = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SearchOptions":
        """Build options from a camelCase or snake_case mapping."""
        known = {f.name for f in fields(cls)}
        kwargs: Dict[str, Any] = {}
        for key, value in data.items():
            name = _snake_case(key)
            if name not in known:
                raise InvalidSearchOptions(f"Unknown search option: {key!r}", field=key)
            if name in _ID_LISTS and value is not None:
                if isinstance(value, str) or not isinstance(value, (list, tuple, set, frozenset)):
                    raise InvalidSearchOptions(f"{key} must be a list of ids", field=key)
                value = tuple(value)
            kwargs[name] = value
        options = cls(**kwargs)
        options.validate()
        return options

    def validate(self) -> None:
        """Raise InvalidSearchOptions for malformed option sets."""
        if not _is_int(self.max_results) or self.max_results <= 0:
            raise InvalidSearchOptions("max_results must be a positive integer", field="max_results")
        if not _is_int(self.min_results) or self.min_results < 0:
            raise InvalidSearchOptions("min_results must be a non-negative integer", field="min_results")
        for name in ("from_year", "to_year"):
            value = getattr(self, name)
            if value is not None and not _is_int(value):
                raise InvalidSearchOptions(f"{name} must be an integer year", field=name)
        if self.from_year is not None and self.to_year is not None and self.from_year > self.to_year:
            raise InvalidSearchOptions(
                f"from_year ({self.from_year}) is after to_year ({self.to_year})", field="from_year"
            )
        for name in ("timeout_ms", "time_budget_ms"):
            value = getattr(self, name)
            if value is not None and (not _is_number(value) or value <= 0):
                raise InvalidSearchOptions(f"{name} must be a positive number", field=name)
        for name in ("concurrency_limit", "desired_results"):
            value = getattr(self, name)
            if value is not None and (not _is_int(value) or value <= 0):
                raise InvalidSearchOptions(f"{name} must be a positive integer", field=name)
        for name in _FLAGS:
            if not isinstance(getattr(self, name), bool):
                raise InvalidSearchOptions(f"{name} must be true or false", field=name)
        if self.local_region is not None and not isinstance(self.local_region, str):
            raise InvalidSearchOptions("local_region must be a string", field="local_region")
        for name in ("semantic_weight", "authority_weight", "recency_weight"):
            if not _is_number(getattr(self, name)):
                raise InvalidSearchOptions(f"{name} must be a number", field=name)
        if not 0.0 <= self.semantic_weight <= 1.0:
            raise InvalidSearchOptions("semantic_weight must be between 0 and 1", field="semantic_weight")
        if self.authority_weight < 0 or self.recency_weight < 0:
            raise InvalidSearchOptions("score weights must be non-negative", field="authority_weight")
        if not isinstance(self.source_weights, Mapping):
            raise InvalidSearchOptions("source_weights must be a mapping of source id to weight",
                                       field="source_weights")
        if any(not _is_number(w) or w < 0 for w in self.source_weights.values()):
            raise InvalidSearchOptions("source weights must be non-negative numbers", field="source_weights")
        for name in _ID_LISTS:
            value = getattr(self, name)
            if value is None and name == "sources":
                continue
            if isinstance(value, str) or not isinstance(value, (list, tuple)):
                raise InvalidSearchOptions(f"{name} must be a sequence of ids", field=name)
            if not all(isinstance(item, str) for item in value):
                raise InvalidSearchOptions(f"{name} must contain only string ids", field=name)

    def resolve(self, settings: Any = None) -> "SearchOptions":
        """Return a copy with execution defaults filled in."""
        if self.fast_mode:
            timeout = getattr(settings, "fast_timeout_ms", FAST_TIMEOUT_MS)
            concurrency = getattr(settings, "fast_concurrency_limit", FAST_CONCURRENCY)
        else:
            timeout = getattr(settings, "timeout_ms", DEFAULT_TIMEOUT_MS)
            concurrency = getattr(settings, "concurrency_limit", DEFAULT_CONCURRENCY)

        timeout_ms = self.timeout_ms or timeout
        return replace(
            self,
            timeout_ms=timeout_ms,
            concurrency_limit=self.concurrency_limit or concurrency,
            time_budget_ms=self.time_budget_ms or timeout_ms * 2,
            desired_results=self.desired_results or min(self.max_results * 2, MAX_DESIRED_RESULTS),
        )


@dataclass
class SearchMetadata:
    """Diagnostics attached to every SearchResult."""

    total_found: int = 0
    search_strategies: List[str] = field(default_factory=list)
    hybrid_results: int = 0
    academic_results: int = 0
    keyword_results: int = 0
    broader_search_results: int = 0
    source_counts: Dict[str, int] = field(default_factory=dict)
    skipped_sources: List[str] = field(default_factory=list)
    local_region_boost: bool = False
    local_papers_count: int = 0
    cache_hits: int = 0
    search_time_ms: int = 0
    errors: List[str] = field(default_factory=list)
    # primary index answered with nothing while other strategies found papers
    vector_index_empty: bool = False
    ingestion_queued: int = 0
    time_budget_exhausted: bool = False
    request_id: str = ""


@dataclass
class SearchResult:
    """Ranked, deduplicated papers plus diagnostics."""

    papers: List[CanonicalPaper] = field(default_factory=list)
    metadata: SearchMetadata = field(default_factory=SearchMetadata)

    def to_dict(self) -> dict:
        return asdict(self)
