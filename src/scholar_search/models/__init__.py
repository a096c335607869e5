# Paper and search request/response models
from .paper import AcademicPaper, Author, CanonicalPaper, PaperWithAuthors, RawAuthor
from .search import SearchMetadata, SearchOptions, SearchResult

__all__ = [
    "AcademicPaper",
    "Author",
    "CanonicalPaper",
    "PaperWithAuthors",
    "RawAuthor",
    "SearchMetadata",
    "SearchOptions",
    "SearchResult",
]
