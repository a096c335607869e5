"""Query normalisation, tokenization and stemming for fallback searches."""

import re
from typing import List

from nltk.stem.porter import PorterStemmer
from nltk.tokenize import RegexpTokenizer

_tokenizer = RegexpTokenizer(r"\w+")
_stemmer = PorterStemmer()

_CAMEL_BOUNDARY = re.compile(r"([a-z])([A-Z])")
_SEPARATORS = re.compile(r"[-_]")

# Three/four letter function words that survive the length filter
_SHORT_STOPWORDS = frozenset({
    "the", "and", "for", "with", "from", "via", "are", "its", "into",
    "that", "this", "than", "over", "upon", "using", "not", "but",
})

MAX_TERM_PAIRS = 4


def normalize_query(text: str) -> str:
    """Lower-case, trim and collapse whitespace."""
    return " ".join(text.lower().split())


def tokenize_query(text: str) -> List[str]:
    """
    Turn a free-text query into stemmed search terms.

    camelCase and hyphenated/underscored words are split first, then tokens
    shorter than three characters, stopwords and tokens not starting with a
    letter are dropped. Remaining tokens are Porter-stemmed; duplicates are
    removed keeping first occurrence order.

    Example:
        >>> tokenize_query("Graph-based deepLearning networks")
        ['graph', 'base', 'deep', 'learn', 'network']
    """
    preprocessed = _CAMEL_BOUNDARY.sub(r"\1 \2", text)
    preprocessed = _SEPARATORS.sub(" ", preprocessed).lower()

    terms: List[str] = []
    for token in _tokenizer.tokenize(preprocessed):
        if len(token) <= 2 or not token[0].isalpha() or token in _SHORT_STOPWORDS:
            continue
        stem = _stemmer.stem(token)
        if stem not in terms:
            terms.append(stem)
    return terms


def term_combinations(terms: List[str], max_pairs: int = MAX_TERM_PAIRS) -> List[str]:
    """
    Build broader-search sub-queries from key terms.

    Produces up to ``max_pairs`` two-term combinations in term order; when
    fewer than three combinations exist the top single term is appended.
    Fewer than two terms yields nothing.
    """
    if len(terms) < 2:
        return []

    combinations: List[str] = []
    for i in range(len(terms)):
        for j in range(i + 1, len(terms)):
            if len(combinations) >= max_pairs:
                break
            combinations.append(f"{terms[i]} {terms[j]}")
        if len(combinations) >= max_pairs:
            break

    if len(combinations) < 3:
        combinations.append(terms[0])

    return combinations
