"""TextIndex - in-memory inverted index tuned for Persian text.

Documents are tokenized into Unicode word runs after normalization:
- Arabic Yeh/Kaf (ي/ك) are folded to their Persian forms (ی/ک)
- diacritics and tatweel are removed
- zero-width non-joiners are dropped, so "می‌روم" indexes as "میروم"
- everything is casefolded

A query matches a document when every query term is a prefix of at least
one of the document's tokens. A term matching a token exactly scores more
than a prefix-only match; documents with equal scores keep the order in
which they were added.
"""

import re
from bisect import bisect_left
from collections.abc import Iterable

ZWNJ = "\u200c"

_CHAR_MAP = str.maketrans(
    {
        "ي": "ی",  # Arabic Yeh -> Farsi Yeh
        "ى": "ی",  # Alef Maksura -> Farsi Yeh
        "ك": "ک",  # Arabic Kaf -> Keheh
        ZWNJ: None,
        "\u0640": None,  # tatweel
    }
)
_DIACRITICS = re.compile(r"[\u064b-\u065f\u0670]")
_TOKEN = re.compile(r"\w+")

EXACT_WEIGHT = 2
PREFIX_WEIGHT = 1


def normalize(text: str) -> str:
    """Fold a string to the form used for indexing and querying."""
    return _DIACRITICS.sub("", text.translate(_CHAR_MAP)).casefold()


def tokenize(text: str) -> list[str]:
    """Normalized word tokens of ``text``."""
    return _TOKEN.findall(normalize(text))


class TextIndex:
    """Inverted index from normalized tokens to document ids.

    Usage:
        ```python
        index = TextIndex()
        index.add(2, "حافظ شیرازی")
        index.search("حاف")  # [2]
        ```
    """

    def __init__(self) -> None:
        self._order: dict[int, int] = {}
        self._tokens: dict[int, set[str]] = {}
        self._postings: dict[str, set[int]] = {}
        self._vocabulary: list[str] | None = None
        self._next = 0

    def __len__(self) -> int:
        return len(self._order)

    def __contains__(self, doc_id: int) -> bool:
        return doc_id in self._order

    def add(self, doc_id: int, text: str) -> None:
        """Index ``text`` under ``doc_id``, replacing any previous text."""
        if doc_id in self._order:
            self.remove(doc_id)
        tokens = set(tokenize(text))
        self._order[doc_id] = self._next
        self._next += 1
        self._tokens[doc_id] = tokens
        for token in tokens:
            self._postings.setdefault(token, set()).add(doc_id)
        self._vocabulary = None

    def add_many(self, documents: Iterable[tuple[int, str]]) -> None:
        for doc_id, text in documents:
            self.add(doc_id, text)

    def remove(self, doc_id: int) -> None:
        self._order.pop(doc_id, None)
        for token in self._tokens.pop(doc_id, set()):
            postings = self._postings.get(token)
            if postings is None:
                continue
            postings.discard(doc_id)
            if not postings:
                del self._postings[token]
        self._vocabulary = None

    def clear(self) -> None:
        self._order.clear()
        self._tokens.clear()
        self._postings.clear()
        self._vocabulary = None
        self._next = 0

    def search(self, query: str, limit: int | None = None) -> list[int]:
        """Ids of documents matching every term of ``query``, best first.

        Args:
            query: Free text; an empty or token-less query matches nothing
            limit: Maximum number of ids to return
        """
        terms = list(dict.fromkeys(tokenize(query)))
        if not terms:
            return []

        scores: dict[int, int] | None = None
        for term in terms:
            term_scores = self._match_term(term)
            if scores is None:
                scores = term_scores
            else:
                scores = {
                    doc_id: score + term_scores[doc_id]
                    for doc_id, score in scores.items()
                    if doc_id in term_scores
                }
            if not scores:
                return []

        ranked = sorted(scores, key=lambda d: (-scores[d], self._order[d]))
        return ranked if limit is None else ranked[:limit]

    def _match_term(self, term: str) -> dict[int, int]:
        vocabulary = self._sorted_vocabulary()
        matched: dict[int, int] = {}
        position = bisect_left(vocabulary, term)
        while position < len(vocabulary) and vocabulary[position].startswith(term):
            token = vocabulary[position]
            weight = EXACT_WEIGHT if token == term else PREFIX_WEIGHT
            for doc_id in self._postings[token]:
                if weight > matched.get(doc_id, 0):
                    matched[doc_id] = weight
            position += 1
        return matched

    def _sorted_vocabulary(self) -> list[str]:
        if self._vocabulary is None:
            self._vocabulary = sorted(self._postings)
        return self._vocabulary
