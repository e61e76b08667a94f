"""Search term extraction for article indexing."""

import re
from typing import Optional, Set

# Common words that take up index space but add little search value
STOP_WORDS = frozenset([
    'a', 'about', 'above', 'after', 'again', 'against', 'all', 'am', 'an', 'and', 'any', 'are', 'as', 'at',
    'be', 'because', 'been', 'before', 'being', 'below', 'between', 'both', 'but', 'by',
    'can', 'did', 'do', 'does', 'doing', 'don', 'down', 'during',
    'each', 'few', 'for', 'from', 'further',
    'had', 'has', 'have', 'having', 'he', 'her', 'here', 'hers', 'herself', 'him', 'himself', 'his', 'how',
    'i', 'if', 'in', 'into', 'is', 'it', 'its', 'itself',
    'just', 'me', 'more', 'most', 'my', 'myself',
    'no', 'nor', 'not', 'now',
    'of', 'off', 'on', 'once', 'only', 'or', 'other', 'our', 'ours', 'ourselves', 'out', 'over', 'own',
    's', 'same', 'she', 'should', 'so', 'some', 'such',
    't', 'than', 'that', 'the', 'their', 'theirs', 'them', 'themselves', 'then', 'there', 'these', 'they',
    'this', 'those', 'through', 'to', 'too',
    'under', 'until', 'up', 'very',
    'was', 'we', 'were', 'what', 'when', 'where', 'which', 'while', 'who', 'whom', 'why', 'will', 'with',
    'you', 'your', 'yours', 'yourself', 'yourselves',
])

_TAG_RE = re.compile(r"<[^>]*>")
# Anything that is not a Unicode letter or digit
_SEPARATOR_RE = re.compile(r"[\W_]+")


def tokenize(text: Optional[str]) -> Set[str]:
    """Break text into a set of unique, lowercase index terms.

    HTML tags and punctuation are dropped, single characters and stop
    words are filtered out.
    """
    if not text:
        return set()

    clean = text.lower()
    clean = _TAG_RE.sub(" ", clean)
    clean = _SEPARATOR_RE.sub(" ", clean)

    return {
        word for word in clean.split()
        if len(word) > 1 and word not in STOP_WORDS
    }


def index_terms(title: Optional[str], snippet: Optional[str], content: Optional[str]) -> Set[str]:
    """Terms stored on an article: title, snippet and body combined."""
    return tokenize(f"{title or ''} {snippet or ''} {content or ''}")
