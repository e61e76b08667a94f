"""Search term extraction."""

from .tokenizer import tokenize, index_terms, STOP_WORDS

__all__ = ["tokenize", "index_terms", "STOP_WORDS"]
