"""Tokenizers for turning raw text into word tokens."""

import re
import sys
import unicodedata
from typing import Callable, Dict, Iterator, List

from markovgen.errors import ConfigurationError


CASE_POLICIES = ('fold', 'preserve_links', 'preserve')


def _mark_class() -> str:
    """Character-class body covering every combining mark (category M*)."""
    ranges = []
    start = None
    for cp in range(sys.maxunicode + 2):
        is_mark = cp <= sys.maxunicode and unicodedata.category(chr(cp)).startswith('M')
        if is_mark and start is None:
            start = cp
        elif not is_mark and start is not None:
            ranges.append(f'\\U{start:08x}-\\U{cp - 1:08x}')
            start = None
    return ''.join(ranges)


_MARKS = _mark_class()
_LETTER = rf'(?:[^\W\d_]|[{_MARKS}])'
_WORD_CHAR = rf'[\w{_MARKS}]'

_EXTENDED_PATTERN = re.compile(
    rf"""
    (?P<email>[a-z0-9._%+-]+@[a-z0-9-]+(?:\.[a-z0-9-]+)*\.[a-z]{{2,}})
  | (?P<url>(?:https?://|www\.)[^\s<>"']*[^\s<>"'.,;:!?)\]])
  | (?P<date>\d{{4}}-\d{{2}}-\d{{2}})
  | (?P<time>\d{{1,2}}:\d{{2}}(?::\d{{2}})?)
  | (?P<decimal>\d+\.\d+)
  | (?P<number>\d+)
  | (?P<contraction>{_LETTER}+(?:'{_LETTER}+)+)
  | (?P<compound>{_WORD_CHAR}+(?:-{_WORD_CHAR}+)+)
  | (?P<word>[\w'{_MARKS}]+)
    """,
    re.VERBOSE | re.IGNORECASE,
)

_SENTENCE_BOUNDARY = re.compile(r'(?<=[.!?])\s+|[\r\n]+')

_LINK_GROUPS = ('email', 'url')


def clean_and_split(text: str) -> List[str]:
    """Split text into runs of letters, digits and underscores.

    Every other character is a delimiter and is dropped. Case is kept.
    """
    words = []
    start = -1
    for i, ch in enumerate(text):
        if ch.isalnum() or ch == '_':
            if start == -1:
                start = i
        elif start != -1:
            words.append(text[start:i])
            start = -1
    if start != -1:
        words.append(text[start:])
    return words


def tokenize(text: str, case: str = 'fold') -> List[str]:
    """Semantic tokenizer recognising emails, URLs, dates, times and numbers.

    Args:
        text: Raw input text
        case: 'fold' lower-cases the text before matching, 'preserve_links'
            matches the original text and lower-cases everything except
            emails and URLs, 'preserve' keeps case untouched
    """
    if case not in CASE_POLICIES:
        raise ConfigurationError(
            f"Unknown case policy {case!r}, expected one of {CASE_POLICIES}"
        )
    if case == 'fold':
        text = text.lower()

    tokens = []
    for match in _EXTENDED_PATTERN.finditer(text):
        token = match.group(0)
        kind = match.lastgroup
        if kind == 'word':
            token = token.strip("'")
            if not token:
                continue
        if case == 'preserve_links' and kind not in _LINK_GROUPS:
            token = token.lower()
        tokens.append(token)
    return tokens


def split_sentences(text: str) -> List[str]:
    """Split text on terminal punctuation and line breaks."""
    return [s.strip() for s in _SENTENCE_BOUNDARY.split(text) if s.strip()]


class SentenceTokens:
    """Per-sentence token groups of a text.

    Iteration is lazy and can be repeated: each call to iter() tokenizes the
    text again from the first sentence. Sentences without tokens are skipped.
    """

    def __init__(self, text: str, case: str = 'fold'):
        if case not in CASE_POLICIES:
            raise ConfigurationError(
                f"Unknown case policy {case!r}, expected one of {CASE_POLICIES}"
            )
        self.text = text
        self.case = case

    def __iter__(self) -> Iterator[List[str]]:
        for sentence in split_sentences(self.text):
            tokens = tokenize(sentence, case=self.case)
            if tokens:
                yield tokens

    def flatten(self) -> List[str]:
        """All tokens of all sentences in order."""
        return [token for sentence in self for token in sentence]


_TOKENIZERS: Dict[str, Callable[[str], List[str]]] = {
    'basic': clean_and_split,
    'extended': tokenize,
}


def get_tokenizer(name: str) -> Callable[[str], List[str]]:
    """Look up a tokenizer function by name ('basic' or 'extended')."""
    try:
        return _TOKENIZERS[name]
    except KeyError:
        raise ConfigurationError(
            f"Unknown tokenizer {name!r}, expected one of {sorted(_TOKENIZERS)}"
        ) from None
