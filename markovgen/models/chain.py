"""Common interface and generation walk for n-gram Markov chains."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence, Tuple

from markovgen.errors import ConfigurationError, EmptyChainError
from markovgen.utils.sampling import make_generator


START_TOKEN = '<START>'
END_TOKEN = '<END>'


@dataclass
class ChainConfig:
    """Settings shared by every chain backend."""
    order: int = 2
    seed: Optional[int] = None

    def __post_init__(self):
        if self.order < 1:
            raise ConfigurationError("Order must be at least 1.")


def ngrams(tokens: Sequence[str], order: int) -> Iterator[Tuple[str, str]]:
    """Yield (gram, next) for every window of order tokens plus a successor."""
    for i in range(len(tokens) - order):
        yield ' '.join(tokens[i:i + order]), tokens[i + order]


class MarkovChain(ABC):
    """An order-k word chain that can be trained and sampled.

    Subclasses decide where edges live; the random walk is shared.
    """

    def __init__(self, config: ChainConfig):
        self.config = config
        self.order = config.order
        self._generator = make_generator(config.seed)

    @abstractmethod
    def train(self, text: str) -> None:
        """Add the n-grams of one unit of text."""

    def train_lines(self, lines: Iterable[str]) -> None:
        """Train on many lines of text."""
        for line in lines:
            self.train(line)

    @abstractmethod
    def is_empty(self) -> bool:
        """True when the chain holds no edges."""

    @abstractmethod
    def close(self) -> None:
        """Release the chain; later calls raise StoreUnavailableError."""

    @abstractmethod
    def _check_open(self) -> None:
        ...

    @abstractmethod
    def _start_tokens(self) -> List[str]:
        """Tokens to seed a walk when the caller gives no start."""

    @abstractmethod
    def _next_token(self, gram: str) -> Optional[str]:
        """Sample a successor of gram, or None when it has none."""

    def _seed_tokens(self, start: str) -> List[str]:
        """Split a caller's start text the way training text is split."""
        return start.split()

    def generate(self, start: Optional[str] = None, max_words: int = 100) -> str:
        """Random walk over the chain.

        Args:
            start: Optional seed text; its last `order` words form the first key
                and at most its last `max_words` words are returned
            max_words: Upper bound on the number of words returned, at least
                the chain order

        Returns:
            Generated words joined by single spaces
        """
        if max_words < self.order:
            raise ConfigurationError(
                f"max_words must be at least the chain order ({self.order})"
            )
        self._check_open()
        if self.is_empty():
            raise EmptyChainError("The Markov chain is empty. Train it first.")

        result = self._seed_tokens(start) if start is not None else []
        if result:
            result = result[-max_words:]
        else:
            result = self._start_tokens()

        while len(result) < max_words:
            gram = ' '.join(result[-self.order:])
            next_token = self._next_token(gram)
            if next_token is None or next_token == END_TOKEN:
                break
            result.append(next_token)

        skip = 0
        while skip < len(result) and result[skip] == START_TOKEN:
            skip += 1
        return ' '.join(result[skip:])

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
