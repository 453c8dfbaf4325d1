"""Markov chain kept entirely in a Python dictionary."""

import json
import logging
from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Union

from markovgen.data.tokenizer import get_tokenizer
from markovgen.errors import ConfigurationError, StoreUnavailableError
from markovgen.models.chain import END_TOKEN, ChainConfig, MarkovChain, ngrams
from markovgen.utils.sampling import uniform_choice


logger = logging.getLogger(__name__)


@dataclass
class MemoryChainConfig(ChainConfig):
    """Configuration for the in-memory chain."""
    capacity: int = 4_000_000
    tokenizer: str = 'basic'

    def __post_init__(self):
        super().__post_init__()
        if self.capacity < 1:
            raise ConfigurationError("Chain capacity must be at least 1.")
        # fail on unknown names here rather than on first train()
        get_tokenizer(self.tokenizer)


class MemoryChain(MarkovChain):
    """N-gram chain mapping each gram to a flat list of successors.

    A successor seen three times is stored three times, so a uniform pick
    from the list is already frequency weighted.
    """

    def __init__(
        self,
        order: int = 2,
        capacity: int = 4_000_000,
        seed: Optional[int] = None,
        tokenizer: str = 'basic',
    ):
        super().__init__(MemoryChainConfig(
            order=order,
            seed=seed,
            capacity=capacity,
            tokenizer=tokenizer,
        ))
        self._tokenize = get_tokenizer(self.config.tokenizer)
        self._chain: Optional[Dict[str, List[str]]] = {}
        self._capacity_logged = False

    def train(self, text: str) -> None:
        """Add every n-gram of text, closing it with the terminator."""
        self._check_open()
        words = self._tokenize(text)
        words.append(END_TOKEN)
        for gram, next_word in ngrams(words, self.order):
            self.add(gram, next_word)

    def add(self, gram: str, next_word: str) -> None:
        """Record one occurrence of next_word after gram."""
        self._check_open()
        successors = self._chain.get(gram)
        if successors is None:
            successors = self._chain[gram] = []
            if len(self._chain) > self.config.capacity and not self._capacity_logged:
                logger.warning(
                    f"Chain grew past its configured capacity of "
                    f"{self.config.capacity} grams"
                )
                self._capacity_logged = True
        successors.append(next_word)

    def lookup(self, gram: str) -> List[str]:
        """Raw successor multiset for gram; empty if unknown."""
        self._check_open()
        return list(self._chain.get(gram, ()))

    def is_empty(self) -> bool:
        self._check_open()
        return not self._chain

    def prune(self, min_count: int) -> int:
        """Drop successors seen fewer than min_count times under a gram.

        Grams left without successors are removed. Returns the number of
        distinct (gram, next) pairs deleted.
        """
        if min_count < 1:
            raise ConfigurationError("min_count must be at least 1")
        self._check_open()
        removed = 0
        for gram in list(self._chain):
            counts = Counter(self._chain[gram])
            rare = {word for word, count in counts.items() if count < min_count}
            if not rare:
                continue
            removed += len(rare)
            kept = [word for word in self._chain[gram] if word not in rare]
            if kept:
                self._chain[gram] = kept
            else:
                del self._chain[gram]
        logger.info(f"Pruned {removed} edges below count {min_count}")
        return removed

    def save(self, path: Union[str, Path]) -> None:
        """Write the chain as a JSON map of gram -> successor list."""
        self._check_open()
        with open(path, 'w', encoding='utf-8') as f:
            json.dump(self._chain, f, ensure_ascii=False)
        logger.info(f"Saved chain with {len(self._chain)} grams to {path}")

    def load(self, path: Union[str, Path]) -> None:
        """Replace the chain with the contents of a saved JSON file.

        The current chain is left untouched if the file is missing or
        malformed.
        """
        self._check_open()
        if not Path(path).is_file():
            raise FileNotFoundError(f"File not found: {path}")
        with open(path, 'r', encoding='utf-8') as f:
            data = json.load(f)
        if not isinstance(data, dict) or not all(
            isinstance(v, list) and all(isinstance(w, str) for w in v)
            for v in data.values()
        ):
            raise ValueError(f"{path} does not contain a gram -> successor list map")
        self._chain = {gram: successors for gram, successors in data.items() if successors}
        logger.info(f"Loaded chain with {len(self._chain)} grams from {path}")

    def close(self) -> None:
        if self._chain is not None:
            self._chain.clear()
        self._chain = None

    def _check_open(self) -> None:
        if self._chain is None:
            raise StoreUnavailableError("The Markov chain has been closed.")

    def _seed_tokens(self, start: str) -> List[str]:
        return self._tokenize(start)

    def _start_tokens(self) -> List[str]:
        return uniform_choice(list(self._chain), self._generator).split(' ')

    def _next_token(self, gram: str) -> Optional[str]:
        successors = self._chain.get(gram)
        if not successors:
            return None
        return uniform_choice(successors, self._generator)

    def __len__(self) -> int:
        self._check_open()
        return len(self._chain)

    def __contains__(self, gram: str) -> bool:
        self._check_open()
        return gram in self._chain
