"""Markov chain persisted as counted edges in a SQLite database."""

import logging
import os
import sqlite3
import threading
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple, Union

from markovgen.data.tokenizer import CASE_POLICIES, SentenceTokens, tokenize
from markovgen.errors import (
    ConfigurationError,
    StoreUnavailableError,
    WriteContentionError,
)
from markovgen.models.chain import (
    END_TOKEN,
    START_TOKEN,
    ChainConfig,
    MarkovChain,
    ngrams,
)
from markovgen.utils.sampling import uniform_index, weighted_choice


logger = logging.getLogger(__name__)

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS ngrams (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    gram TEXT,
    next TEXT,
    count INTEGER,
    UNIQUE(gram, next)
)
"""

UPSERT_SQL = (
    "INSERT INTO ngrams (gram, next, count) VALUES (?, ?, 1) "
    "ON CONFLICT(gram, next) DO UPDATE SET count = count + 1"
)

Edge = Tuple[str, str]


@dataclass
class StoreConfig(ChainConfig):
    """Configuration for the SQLite-backed chain."""
    cache_size: int = 1_000_000
    load_into_memory: bool = False
    busy_timeout: float = 30.0
    parallel_threshold: int = 10_000
    workers: Optional[int] = None
    case: str = 'fold'

    def __post_init__(self):
        super().__post_init__()
        if self.cache_size < 1:
            raise ConfigurationError("cache_size must be at least 1")
        if self.busy_timeout < 0:
            raise ConfigurationError("busy_timeout cannot be negative")
        if self.parallel_threshold < 1:
            raise ConfigurationError("parallel_threshold must be at least 1")
        if self.workers is None:
            self.workers = os.cpu_count() or 1
        if self.workers < 1:
            raise ConfigurationError("workers must be at least 1")
        if self.case not in CASE_POLICIES:
            raise ConfigurationError(
                f"Unknown case policy {self.case!r}, expected one of {CASE_POLICIES}"
            )


def sanitize_gram(gram: str) -> str:
    """Stored form of a gram: sentinels removed, whitespace collapsed."""
    return ' '.join(w for w in gram.split() if w not in (START_TOKEN, END_TOKEN))


def _is_contention(exc: sqlite3.OperationalError) -> bool:
    message = str(exc).lower()
    return 'locked' in message or 'busy' in message


class SqliteChain(MarkovChain):
    """N-gram chain stored as (gram, next, count) rows.

    Training text is split into sentences and every sentence is padded with
    `order` start sentinels and one terminator, so generation can begin from
    a canonical sentence start. All writes hold `write_lock`; pass the same
    lock to every handle that writes to one database file.
    """

    def __init__(
        self,
        db_path: Union[str, Path],
        order: int = 2,
        cache_size: int = 1_000_000,
        load_into_memory: bool = False,
        busy_timeout: float = 30.0,
        parallel_threshold: int = 10_000,
        workers: Optional[int] = None,
        write_lock: Optional[threading.Lock] = None,
        seed: Optional[int] = None,
        case: str = 'fold',
    ):
        super().__init__(StoreConfig(
            order=order,
            seed=seed,
            cache_size=cache_size,
            load_into_memory=load_into_memory,
            busy_timeout=busy_timeout,
            parallel_threshold=parallel_threshold,
            workers=workers,
            case=case,
        ))
        self.db_path = Path(db_path)
        self.write_lock = write_lock if write_lock is not None else threading.Lock()
        self._conn: Optional[sqlite3.Connection] = self._open()

    # -- connection handling -------------------------------------------------

    def _connect(self) -> sqlite3.Connection:
        try:
            conn = sqlite3.connect(str(self.db_path), timeout=self.config.busy_timeout)
            conn.execute(f"PRAGMA busy_timeout = {int(self.config.busy_timeout * 1000)}")
        except sqlite3.Error as exc:
            raise StoreUnavailableError(f"Cannot open store {self.db_path}: {exc}") from exc
        return conn

    def _open(self) -> sqlite3.Connection:
        conn = self._connect()
        try:
            with self._write_transaction(conn):
                conn.execute(f"PRAGMA cache_size = {self.config.cache_size}")
                conn.execute("PRAGMA journal_mode = WAL")
                conn.execute(CREATE_TABLE_SQL)
        except WriteContentionError:
            conn.close()
            raise
        except sqlite3.Error as exc:
            conn.close()
            raise StoreUnavailableError(f"Cannot open store {self.db_path}: {exc}") from exc

        if not self.config.load_into_memory:
            return conn

        memory = sqlite3.connect(':memory:')
        try:
            conn.backup(memory)
        finally:
            conn.close()
        memory.execute(f"PRAGMA cache_size = {self.config.cache_size}")
        logger.info(f"Loaded {self.db_path} into memory")
        return memory

    def _check_open(self) -> None:
        if self._conn is None:
            raise StoreUnavailableError(f"Store {self.db_path} has been closed.")

    @contextmanager
    def _write_transaction(self, conn: sqlite3.Connection):
        """Hold the write lock for one committed-or-rolled-back transaction."""
        try:
            with self.write_lock, conn:
                yield conn
        except sqlite3.OperationalError as exc:
            if _is_contention(exc):
                logger.warning(f"Write to {self.db_path} timed out waiting for a lock")
                raise WriteContentionError(
                    f"Store {self.db_path} stayed locked: {exc}"
                ) from exc
            raise

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    # -- training ------------------------------------------------------------

    def _extract(self, text: str) -> List[Edge]:
        """Sentence-bounded, sentinel-padded edges of one text."""
        sentences = list(SentenceTokens(text, case=self.config.case))
        if sum(len(s) for s in sentences) < self.order + 1:
            return []
        padding = [START_TOKEN] * self.order
        edges = []
        for sentence in sentences:
            for gram, next_word in ngrams(padding + sentence + [END_TOKEN], self.order):
                edges.append((sanitize_gram(gram), next_word))
        return edges

    def _write(self, conn: sqlite3.Connection, edges: List[Edge]) -> None:
        with self._write_transaction(conn):
            conn.executemany(UPSERT_SQL, edges)

    def upsert(self, gram: str, next_word: str) -> None:
        """Add one to the count of (gram, next_word), creating it if needed."""
        self._check_open()
        self._write(self._conn, [(sanitize_gram(gram), next_word)])

    def train(self, text: str) -> None:
        """Upsert all n-grams of text in one transaction.

        Text with fewer than order + 1 tokens writes nothing.
        """
        self._check_open()
        edges = self._extract(text)
        if edges:
            self._write(self._conn, edges)

    def train_lines(self, lines: Iterable[str]) -> None:
        """Train on many lines.

        Below `parallel_threshold` lines everything is committed in a single
        transaction on this handle. Otherwise lines are fanned out to a
        thread pool, each line on its own short-lived connection.
        """
        self._check_open()
        lines = list(lines)
        if len(lines) < self.config.parallel_threshold or self.config.load_into_memory:
            edges = [edge for line in lines for edge in self._extract(line)]
            if edges:
                self._write(self._conn, edges)
            return

        logger.info(f"Training {len(lines)} lines with {self.config.workers} workers")
        with ThreadPoolExecutor(max_workers=self.config.workers) as executor:
            for _ in executor.map(self._train_detached, lines):
                pass

    def _train_detached(self, line: str) -> None:
        edges = self._extract(line)
        if not edges:
            return
        conn = self._connect()
        try:
            self._write(conn, edges)
        finally:
            conn.close()

    def prune(self, min_count: int) -> int:
        """Delete every edge with count below min_count. Irreversible."""
        if min_count < 1:
            raise ConfigurationError("min_count must be at least 1")
        self._check_open()
        with self._write_transaction(self._conn) as conn:
            removed = conn.execute(
                "DELETE FROM ngrams WHERE count < ?", (min_count,)
            ).rowcount
        logger.info(f"Pruned {removed} edges below count {min_count}")
        return removed

    # -- queries -------------------------------------------------------------

    def edge_count(self) -> int:
        self._check_open()
        return self._conn.execute("SELECT COUNT(*) FROM ngrams").fetchone()[0]

    def gram_count(self) -> int:
        self._check_open()
        return self._conn.execute("SELECT COUNT(DISTINCT gram) FROM ngrams").fetchone()[0]

    def is_empty(self) -> bool:
        return self.edge_count() == 0

    def successors(self, gram: str) -> List[Tuple[str, int]]:
        """(next, count) pairs stored for gram, in insertion order."""
        self._check_open()
        rows = self._conn.execute(
            "SELECT next, count FROM ngrams WHERE gram = ? ORDER BY id",
            (sanitize_gram(gram),),
        )
        return [(next_word, count) for next_word, count in rows]

    def iter_edges(self) -> Iterator[Tuple[str, str, int]]:
        """Every stored (gram, next, count) row."""
        self._check_open()
        yield from self._conn.execute("SELECT gram, next, count FROM ngrams ORDER BY id")

    def sample_random_gram(self) -> Optional[str]:
        """A stored gram chosen uniformly among distinct grams."""
        total = self.gram_count()
        if total == 0:
            return None
        offset = uniform_index(total, self._generator)
        row = self._conn.execute(
            "SELECT DISTINCT gram FROM ngrams ORDER BY gram LIMIT 1 OFFSET ?",
            (offset,),
        ).fetchone()
        return row[0] if row else None

    # -- generation hooks ----------------------------------------------------

    def _seed_tokens(self, start: str) -> List[str]:
        return tokenize(start, case=self.config.case)

    def _start_tokens(self) -> List[str]:
        canonical = [START_TOKEN] * self.order
        if self.successors(' '.join(canonical)):
            return canonical
        gram = self.sample_random_gram()
        return gram.split() if gram else []

    def _next_token(self, gram: str) -> Optional[str]:
        successors = self.successors(gram)
        if not successors:
            return None
        return weighted_choice(successors, self._generator)
