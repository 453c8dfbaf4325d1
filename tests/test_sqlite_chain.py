"""
Tests for the SQLite counted-edge chain.
"""

import sqlite3
from collections import Counter

import pytest

from markovgen.errors import (
    ConfigurationError,
    EmptyChainError,
    StoreUnavailableError,
    WriteContentionError,
)
from markovgen.models.chain import END_TOKEN, START_TOKEN
from markovgen.models.sqlite_store import SqliteChain, sanitize_gram


PARAGRAPH = (
    "Markov chains are mathematical systems that hop from one state to another. "
    "They are used in a variety of fields, from physics to finance, and are "
    "especially popular in text generation. By analyzing the probability of word "
    "sequences, Markov chains can generate new sentences that resemble the "
    "original input."
)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "chain.sqlite"


def _edges(chain):
    return {(gram, next_word): count for gram, next_word, count in chain.iter_edges()}


class TestOpen:
    """Store creation and configuration."""

    def test_creates_database_file(self, db_path):
        assert not db_path.exists()
        with SqliteChain(db_path, order=2):
            assert db_path.exists()

    def test_schema(self, db_path):
        SqliteChain(db_path, order=2).close()
        conn = sqlite3.connect(db_path)
        columns = [row[1] for row in conn.execute("PRAGMA table_info(ngrams)")]
        journal = conn.execute("PRAGMA journal_mode").fetchone()[0]
        conn.close()
        assert columns == ["id", "gram", "next", "count"]
        assert journal.lower() == "wal"

    def test_invalid_order_creates_nothing(self, db_path):
        with pytest.raises(ConfigurationError):
            SqliteChain(db_path, order=0)
        assert not db_path.exists()

    @pytest.mark.parametrize("options", [
        {"cache_size": 0},
        {"parallel_threshold": 0},
        {"workers": 0},
        {"busy_timeout": -1},
        {"case": "shout"},
    ])
    def test_invalid_options(self, db_path, options):
        with pytest.raises(ConfigurationError):
            SqliteChain(db_path, order=2, **options)
        assert not db_path.exists()

    def test_unopenable_path(self, tmp_path):
        with pytest.raises(StoreUnavailableError):
            SqliteChain(tmp_path / "missing" / "chain.sqlite", order=2)

    def test_locked_store_at_open_closes_connection(self, db_path, monkeypatch):
        blocker = sqlite3.connect(db_path, isolation_level=None)
        blocker.execute("BEGIN EXCLUSIVE")
        opened = []
        connect = sqlite3.connect

        def recording_connect(*args, **kwargs):
            conn = connect(*args, **kwargs)
            opened.append(conn)
            return conn

        monkeypatch.setattr(sqlite3, "connect", recording_connect)
        try:
            with pytest.raises(WriteContentionError):
                SqliteChain(db_path, order=2, busy_timeout=0.1)
        finally:
            blocker.execute("ROLLBACK")
            blocker.close()
        assert len(opened) == 1
        with pytest.raises(sqlite3.ProgrammingError):
            opened[0].execute("SELECT 1")

    def test_reopen_reuses_table(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train("alpha beta gamma delta")
            count = chain.edge_count()
        with SqliteChain(db_path, order=2) as chain:
            assert chain.edge_count() == count
            assert chain.successors("alpha beta") == [("gamma", 1)]


class TestTraining:
    """Upserts, sentence handling and sanitization."""

    def test_scenario_edges(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train("alpha beta gamma delta")
            assert chain.successors("alpha beta") == [("gamma", 1)]
            assert chain.successors("beta gamma") == [("delta", 1)]
            assert chain.successors("gamma delta") == [(END_TOKEN, 1)]

    def test_start_padding_is_sanitized(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train("alpha beta gamma")
            grams = {gram for gram, _, _ in chain.iter_edges()}
            assert all(START_TOKEN not in gram and END_TOKEN not in gram for gram in grams)
            assert chain.successors(f"{START_TOKEN} {START_TOKEN}") == [("alpha", 1)]
            assert chain.successors(f"{START_TOKEN} alpha") == [("beta", 1)]

    def test_sanitize_gram(self):
        assert sanitize_gram(f" {START_TOKEN}  alpha \t beta {END_TOKEN} ") == "alpha beta"
        assert sanitize_gram(f"{START_TOKEN} {START_TOKEN}") == ""

    def test_too_few_tokens_commits_nothing(self, db_path):
        with SqliteChain(db_path, order=3) as chain:
            chain.train("short words rock")
            assert chain.edge_count() == 0
            with pytest.raises(EmptyChainError):
                chain.generate()

    def test_too_few_tokens_with_existing_edges(self, db_path):
        with SqliteChain(db_path, order=3) as chain:
            chain.train("one two three four five")
            before = _edges(chain)
            chain.train("short words rock")
            assert _edges(chain) == before
            assert chain.generate(max_words=10)

    def test_sentences_do_not_bleed(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train("Red fish swims. Blue bird flies.")
            assert chain.successors("fish swims") == [(END_TOKEN, 1)]
            assert chain.successors(f"{START_TOKEN} {START_TOKEN}") == [
                ("red", 1), ("blue", 1),
            ]

    def test_training_twice_doubles_counts(self, tmp_path):
        with SqliteChain(tmp_path / "once.sqlite", order=2) as once, \
                SqliteChain(tmp_path / "twice.sqlite", order=2) as twice:
            once.train(PARAGRAPH)
            twice.train(PARAGRAPH)
            twice.train(PARAGRAPH)
            single = _edges(once)
            assert _edges(twice) == {edge: 2 * n for edge, n in single.items()}

    def test_upsert(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.upsert("a  b", "c")
            chain.upsert("a b", "c")
            chain.upsert("a b", "d")
            assert chain.successors("a b") == [("c", 2), ("d", 1)]
            assert chain.edge_count() == 2
            assert chain.gram_count() == 1

    def test_parallel_lines_match_sequential(self, tmp_path):
        lines = [PARAGRAPH, "the cat sat on the mat", "the dog sat on the cat"] * 5
        with SqliteChain(tmp_path / "seq.sqlite", order=2) as sequential, \
                SqliteChain(tmp_path / "par.sqlite", order=2,
                            parallel_threshold=1, workers=4) as parallel:
            sequential.train_lines(lines)
            parallel.train_lines(lines)
            assert _edges(parallel) == _edges(sequential)

    def test_failed_write_rolls_back(self, db_path):
        with SqliteChain(db_path, order=2, busy_timeout=0.1) as chain:
            chain.train("alpha beta gamma")
            before = _edges(chain)
            blocker = sqlite3.connect(db_path, isolation_level=None)
            blocker.execute("BEGIN IMMEDIATE")
            try:
                with pytest.raises(WriteContentionError):
                    chain.train("delta epsilon zeta eta")
            finally:
                blocker.execute("ROLLBACK")
                blocker.close()
            assert _edges(chain) == before
            chain.train("delta epsilon zeta eta")
            assert chain.successors("delta epsilon") == [("zeta", 1)]


class TestPrune:
    """Removing rare edges."""

    def test_prune_keeps_frequent_edges(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train("alpha beta gamma")
            chain.train("alpha beta gamma")
            chain.train("delta epsilon zeta")
            before = _edges(chain)

            removed = chain.prune(min_count=2)

            after = _edges(chain)
            assert removed == sum(1 for n in before.values() if n < 2)
            assert all(n >= 2 for n in after.values())
            assert after == {edge: n for edge, n in before.items() if n >= 2}
            assert ("alpha beta", "gamma") in after
            assert not any(gram.startswith("delta") for gram, _ in after)

    def test_prune_rejects_zero(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            with pytest.raises(ConfigurationError):
                chain.prune(0)


class TestGeneration:
    """Walks over stored edges."""

    def test_canonical_start(self, db_path):
        with SqliteChain(db_path, order=2, seed=0) as chain:
            chain.train("alpha beta gamma delta")
            assert chain.generate() == "alpha beta gamma delta"

    def test_start_gram(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train("alpha beta gamma delta")
            output = chain.generate("alpha beta", max_words=4)
            assert output.startswith("alpha beta")
            assert len(output.split()) <= 4

    def test_max_words_equal_to_order_returns_seed(self, db_path):
        with SqliteChain(db_path, order=3) as chain:
            chain.train(PARAGRAPH)
            assert chain.generate("markov chains are", max_words=3) == "markov chains are"

    def test_start_follows_case_policy(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train("Alpha beta gamma delta")
            assert chain.generate("Alpha Beta", max_words=10) == "alpha beta gamma delta"
        with SqliteChain(db_path, order=2, case="preserve") as chain:
            assert chain.generate("Alpha beta", max_words=10) == "Alpha beta"

    def test_max_words_below_order_rejected(self, db_path):
        with SqliteChain(db_path, order=3) as chain:
            chain.train(PARAGRAPH)
            with pytest.raises(ConfigurationError):
                chain.generate("markov chains are", max_words=2)

    def test_structural_properties(self, db_path):
        with SqliteChain(db_path, order=2, seed=11) as chain:
            chain.train(PARAGRAPH)
            for _ in range(50):
                words = chain.generate(max_words=30).split()
                assert len(words) <= 30
                assert END_TOKEN not in words
                assert START_TOKEN not in words

    def test_paragraph_eventually_covers_words(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train(PARAGRAPH)
            seen = set()
            for _ in range(300):
                seen.update(chain.generate(max_words=30).split())
            assert {"markov", "chains", "generate"} <= seen

    def test_random_gram_fallback(self, db_path):
        with SqliteChain(db_path, order=2, seed=5) as chain:
            chain.upsert("alpha beta", "gamma")
            assert chain.successors(f"{START_TOKEN} {START_TOKEN}") == []
            assert chain.sample_random_gram() == "alpha beta"
            assert chain.generate(max_words=5) == "alpha beta gamma"

    def test_sample_random_gram_empty(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            assert chain.sample_random_gram() is None

    def test_weighted_choice_prefers_frequent_edges(self, db_path):
        with SqliteChain(db_path, order=1, seed=3) as chain:
            for _ in range(9):
                chain.upsert("go", "left")
            chain.upsert("go", "right")
            picks = Counter(chain.generate("go", max_words=2).split()[1] for _ in range(500))
            assert picks["left"] > picks["right"]

    def test_load_into_memory(self, db_path):
        with SqliteChain(db_path, order=2) as chain:
            chain.train(PARAGRAPH)
            count = chain.edge_count()
        with SqliteChain(db_path, order=2, load_into_memory=True) as chain:
            assert chain.edge_count() == count
            assert chain.generate(max_words=10)


class TestClose:
    """Behaviour after close."""

    def test_generate_after_close(self, db_path):
        chain = SqliteChain(db_path, order=2)
        chain.train("alpha beta gamma")
        chain.close()
        with pytest.raises(StoreUnavailableError):
            chain.generate()
        with pytest.raises(StoreUnavailableError):
            chain.train("more words here")
        with pytest.raises(StoreUnavailableError):
            chain.edge_count()

    def test_close_is_idempotent(self, db_path):
        chain = SqliteChain(db_path, order=2)
        chain.close()
        chain.close()
