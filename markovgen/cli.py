"""Command-line interface for training and generation."""

import argparse
import logging
from pathlib import Path

from markovgen.data.corpus import read_lines
from markovgen.models.memory import MemoryChain
from markovgen.models.sqlite_store import SqliteChain
from markovgen.utils.trainer import MultiFileTrainer


logger = logging.getLogger(__name__)


def setup_logging(level=logging.INFO):
    """Configure logging."""
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )


def train(args):
    """Train an in-memory chain from text files and save it as JSON."""
    chain = MemoryChain(order=args.order, tokenizer=args.tokenizer)
    if args.model.exists():
        chain.load(args.model)
    for path in args.files:
        logger.info(f"Processing file: {path}")
        chain.train_lines(read_lines(path))
    args.model.parent.mkdir(parents=True, exist_ok=True)
    chain.save(args.model)
    logger.info("Training complete!")


def train_dir(args):
    """Train a SQLite chain from a directory of files."""
    with MultiFileTrainer(
        args.db,
        order=args.order,
        pattern=args.pattern,
        status_path=args.status_file,
        workers=args.workers,
        parallel_threshold=args.parallel_threshold,
    ) as trainer:
        trainer.train_from_directory(
            args.input_dir,
            resumable=not args.no_resume,
            parallel=args.parallel,
        )


def generate(args):
    """Generate text from a saved chain."""
    if args.db is not None:
        chain = SqliteChain(args.db, order=args.order, seed=args.seed)
    else:
        chain = MemoryChain(order=args.order, seed=args.seed)
        chain.load(args.model)
    with chain:
        for _ in range(args.count):
            print(chain.generate(args.start, max_words=args.max_words))


def prune(args):
    """Remove rare edges from a SQLite chain."""
    with SqliteChain(args.db, order=args.order) as chain:
        removed = chain.prune(args.min_count)
        logger.info(f"{chain.edge_count()} edges left after removing {removed}")


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description='Train and sample n-gram Markov chains'
    )
    parser.add_argument('--order', type=int, default=2, help='Words per gram')
    parser.add_argument('--verbose', action='store_true')

    subparsers = parser.add_subparsers(dest='command', required=True)

    train_parser = subparsers.add_parser('train')
    train_parser.add_argument('files', type=Path, nargs='+')
    train_parser.add_argument('--model', type=Path, default=Path('chain.json'))
    train_parser.add_argument(
        '--tokenizer', choices=['basic', 'extended'], default='basic'
    )
    train_parser.set_defaults(func=train)

    dir_parser = subparsers.add_parser('train-dir')
    dir_parser.add_argument('input_dir', type=Path)
    dir_parser.add_argument('--db', type=Path, default=Path('chain.sqlite'))
    dir_parser.add_argument('--pattern', default='*.txt')
    dir_parser.add_argument('--status-file', type=Path)
    dir_parser.add_argument('--workers', type=int)
    dir_parser.add_argument('--parallel', action='store_true')
    dir_parser.add_argument('--no-resume', action='store_true')
    dir_parser.add_argument('--parallel-threshold', type=int, default=10_000)
    dir_parser.set_defaults(func=train_dir)

    generate_parser = subparsers.add_parser('generate')
    source = generate_parser.add_mutually_exclusive_group()
    source.add_argument('--model', type=Path, default=Path('chain.json'))
    source.add_argument('--db', type=Path)
    generate_parser.add_argument('--start', type=str)
    generate_parser.add_argument('--max-words', type=int, default=50)
    generate_parser.add_argument('--count', type=int, default=1)
    generate_parser.add_argument('--seed', type=int)
    generate_parser.set_defaults(func=generate)

    prune_parser = subparsers.add_parser('prune')
    prune_parser.add_argument('--db', type=Path, default=Path('chain.sqlite'))
    prune_parser.add_argument('--min-count', type=int, default=2)
    prune_parser.set_defaults(func=prune)

    args = parser.parse_args()
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)
    args.func(args)


if __name__ == '__main__':
    main()
