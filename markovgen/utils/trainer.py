"""Training helpers for building a SQLite chain from many files."""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime
from pathlib import Path
from typing import List, Optional, Sequence, Union

from markovgen.data.corpus import list_files, read_lines
from markovgen.errors import ConfigurationError
from markovgen.models.sqlite_store import SqliteChain


logger = logging.getLogger(__name__)

STATUS_FILE_NAME = 'training_status'
COMPLETE_SUFFIX = 'Training complete.'


class Checkpoint:
    """Plain-text marker of the last input file whose edges are committed."""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    def load(self) -> Optional[str]:
        """Stored text, or None when there is no checkpoint."""
        if not self.path.is_file():
            return None
        text = self.path.read_text(encoding='utf-8').strip()
        return text or None

    def save(self, text: str) -> None:
        """Overwrite the checkpoint."""
        self.path.write_text(text, encoding='utf-8')

    def mark_complete(self) -> None:
        self.save(f"{datetime.now():%Y-%m-%d %H:%M:%S}\t{COMPLETE_SUFFIX}")

    def is_complete(self) -> bool:
        text = self.load()
        return text is not None and text.endswith(COMPLETE_SUFFIX)

    def clear(self) -> None:
        if self.path.exists():
            self.path.unlink()


class MultiFileTrainer:
    """Trains one SQLite chain from every matching file in a directory."""

    def __init__(
        self,
        db_path: Union[str, Path],
        order: int = 2,
        pattern: str = '*.txt',
        status_path: Optional[Union[str, Path]] = None,
        workers: Optional[int] = None,
        **store_options,
    ):
        """
        Args:
            db_path: SQLite file holding the chain, created if missing
            order: Number of words per gram
            pattern: Default glob pattern for input files
            status_path: Checkpoint file; defaults to `training_status`
                in the current working directory
            workers: Worker threads for parallel mode, default cpu count
            **store_options: Passed on to every SqliteChain handle
        """
        if store_options.get('load_into_memory'):
            raise ConfigurationError("Multi-file training needs a file-backed store")
        self.db_path = Path(db_path)
        self.order = order
        self.pattern = pattern
        self.store_options = store_options
        self.write_lock = threading.Lock()
        self.chain = SqliteChain(
            self.db_path,
            order=order,
            workers=workers,
            write_lock=self.write_lock,
            **store_options,
        )
        self.workers = self.chain.config.workers
        if status_path is None:
            status_path = Path.cwd() / STATUS_FILE_NAME
        self.checkpoint = Checkpoint(status_path)

    def train_from_directory(
        self,
        path: Union[str, Path],
        pattern: Optional[str] = None,
        resumable: bool = True,
        parallel: bool = False,
    ) -> List[Path]:
        """Train on every file in path matching pattern.

        Sequential mode records each finished file in the checkpoint and, when
        resumable, skips every file up to and including the recorded one.
        Parallel mode ignores the checkpoint.

        Returns:
            The files trained by this call
        """
        directory = Path(path)
        if not directory.is_dir():
            raise ConfigurationError(f"Not a directory: {directory}")
        files = list_files(directory, pattern or self.pattern)
        logger.info(f"Found {len(files)} files in {directory}")

        if parallel:
            self._train_parallel(files)
        else:
            files = self._train_sequential(files, resumable)
        self.checkpoint.mark_complete()
        logger.info("Training complete!")
        return files

    def _pending(self, files: Sequence[Path]) -> List[Path]:
        last = self.checkpoint.load()
        if last is None or self.checkpoint.is_complete():
            return list(files)
        for i, file in enumerate(files):
            if str(file.resolve()) == last:
                logger.info(f"Resuming after {file}, skipping {i + 1} files")
                return list(files[i + 1:])
        logger.warning(f"Checkpoint {last!r} matches no input file, starting over")
        return list(files)

    def _train_sequential(self, files: Sequence[Path], resumable: bool) -> List[Path]:
        pending = self._pending(files) if resumable else list(files)
        for file in pending:
            logger.info(f"Processing file: {file}")
            self.chain.train_lines(read_lines(file))
            self.checkpoint.save(str(file.resolve()))
        return pending

    def _train_parallel(self, files: Sequence[Path]) -> None:
        buckets = [list(files[i::self.workers]) for i in range(self.workers)]
        buckets = [bucket for bucket in buckets if bucket]
        logger.info(f"Training {len(files)} files with {len(buckets)} workers")
        with ThreadPoolExecutor(max_workers=len(buckets) or 1) as executor:
            futures = [executor.submit(self._train_bucket, bucket) for bucket in buckets]
        for future in futures:
            future.result()

    def _train_bucket(self, files: Sequence[Path]) -> None:
        with SqliteChain(
            self.db_path,
            order=self.order,
            workers=1,
            write_lock=self.write_lock,
            **self.store_options,
        ) as chain:
            for file in files:
                logger.info(f"Processing file: {file}")
                chain.train_lines(read_lines(file))

    def close(self) -> None:
        self.chain.close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
