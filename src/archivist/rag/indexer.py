"""
Concurrent batch indexing with progress tracking.

One task per item fans out under a semaphore; progress is updated under a
lock so concurrent completions never lose an update and the reported
fraction never goes backwards.
"""

import asyncio
import inspect
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from enum import Enum
from typing import Generic, TypeVar

from ..observability.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[float], Awaitable[None] | None]


class IndexingStatus(Enum):
    """Status of indexing operations."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class IndexingProgress:
    """Progress tracking for indexing operations."""

    total_documents: int = 0
    processed_documents: int = 0
    failed_documents: int = 0
    status: IndexingStatus = IndexingStatus.PENDING
    start_time: float | None = None
    end_time: float | None = None
    current_document: str | None = None
    errors: list[str] = field(default_factory=list)

    @property
    def fraction(self) -> float:
        """Processed share of the batch, failures included, in [0, 1]."""
        if self.total_documents == 0:
            return 1.0 if self.status == IndexingStatus.COMPLETED else 0.0
        return self.processed_documents / self.total_documents

    @property
    def progress_percentage(self) -> float:
        return self.fraction * 100

    @property
    def succeeded_documents(self) -> int:
        return self.processed_documents - self.failed_documents

    @property
    def duration(self) -> float | None:
        """Get indexing duration in seconds."""
        if self.start_time is None:
            return None
        end = self.end_time or time.time()
        return end - self.start_time


class BatchIndexer(Generic[T]):
    """Runs an async worker over every item with bounded concurrency."""

    def __init__(self, max_concurrent: int = 5):
        self.max_concurrent = max_concurrent

    async def run(
        self,
        items: list[T],
        worker: Callable[[T], Awaitable[None]],
        progress_callback: ProgressCallback | None = None,
        describe: Callable[[T], str] = str,
    ) -> IndexingProgress:
        progress = IndexingProgress(
            total_documents=len(items), status=IndexingStatus.RUNNING, start_time=time.time()
        )
        semaphore = asyncio.Semaphore(self.max_concurrent)
        lock = asyncio.Lock()

        async def process(item: T) -> None:
            label = describe(item)
            async with semaphore:
                error: Exception | None = None
                try:
                    await worker(item)
                except Exception as e:
                    error = e
                    logger.warning(f"Skipping {label}: {e}", item=label)

            async with lock:
                progress.processed_documents += 1
                progress.current_document = label
                if error is not None:
                    progress.failed_documents += 1
                    progress.errors.append(f"{label}: {error}")
                if progress_callback is not None:
                    result = progress_callback(progress.fraction)
                    if inspect.isawaitable(result):
                        await result

        try:
            await asyncio.gather(*(process(item) for item in items))
        except asyncio.CancelledError:
            progress.status = IndexingStatus.CANCELLED
            progress.end_time = time.time()
            raise

        progress.status = IndexingStatus.COMPLETED
        progress.end_time = time.time()
        if not items and progress_callback is not None:
            result = progress_callback(1.0)
            if inspect.isawaitable(result):
                await result

        logger.info(
            f"Indexed {progress.succeeded_documents}/{progress.total_documents} documents "
            f"({progress.failed_documents} failed) in {progress.duration:.2f}s",
            failed=progress.failed_documents,
        )
        return progress
