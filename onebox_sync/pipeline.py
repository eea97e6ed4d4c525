"""Processing pipeline: Persist → Classify → Annotate → Notify."""

from __future__ import annotations

import asyncio

import structlog

from .classifier import ClassifierClient
from .config import PipelineConfig
from .exceptions import ClassificationError, StoreError
from .models import DEFAULT_LABEL, TRIGGER_LABEL, ClassificationLabel, EmailRecord, PipelineResult
from .notifier import NotificationFanout
from .store import RecordStore

logger = structlog.get_logger()


def _log_task_failure(task: asyncio.Task[PipelineResult]) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        logger.error(
            "pipeline_task_failed",
            task=task.get_name(),
            error=str(exc),
            exc_info=(type(exc), exc, exc.__traceback__),
        )


class ProcessingPipeline:
    """Runs the four stages per record, strictly in order.

    Records dispatched from the same batch run concurrently, bounded by
    ``max_concurrency``.  Only a Persist failure aborts a record; every
    later stage degrades and the run continues.
    """

    def __init__(
        self,
        store: RecordStore,
        classifier: ClassifierClient,
        notifier: NotificationFanout,
        config: PipelineConfig,
    ) -> None:
        self._store = store
        self._classifier = classifier
        self._notifier = notifier
        self._semaphore = asyncio.Semaphore(config.max_concurrency)
        self._tasks: set[asyncio.Task[PipelineResult]] = set()

        self.processed: int = 0
        self.persist_failures: int = 0
        self.degraded_classifications: int = 0
        self.annotate_failures: int = 0
        self.notifications_sent: int = 0

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    # ------------------------------------------------------------------
    # Scheduling
    # ------------------------------------------------------------------

    def dispatch(self, record: EmailRecord, *, notify: bool = True) -> asyncio.Task[PipelineResult]:
        """Schedule *record* on the bounded pool and return its task."""
        task = asyncio.create_task(self._bounded(record, notify), name=f"pipeline-{record.uid}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        task.add_done_callback(_log_task_failure)
        return task

    async def drain(self) -> None:
        """Wait for every in-flight record to finish."""
        while self._tasks:
            logger.info("pipeline_draining", in_flight=len(self._tasks))
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def _bounded(self, record: EmailRecord, notify: bool) -> PipelineResult:
        async with self._semaphore:
            return await self.process(record, notify=notify)

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def process(self, record: EmailRecord, *, notify: bool = True) -> PipelineResult:
        """Run all stages for one record."""
        result = PipelineResult(uid=record.uid)
        log = logger.bind(uid=record.uid)

        # 1. Persist. Nothing to label without a stored document.
        try:
            await self._store.save(record)
        except StoreError as exc:
            self.persist_failures += 1
            log.error("persist_failed_needs_reconciliation", error=str(exc), subject=record.subject)
            return result
        result.persisted = True

        # 2. Classify
        label = await self._classify(record)
        result.label = label

        # 3. Annotate
        try:
            await self._store.annotate(record.uid, label)
            result.annotated = True
        except StoreError as exc:
            self.annotate_failures += 1
            log.error("annotate_failed", category=label.value, error=str(exc))

        # 4. Notify, only for a label that actually reached the store
        if notify and result.annotated and label == TRIGGER_LABEL:
            labeled = record.model_copy(update={"ai_category": label})
            try:
                result.notified = await self._notifier.notify(labeled)
            except Exception:
                log.exception("notify_stage_failed")
            self.notifications_sent += result.notified

        self.processed += 1
        log.info(
            "email_processed",
            category=label.value,
            annotated=result.annotated,
            notified=result.notified,
        )
        return result

    async def _classify(self, record: EmailRecord) -> ClassificationLabel:
        try:
            raw_label = await self._classifier.classify(record.body)
        except ClassificationError as exc:
            self.degraded_classifications += 1
            logger.warning("classification_failed_using_default", uid=record.uid, error=str(exc))
            return DEFAULT_LABEL
        except Exception:
            self.degraded_classifications += 1
            logger.exception("classification_crashed_using_default", uid=record.uid)
            return DEFAULT_LABEL

        label = ClassificationLabel.parse(raw_label)
        if label is None:
            self.degraded_classifications += 1
            logger.warning("classification_out_of_set", uid=record.uid, value=str(raw_label))
            return DEFAULT_LABEL
        return label
