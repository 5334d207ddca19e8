"""
Payment Proof Processor.

Orchestrates one payment proof from uploaded bytes to a stored
PaymentDecision:

    1. Idempotency check on the content hash
    2. Image normalization
    3. Text and vision recognition, concurrently
    4. Reconciliation into payment candidates
    5. Submission matching
    6. Decision (and the conditional approval)
    7. Persistence, review ticket and notification

Steps 2-5 run under the run deadline. The decision runs outside it so a
timeout can never interrupt an approval that is already under way.

Author: ML Engineering Team
"""

import asyncio
import time
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from payproof import reasons
from payproof.config import get_config
from payproof.decision.engine import DecisionEngine
from payproof.decision.payment_decision import PaymentDecision
from payproof.decision.state_machine import DecisionRun, RunState
from payproof.input_handler.image_processor import ImageNormalizer
from payproof.matching.match_result import MatchOutcome
from payproof.matching.matcher import CandidateMatcher
from payproof.matching.scoring import MatchScorer
from payproof.matching.submission import ProcessingContext, SubmissionStore
from payproof.model_inference.extractor import VisionRecognizer
from payproof.ocr_engine.engine import TextRecognizer
from payproof.output_handler.database_handler import SQLiteSubmissionStore
from payproof.output_handler.decision_store import DecisionStore
from payproof.output_handler.notifier import build_notifier
from payproof.output_handler.review_queue import ReviewQueue
from payproof.postprocessor.payment_candidate import ReconciliationResult
from payproof.postprocessor.reconciler import ExtractionReconciler
from payproof.recognition.adapter import RecognitionAdapter
from payproof.recognition.result import RecognitionResult
from payproof.utils.exceptions import DatabaseError, ImageError, ReconciliationError
from payproof.utils.helpers import compute_content_hash
from payproof.utils.logger import get_logger

logger = get_logger(__name__)


@dataclass
class ProofJob:
    """One upload for process_batch."""
    image_bytes: bytes
    mime_type: str
    context: Optional[ProcessingContext] = None
    rerun: bool = False
    label: Optional[str] = None


@dataclass
class BatchResult:
    """Outcome of one ProofJob: a decision, or the reason the image was rejected."""
    job: ProofJob
    decision: Optional[PaymentDecision] = None
    error: Optional[ImageError] = None

    @property
    def success(self) -> bool:
        return self.decision is not None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'label': self.job.label,
            'decision': self.decision.to_dict() if self.decision else None,
            'error': str(self.error) if self.error else None,
        }


class PaymentProofProcessor:
    """
    Runs payment proofs through the full pipeline.

    The processor owns its concurrency state: a semaphore bounding
    concurrent runs, one lock per content hash being processed, and the
    notification tasks still in flight. Use it as an async context
    manager, or call start() and stop().

    Attributes:
        normalizer: Image normalizer
        recognizers: Recognition adapters run for every proof
        reconciler: Extraction reconciler
        matcher: Candidate matcher
        engine: Decision engine
        decision_store: Idempotent decision storage
        review_queue: Sink for decisions that need a person
        notifier: Receives every new decision, or None
        max_workers: Concurrent runs allowed
        run_deadline: Seconds allowed for normalize, recognize and match

    Example:
        >>> async with build_processor("data/payproof.db") as processor:
        ...     decision = await processor.process_payment_proof(data, "image/png")
        >>> decision.outcome.value
        'auto_approved'
    """

    def __init__(
        self,
        normalizer: ImageNormalizer,
        recognizers: Sequence[RecognitionAdapter],
        reconciler: ExtractionReconciler,
        matcher: CandidateMatcher,
        engine: DecisionEngine,
        decision_store: DecisionStore,
        review_queue: ReviewQueue,
        notifier=None,
        max_workers: Optional[int] = None,
        run_deadline: Optional[float] = None
    ) -> None:
        self.normalizer = normalizer
        self.recognizers = list(recognizers)
        self.reconciler = reconciler
        self.matcher = matcher
        self.engine = engine
        self.decision_store = decision_store
        self.review_queue = review_queue
        self.notifier = notifier
        self.max_workers = int(max_workers or get_config("pipeline.max_workers", 4))
        self.run_deadline = float(
            run_deadline if run_deadline is not None
            else get_config("pipeline.run_deadline_seconds", 60.0)
        )

        self._semaphore: Optional[asyncio.Semaphore] = None
        self._hash_locks: Dict[str, List[Any]] = {}
        self._notifications: set = set()
        self._active_runs = 0
        self._outcomes: Counter = Counter()
        self._duplicates = 0
        self._rejected = 0

    # -------------------------------------------------------------------------
    # Lifecycle
    # -------------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._semaphore is not None

    async def start(self) -> None:
        if self.is_running:
            return
        self._semaphore = asyncio.Semaphore(self.max_workers)
        logger.info(
            f"PaymentProofProcessor started (workers={self.max_workers}, "
            f"deadline={self.run_deadline:.0f}s, recognizers={[r.name for r in self.recognizers]})"
        )

    async def stop(self) -> None:
        """Wait for pending notifications and release the worker pool."""
        if self._notifications:
            logger.info(f"Waiting for {len(self._notifications)} notifications")
            await asyncio.gather(*self._notifications)
        self._semaphore = None
        logger.info(f"PaymentProofProcessor stopped ({dict(self._outcomes)})")

    async def __aenter__(self) -> 'PaymentProofProcessor':
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    async def process_payment_proof(
        self,
        image_bytes: bytes,
        mime_type: str,
        context: Optional[ProcessingContext] = None,
        rerun: bool = False
    ) -> PaymentDecision:
        """
        Process one payment proof.

        Args:
            image_bytes: Uploaded image bytes.
            mime_type: Declared mime type of the upload.
            context: Optional caller hints (submission, order, currency).
            rerun: Decide again even if this image already has a decision;
                the new decision is appended to the history.

        Returns:
            The current PaymentDecision for the image.

        Raises:
            ImageError: If the image is unsupported, too large or corrupt.
        """
        if not self.is_running:
            raise RuntimeError("PaymentProofProcessor is not started")

        started = time.monotonic()
        content_hash = compute_content_hash(image_bytes)
        context = context or ProcessingContext()

        async with self._lock_for(content_hash):
            if not rerun:
                existing = await self._stored_decision(content_hash)
                if existing is not None:
                    self._duplicates += 1
                    logger.info(f"Proof {content_hash[:12]} already decided: {existing!r}")
                    return existing

            async with self._semaphore:
                self._active_runs += 1
                try:
                    decision = await self._run(image_bytes, mime_type, content_hash, context)
                except ImageError:
                    self._rejected += 1
                    raise
                finally:
                    self._active_runs -= 1

            decision.processing_time = time.monotonic() - started
            decision.rerun = rerun
            decision = await self._persist(decision)

        self._outcomes[decision.outcome.value] += 1
        return decision

    async def process_batch(self, jobs: Iterable[ProofJob]) -> List[BatchResult]:
        """
        Process many proofs through the bounded worker pool.

        Rejected images are reported per job instead of failing the batch.
        """
        jobs = list(jobs)
        logger.info(f"Processing batch of {len(jobs)} proofs")
        results = await asyncio.gather(*(self._process_job(job) for job in jobs))
        failed = sum(1 for r in results if not r.success)
        logger.info(f"Batch complete: {len(results) - failed} decided, {failed} rejected")
        return list(results)

    def get_status(self) -> Dict[str, Any]:
        """Current load and counters, for health endpoints and the CLI."""
        return {
            'running': self.is_running,
            'max_workers': self.max_workers,
            'run_deadline_seconds': self.run_deadline,
            'active_runs': self._active_runs,
            'hashes_in_progress': len(self._hash_locks),
            'pending_notifications': len(self._notifications),
            'recognizers': [r.name for r in self.recognizers],
            'decisions': dict(self._outcomes),
            'duplicates': self._duplicates,
            'rejected_images': self._rejected,
        }

    # -------------------------------------------------------------------------
    # Run steps
    # -------------------------------------------------------------------------

    async def _process_job(self, job: ProofJob) -> BatchResult:
        try:
            decision = await self.process_payment_proof(job.image_bytes, job.mime_type, job.context, job.rerun)
            return BatchResult(job=job, decision=decision)
        except ImageError as e:
            logger.warning(f"Rejected {job.label or 'upload'}: {e}")
            return BatchResult(job=job, error=e)

    async def _run(
        self,
        image_bytes: bytes,
        mime_type: str,
        content_hash: str,
        context: ProcessingContext
    ) -> PaymentDecision:
        run = DecisionRun(content_hash=content_hash)
        logger.info(f"Run {run.run_id} started for {content_hash[:12]}")

        try:
            reconciliation, outcome = await asyncio.wait_for(
                self._analyze(run, image_bytes, mime_type, context),
                timeout=self.run_deadline
            )
        except asyncio.TimeoutError:
            logger.error(f"Run {run.run_id} exceeded {self.run_deadline:.1f}s deadline in state {run.state.value}")
            return self.engine.abort(run, reasons.PROCESSING_TIMEOUT)
        except ImageError:
            raise
        except Exception as e:
            logger.exception(f"Run {run.run_id} failed in state {run.state.value}: {e}")
            return self.engine.abort(run, reasons.PROCESSING_ERROR)

        try:
            return await self.engine.decide(run, reconciliation, outcome)
        except Exception as e:
            logger.exception(f"Run {run.run_id} failed while deciding in state {run.state.value}: {e}")
            return self.engine.abort(run, reasons.PROCESSING_ERROR, reconciliation.candidates)

    async def _analyze(
        self,
        run: DecisionRun,
        image_bytes: bytes,
        mime_type: str,
        context: ProcessingContext
    ) -> Tuple[ReconciliationResult, MatchOutcome]:
        images = await asyncio.to_thread(self.normalizer.normalize, image_bytes, mime_type)
        results = await self._recognize(images)

        try:
            reconciliation = self.reconciler.reconcile(results, context.expected_currency)
        except ReconciliationError as e:
            logger.warning(f"Run {run.run_id}: {e}")
            reconciliation = ReconciliationResult.empty(reasons.NO_PAYMENT_INFO, warning=str(e))
        run.transition(RunState.EXTRACTED)

        if reconciliation.candidates:
            outcome = await self.matcher.match(reconciliation.candidates, context)
        else:
            outcome = MatchOutcome()
        run.transition(RunState.MATCHED)
        return reconciliation, outcome

    async def _recognize(self, images) -> List[RecognitionResult]:
        tasks = [asyncio.create_task(r.recognize(images)) for r in self.recognizers]
        try:
            return list(await asyncio.gather(*tasks))
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    async def _stored_decision(self, content_hash: str) -> Optional[PaymentDecision]:
        try:
            return await asyncio.to_thread(self.decision_store.get_by_hash, content_hash)
        except DatabaseError as e:
            logger.error(f"Idempotency check failed for {content_hash[:12]}: {e}")
            return None

    async def _persist(self, decision: PaymentDecision) -> PaymentDecision:
        """Store the decision, open its review ticket and notify."""
        save = self.decision_store.append if decision.rerun else self.decision_store.save_if_absent
        try:
            stored = await asyncio.to_thread(save, decision)
        except DatabaseError as e:
            logger.error(f"Could not store decision {decision.decision_id}: {e}")
            decision.warnings.append(f"decision not stored: {e.message}")
            return decision
        if stored is not decision:
            return stored

        if decision.needs_review:
            try:
                ticket = await asyncio.to_thread(
                    self.review_queue.enqueue_review, decision, decision.considered, decision.reason
                )
                decision.review_ticket_id = ticket.ticket_id
                await asyncio.to_thread(self.decision_store.attach_ticket, decision.decision_id, ticket.ticket_id)
            except DatabaseError as e:
                logger.error(f"Could not open review ticket for {decision.decision_id}: {e}")
                decision.warnings.append(f"review ticket not opened: {e.message}")

        self._notify(decision)
        return decision

    def _notify(self, decision: PaymentDecision) -> None:
        if self.notifier is None:
            return
        task = asyncio.create_task(self._deliver(decision))
        self._notifications.add(task)
        task.add_done_callback(self._notifications.discard)

    async def _deliver(self, decision: PaymentDecision) -> None:
        try:
            await asyncio.to_thread(self.notifier.notify, decision)
        except Exception as e:
            logger.error(f"Notification for {decision.decision_id} failed: {e}")

    @asynccontextmanager
    async def _lock_for(self, content_hash: str) -> AsyncIterator[None]:
        """Serialize runs of the same image; the lock is dropped when unused."""
        entry = self._hash_locks.get(content_hash)
        if entry is None:
            entry = self._hash_locks[content_hash] = [asyncio.Lock(), 0]
        entry[1] += 1
        try:
            async with entry[0]:
                yield
        finally:
            entry[1] -= 1
            if entry[1] == 0:
                del self._hash_locks[content_hash]


def build_processor(
    db_path: Optional[Union[str, Path]] = None,
    submission_store: Optional[SubmissionStore] = None,
    recognizers: Optional[Sequence[RecognitionAdapter]] = None,
    notifier=None,
    max_workers: Optional[int] = None,
    run_deadline: Optional[float] = None
) -> PaymentProofProcessor:
    """
    Assemble a processor from settings, with optional overrides.

    Args:
        db_path: SQLite file for submissions, decisions and tickets.
        submission_store: Store to match against; defaults to the
            SQLite store on db_path.
        recognizers: Recognition adapters; defaults to Tesseract text
            recognition plus document question answering.
        notifier: Decision notifier; defaults to the configured one.
        max_workers: Concurrent runs allowed.
        run_deadline: Seconds allowed per run before it is aborted.

    Returns:
        An unstarted PaymentProofProcessor.
    """
    store = submission_store or SQLiteSubmissionStore(db_path)
    scorer = MatchScorer()

    if recognizers is None:
        recognizers = [TextRecognizer(), VisionRecognizer()]

    return PaymentProofProcessor(
        normalizer=ImageNormalizer(),
        recognizers=recognizers,
        reconciler=ExtractionReconciler(),
        matcher=CandidateMatcher(store, scorer=scorer),
        engine=DecisionEngine(store, scorer=scorer),
        decision_store=DecisionStore(db_path),
        review_queue=ReviewQueue(db_path),
        notifier=notifier if notifier is not None else build_notifier(),
        max_workers=max_workers,
        run_deadline=run_deadline,
    )
