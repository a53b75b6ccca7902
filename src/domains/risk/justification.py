"""Narrative justifications for risk assessments.

Generation runs off the request path: the sink hands a ``JustificationJob`` to
the ``JustificationDispatcher``, whose worker renders the narrative and
appends it as a ``risk_justifications`` row linked to the assessment.
"""

import asyncio
import contextlib
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Protocol

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.db.models import RiskAssessmentRecord, RiskJustification

from .config import DAY_SECONDS, DecisionThresholds, RiskConfig
from .models import Decision, RiskAssessment, RiskFactor, TransactionContext

logger = structlog.get_logger()


class JustificationGenerator(Protocol):
    name: str

    async def generate(
        self, assessment: RiskAssessment, context: TransactionContext | None
    ) -> str: ...


_RECOMMENDATIONS = {
    Decision.ALLOW: [
        "No action required; the transaction can proceed normally.",
        "Keep the order under routine fulfilment monitoring.",
    ],
    Decision.WARN: [
        "Confirm the customer's identity through the verification step before fulfilment.",
        "Check that the shipping address matches the customer's history.",
        "Hold high-value items until payment settles.",
    ],
    Decision.DENY: [
        "Do not fulfil the order unless the customer is verified out of band.",
        "Review other recent orders from this account and payment method.",
        "Contact the customer through a known channel before reversing the decision.",
    ],
}


def risk_level(score: int, thresholds: DecisionThresholds | None = None) -> str:
    """Narrative band for ``score``, aligned with the decision thresholds."""
    thresholds = thresholds or DecisionThresholds()
    if score > thresholds.warn_max:
        return "HIGH"
    if score > thresholds.allow_max:
        return "MODERATE"
    return "LOW"


class TemplateJustificationGenerator:
    """Deterministic narrative built from the assessment and its context."""

    name = "template-v1"

    def __init__(self, thresholds: DecisionThresholds | None = None) -> None:
        self._thresholds = thresholds or DecisionThresholds()

    async def generate(
        self, assessment: RiskAssessment, context: TransactionContext | None
    ) -> str:
        return self.render(assessment, context)

    def render(self, assessment: RiskAssessment, context: TransactionContext | None) -> str:
        level = risk_level(assessment.score, self._thresholds)
        lines = [
            f"Risk Level: {level} ({assessment.score}/100) "
            f"- Decision: {assessment.decision.value.upper()}",
            "",
            f"This transaction was assessed with a risk score of {assessment.score}/100 "
            f"and {assessment.confidence:.0%} confidence.",
        ]

        if context is not None:
            account_age = (
                f"{context.account_age_seconds // DAY_SECONDS} days old"
                if context.account_age_seconds is not None
                else "unknown"
            )
            lines += [
                "",
                "Transaction details:",
                f"- Amount: ${context.total_amount:.2f} {context.currency.upper()}",
                f"- Items: {context.total_quantity} ({context.unique_item_count} unique products)",
                f"- Stores: {context.unique_store_count}",
                f"- Account role: {context.account_role or 'guest'}",
                f"- Account age: {account_age}",
            ]

        lines.append("")
        if assessment.factors:
            lines.append("The following risk factors were identified:")
            lines += [_format_factor(f) for f in assessment.factors]
        else:
            lines.append("No risk factors were identified.")

        lines += ["", "Recommended actions:"]
        lines += [f"{i}. {action}" for i, action in enumerate(_RECOMMENDATIONS[assessment.decision], 1)]
        return "\n".join(lines)


def _format_factor(factor: RiskFactor) -> str:
    sign = "+" if factor.impact >= 0 else ""
    return f"- {factor.description} (Impact: {sign}{factor.impact})"


# ---------------------------------------------------------------------------
# Persistence helpers
# ---------------------------------------------------------------------------


async def append_justification(
    session: AsyncSession, assessment_id: int, text: str, generator: str
) -> RiskJustification:
    row = RiskJustification(
        risk_assessment_id=assessment_id,
        justification=text,
        generator=generator,
        generated_at=datetime.now(UTC),
    )
    session.add(row)
    await session.commit()
    return row


async def get_latest_justification(
    session: AsyncSession, assessment_id: int
) -> RiskJustification | None:
    stmt = (
        select(RiskJustification)
        .where(RiskJustification.risk_assessment_id == assessment_id)
        .order_by(RiskJustification.generated_at.desc(), RiskJustification.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


def assessment_from_record(record: RiskAssessmentRecord) -> RiskAssessment:
    factors = [
        RiskFactor(name=f["factor"], impact=f["impact"], description=f["description"])
        for f in (record.risk_factors or [])
    ]
    return RiskAssessment(
        score=record.risk_score,
        decision=Decision(record.decision),
        confidence=record.confidence,
        factors=factors,
        computed_at=record.created_at,
    )


# ---------------------------------------------------------------------------
# Background dispatch
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class JustificationJob:
    assessment_id: int
    assessment: RiskAssessment
    context: TransactionContext | None = None


@dataclass
class DispatcherStats:
    processed: int = 0
    failed: int = 0
    dropped: int = 0
    last_error: str | None = None


class JustificationDispatcher:
    """Bounded queue plus a single worker task.

    ``dispatch`` never blocks and never raises: a full queue drops the job.
    Failures inside the worker are logged and counted in ``stats``.
    """

    def __init__(
        self,
        generator: JustificationGenerator,
        session_factory: async_sessionmaker[AsyncSession],
        maxsize: int = 256,
    ) -> None:
        self._generator = generator
        self._session_factory = session_factory
        self._queue: asyncio.Queue[JustificationJob] = asyncio.Queue(maxsize=maxsize)
        self._worker: asyncio.Task | None = None
        self.stats = DispatcherStats()

    @property
    def is_running(self) -> bool:
        return self._worker is not None and not self._worker.done()

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def dispatch(self, job: JustificationJob) -> bool:
        try:
            self._queue.put_nowait(job)
        except asyncio.QueueFull:
            self.stats.dropped += 1
            logger.warning("justification_dropped", assessment_id=job.assessment_id)
            return False
        logger.debug("justification_queued", assessment_id=job.assessment_id)
        return True

    async def start(self) -> None:
        if self.is_running:
            return
        self._worker = asyncio.create_task(self._run())
        logger.info("justification_worker_started", generator=self._generator.name)

    async def stop(self, drain_timeout: float = 0.0) -> None:
        """Stop the worker, first giving queued jobs up to ``drain_timeout`` seconds."""
        if self._worker is None:
            return
        if drain_timeout > 0 and self.is_running:
            try:
                await asyncio.wait_for(self.drain(), drain_timeout)
            except TimeoutError:
                logger.warning(
                    "justification_drain_timeout", pending=self.pending, timeout=drain_timeout
                )
        self._worker.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._worker
        self._worker = None
        logger.info("justification_worker_stopped", **self.stats.__dict__)

    async def drain(self) -> None:
        """Wait until every queued job has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        while True:
            job = await self._queue.get()
            try:
                await self.process(job)
            finally:
                self._queue.task_done()

    async def process(self, job: JustificationJob) -> str | None:
        try:
            text = await self._generator.generate(job.assessment, job.context)
            async with self._session_factory() as session:
                await append_justification(session, job.assessment_id, text, self._generator.name)
        except Exception as exc:
            self.stats.failed += 1
            self.stats.last_error = f"{type(exc).__name__}: {exc}"
            logger.exception("justification_failed", assessment_id=job.assessment_id)
            return None

        self.stats.processed += 1
        logger.info("justification_generated", assessment_id=job.assessment_id)
        return text


_dispatcher: JustificationDispatcher | None = None


def get_justification_dispatcher() -> JustificationDispatcher:
    """Process-wide dispatcher, created lazily on first use."""
    global _dispatcher
    if _dispatcher is None:
        from src.config import settings
        from src.db.database import async_session_factory

        _dispatcher = JustificationDispatcher(
            TemplateJustificationGenerator(RiskConfig.from_env().thresholds),
            async_session_factory,
            maxsize=settings.justification_queue_size,
        )
    return _dispatcher
