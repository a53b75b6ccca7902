"""Persist computed assessments and hand them to the justification worker."""

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from src.db.models import RiskAssessmentRecord, RiskAssessmentStoreLink

from .justification import JustificationDispatcher, JustificationJob
from .models import UNKNOWN_STORE_ID, RiskAssessment, TransactionContext

logger = structlog.get_logger()


def build_record(assessment: RiskAssessment, context: TransactionContext) -> RiskAssessmentRecord:
    meta = context.request_metadata
    return RiskAssessmentRecord(
        user_id=context.user_id,
        order_id=context.order_id,
        payment_intent_id=context.payment_intent_id,
        payment_method_id=context.payment_method_id,
        risk_score=assessment.score,
        decision=assessment.decision.value,
        confidence=assessment.confidence,
        transaction_amount=context.total_amount_cents,
        currency=context.currency,
        item_count=context.total_quantity,
        store_count=context.unique_store_count,
        risk_factors=[f.to_wire() for f in assessment.factors],
        user_agent=meta.user_agent,
        ip_address=meta.ip_address,
        shipping_country=context.shipping.country,
        shipping_state=context.shipping.state,
        shipping_city=context.shipping.city,
        created_at=assessment.computed_at,
    )


def build_store_links(assessment_id: int, context: TransactionContext) -> list[RiskAssessmentStoreLink]:
    return [
        RiskAssessmentStoreLink(
            risk_assessment_id=assessment_id,
            store_id=store.store_id,
            store_subtotal=store.subtotal_cents,
            store_item_count=store.item_count,
        )
        for store in context.store_distribution.values()
        if store.store_id and store.store_id != UNKNOWN_STORE_ID
    ]


class AssessmentSink:
    """Writes one immutable assessment row per risk check.

    Checkout availability wins over audit durability: a failed write is logged
    and the caller still receives its decision.
    """

    def __init__(
        self, session: AsyncSession, dispatcher: JustificationDispatcher | None = None
    ) -> None:
        self._session = session
        self._dispatcher = dispatcher

    async def persist(self, assessment: RiskAssessment, context: TransactionContext) -> int | None:
        session = self._session
        try:
            record = build_record(assessment, context)
            session.add(record)
            await session.commit()
            assessment_id = record.id
        except Exception:
            logger.exception("risk_assessment_persist_failed", user_id=context.user_id)
            await self._rollback()
            return None

        logger.info(
            "risk_assessment_persisted",
            assessment_id=assessment_id,
            user_id=context.user_id,
            decision=assessment.decision.value,
        )

        if assessment_id is None:
            return None

        await self._link_stores(assessment_id, context)

        if self._dispatcher is not None:
            self._dispatcher.dispatch(
                JustificationJob(assessment_id=assessment_id, assessment=assessment, context=context)
            )
        return assessment_id

    async def _link_stores(self, assessment_id: int, context: TransactionContext) -> None:
        session = self._session
        links = build_store_links(assessment_id, context)
        if not links:
            return
        try:
            session.add_all(links)
            await session.commit()
        except Exception:
            logger.exception("risk_assessment_store_links_failed", assessment_id=assessment_id)
            await self._rollback()

    async def _rollback(self) -> None:
        try:
            await self._session.rollback()
        except Exception:
            logger.warning("session_rollback_failed", exc_info=True)
