"""Zero-trust payment risk endpoints."""

from datetime import UTC, datetime
from math import ceil

import structlog
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from src.config import settings
from src.db.database import get_session
from src.db.models import RiskAssessmentOrderLink, RiskAssessmentRecord, RiskJustification
from src.domains.risk.catalog import build_catalog, describe_catalog
from src.domains.risk.config import RiskConfig
from src.domains.risk.engine import InvalidAmountError, RiskEngine
from src.domains.risk.gateway import SqlSignalRepository
from src.domains.risk.justification import (
    TemplateJustificationGenerator,
    append_justification,
    assessment_from_record,
    get_justification_dispatcher,
    get_latest_justification,
)
from src.domains.risk.models import Decision, LinkOrdersRequest, PaymentRiskRequest
from src.domains.risk.sink import AssessmentSink

logger = structlog.get_logger()
router = APIRouter(prefix="/api/v1/risk", tags=["risk"])
assessments_router = APIRouter(prefix="/api/v1/risk-assessments", tags=["risk"])

_config = RiskConfig.from_env()
_catalog = build_catalog(_config)
_generator = TemplateJustificationGenerator(_config.thresholds)

NOT_FOUND = {"error": "Risk assessment not found"}
DEFAULT_LIST_DECISIONS = [Decision.WARN.value, Decision.DENY.value]
MAX_PAGE_SIZE = 100


async def get_risk_engine(
    session: AsyncSession = Depends(get_session),  # noqa: B008
) -> RiskEngine:
    dispatcher = get_justification_dispatcher() if settings.justification_enabled else None
    return RiskEngine(
        SqlSignalRepository(session),
        AssessmentSink(session, dispatcher),
        config=_config,
        catalog=_catalog,
        success_status=settings.order_success_status,
        failed_status=settings.order_failed_status,
    )


@router.post("/check")
async def check_payment_risk(
    payload: PaymentRiskRequest,
    http_request: Request,
    engine: RiskEngine = Depends(get_risk_engine),  # noqa: B008
):
    try:
        result = await engine.check(payload, http_request.headers)
    except InvalidAmountError:
        return JSONResponse(status_code=400, content={"error": "Invalid payment amount"})

    return {
        "success": True,
        "riskAssessment": result.assessment.to_wire(result.assessment_id),
    }


@router.get("/factors")
async def list_factors() -> dict:
    """Return the factor catalog and decision thresholds."""
    return {
        "factor_count": sum(len(d.tiers) for d in _catalog),
        "dimensions": describe_catalog(_catalog),
        "decision_thresholds": {
            "allow_max": _config.thresholds.allow_max,
            "warn_max": _config.thresholds.warn_max,
        },
    }


def _record_to_wire(
    record: RiskAssessmentRecord, justification: RiskJustification | None = None
) -> dict:
    return {
        "id": record.id,
        "userId": record.user_id,
        "orderId": record.order_id,
        "paymentIntentId": record.payment_intent_id,
        "paymentMethodId": record.payment_method_id,
        "riskScore": record.risk_score,
        "decision": record.decision,
        "confidence": record.confidence,
        "transactionAmount": record.transaction_amount,
        "currency": record.currency,
        "itemCount": record.item_count,
        "storeCount": record.store_count,
        "riskFactors": record.risk_factors or [],
        "userAgent": record.user_agent,
        "ipAddress": record.ip_address,
        "shippingCountry": record.shipping_country,
        "shippingState": record.shipping_state,
        "shippingCity": record.shipping_city,
        "createdAt": record.created_at.isoformat() if record.created_at else None,
        "aiJustification": justification.justification if justification else None,
        "justificationGeneratedAt": (
            justification.generated_at.isoformat() if justification else None
        ),
    }


def _justification_to_wire(row: RiskJustification, generated: bool) -> dict:
    return {
        "riskAssessmentId": row.risk_assessment_id,
        "justification": row.justification,
        "generator": row.generator,
        "generatedAt": row.generated_at.isoformat(),
        "generated": generated,
    }


async def _generate(session: AsyncSession, record: RiskAssessmentRecord) -> RiskJustification:
    text = await _generator.generate(assessment_from_record(record), None)
    row = await append_justification(session, record.id, text, _generator.name)
    logger.info("justification_generated_on_demand", assessment_id=record.id)
    return row


@assessments_router.get("")
async def list_assessments(
    session: AsyncSession = Depends(get_session),  # noqa: B008
    decision: str | None = Query(default=None, description="Comma-separated decisions"),
    search: str | None = Query(default=None, description="Match user ID or IP address"),
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
) -> dict:
    """Page through assessments, newest first. Defaults to warn and deny."""
    limit = min(limit, MAX_PAGE_SIZE)
    valid = {d.value for d in Decision}
    decisions = [d for d in (decision or "").split(",") if d in valid] or DEFAULT_LIST_DECISIONS

    conditions = [RiskAssessmentRecord.decision.in_(decisions)]
    if search:
        pattern = f"%{search}%"
        conditions.append(
            or_(
                RiskAssessmentRecord.user_id.ilike(pattern),
                RiskAssessmentRecord.ip_address.ilike(pattern),
            )
        )

    count_result = await session.execute(
        select(func.count()).select_from(RiskAssessmentRecord).where(*conditions)
    )
    total = count_result.scalar_one()

    stmt = (
        select(RiskAssessmentRecord)
        .where(*conditions)
        .order_by(RiskAssessmentRecord.created_at.desc(), RiskAssessmentRecord.id.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    result = await session.execute(stmt)
    rows = result.scalars().all()

    return {
        "assessments": [_record_to_wire(r) for r in rows],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "totalPages": ceil(total / limit),
        },
    }


@assessments_router.post("/link-orders")
async def link_orders(
    payload: LinkOrdersRequest,
    session: AsyncSession = Depends(get_session),  # noqa: B008
):
    """Attach an assessment to the orders a multi-store checkout created."""
    order_ids = list(dict.fromkeys(payload.order_ids))
    if not payload.risk_assessment_id or not order_ids:
        return JSONResponse(
            status_code=400,
            content={"error": "Risk assessment ID and order IDs are required"},
        )

    record = await session.get(RiskAssessmentRecord, payload.risk_assessment_id)
    if record is None:
        return JSONResponse(status_code=404, content=NOT_FOUND)

    now = datetime.now(UTC)
    session.add_all(
        [
            RiskAssessmentOrderLink(
                risk_assessment_id=record.id, order_id=order_id, created_at=now
            )
            for order_id in order_ids
        ]
    )
    await session.commit()
    logger.info("risk_assessment_orders_linked", assessment_id=record.id, order_ids=order_ids)

    return {
        "success": True,
        "message": f"Linked risk assessment {record.id} to {len(order_ids)} orders",
        "linkedOrders": order_ids,
    }


@assessments_router.get("/order/{order_id}")
async def get_assessment_for_order(
    order_id: int,
    session: AsyncSession = Depends(get_session),  # noqa: B008
):
    linked = select(RiskAssessmentOrderLink.risk_assessment_id).where(
        RiskAssessmentOrderLink.order_id == order_id
    )
    stmt = (
        select(RiskAssessmentRecord)
        .where(
            or_(
                RiskAssessmentRecord.order_id == order_id,
                RiskAssessmentRecord.id.in_(linked),
            )
        )
        .order_by(RiskAssessmentRecord.created_at.desc(), RiskAssessmentRecord.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    record = result.scalar_one_or_none()
    if record is None:
        return JSONResponse(status_code=404, content=NOT_FOUND)

    justification = await get_latest_justification(session, record.id)
    return _record_to_wire(record, justification)


@assessments_router.get("/{assessment_id}")
async def get_assessment(
    assessment_id: int,
    session: AsyncSession = Depends(get_session),  # noqa: B008
):
    record = await session.get(RiskAssessmentRecord, assessment_id)
    if record is None:
        return JSONResponse(status_code=404, content=NOT_FOUND)

    justification = await get_latest_justification(session, assessment_id)
    return _record_to_wire(record, justification)


@assessments_router.get("/{assessment_id}/justification")
async def get_justification(
    assessment_id: int,
    session: AsyncSession = Depends(get_session),  # noqa: B008
):
    record = await session.get(RiskAssessmentRecord, assessment_id)
    if record is None:
        return JSONResponse(status_code=404, content=NOT_FOUND)

    existing = await get_latest_justification(session, assessment_id)
    if existing is not None:
        return _justification_to_wire(existing, generated=False)

    row = await _generate(session, record)
    return _justification_to_wire(row, generated=True)


@assessments_router.post("/{assessment_id}/justification")
async def regenerate_justification(
    assessment_id: int,
    session: AsyncSession = Depends(get_session),  # noqa: B008
):
    record = await session.get(RiskAssessmentRecord, assessment_id)
    if record is None:
        return JSONResponse(status_code=404, content=NOT_FOUND)

    row = await _generate(session, record)
    return _justification_to_wire(row, generated=True)
