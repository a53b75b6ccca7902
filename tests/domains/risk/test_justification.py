"""Tests for narrative generation and the background dispatcher."""

import asyncio
from datetime import UTC, datetime

import pytest

from src.db.models import RiskAssessmentRecord, RiskJustification
from src.domains.risk.config import DecisionThresholds
from src.domains.risk.justification import (
    JustificationDispatcher,
    JustificationJob,
    TemplateJustificationGenerator,
    assessment_from_record,
    risk_level,
)
from src.domains.risk.models import Decision, RiskAssessment, RiskFactor
from tests.conftest import NOW, line_item, make_context, make_session


class _SessionFactory:
    """Stands in for ``async_sessionmaker``: each call opens the same mock session."""

    def __init__(self, session) -> None:
        self.session = session
        self.opened = 0

    def __call__(self):
        self.opened += 1
        return self

    async def __aenter__(self):
        return self.session

    async def __aexit__(self, *exc):
        return False


class _FailingGenerator:
    name = "broken"

    def __init__(self, fail_for: set[int]) -> None:
        self.fail_for = fail_for

    async def generate(self, assessment, context):
        if assessment.score in self.fail_for:
            raise RuntimeError("generator offline")
        return f"score {assessment.score}"


def _assessment(score: int = 35, decision: Decision = Decision.WARN, factors=None) -> RiskAssessment:
    return RiskAssessment(
        score=score,
        decision=decision,
        confidence=0.8,
        factors=factors
        if factors is not None
        else [
            RiskFactor(name="NEW_PAYMENT_METHOD", impact=20, description="Using new/unsaved payment method"),
            RiskFactor(name="TRUSTED_ROLE", impact=-10, description="Account has trusted role: vendor"),
        ],
        computed_at=NOW,
    )


class TestTemplateGenerator:
    @pytest.mark.parametrize(
        "score,level", [(0, "LOW"), (20, "LOW"), (21, "MODERATE"), (50, "MODERATE"), (51, "HIGH")]
    )
    def test_risk_level(self, score, level):
        assert risk_level(score) == level

    def test_risk_level_follows_configured_thresholds(self):
        thresholds = DecisionThresholds(allow_max=10, warn_max=30)
        assert risk_level(15, thresholds) == "MODERATE"
        assert risk_level(31, thresholds) == "HIGH"
        assert risk_level(10, thresholds) == "LOW"

    def test_render_uses_configured_thresholds(self):
        generator = TemplateJustificationGenerator(DecisionThresholds(allow_max=10, warn_max=30))
        text = generator.render(_assessment(score=35, decision=Decision.DENY), None)
        assert text.startswith("Risk Level: HIGH (35/100) - Decision: DENY")

    def test_client_role_is_not_reported_as_account_role(self):
        ctx = make_context(user_role="admin")
        text = TemplateJustificationGenerator().render(_assessment(), ctx)
        assert "- Account role: guest" in text

    def test_render_with_context(self):
        ctx = make_context(items=[line_item(quantity=2, price_cents=2500)], account_role="vendor")
        text = TemplateJustificationGenerator().render(_assessment(), ctx)

        assert text.startswith("Risk Level: MODERATE (35/100) - Decision: WARN")
        assert "- Amount: $50.00 AUD" in text
        assert "- Using new/unsaved payment method (Impact: +20)" in text
        assert "(Impact: -10)" in text
        assert "Recommended actions:" in text

    def test_render_without_factors_or_context(self):
        text = TemplateJustificationGenerator().render(
            _assessment(score=0, decision=Decision.ALLOW, factors=[]), None
        )
        assert "No risk factors were identified." in text
        assert "Transaction details:" not in text

    @pytest.mark.asyncio
    async def test_generate_is_deterministic(self):
        generator = TemplateJustificationGenerator()
        first = await generator.generate(_assessment(), None)
        second = await generator.generate(_assessment(), None)
        assert first == second


class TestAssessmentFromRecord:
    def test_rebuilds_assessment(self):
        record = RiskAssessmentRecord(
            id=3,
            risk_score=12,
            decision="allow",
            confidence=0.7,
            risk_factors=[{"factor": "MULTIPLE_STORES", "impact": 12, "description": "3 stores"}],
            created_at=datetime(2026, 1, 2, tzinfo=UTC),
        )
        assessment = assessment_from_record(record)
        assert assessment.decision == Decision.ALLOW
        assert assessment.factors[0].name == "MULTIPLE_STORES"
        assert assessment.factors[0].impact == 12


class TestJustificationDispatcher:
    @pytest.mark.asyncio
    async def test_worker_appends_justification(self):
        session = make_session()
        factory = _SessionFactory(session)
        dispatcher = JustificationDispatcher(TemplateJustificationGenerator(), factory)

        await dispatcher.start()
        assert dispatcher.dispatch(JustificationJob(assessment_id=7, assessment=_assessment()))
        await asyncio.wait_for(dispatcher.drain(), timeout=2)
        await dispatcher.stop()

        row = session.add.call_args.args[0]
        assert isinstance(row, RiskJustification)
        assert row.risk_assessment_id == 7
        assert row.generator == "template-v1"
        assert row.justification.startswith("Risk Level: MODERATE")
        session.commit.assert_awaited()
        assert dispatcher.stats.processed == 1
        assert not dispatcher.is_running

    @pytest.mark.asyncio
    async def test_failures_are_counted_and_worker_survives(self):
        session = make_session()
        dispatcher = JustificationDispatcher(_FailingGenerator({40}), _SessionFactory(session))

        await dispatcher.start()
        dispatcher.dispatch(JustificationJob(1, _assessment(score=40)))
        dispatcher.dispatch(JustificationJob(2, _assessment(score=10, decision=Decision.ALLOW)))
        await asyncio.wait_for(dispatcher.drain(), timeout=2)
        await dispatcher.stop()

        assert dispatcher.stats.failed == 1
        assert dispatcher.stats.processed == 1
        assert "generator offline" in dispatcher.stats.last_error
        assert session.add.call_args.args[0].justification == "score 10"

    @pytest.mark.asyncio
    async def test_persistence_failure_is_counted(self):
        session = make_session()
        session.commit.side_effect = RuntimeError("insert failed")
        dispatcher = JustificationDispatcher(TemplateJustificationGenerator(), _SessionFactory(session))

        assert await dispatcher.process(JustificationJob(1, _assessment())) is None
        assert dispatcher.stats.failed == 1

    @pytest.mark.asyncio
    async def test_full_queue_drops(self):
        dispatcher = JustificationDispatcher(
            TemplateJustificationGenerator(), _SessionFactory(make_session()), maxsize=1
        )
        assert dispatcher.dispatch(JustificationJob(1, _assessment()))
        assert not dispatcher.dispatch(JustificationJob(2, _assessment()))
        assert dispatcher.stats.dropped == 1
        assert dispatcher.pending == 1

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        dispatcher = JustificationDispatcher(TemplateJustificationGenerator(), _SessionFactory(make_session()))
        await dispatcher.stop()
        assert not dispatcher.is_running

    @pytest.mark.asyncio
    async def test_stop_drains_queued_jobs(self):
        session = make_session()
        dispatcher = JustificationDispatcher(TemplateJustificationGenerator(), _SessionFactory(session))

        await dispatcher.start()
        for assessment_id in (1, 2, 3):
            dispatcher.dispatch(JustificationJob(assessment_id, _assessment()))
        await dispatcher.stop(drain_timeout=2)

        assert dispatcher.stats.processed == 3
        assert dispatcher.pending == 0
        assert not dispatcher.is_running

    @pytest.mark.asyncio
    async def test_stop_gives_up_after_timeout(self):
        release = asyncio.Event()

        class _StuckGenerator:
            name = "stuck"

            async def generate(self, assessment, context):
                await release.wait()
                return "late"

        dispatcher = JustificationDispatcher(_StuckGenerator(), _SessionFactory(make_session()))
        await dispatcher.start()
        dispatcher.dispatch(JustificationJob(1, _assessment()))
        dispatcher.dispatch(JustificationJob(2, _assessment()))

        await asyncio.wait_for(dispatcher.stop(drain_timeout=0.05), timeout=2)

        assert not dispatcher.is_running
        assert dispatcher.stats.processed == 0
