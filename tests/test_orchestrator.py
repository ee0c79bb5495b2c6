"""Tests for AnalysisDispatcher coordination, fusion and batching."""

import logging
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from acquisition_engine.agents.financial_agent import FinancialAgent
from acquisition_engine.errors import ProviderError, TransportError
from acquisition_engine.models import BusinessRecord, DomainKind, Provenance
from acquisition_engine.orchestrator import AnalysisDispatcher, DispatchRun, DispatchState
from acquisition_engine.providers import AnthropicAdapter, ReplicateAdapter
from acquisition_engine.rate_limiter import ProviderRateLimits


@pytest.fixture
def healthy_adapters(scripted_adapter, provider_texts):
    """One scripted adapter per target, all answering correctly."""
    adapters = {target: scripted_adapter(text, name=target) for target, text in provider_texts.items()}
    adapters["narrative"] = scripted_adapter("A well-supported acquisition case.", name="narrative")
    return adapters


def _records(count):
    return [
        BusinessRecord(
            business_id=f"biz-{i}",
            business_name=f"Business {i}",
            sector="Plumbing",
            asking_price=1_000_000,
            annual_revenue=2_000_000,
            annual_net_profit=300_000,
        )
        for i in range(count)
    ]


class TestDispatch:
    """Tests for AnalysisDispatcher.dispatch()."""

    async def test_all_providers_succeed(self, test_config, sample_record, healthy_adapters, no_sleep):
        dispatcher = AnalysisDispatcher(config=test_config, adapters=healthy_adapters, sleep=no_sleep)

        run = await dispatcher.dispatch(sample_record)

        assert run.state == DispatchState.FUSED
        assessment = run.assessment
        assert all(r.provenance == Provenance.PROVIDER for r in assessment.domains.values())
        assert assessment.confidence.level == "high"
        # 0.3*0.82 + 0.3*0.78 + 0.2*0.74 + 0.2*(1-0.35)
        assert assessment.composite_score == pytest.approx(0.758)
        assert assessment.narrative.thesis == "A well-supported acquisition case."
        assert assessment.narrative.thesis_provenance == Provenance.PROVIDER
        assert healthy_adapters["narrative"].call_count == 2

    @pytest.mark.parametrize("failures,level", [(0, "high"), (1, "medium"), (2, "medium"), (3, "low"), (4, "low")])
    async def test_partial_provider_failure(
        self, test_config, sample_record, healthy_adapters, scripted_adapter, no_sleep, failures, level
    ):
        """Failed domains are replaced by fallbacks; the run still fuses."""
        failing = list(DomainKind)[:failures]
        for kind in failing:
            healthy_adapters[kind.value] = scripted_adapter(ProviderError(401, "bad key"))
        dispatcher = AnalysisDispatcher(config=test_config, adapters=healthy_adapters, sleep=no_sleep)

        assessment = (await dispatcher.dispatch(sample_record)).assessment

        assert assessment.confidence.level == level
        assert assessment.confidence.fallback_sourced == failures
        for kind in DomainKind:
            expected = Provenance.FALLBACK if kind in failing else Provenance.PROVIDER
            assert assessment.domain(kind).provenance == expected
        assert 0.0 <= assessment.composite_score <= 1.0

    async def test_fallback_only_sample(self, test_config, sample_record, no_sleep):
        """With no providers at all, the formula path alone yields a complete assessment."""
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)

        assessment = (await dispatcher.dispatch(sample_record)).assessment

        assert assessment.composite_score == pytest.approx(0.78)
        assert assessment.cap_rate == pytest.approx(0.357)
        assert assessment.payback_years == pytest.approx(2.8)
        assert assessment.confidence.level == "low"
        assert assessment.confidence.fallback_sourced == 4
        assert assessment.ownership_model == "semi_absentee"
        assert assessment.narrative.thesis.startswith("Investment Thesis: Premier Multi-Trade Services")
        assert assessment.narrative.summary_provenance == Provenance.FALLBACK

    async def test_zero_profit_business(self, test_config, zero_profit_record, no_sleep):
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)

        assessment = (await dispatcher.dispatch(zero_profit_record)).assessment

        assert assessment.payback_years == 99.0
        assert assessment.cap_rate == 0.0
        assert assessment.composite_score == pytest.approx(0.43)

    async def test_fail_twice_then_succeed(
        self, test_config, sample_record, healthy_adapters, scripted_adapter, provider_texts, no_sleep
    ):
        healthy_adapters["financial"] = scripted_adapter(
            TransportError("reset"), ProviderError(503, "busy"), provider_texts["financial"]
        )
        dispatcher = AnalysisDispatcher(config=test_config, adapters=healthy_adapters, sleep=no_sleep)

        run = await dispatcher.dispatch(sample_record)

        assert run.assessment.domain(DomainKind.FINANCIAL).provenance == Provenance.PROVIDER
        assert run.outcomes[DomainKind.FINANCIAL].attempts == 3
        assert healthy_adapters["financial"].call_count <= test_config["PROVIDER_MAX_ATTEMPTS"]
        assert run.assessment.confidence.level == "high"

    async def test_unexpected_task_exception_falls_back(self, test_config, sample_record, healthy_adapters, no_sleep):
        dispatcher = AnalysisDispatcher(config=test_config, adapters=healthy_adapters, sleep=no_sleep)

        with patch.object(FinancialAgent, "execute", side_effect=RuntimeError("boom")):
            assessment = (await dispatcher.dispatch(sample_record)).assessment

        financial = assessment.domain(DomainKind.FINANCIAL)
        assert financial.provenance == Provenance.FALLBACK
        assert financial.fallback_reason == "boom"

    async def test_every_call_settled_after_dispatch(self, test_config, sample_record, healthy_adapters, no_sleep):
        dispatcher = AnalysisDispatcher(config=test_config, adapters=healthy_adapters, sleep=no_sleep)

        with patch.object(FinancialAgent, "execute", side_effect=RuntimeError("boom")):
            run = await dispatcher.dispatch(sample_record)

        assert all(outcome.settled for outcome in run.outcomes.values())
        assert run.outcomes[DomainKind.FINANCIAL].errors == ["boom"]

    async def test_run_metrics_logged(self, test_config, sample_record, no_sleep, caplog):
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)

        with caplog.at_level(logging.INFO, logger="acquisition_engine.orchestrator"):
            await dispatcher.dispatch(sample_record)

        lines = [r.getMessage() for r in caplog.records if r.getMessage().startswith("run_metrics")]
        assert len(lines) == 1
        assert "business_id=premier-multi-trade" in lines[0]
        assert "fallback_count=4" in lines[0]
        assert "confidence=low" in lines[0]


class TestDispatchRun:
    """Tests for the dispatch state machine."""

    def test_states_advance_in_order(self, sample_record):
        run = DispatchRun(record=sample_record)
        run.advance(DispatchState.DISPATCHING)
        run.advance(DispatchState.ALL_SETTLED)
        run.advance(DispatchState.FUSED)
        assert run.state == DispatchState.FUSED

    def test_cannot_fuse_before_settling(self, sample_record):
        run = DispatchRun(record=sample_record)
        run.advance(DispatchState.DISPATCHING)
        with pytest.raises(RuntimeError):
            run.advance(DispatchState.FUSED)


class TestProgress:
    """Tests for progress notifications."""

    async def test_sync_callback_receives_stages(self, test_config, sample_record, no_sleep):
        updates = []
        dispatcher = AnalysisDispatcher(
            config=test_config, adapters={}, sleep=no_sleep, progress_callback=updates.append
        )

        await dispatcher.dispatch(sample_record)

        assert [u["stage"] for u in updates] == ["dispatching", "synthesizing", "analyzed"]
        assert all(u["business_id"] == "premier-multi-trade" for u in updates)

    async def test_async_callback(self, test_config, sample_record, no_sleep):
        callback = AsyncMock()
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep, progress_callback=callback)

        await dispatcher.dispatch(sample_record)

        assert callback.await_count == 3

    async def test_failing_callback_does_not_break_run(self, test_config, sample_record, no_sleep):
        callback = MagicMock(side_effect=RuntimeError("subscriber gone"))
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep, progress_callback=callback)

        run = await dispatcher.dispatch(sample_record)

        assert run.state == DispatchState.FUSED


class TestAnalyzeBatch:
    """Tests for AnalysisDispatcher.analyze_batch()."""

    async def test_batches_run_sequentially_with_delay(self, test_config, no_sleep):
        records = _records(5)
        batches = []
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)

        assessments = await dispatcher.analyze_batch(
            records,
            batch_size=2,
            inter_batch_delay=3.0,
            on_batch=lambda batch, results: batches.append([r.business_id for r in batch]),
        )

        assert [a.business_id for a in assessments] == [r.business_id for r in records]
        assert batches == [["biz-0", "biz-1"], ["biz-2", "biz-3"], ["biz-4"]]
        assert [c.args[0] for c in no_sleep.await_args_list] == [3.0, 3.0]

    async def test_defaults_from_config(self, test_config, no_sleep):
        test_config["SCAN_BATCH_SIZE"] = 3
        test_config["SCAN_BATCH_DELAY"] = 1.5
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)

        await dispatcher.analyze_batch(_records(4))

        assert [c.args[0] for c in no_sleep.await_args_list] == [1.5]

    async def test_async_on_batch(self, test_config, no_sleep):
        on_batch = AsyncMock()
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)

        await dispatcher.analyze_batch(_records(3), batch_size=2, inter_batch_delay=0, on_batch=on_batch)
        assert on_batch.await_count == 2
        no_sleep.assert_not_awaited()

    async def test_on_batch_error_stops_remaining_batches(self, test_config, no_sleep):
        on_batch = MagicMock(side_effect=RuntimeError("store down"))
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)

        with pytest.raises(RuntimeError, match="store down"):
            await dispatcher.analyze_batch(_records(4), batch_size=2, inter_batch_delay=0, on_batch=on_batch)

        assert on_batch.call_count == 1

    async def test_invalid_batch_size(self, test_config, no_sleep):
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)
        with pytest.raises(ValueError):
            await dispatcher.analyze_batch(_records(2), batch_size=-1)

    async def test_empty_input(self, test_config, no_sleep):
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)
        assert await dispatcher.analyze_batch([]) == []


class TestAdapterResolution:
    """Tests for config-built adapters."""

    def test_adapters_built_from_provider_config(self, test_config):
        limits = ProviderRateLimits(requests_per_minute=10)
        dispatcher = AnalysisDispatcher(config=test_config, rate_limits=limits)

        financial = dispatcher._adapter_for("financial")
        strategic = dispatcher._adapter_for("strategic")
        risk = dispatcher._adapter_for("risk")

        assert isinstance(financial, ReplicateAdapter)
        assert isinstance(risk, AnthropicAdapter)
        assert financial.rate_limiter is strategic.rate_limiter
        assert financial.rate_limiter is not risk.rate_limiter

    def test_unknown_provider_resolves_to_none(self, test_config):
        test_config["providers"]["market"]["provider"] = "cohere"
        dispatcher = AnalysisDispatcher(config=test_config)
        assert dispatcher._adapter_for("market") is None

    def test_missing_target_resolves_to_none(self, test_config):
        del test_config["providers"]["risk"]
        dispatcher = AnalysisDispatcher(config=test_config)
        assert dispatcher._adapter_for("risk") is None

    async def test_analyze_record_closes_session(self, test_config, sample_record, no_sleep):
        dispatcher = AnalysisDispatcher(config=test_config, adapters={}, sleep=no_sleep)

        assessment = await dispatcher.analyze_record(sample_record)

        assert assessment.business_id == "premier-multi-trade"
        assert dispatcher._shared_session is None
