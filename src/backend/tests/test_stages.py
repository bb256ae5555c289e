"""Tests for the research, fact-check and confidence stages."""
from __future__ import annotations

import pytest

from refinery.errors import ConfigError, UpstreamError
from refinery.events import EventRecorder
from refinery.stages.confidence import ConfidenceStage, parse_confidence
from refinery.stages.fact_check import FactCheckStage, build_fact_check_prompt
from refinery.stages.research import ResearchStage, build_research_prompt
from refinery.testing import ScriptedCompletionClient


class TestResearchPrompt:

    def test_first_pass_uses_topic_only(self) -> None:
        assert build_research_prompt("tides") == "Research this topic: tides"

    def test_prompt_is_deterministic(self) -> None:
        assert build_research_prompt("tides", "prior") == build_research_prompt("tides", "prior")

    def test_continuation_embeds_prior_research(self) -> None:
        prompt = build_research_prompt("tides", "The moon drives tides.")
        assert prompt.startswith("Research this topic: tides")
        assert "The moon drives tides." in prompt

    def test_empty_prior_research_is_a_fresh_prompt(self) -> None:
        assert build_research_prompt("tides", "") == "Research this topic: tides"


class TestResearchStage:

    @pytest.mark.asyncio
    async def test_returns_draft_with_unchanged_iteration(self) -> None:
        client = ScriptedCompletionClient(["tidal forces explained"])
        output = await ResearchStage(client, events=EventRecorder()).run("tides", 3)

        assert output.research == "tidal forces explained"
        assert output.iteration == 3
        assert client.prompts == ["Research this topic: tides"]

    @pytest.mark.asyncio
    async def test_same_inputs_send_same_prompt(self) -> None:
        client = ScriptedCompletionClient()
        stage = ResearchStage(client, events=EventRecorder())
        await stage.run("tides", 1, "prior")
        await stage.run("tides", 1, "prior")
        assert client.prompts[0] == client.prompts[1]

    @pytest.mark.asyncio
    async def test_errors_propagate_untouched(self) -> None:
        error = ConfigError("OpenAI API key not configured")
        stage = ResearchStage(ScriptedCompletionClient([error]), events=EventRecorder())

        with pytest.raises(ConfigError) as excinfo:
            await stage.run("tides", 0)
        assert excinfo.value is error
        assert excinfo.value.stage is None

    @pytest.mark.asyncio
    async def test_failure_emits_event(self) -> None:
        error = UpstreamError("rate limited", status_code=429)
        recorder = EventRecorder()
        stage = ResearchStage(ScriptedCompletionClient([error]), events=recorder)

        with pytest.raises(UpstreamError) as excinfo:
            await stage.run("tides", 1)

        assert excinfo.value is error
        assert recorder.names()[-1] == "research.failed"
        failed = recorder.named("research.failed")[0]
        assert failed.iteration == 1
        assert failed.detail == {"error": "rate limited", "error_kind": "upstream_error"}
        assert "research.completed" not in recorder.names()


class TestFactCheckStage:

    def test_prompt(self) -> None:
        assert build_fact_check_prompt("draft") == "Verify and improve: draft"

    @pytest.mark.asyncio
    async def test_increments_iteration(self) -> None:
        client = ScriptedCompletionClient(["verified draft"])
        output = await FactCheckStage(client, events=EventRecorder()).run("draft", 0)

        assert output.research == "verified draft"
        assert output.iteration == 1
        assert client.prompts == ["Verify and improve: draft"]

    @pytest.mark.asyncio
    async def test_failure_is_tagged_and_reraised(self) -> None:
        error = UpstreamError("rate limited", status_code=429)
        recorder = EventRecorder()
        stage = FactCheckStage(ScriptedCompletionClient([error]), events=recorder)

        with pytest.raises(UpstreamError) as excinfo:
            await stage.run("draft", 1)

        assert excinfo.value is error
        assert error.stage == "fact_check"
        failed = recorder.named("fact_check.failed")
        assert len(failed) == 1
        assert failed[0].detail == {"error": "rate limited", "error_kind": "upstream_error"}


class TestConfidence:

    @pytest.mark.parametrize("reply, expected", [
        ("0.85", 0.85),
        ("Confidence: 0.7.", 0.7),
        ("1", 1.0),
        ("1.0", 1.0),
        ("0", 0.0),
        (".5", 0.5),
    ])
    def test_parse(self, reply, expected) -> None:
        assert parse_confidence(reply) == pytest.approx(expected)

    @pytest.mark.parametrize("reply", ["not sure", "85%", "1.5", "10"])
    def test_parse_rejects_out_of_range(self, reply) -> None:
        assert parse_confidence(reply) is None

    @pytest.mark.asyncio
    async def test_stage_reports_score(self) -> None:
        recorder = EventRecorder()
        score = await ConfidenceStage(ScriptedCompletionClient(["0.92"]), events=recorder).run("draft", 2)

        assert score == pytest.approx(0.92)
        assert recorder.named("confidence.completed")[0].detail == {"confidence": 0.92}
