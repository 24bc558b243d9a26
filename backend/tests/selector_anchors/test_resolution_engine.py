"""
Unit tests for the ResolutionEngine.

Tests tier ordering, per-tier budgets, probing and candidate selection.
"""

import pytest
import asyncio
import time
from collections import Counter
from pathlib import Path
from unittest.mock import Mock
import sys

sys.path.insert(0, str(Path(__file__).parent.parent.parent / "app"))

from selector_anchors.capture import capture_anchor
from selector_anchors.config import ResolutionBudgets, StabilityWeights
from selector_anchors.core.models import Candidate, Liveness, ResolutionResult, Tier
from selector_anchors.core.resolution_engine import ResolutionEngine, select_best_candidate
from selector_anchors.indexing.source_index import index_source
from selector_anchors.store.models import AnchorHint


SAVE_TESTID = '[data-testid="save"]'


@pytest.fixture
def save_anchor(settings_before):
    """Anchor captured on the save button before the id was renamed."""
    return capture_anchor("save-button", "#save-btn", settings_before, "src/settings.html", 3)


@pytest.fixture
def email_anchor(login_form):
    """Anchor on the email input whose stored selector no longer exists."""
    return capture_anchor("email-input", "#email-old", login_form, "src/login.html", 2)


class TestStoredSelectorTier:
    """Test the tier 1 fast exit."""

    @pytest.mark.asyncio
    async def test_alive_stored_selector_returns_immediately(self, save_anchor, fake_probe, budgets):
        """An alive stored selector wins with confidence 1.0 without touching the source."""
        indexer = Mock(wraps=index_source)
        engine = ResolutionEngine(indexer=indexer)
        probe = fake_probe(alive=["#save-btn"])

        start = time.monotonic()
        result = await engine.resolve(save_anchor, "not markup at all {{{", probe, budgets)
        elapsed_ms = (time.monotonic() - start) * 1000

        assert result.selector == "#save-btn"
        assert result.tier == Tier.STORED_SELECTOR
        assert result.confidence == 1.0
        assert elapsed_ms < budgets.fast_path_ms + budgets.probe_ms
        indexer.assert_not_called()
        assert probe.calls == ["#save-btn"]

    @pytest.mark.asyncio
    async def test_stored_selector_result_keeps_snippet(self, save_anchor, fake_probe, budgets):
        """Tier 1 does not re-verify the snippet, so no new hash is reported."""
        result = await ResolutionEngine().resolve(
            save_anchor, "", fake_probe(alive=["#save-btn"]), budgets
        )

        assert result.snippet_hash is None
        assert result.source_range is None


class TestAttributeMatchScenario:
    """The stored id was renamed but the test id survived."""

    @pytest.mark.asyncio
    async def test_recovers_testid_selector(self, save_anchor, settings_after, fake_probe, budgets):
        probe = fake_probe(alive=[SAVE_TESTID, "#save-button"])

        result = await ResolutionEngine().resolve(save_anchor, settings_after, probe, budgets)

        assert result.selector == SAVE_TESTID
        assert result.tier == Tier.ATTRIBUTE_MATCH
        assert 0 < result.confidence < 1.0

    @pytest.mark.asyncio
    async def test_stored_and_fast_structural_fail(self, save_anchor, settings_after, fake_probe, budgets):
        probe = fake_probe(alive=[SAVE_TESTID])

        result = await ResolutionEngine().resolve(save_anchor, settings_after, probe, budgets)

        stored = [c for c in result.candidates if c.tier == Tier.STORED_SELECTOR]
        assert stored[0].liveness == Liveness.DEAD
        assert not [c for c in result.candidates if c.tier == Tier.FAST_STRUCTURAL]
        assert any(r.startswith("fast_structural: no node matching") for r in result.reasons)

    @pytest.mark.asyncio
    async def test_winner_carries_refreshed_location(self, save_anchor, settings_after, fake_probe, budgets):
        result = await ResolutionEngine().resolve(
            save_anchor, settings_after, fake_probe(alive=[SAVE_TESTID]), budgets
        )

        assert result.source_range == {"start": 3, "end": 3}
        assert result.snippet_hash.startswith("sha1:")
        assert result.snippet_hash != save_anchor.snippet_hash
        assert "save-button" in result.snippet

    @pytest.mark.asyncio
    async def test_each_selector_probed_once(self, save_anchor, settings_after, fake_probe, budgets):
        """The same selector from several tiers is probed a single time."""
        probe = fake_probe(alive=[SAVE_TESTID])

        await ResolutionEngine().resolve(save_anchor, settings_after, probe, budgets)

        assert probe.calls
        assert all(count == 1 for count in Counter(probe.calls).values())

    @pytest.mark.asyncio
    async def test_accepts_anchor_json_dict(self, save_anchor, settings_after, fake_probe, budgets):
        result = await ResolutionEngine().resolve(
            save_anchor.to_json_dict(), settings_after, fake_probe(alive=[SAVE_TESTID]), budgets
        )
        assert result.selector == SAVE_TESTID


class TestFastStructuralTier:
    """Test matching the selector shape inside the recorded lines."""

    @pytest.mark.asyncio
    async def test_shape_match_in_recorded_range(self, settings_before, fake_probe, budgets):
        """A dead descendant selector is rebuilt from the node it still describes."""
        anchor = capture_anchor(
            "save", "form.old-settings button.primary", settings_before, "src/settings.html", 3
        )

        result = await ResolutionEngine().resolve(
            anchor, settings_before, fake_probe(alive=[SAVE_TESTID]), budgets
        )

        assert result.tier == Tier.FAST_STRUCTURAL
        assert result.selector == SAVE_TESTID
        assert result.confidence == 1.0

    @pytest.mark.asyncio
    async def test_produces_at_most_one_candidate(self, settings_before, fake_probe, budgets):
        anchor = capture_anchor("btn", "button.btn", settings_before, "src/settings.html", 3)
        anchor = anchor.model_copy(update={"source_range": anchor.source_range.model_copy(update={"end": 4})})

        result = await ResolutionEngine().resolve(anchor, settings_before, fake_probe(), budgets)

        fast = [c for c in result.candidates if c.tier == Tier.FAST_STRUCTURAL]
        assert len(fast) == 1

    @pytest.mark.asyncio
    async def test_skipped_without_source_range(self, save_anchor, settings_after, fake_probe, budgets):
        anchor = save_anchor.model_copy(update={"source_range": None})

        result = await ResolutionEngine().resolve(anchor, settings_after, fake_probe(), budgets)

        assert "fast_structural: no source range recorded" in result.reasons


class TestTieBreak:
    """Test deterministic winner selection."""

    def test_lower_tier_wins_on_equal_confidence(self):
        attribute = Candidate('[name="email"]', Tier.ATTRIBUTE_MATCH, 0.8, Liveness.ALIVE, order=2)
        full = Candidate('input[name="email"]', Tier.FULL_STRUCTURAL, 0.8, Liveness.ALIVE, order=1)

        assert select_best_candidate([full, attribute]) is attribute

    def test_higher_confidence_beats_lower_tier(self):
        attribute = Candidate("[name=a]", Tier.ATTRIBUTE_MATCH, 0.6, Liveness.ALIVE, order=0)
        full = Candidate("#a", Tier.FULL_STRUCTURAL, 0.9, Liveness.ALIVE, order=1)

        assert select_best_candidate([attribute, full]) is full

    def test_first_seen_wins_within_tier(self):
        first = Candidate(".a", Tier.FULL_STRUCTURAL, 0.7, Liveness.ALIVE, order=3)
        second = Candidate(".b", Tier.FULL_STRUCTURAL, 0.7, Liveness.ALIVE, order=4)

        assert select_best_candidate([second, first]) is first

    def test_dead_and_unknown_never_win(self):
        candidates = [
            Candidate(".a", Tier.FAST_STRUCTURAL, 1.0, Liveness.DEAD),
            Candidate(".b", Tier.ATTRIBUTE_MATCH, 1.0, Liveness.UNKNOWN),
        ]
        assert select_best_candidate(candidates) is None
        assert all(c.confidence == 0 for c in candidates)

    @pytest.mark.asyncio
    async def test_attribute_match_beats_full_structural(self, email_anchor, login_form, fake_probe, budgets):
        """Both tiers find the unchanged input with score 1.0; the lower tier wins."""
        probe = fake_probe(alive=['[name="email"]', 'input[name="email"]'])

        result = await ResolutionEngine().resolve(email_anchor, login_form, probe, budgets)

        full = [c for c in result.candidates if c.tier == Tier.FULL_STRUCTURAL]
        assert full and full[0].selector == 'input[name="email"]'
        assert full[0].confidence == 1.0

        assert result.tier == Tier.ATTRIBUTE_MATCH
        assert result.selector == '[name="email"]'
        assert result.confidence == 1.0


class TestFailures:
    """Test graceful degradation."""

    @pytest.mark.asyncio
    async def test_all_dead_returns_no_selector(self, save_anchor, settings_after, fake_probe, budgets):
        start = time.monotonic()
        result = await ResolutionEngine().resolve(
            save_anchor, settings_after, fake_probe(), budgets, deadline_ms=2000
        )

        assert time.monotonic() - start < 2.0
        assert result.selector is None
        assert result.tier is None
        assert result.confidence == 0.0
        assert not result.timed_out
        assert result.candidates
        assert all(c.liveness != Liveness.ALIVE for c in result.candidates)

    @pytest.mark.asyncio
    async def test_raising_probe_is_unknown(self, save_anchor, settings_after, fake_probe, budgets):
        probe = fake_probe(errors={SAVE_TESTID: RuntimeError("page crashed")})

        result = await ResolutionEngine().resolve(save_anchor, settings_after, probe, budgets)

        testid = [c for c in result.candidates if c.selector == SAVE_TESTID][0]
        assert testid.liveness == Liveness.UNKNOWN
        assert testid.probe_error == "page crashed"
        assert result.selector is None

    @pytest.mark.asyncio
    async def test_slow_probe_is_unknown(self, save_anchor, settings_after, fake_probe):
        budgets = ResolutionBudgets(probe_ms=20)
        probe = fake_probe(alive=[SAVE_TESTID], delays={SAVE_TESTID: 0.5})

        result = await ResolutionEngine().resolve(save_anchor, settings_after, probe, budgets)

        testid = [c for c in result.candidates if c.selector == SAVE_TESTID][0]
        assert testid.liveness == Liveness.UNKNOWN
        assert "timed out" in testid.probe_error
        assert result.selector is None

    @pytest.mark.asyncio
    async def test_unparsable_source_still_resolves(self, save_anchor, fake_probe, budgets):
        result = await ResolutionEngine().resolve(
            save_anchor, "\x00\x01 not markup", fake_probe(alive=[SAVE_TESTID]), budgets
        )

        assert result.selector is None
        assert "full_structural: source produced no nodes" in result.reasons

    @pytest.mark.asyncio
    async def test_rejected_text_pattern_does_not_abort(self, save_anchor, settings_after, fake_probe, budgets):
        """A dangerous expected-text regex is matched literally instead."""
        anchor = save_anchor.model_copy(update={"hint": AnchorHint(expected_text="/(((((Save/")})

        result = await ResolutionEngine().resolve(
            anchor, settings_after, fake_probe(alive=[SAVE_TESTID]), budgets
        )

        assert result.selector == SAVE_TESTID
        assert not [c for c in result.candidates if c.tier == Tier.FULL_STRUCTURAL]

    @pytest.mark.asyncio
    async def test_raising_indexer_empties_tier(self, save_anchor, settings_after, fake_probe, budgets):
        def broken_indexer(text, line_offset=0):
            raise RuntimeError("indexer exploded")

        result = await ResolutionEngine(indexer=broken_indexer).resolve(
            save_anchor, settings_after, fake_probe(alive=[SAVE_TESTID]), budgets
        )

        assert result.selector is None
        assert any("indexer exploded" in r for r in result.reasons)


class TestBudgets:
    """Test per-tier and overall time bounds."""

    @pytest.mark.asyncio
    async def test_slow_indexer_is_abandoned(self, save_anchor, settings_after, fake_probe,
                                             tight_budgets, slow_indexer):
        """A 50ms indexer against 1ms tier budgets does not hold resolution."""
        engine = ResolutionEngine(indexer=slow_indexer)

        start = time.monotonic()
        result = await engine.resolve(save_anchor, settings_after, fake_probe(alive=[SAVE_TESTID]), tight_budgets)
        elapsed = time.monotonic() - start

        assert elapsed < 0.1
        assert slow_indexer.calls
        assert not [c for c in result.candidates if c.tier == Tier.FULL_STRUCTURAL]
        assert "full_structural: timed out after 1ms" in result.reasons
        assert result.durations_ms["full_structural"] < 50

    @pytest.mark.asyncio
    async def test_attribute_match_survives_full_scan_timeout(self, save_anchor, large_source, fake_probe,
                                                              slow_indexer):
        """On a large file, AttributeMatch finishes in its budget while FullStructural alone times out."""
        anchor = save_anchor.model_copy(update={"source_range": None})
        budgets = ResolutionBudgets(full_scan_ms=1)

        start = time.monotonic()
        result = await ResolutionEngine(indexer=slow_indexer).resolve(
            anchor, large_source, fake_probe(alive=[SAVE_TESTID]), budgets
        )
        elapsed = time.monotonic() - start

        assert result.selector == SAVE_TESTID
        assert result.tier == Tier.ATTRIBUTE_MATCH
        assert result.source_range == {"start": 1003, "end": 1003}
        assert "full_structural: timed out after 1ms" in result.reasons
        assert not [c for c in result.candidates if c.tier == Tier.FULL_STRUCTURAL]
        assert "fast_structural: no source range recorded" in result.reasons
        assert elapsed < 1.0

    @pytest.mark.asyncio
    async def test_string_budgets_are_coerced(self, save_anchor, settings_after, fake_probe):
        """Budgets given as strings behave like the numbers they spell."""
        budgets = ResolutionBudgets(fast_path_ms="300", attribute_ms="600", full_scan_ms="900", probe_ms="600")

        result = await ResolutionEngine().resolve(
            save_anchor, settings_after, fake_probe(alive=[SAVE_TESTID]), budgets
        )

        assert result.selector == SAVE_TESTID
        assert not any("timed out" in r for r in result.reasons)

    @pytest.mark.asyncio
    async def test_overall_deadline(self, save_anchor, settings_after, fake_probe, budgets):
        probe = fake_probe(alive=[SAVE_TESTID], default_delay=1.0)

        start = time.monotonic()
        result = await ResolutionEngine().resolve(
            save_anchor, settings_after, probe, budgets, deadline_ms=100
        )

        assert time.monotonic() - start < 0.5
        assert result.timed_out
        assert result.selector is None
        assert any(r.startswith("deadline:") for r in result.reasons)

    @pytest.mark.asyncio
    async def test_durations_recorded_per_tier(self, save_anchor, settings_after, fake_probe, budgets):
        result = await ResolutionEngine().resolve(
            save_anchor, settings_after, fake_probe(alive=[SAVE_TESTID]), budgets
        )

        for label in ("stored_selector", "fast_structural", "attribute_match", "full_structural", "probe"):
            assert label in result.durations_ms


class TestConcurrency:

    @pytest.mark.asyncio
    async def test_distinct_anchors_resolve_concurrently(self, save_anchor, email_anchor,
                                                         settings_after, login_form, fake_probe, budgets):
        engine = ResolutionEngine()
        probe = fake_probe(alive=[SAVE_TESTID, '[name="email"]'])

        save_result, email_result = await asyncio.gather(
            engine.resolve(save_anchor, settings_after, probe, budgets),
            engine.resolve(email_anchor, login_form, probe, budgets),
        )

        assert save_result.selector == SAVE_TESTID
        assert email_result.selector == '[name="email"]'


class TestResultSerialization:

    def test_failed_result_to_dict(self):
        result = ResolutionResult.failed(["result: no live candidate among 0"])
        data = result.to_dict()

        assert data["selector"] is None
        assert data["tier"] is None
        assert data["reasons"] == ["result: no live candidate among 0"]


class TestWrappedMarkup:
    """Test anchors on elements whose start tag spans several lines."""

    @pytest.mark.asyncio
    async def test_shape_match_over_full_element_range(self, wrapped_before, wrapped_after, fake_probe, budgets):
        """The recorded range covers the whole element, so FastStructural finds it again."""
        anchor = capture_anchor("save-button", "#save-btn", wrapped_before, "src/settings.html", 2)
        assert anchor.source_range.start == 2
        assert anchor.source_range.end == 8

        moved = anchor.model_copy(update={"selector": "form.gone button.primary"})
        result = await ResolutionEngine().resolve(moved, wrapped_after, fake_probe(alive=[SAVE_TESTID]), budgets)

        assert result.selector == SAVE_TESTID
        assert result.tier == Tier.FAST_STRUCTURAL
        assert result.source_range == {"start": 2, "end": 8}
        assert "id=\"save-button\"" in result.snippet


class TestStability:
    """Test the stability breakdown attached to results."""

    @pytest.mark.asyncio
    async def test_winner_carries_stability(self, save_anchor, settings_after, fake_probe, budgets):
        engine = ResolutionEngine(stability_weights=StabilityWeights())

        result = await engine.resolve(save_anchor, settings_after, fake_probe(alive=[SAVE_TESTID]), budgets)

        assert result.selector == SAVE_TESTID
        assert result.stability.hint_quality == 1.0
        assert result.stability.liveness == 1.0
        assert result.stability.specificity == 1.0
        assert result.stability.snippet_match == 0.0
        assert result.stability.overall == pytest.approx(0.8)
        assert any("stability 80%" in r for r in result.reasons)

        data = result.to_dict()
        assert data["stability"]["overall"] == 0.8
        assert set(data["stability"]["breakdown"]) == {"hint_quality", "snippet_match", "liveness", "specificity"}
        assert all(c["stability"] is not None for c in data["candidates"])

    @pytest.mark.asyncio
    async def test_stored_selector_stability(self, save_anchor, settings_before, fake_probe, budgets):
        engine = ResolutionEngine(stability_weights=StabilityWeights())

        result = await engine.resolve(save_anchor, settings_before, fake_probe(alive=["#save-btn"]), budgets)

        assert result.tier == Tier.STORED_SELECTOR
        assert result.confidence == 1.0
        assert result.stability.specificity == 0.6
        assert result.stability.liveness == 1.0

    def test_stability_never_changes_the_winner(self):
        """A more stable selector with lower confidence still loses."""
        fragile = Candidate(".row", Tier.FULL_STRUCTURAL, 0.9, Liveness.ALIVE, order=1)
        stable = Candidate(SAVE_TESTID, Tier.FULL_STRUCTURAL, 0.8, Liveness.ALIVE, order=0)

        assert select_best_candidate([stable, fragile]) is fragile
