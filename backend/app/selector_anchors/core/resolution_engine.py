"""
Resolution Engine

Finds the best current selector for a stored anchor after the source it
was captured from has been refactored.

Tier Order (each bounded by its own budget, a timed-out tier yields nothing):
1. StoredSelector - probe the last-known selector; alive means done (confidence 1.0)
2. FastStructural - re-parse only the recorded source lines, match the selector's shape
3. AttributeMatch - search the whole source for stable attributes (test ids, name, aria-label)
4. FullStructural - re-index the whole source, rank nodes by similarity to the stored snippet

Candidates from tiers 2-4 are probed concurrently. A candidate's confidence
is its match score when the probe says alive, otherwise 0. The winner has
the highest confidence; ties go to the lower tier, then the higher match
score, then the candidate seen first. Each candidate also carries a
stability breakdown (hint preference, snippet match, liveness, selector
specificity) for diagnostics.
"""

import asyncio
import functools
import logging
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple, Union

from ..config import ResolutionBudgets, StabilityWeights, load_budgets, load_stability_weights
from ..hashing.snippet_hash import hash_fragment, hash_matches, parse_hash, text_similarity
from ..hashing.stability_score import calculate_stability_score
from ..indexing.selector_utils import (
    STABLE_ATTRIBUTES,
    SelectorShape,
    attribute_selector,
    generate_selectors_from_attributes,
    last_compound,
    parse_selector_shape,
    stable_attributes,
)
from ..indexing.source_index import SourceIndex, SourceNode, index_source, primary_node, slice_lines
from ..matching.safe_pattern import text_matches
from ..probe.liveness import LivenessProbe, probe_candidate
from ..store.models import Anchor
from .models import Candidate, Liveness, ResolutionResult, Tier

# Configure logging
logger = logging.getLogger(__name__)


Indexer = Callable[..., SourceIndex]
TierOutcome = Tuple[List[Candidate], str]


def select_best_candidate(candidates: List[Candidate]) -> Optional[Candidate]:
    """Highest confidence > 0; ties -> lower tier, higher match score, first seen"""
    contenders = [c for c in candidates if c.confidence > 0]
    if not contenders:
        return None
    return min(contenders, key=lambda c: (-c.confidence, c.tier.value, -c.match_score, c.order))


@dataclass
class _Trace:
    """Diagnostics collected during one call; survives an overall timeout"""
    durations_ms: Dict[str, float] = field(default_factory=dict)
    reasons: List[str] = field(default_factory=list)
    candidates: List[Candidate] = field(default_factory=list)

    def note(self, stage: str, message: str):
        self.reasons.append(f"{stage}: {message}")
        logger.info(f"[{stage}] {message}")


@dataclass
class _Context:
    """Per-call inputs shared by the tier workers"""
    anchor: Anchor
    source_text: str
    budgets: ResolutionBudgets
    shape: SelectorShape
    stored_node: Optional[SourceNode] = None
    full_index: Optional[SourceIndex] = None


class ResolutionEngine:
    """
    Stateless anchor resolver.

    The engine holds no per-call state, so one instance can resolve many
    anchors concurrently. The indexer is injectable; it is called as
    indexer(text) for the full source and indexer(text, line_offset=n)
    for a recorded region.
    """

    # FullStructural keeps at most this many candidates above the threshold
    MAX_FULL_STRUCTURAL_CANDIDATES = 5
    MIN_SIMILARITY = 0.55

    def __init__(
        self,
        indexer: Indexer = index_source,
        require_visible: bool = True,
        stability_weights: Optional[StabilityWeights] = None
    ):
        self.indexer = indexer
        self.require_visible = require_visible
        self.stability_weights = stability_weights

    async def resolve(
        self,
        anchor: Union[Anchor, dict],
        live_source_text: str,
        probe: LivenessProbe,
        budgets: Optional[ResolutionBudgets] = None,
        deadline_ms: Optional[float] = None
    ) -> ResolutionResult:
        """
        Resolve an anchor against the current source and a live page.

        Args:
            anchor: stored anchor (model or its JSON dict)
            live_source_text: current content of the anchor's source file
            probe: liveness probe bound to the running page
            budgets: time budgets (read from the environment when omitted)
            deadline_ms: optional bound on the whole call

        Returns:
            ResolutionResult; selector is None when nothing alive was found
        """
        if not isinstance(anchor, Anchor):
            anchor = Anchor.model_validate(anchor)
        budgets = budgets or load_budgets()
        trace = _Trace()

        logger.info(f"Resolving anchor {anchor.id} (selector: {anchor.selector})")

        if deadline_ms is None:
            return await self._run(anchor, live_source_text or "", probe, budgets, trace)

        try:
            return await asyncio.wait_for(
                self._run(anchor, live_source_text or "", probe, budgets, trace),
                timeout=max(deadline_ms, 0) / 1000.0
            )
        except asyncio.TimeoutError:
            logger.warning(f"Resolution of {anchor.id} exceeded deadline of {deadline_ms:g}ms")
            trace.reasons.append(f"deadline: exceeded {deadline_ms:g}ms, resolution aborted")
            return ResolutionResult.failed(
                trace.reasons, trace.durations_ms, trace.candidates, timed_out=True
            )

    # ==================== Pipeline ====================

    async def _run(
        self,
        anchor: Anchor,
        source_text: str,
        probe: LivenessProbe,
        budgets: ResolutionBudgets,
        trace: _Trace
    ) -> ResolutionResult:
        probe_cache: Dict[str, Tuple[Liveness, Optional[str]]] = {}
        weights = self.stability_weights or load_stability_weights()

        # Tier 1: stored selector
        stored = await self._stored_selector(anchor, probe, budgets, trace, probe_cache)
        if stored.liveness is Liveness.ALIVE:
            trace.note(Tier.STORED_SELECTOR.label, f"stored selector is alive: {anchor.selector}")
            self._rate_stability(anchor, [stored], weights)
            return ResolutionResult(
                selector=anchor.selector,
                tier=Tier.STORED_SELECTOR,
                confidence=1.0,
                durations_ms=trace.durations_ms,
                candidates=trace.candidates,
                reasons=trace.reasons,
                stability=stored.stability
            )

        ctx = _Context(
            anchor=anchor,
            source_text=source_text,
            budgets=budgets,
            shape=parse_selector_shape(anchor.selector)
        )
        ctx.stored_node = await self._parse_stored_snippet(ctx, trace)

        seen = {c.selector for c in trace.candidates}
        tiers = [
            (Tier.FAST_STRUCTURAL, budgets.fast_path_ms, self._fast_structural),
            (Tier.ATTRIBUTE_MATCH, budgets.attribute_ms, self._attribute_match),
            (Tier.FULL_STRUCTURAL, budgets.full_scan_ms, self._full_structural),
        ]
        for tier, budget_ms, worker in tiers:
            produced = await self._run_tier(tier, budget_ms, worker, ctx, trace)
            for candidate in produced:
                if candidate.selector in seen:
                    logger.debug(f"[{tier.label}] {candidate.selector} already proposed")
                    continue
                seen.add(candidate.selector)
                candidate.order = len(trace.candidates)
                trace.candidates.append(candidate)

        await self._probe_all(trace.candidates, probe, budgets, trace, probe_cache)
        self._rate_stability(anchor, trace.candidates, weights)

        winner = select_best_candidate(trace.candidates)
        if winner is None:
            trace.note("result", f"no live candidate among {len(trace.candidates)}")
            return ResolutionResult.failed(trace.reasons, trace.durations_ms, trace.candidates)

        trace.note(
            "result",
            f"{winner.selector} from {winner.tier.label} (confidence {winner.confidence:.2f}, "
            f"stability {winner.stability.percent}%)"
        )
        return ResolutionResult(
            selector=winner.selector,
            tier=winner.tier,
            confidence=winner.confidence,
            durations_ms=trace.durations_ms,
            candidates=trace.candidates,
            reasons=trace.reasons,
            snippet_hash=winner.snippet_hash,
            source_range=winner.source_range,
            snippet=winner.snippet,
            stability=winner.stability
        )

    async def _stored_selector(
        self,
        anchor: Anchor,
        probe: LivenessProbe,
        budgets: ResolutionBudgets,
        trace: _Trace,
        probe_cache: Dict[str, Tuple[Liveness, Optional[str]]]
    ) -> Candidate:
        start = time.monotonic()
        timeout_ms = min(budgets.fast_path_ms, budgets.probe_ms)
        liveness, error = await probe_candidate(probe, anchor.selector, timeout_ms, self.require_visible)
        trace.durations_ms[Tier.STORED_SELECTOR.label] = (time.monotonic() - start) * 1000

        probe_cache[anchor.selector] = (liveness, error)
        candidate = Candidate(
            selector=anchor.selector,
            tier=Tier.STORED_SELECTOR,
            match_score=1.0,
            liveness=liveness,
            probe_error=error
        )
        trace.candidates.append(candidate)
        if liveness is not Liveness.ALIVE:
            trace.note(Tier.STORED_SELECTOR.label, f"stored selector {liveness.value}" + (f" ({error})" if error else ""))
        return candidate

    async def _parse_stored_snippet(self, ctx: _Context, trace: _Trace) -> Optional[SourceNode]:
        """Primary element of the stored snippet, parsed under the source-parse budget"""
        if not ctx.anchor.snippet:
            return None

        budget_ms = ctx.budgets.source_parse_ms
        loop = asyncio.get_running_loop()
        start = time.monotonic()
        try:
            index = await asyncio.wait_for(
                loop.run_in_executor(None, self.indexer, ctx.anchor.snippet),
                timeout=budget_ms / 1000.0
            )
        except asyncio.TimeoutError:
            trace.note("source_parse", f"stored snippet parse timed out after {budget_ms:g}ms")
            return None
        except Exception as e:
            logger.warning(f"Stored snippet parse failed: {e}")
            trace.reasons.append(f"source_parse: failed ({e})")
            return None
        finally:
            trace.durations_ms["source_parse"] = (time.monotonic() - start) * 1000

        node = primary_node(index)
        if node is None:
            trace.note("source_parse", "stored snippet has no elements")
        return node

    async def _run_tier(
        self,
        tier: Tier,
        budget_ms: float,
        worker: Callable[[_Context], TierOutcome],
        ctx: _Context,
        trace: _Trace
    ) -> List[Candidate]:
        """Run a synchronous tier worker in a thread, abandoning it past the budget"""
        loop = asyncio.get_running_loop()
        start = time.monotonic()
        candidates: List[Candidate] = []
        try:
            candidates, message = await asyncio.wait_for(
                loop.run_in_executor(None, functools.partial(worker, ctx)),
                timeout=budget_ms / 1000.0
            )
            trace.note(tier.label, message)
        except asyncio.TimeoutError:
            logger.warning(f"[{tier.label}] timed out after {budget_ms:g}ms")
            trace.reasons.append(f"{tier.label}: timed out after {budget_ms:g}ms")
        except Exception as e:
            logger.warning(f"[{tier.label}] failed: {e}")
            trace.reasons.append(f"{tier.label}: failed ({e})")
        trace.durations_ms[tier.label] = (time.monotonic() - start) * 1000
        return candidates

    async def _probe_all(
        self,
        candidates: List[Candidate],
        probe: LivenessProbe,
        budgets: ResolutionBudgets,
        trace: _Trace,
        probe_cache: Dict[str, Tuple[Liveness, Optional[str]]]
    ):
        """Probe every distinct unprobed selector concurrently"""
        pending = [c.selector for c in candidates if c.selector not in probe_cache]
        start = time.monotonic()

        if pending:
            results = await asyncio.gather(
                *(probe_candidate(probe, s, budgets.probe_ms, self.require_visible) for s in pending),
                return_exceptions=True
            )
            for selector, outcome in zip(pending, results):
                if isinstance(outcome, BaseException):
                    probe_cache[selector] = (Liveness.UNKNOWN, str(outcome) or type(outcome).__name__)
                else:
                    probe_cache[selector] = outcome

        for candidate in candidates:
            if candidate.tier is Tier.STORED_SELECTOR:
                continue
            candidate.liveness, candidate.probe_error = probe_cache[candidate.selector]

        trace.durations_ms["probe"] = (time.monotonic() - start) * 1000
        if pending:
            alive = sum(1 for c in candidates if c.liveness is Liveness.ALIVE)
            trace.note("probe", f"{alive}/{len(candidates)} candidates alive")

    # ==================== Tier workers (synchronous) ====================

    def _full_index(self, ctx: _Context) -> SourceIndex:
        # Built once per call; AttributeMatch and FullStructural share it
        if ctx.full_index is None:
            ctx.full_index = self.indexer(ctx.source_text)
        return ctx.full_index

    def _fast_structural(self, ctx: _Context) -> TierOutcome:
        anchor, shape = ctx.anchor, ctx.shape
        if anchor.source_range is None:
            return [], "no source range recorded"
        if shape.is_empty():
            return [], "stored selector has no structural shape"

        rng = anchor.source_range
        region, offset = slice_lines(ctx.source_text, rng.start, rng.end)
        if not region.strip():
            return [], f"lines {rng.start}-{rng.end} are empty"

        index = self.indexer(region, line_offset=offset)
        nodes = index.find_by_tag_and_attrs(shape.tag, shape.constraints())
        if shape.text:
            nodes = [n for n in nodes if text_matches(shape.text, n.text)]
        if not nodes:
            return [], f"no node matching {last_compound(anchor.selector)!r} in lines {rng.start}-{rng.end}"

        pairs = self._shape_pairs(shape)
        scored = [(node, self._match_score(ctx, node, pairs)) for node in nodes]
        node, score = min(scored, key=lambda item: (-item[1], item[0].order))

        selector = self._selector_for(ctx, node) or last_compound(anchor.selector)
        return [self._candidate(ctx, selector, Tier.FAST_STRUCTURAL, score, node)], \
            f"<{node.tag}> at line {node.line} matches selector shape"

    def _attribute_match(self, ctx: _Context) -> TierOutcome:
        pairs = self._stable_pairs(ctx)
        if not pairs:
            return [], "no stable attributes on selector, snippet or hint"

        index = self._full_index(ctx)
        best: Dict[str, Candidate] = {}
        for name, value in pairs:
            selector = attribute_selector(name, value)
            for node in index.find_by_attribute(name, value):
                score = self._match_score(ctx, node, pairs)
                if selector not in best or score > best[selector].match_score:
                    best[selector] = self._candidate(ctx, selector, Tier.ATTRIBUTE_MATCH, score, node)

        attr_list = ", ".join(f"{n}={v!r}" for n, v in pairs)
        if not best:
            return [], f"no node carries {attr_list}"
        return list(best.values()), f"{len(best)} candidate(s) from {attr_list}"

    def _full_structural(self, ctx: _Context) -> TierOutcome:
        anchor = ctx.anchor
        if not anchor.snippet and not anchor.snippet_hash:
            return [], "no stored snippet to compare against"

        index = self._full_index(ctx)
        if index.is_empty:
            return [], "source produced no nodes"

        deadline = time.monotonic() + ctx.budgets.snippet_match_ms / 1000.0
        near_line = anchor.source_range.start if anchor.source_range else None
        ranked = index.find_by_snippet_similarity(
            anchor.snippet_hash, anchor.snippet, near_line=near_line, deadline=deadline
        )

        expected_text = (anchor.hint.expected_text if anchor.hint else None) or ctx.shape.text
        candidates: List[Candidate] = []
        seen = set()
        for node, score in ranked:
            exact = score >= 1.0
            if not exact:
                if score < self.MIN_SIMILARITY or len(candidates) >= self.MAX_FULL_STRUCTURAL_CANDIDATES:
                    break
                if expected_text and not text_matches(expected_text, node.text):
                    continue
            selector = self._selector_for(ctx, node)
            if not selector or selector in seen:
                continue
            seen.add(selector)
            candidates.append(self._candidate(ctx, selector, Tier.FULL_STRUCTURAL, score, node))

        if not candidates:
            best = ranked[0][1] if ranked else 0.0
            return [], f"no node above similarity {self.MIN_SIMILARITY} (best {best:.2f})"
        return candidates, f"{len(candidates)} similar node(s), best score {candidates[0].match_score:.2f}"

    # ==================== Scoring helpers ====================

    @staticmethod
    def _shape_pairs(shape: SelectorShape) -> List[Tuple[str, Optional[str]]]:
        pairs: List[Tuple[str, Optional[str]]] = []
        if shape.tag:
            pairs.append(("tag", shape.tag))
        pairs.extend(shape.required_attrs().items())
        pairs.extend((k, None) for k, v in shape.attrs.items() if v is None)
        pairs.extend(("class", c) for c in shape.classes)
        return pairs

    @staticmethod
    def _stable_pairs(ctx: _Context) -> List[Tuple[str, str]]:
        pairs: List[Tuple[str, str]] = []
        for name in STABLE_ATTRIBUTES:
            value = ctx.shape.attrs.get(name)
            if value:
                pairs.append((name, value))
        if ctx.stored_node is not None:
            pairs.extend(stable_attributes(ctx.stored_node.attrs))
        hint = ctx.anchor.hint
        if hint is not None:
            if hint.testid:
                pairs.append(("data-testid", hint.testid))
            if hint.aria_label:
                pairs.append(("aria-label", hint.aria_label))
        return list(dict.fromkeys(pairs))

    @staticmethod
    def _attribute_fraction(node: SourceNode, pairs: List[Tuple[str, Optional[str]]]) -> float:
        if not pairs:
            return 0.0
        hits = 0
        for name, value in pairs:
            if name == "tag":
                hits += node.tag == value
            elif name == "class":
                hits += value in node.classes
            elif value is None:
                hits += name in node.attrs
            else:
                hits += node.attrs.get(name) == value
        return hits / len(pairs)

    def _match_score(self, ctx: _Context, node: SourceNode, pairs: List[Tuple[str, Optional[str]]]) -> float:
        """1.0 on hash match, else similarity to the stored snippet, else attribute coverage"""
        anchor = ctx.anchor
        if anchor.snippet_hash and hash_matches(node.fragment, anchor.snippet_hash):
            return 1.0
        if anchor.snippet:
            return text_similarity(anchor.snippet, node.fragment)
        return self._attribute_fraction(node, pairs)

    @staticmethod
    def _rate_stability(anchor: Anchor, candidates: List[Candidate], weights: StabilityWeights):
        """Attach a stability breakdown to each candidate (diagnostic only)"""
        prefer = anchor.hint.prefer if anchor.hint else None
        for candidate in candidates:
            alive = None if candidate.liveness is Liveness.UNKNOWN else candidate.liveness is Liveness.ALIVE
            # The stored selector is never re-verified against the source
            matched = None if candidate.tier is Tier.STORED_SELECTOR else candidate.match_score >= 1.0
            candidate.stability = calculate_stability_score(
                candidate.selector,
                prefer=prefer,
                snippet_matched=matched,
                alive=alive,
                weights=weights
            )

    @staticmethod
    def _selector_for(ctx: _Context, node: SourceNode) -> Optional[str]:
        prefer = ctx.anchor.hint.prefer if ctx.anchor.hint else None
        selectors = generate_selectors_from_attributes(node.attrs, node.tag, node.leaf_text, prefer=prefer)
        return selectors[0] if selectors else None

    @staticmethod
    def _candidate(ctx: _Context, selector: str, tier: Tier, score: float, node: SourceNode) -> Candidate:
        algorithm, digits = parse_hash(ctx.anchor.snippet_hash or "")
        return Candidate(
            selector=selector,
            tier=tier,
            match_score=round(score, 6),
            snippet_hash=hash_fragment(node.fragment, algorithm=algorithm, digits=digits),
            source_range={"start": node.line, "end": node.end_line},
            snippet=node.fragment
        )
