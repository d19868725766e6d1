"""
Measurement-point selection by randomized backtracking.

Chooses ``slot_count`` (5) points from the candidate space so that every
layout rule holds among the measurement points and against active sources,
while spreading the points out (maximin score) and biasing slot i toward
z = 1.0 + 0.1 * i.

Search outline:
  1. Rank Z levels per slot by closeness to the slot's preferred height
  2. Depth-first over slots; per Z level keep candidates with unused X/Y
     that also satisfy the distance rules (the strict pool)
  3. Branch on the top-K maximin-scored candidates, bounded by a node budget
  4. Pick one of the collected strict layouts (seeded: the first, else by
     generation counter) and hill-climb it within its Z levels
  5. With no strict layout, greedily fill the slots through relaxed tiers;
     the result is feasible only if every slot came from the strict tier

Randomness comes from an injectable ``numpy.random.Generator``; identical
inputs with the same seed (or generation counter) give identical output.
"""
import logging
import math
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set, Tuple

import numpy as np

from candidate_space import candidates_by_level
from layout_rules import LayoutRules
from proximity_index import SpatialHashGrid
from room_geometry import EPS, Point3, as_point3, grid_key, min_distance_to_set, round01

logger = logging.getLogger(__name__)


@dataclass
class SearchConfig:
    """Configuration for the backtracking layout search."""
    slot_count: int = 5
    base_height: float = 1.0            # preferred z of slot 0
    height_increment: float = 0.1       # preferred z step per slot
    max_nodes: int = 60000              # recursion node budget
    max_solutions: int = 20             # stop once this many strict layouts are found
    base_top_candidates: int = 22       # branching per Z level on small spaces
    base_top_levels: int = 18           # Z levels tried per slot on small spaces
    min_top_candidates: int = 8
    min_top_levels: int = 6
    branching_reference_size: int = 5000  # candidate count above which branching shrinks
    refine_passes: int = 2
    fallback_pool: int = 20             # greedy fallback picks among the top-N scored
    level_jitter: float = 0.001
    score_jitter: float = 0.05
    rank_jitter: float = 0.02
    deadline_s: Optional[float] = None  # wall-clock budget, None = node budget only

    def __post_init__(self):
        if self.slot_count < 1:
            raise ValueError(f"slot_count must be >= 1, got {self.slot_count}")
        if self.max_nodes < 0 or self.max_solutions < 1:
            raise ValueError("max_nodes must be >= 0 and max_solutions >= 1")
        if self.deadline_s is not None and self.deadline_s < 0:
            raise ValueError(f"deadline_s must be non-negative, got {self.deadline_s}")

    def preferred_heights(self) -> List[float]:
        return [round01(self.base_height + self.height_increment * i) for i in range(self.slot_count)]

    def branching(self, n_candidates: int) -> Tuple[int, int]:
        """(top candidates, top Z levels) adapted to the candidate space size."""
        scale = max(0.5, min(1.0, self.branching_reference_size / max(1, n_candidates)))
        top_c = max(self.min_top_candidates, int(math.floor(self.base_top_candidates * scale)))
        top_z = max(self.min_top_levels, int(math.floor(self.base_top_levels * scale)))
        return top_c, top_z


@dataclass
class SelectionResult:
    """Result of measurement-point selection."""
    points: List[Point3]
    feasible: bool
    solutions_found: int = 0
    nodes_visited: int = 0
    stop_reason: str = ""
    seeded: bool = False
    selected_index: int = -1
    trace: List[dict] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "points": [list(p) for p in self.points],
            "feasible": self.feasible,
            "solutions_found": self.solutions_found,
            "nodes_visited": self.nodes_visited,
            "stop_reason": self.stop_reason,
            "seeded": self.seeded,
            "selected_index": self.selected_index,
        }


def seed_to_int(seed: str) -> int:
    """Seed string to integer: the sum of its character codes."""
    return sum(ord(c) for c in seed)


def make_rng(seed: Optional[str], generation_counter: int = 0) -> np.random.Generator:
    """Random source for one selection run.

    A non-empty seed makes the run reproducible regardless of the counter;
    otherwise the generation counter picks the stream, so each regeneration
    explores a different layout.
    """
    if seed:
        return np.random.default_rng(seed_to_int(seed))
    if generation_counter < 0:
        raise ValueError(f"generation_counter must be >= 0, got {generation_counter}")
    return np.random.default_rng(generation_counter)


def select_points(
    sources: Sequence[Sequence[float]],
    active: Sequence[bool],
    candidates: Sequence[Sequence[float]],
    seed: Optional[str] = None,
    generation_counter: int = 0,
    config: Optional[SearchConfig] = None,
    rules: Optional[LayoutRules] = None,
    rng: Optional[np.random.Generator] = None,
    should_stop: Optional[Callable[[], bool]] = None,
) -> SelectionResult:
    """Select a measurement layout from the candidate space.

    Args:
        sources: Source positions (F1, F2).
        active: Activation flag per source.
        candidates: Candidate points, typically from ``build_candidates``.
        seed: Non-empty string for a reproducible layout.
        generation_counter: Regeneration count, varies unseeded layouts.
        config: Search parameters.
        rules: Distance/uniqueness limits shared with the validator.
        rng: Random source override (defaults to ``make_rng(seed, counter)``).
        should_stop: Polled once per search node; True cancels deepening.

    Returns:
        SelectionResult; ``feasible`` is False when no layout satisfying every
        rule was found within budget, in which case ``points`` is a
        best-effort layout (or empty when there are no candidates).
    """
    if config is None:
        config = SearchConfig()
    if rules is None:
        rules = LayoutRules()
    seeded = bool(seed)
    if rng is None:
        rng = make_rng(seed, generation_counter)

    arena = _build_arena(candidates)
    if len(arena) == 0:
        logger.info("Selection complete: feasible=False solutions=0 nodes=0 stop_reason=no_candidates")
        return SelectionResult(points=[], feasible=False, stop_reason="no_candidates", seeded=seeded)

    search = _LayoutSearch(arena, sources, active, rng, config, rules, seeded, should_stop)
    search.run()

    if search.solutions:
        idx = 0 if seeded else generation_counter % len(search.solutions)
        layout = search.refine(search.solutions[idx])
        result = SelectionResult(
            points=search.to_points(layout),
            feasible=True,
            solutions_found=len(search.solutions),
            nodes_visited=search.nodes,
            stop_reason=search.stop_reason,
            seeded=seeded,
            selected_index=idx,
            trace=search.trace,
        )
    else:
        logger.warning(
            "No layout satisfies every rule (nodes=%d, stop_reason=%s); "
            "falling back to relaxed greedy fill",
            search.nodes, search.stop_reason,
        )
        layout, strict = search.greedy_fallback()
        result = SelectionResult(
            points=search.to_points(layout),
            feasible=strict,
            solutions_found=0,
            nodes_visited=search.nodes,
            stop_reason=search.stop_reason,
            seeded=seeded,
            trace=search.trace,
        )

    logger.info(
        "Selection complete: feasible=%s solutions=%d nodes=%d stop_reason=%s",
        result.feasible, result.solutions_found, result.nodes_visited, result.stop_reason,
    )
    return result


def _build_arena(candidates: Sequence[Sequence[float]]) -> np.ndarray:
    """Deduplicated, rounded candidate array in canonical (x, y, z) order."""
    arr = np.asarray(candidates, dtype=float)
    if arr.size == 0:
        return np.zeros((0, 3), dtype=float)
    arr = np.round(arr.reshape(-1, 3), 1)
    return np.unique(arr, axis=0)


class _LayoutSearch:
    """Search state over an arena of candidates referenced by integer index."""

    def __init__(
        self,
        arena: np.ndarray,
        sources: Sequence[Sequence[float]],
        active: Sequence[bool],
        rng: np.random.Generator,
        config: SearchConfig,
        rules: LayoutRules,
        seeded: bool,
        should_stop: Optional[Callable[[], bool]],
    ):
        self.arena = arena
        self.keys = np.rint(arena * 10.0).astype(np.int64)
        self.levels: Dict[int, np.ndarray] = candidates_by_level(arena)
        self.rng = rng
        self.config = config
        self.rules = rules
        self.seeded = seeded
        self.should_stop = should_stop

        flags = list(active) + [False] * max(0, len(sources) - len(active))
        anchors = [as_point3(s) for s, on in zip(sources, flags) if on]
        self.anchors = np.asarray(anchors, dtype=float).reshape(-1, 3)
        self.anchor_dist = min_distance_to_set(arena, self.anchors)

        self.source_x: Set[int] = {grid_key(a[0]) for a in anchors}
        self.source_y: Set[int] = {grid_key(a[1]) for a in anchors}
        self.source_z: Set[int] = {grid_key(a[2]) for a in anchors} if rules.source_z_unique else set()

        self.top_candidates, self.top_levels = config.branching(len(arena))
        self.nodes = 0
        self.solutions: List[List[int]] = []
        self.stop_reason = ""
        self.trace: List[dict] = []
        self._deadline = (
            time.monotonic() + config.deadline_s if config.deadline_s is not None else None
        )

    # ─── Scoring / constraints ──────────────────────────────────────────

    def score(self, idx: np.ndarray, chosen: Sequence[int], jitter: bool = True) -> np.ndarray:
        """Maximin score; ``jitter=False`` gives the bare score for comparisons."""
        d_src = self.anchor_dist[idx]
        if len(chosen):
            d_ch = min_distance_to_set(self.arena[idx], self.arena[list(chosen)])
        else:
            d_ch = np.full(len(idx), np.inf)
        nearest = np.minimum(d_ch, d_src)
        # no chosen points or no active sources: that term drops out (inf -> 0)
        base = (
            10.0 * _finite_or_zero(nearest)
            + 2.0 * _finite_or_zero(d_ch)
            + _finite_or_zero(d_src)
        )
        if not jitter:
            return base
        return base + self.config.score_jitter * self.rng.random(len(idx))

    def strict_mask(self, idx: np.ndarray, chosen: Sequence[int]) -> np.ndarray:
        """Candidates satisfying the source and spacing distance rules."""
        ok = self.anchor_dist[idx] >= self.rules.source_measurement_min - EPS
        if not len(chosen):
            return ok
        spacing = self.rules.measurement_spacing_min - EPS
        if len(chosen) > self.rules.proximity_index_threshold:
            grid: SpatialHashGrid = SpatialHashGrid(cell_size=self.rules.measurement_spacing_min)
            grid.extend(self.arena[list(chosen)])
            crowded = np.array([
                bool(grid.neighbors_within(self.arena[i], spacing)) for i in idx
            ], dtype=bool)
            return ok & ~crowded
        d_ch = min_distance_to_set(self.arena[idx], self.arena[list(chosen)])
        return ok & (d_ch >= spacing)

    # ─── Backtracking ───────────────────────────────────────────────────

    def run(self) -> None:
        self.level_order = self._rank_levels()
        self._dfs(
            0, [],
            frozenset(self.source_x), frozenset(self.source_y), frozenset(self.source_z),
        )
        if not self.stop_reason:
            self.stop_reason = "search_exhausted"
        logger.debug(
            "Backtracking finished: nodes=%d solutions=%d top_candidates=%d top_levels=%d",
            self.nodes, len(self.solutions), self.top_candidates, self.top_levels,
        )

    def _rank_levels(self) -> List[List[int]]:
        zkeys = list(self.levels.keys())
        order_by_slot = []
        for pref in self.config.preferred_heights():
            pref_key = grid_key(pref)
            closeness = np.array([abs(z - pref_key) / 10.0 for z in zkeys])
            closeness = closeness + self.rng.random(len(zkeys)) * self.config.level_jitter
            ranked = [zkeys[i] for i in np.argsort(closeness, kind="stable")]
            if not self.seeded and ranked:
                rot = int(self.rng.random() * len(ranked))
                ranked = ranked[rot:] + ranked[:rot]
            order_by_slot.append(ranked)
        return order_by_slot

    def _halted(self) -> bool:
        if self.stop_reason:
            return True
        if self.nodes >= self.config.max_nodes:
            self.stop_reason = "node_budget_exhausted"
        elif self._deadline is not None and time.monotonic() >= self._deadline:
            self.stop_reason = "deadline_reached"
        elif self.should_stop is not None and self.should_stop():
            self.stop_reason = "cancelled"
        return bool(self.stop_reason)

    def _dfs(
        self,
        slot: int,
        chosen: List[int],
        used_x: frozenset,
        used_y: frozenset,
        used_z: frozenset,
    ) -> bool:
        """Returns True once the search must stop (cap reached or halted).

        Only the strict pool of each Z level is explored, so every complete
        layout reached here satisfies every rule. Levels without a strict
        candidate are skipped; relaxed filling is left to ``greedy_fallback``.
        """
        if self._halted():
            return True
        self.nodes += 1

        if slot == self.config.slot_count:
            self.solutions.append(list(chosen))
            self.trace.append({"solution": len(self.solutions), "nodes": self.nodes})
            if len(self.solutions) >= self.config.max_solutions:
                self.stop_reason = "solution_cap_reached"
                return True
            return False

        used_x_arr = np.fromiter(used_x, dtype=np.int64, count=len(used_x))
        used_y_arr = np.fromiter(used_y, dtype=np.int64, count=len(used_y))

        for zkey in self.level_order[slot][:self.top_levels]:
            if zkey in used_z:
                continue
            idx = self.levels[zkey]
            keys = self.keys[idx]
            free = ~np.isin(keys[:, 0], used_x_arr) & ~np.isin(keys[:, 1], used_y_arr)
            pool = idx[free]
            if len(pool) == 0:
                continue

            base = pool[self.strict_mask(pool, chosen)]
            if len(base) == 0:
                continue

            scores = self.score(base, chosen) + self.rng.random(len(base)) * self.config.rank_jitter
            ranked = base[np.argsort(-scores, kind="stable")[:self.top_candidates]]

            for c in ranked:
                c = int(c)
                if self._dfs(
                    slot + 1,
                    chosen + [c],
                    used_x | {int(self.keys[c, 0])},
                    used_y | {int(self.keys[c, 1])},
                    used_z | {zkey},
                ):
                    return True
        return False

    # ─── Refinement / fallback ──────────────────────────────────────────

    def refine(self, layout: Sequence[int]) -> List[int]:
        """Hill-climb each point within its own Z level.

        A point is replaced only by a candidate that keeps X/Y unique against
        the other points and the active sources, keeps every distance rule,
        and strictly improves its maximin score.
        """
        best = list(layout)
        for _ in range(self.config.refine_passes):
            for i in range(len(best)):
                others = best[:i] + best[i + 1:]
                taken_x = self.source_x | {int(self.keys[o, 0]) for o in others}
                taken_y = self.source_y | {int(self.keys[o, 1]) for o in others}
                pool = self.levels[int(self.keys[best[i], 2])]
                keys = self.keys[pool]
                free = (
                    ~np.isin(keys[:, 0], list(taken_x))
                    & ~np.isin(keys[:, 1], list(taken_y))
                    & (pool != best[i])
                )
                pool = pool[free]
                if len(pool) == 0:
                    continue
                pool = pool[self.strict_mask(pool, others)]
                if len(pool) == 0:
                    continue
                current = float(self.score(np.array([best[i]]), others, jitter=False)[0])
                scores = self.score(pool, others, jitter=False)
                top = int(np.argmax(scores))
                if scores[top] > current + EPS:
                    self.trace.append({
                        "refine_slot": i,
                        "old": self.to_points([best[i]])[0],
                        "new": self.to_points([int(pool[top])])[0],
                        "others": self.to_points(others),
                    })
                    best[i] = int(pool[top])
        return best

    def greedy_fallback(self) -> Tuple[List[int], bool]:
        """Best-effort layout through relaxed tiers.

        Tier 1 keeps uniqueness and distances, tier 2 keeps uniqueness only,
        tier 3 accepts any candidate.

        Returns:
            (layout, strict) where ``strict`` is True when every slot was
            filled from tier 1, i.e. the layout satisfies every rule.
        """
        order = self.rng.permutation(len(self.arena))
        chosen: List[int] = []
        used_x, used_y = set(self.source_x), set(self.source_y)
        used_z = set(self.source_z)
        strict = True

        for slot in range(self.config.slot_count):
            keys = self.keys[order]
            unique = (
                ~np.isin(keys[:, 0], list(used_x))
                & ~np.isin(keys[:, 1], list(used_y))
                & ~np.isin(keys[:, 2], list(used_z))
            )
            tiers = [
                ("strict", unique & self.strict_mask(order, chosen)),
                ("unique", unique),
                ("any", ~np.isin(order, chosen)),
            ]
            for tier_name, mask in tiers:
                pool = order[mask]
                if len(pool) == 0:
                    continue
                scores = self.score(pool, chosen)
                top = pool[np.argsort(-scores, kind="stable")[:self.config.fallback_pool]]
                pick = int(top[int(self.rng.integers(len(top)))])
                chosen.append(pick)
                used_x.add(int(self.keys[pick, 0]))
                used_y.add(int(self.keys[pick, 1]))
                used_z.add(int(self.keys[pick, 2]))
                self.trace.append({"fallback_slot": slot, "tier": tier_name})
                strict = strict and tier_name == "strict"
                break
        return chosen, strict and len(chosen) == self.config.slot_count

    def to_points(self, layout: Sequence[int]) -> List[Point3]:
        return [tuple(round01(v) for v in self.arena[i]) for i in layout]


def _finite_or_zero(values: np.ndarray) -> np.ndarray:
    return np.where(np.isfinite(values), values, 0.0)
