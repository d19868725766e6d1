"""
Immutable planning session state.

A PlannerState is a snapshot of everything the user edits: the floor
polygon, room height, the two sources with their activation flags, the
current measurement points, the seed and the generation counter. Every
edit is a pure function returning a new snapshot; ``generate`` runs the
candidate builder, the selection search and the validator on a snapshot
and returns the next snapshot plus a GenerationOutcome.
"""
import logging
from dataclasses import dataclass, field, replace
from typing import List, Optional, Tuple

import numpy as np

from candidate_space import CandidateSpaceConfig, build_candidates
from layout_rules import LayoutRules, ViolationReport, summarize_violations, validate_layout
from point_selector import SearchConfig, SelectionResult, select_points
from room_geometry import Point2, Point3, SourcePoint, check_enclosure, polygon_area, round01

logger = logging.getLogger(__name__)

MAX_ISSUES_FEASIBLE = 6
MAX_ISSUES_INFEASIBLE = 8


def _snap2(p) -> Point2:
    return (round01(p[0]), round01(p[1]))


def _snap3(p) -> Point3:
    return (round01(p[0]), round01(p[1]), round01(p[2]))


@dataclass(frozen=True)
class PlannerState:
    """One snapshot of a planning session."""

    vertices: Tuple[Point2, ...]
    height: float
    sources: Tuple[SourcePoint, ...]
    measurement_points: Tuple[Point3, ...] = ()
    seed: str = ""
    generation_counter: int = 0

    @property
    def area(self) -> float:
        return polygon_area(self.vertices)

    @property
    def volume(self) -> float:
        return self.area * self.height

    @property
    def source_positions(self) -> List[Point3]:
        return [s.position for s in self.sources]

    @property
    def source_flags(self) -> List[bool]:
        return [s.active for s in self.sources]

    def to_dict(self) -> dict:
        return {
            "vertices": [list(v) for v in self.vertices],
            "height": self.height,
            "sources": [
                {"label": s.label, "position": list(s.position), "active": s.active}
                for s in self.sources
            ],
            "measurement_points": [list(p) for p in self.measurement_points],
            "seed": self.seed,
            "generation_counter": self.generation_counter,
        }


@dataclass
class GenerationOutcome:
    """What one generation produced, for display by the caller."""
    selection: SelectionResult
    report: ViolationReport
    issues: List[str] = field(default_factory=list)
    message: str = ""
    candidate_count: int = 0

    @property
    def feasible(self) -> bool:
        return self.selection.feasible


def default_state() -> PlannerState:
    """3 x 2 m room, 2.5 m high, with both sources active."""
    return PlannerState(
        vertices=((0.0, 0.0), (3.0, 0.0), (3.0, 2.0), (0.0, 2.0)),
        height=2.5,
        sources=(
            SourcePoint("F1", (0.5, 1.5, 1.8), True),
            SourcePoint("F2", (2.5, 0.5, 1.1), True),
        ),
    )


# ─── Transitions ─────────────────────────────────────────────────────────────


def with_vertices(state: PlannerState, vertices) -> PlannerState:
    return replace(state, vertices=tuple(_snap2(v) for v in vertices))


def with_vertex(state: PlannerState, index: int, vertex) -> PlannerState:
    verts = list(state.vertices)
    verts[index] = _snap2(vertex)
    return replace(state, vertices=tuple(verts))


def with_height(state: PlannerState, height: float) -> PlannerState:
    return replace(state, height=round01(height))


def with_source(state: PlannerState, index: int, position) -> PlannerState:
    sources = list(state.sources)
    sources[index] = replace(sources[index], position=_snap3(position))
    return replace(state, sources=tuple(sources))


def with_source_active(state: PlannerState, index: int, active: bool) -> PlannerState:
    sources = list(state.sources)
    sources[index] = replace(sources[index], active=bool(active))
    return replace(state, sources=tuple(sources))


def with_measurement_point(state: PlannerState, index: int, position) -> PlannerState:
    points = list(state.measurement_points)
    points[index] = _snap3(position)
    return replace(state, measurement_points=tuple(points))


def with_measurement_points(state: PlannerState, points) -> PlannerState:
    return replace(state, measurement_points=tuple(_snap3(p) for p in points))


def with_seed(state: PlannerState, seed: str) -> PlannerState:
    return replace(state, seed=seed.strip())


def with_generation_counter(state: PlannerState, counter: int) -> PlannerState:
    return replace(state, generation_counter=int(counter))


def next_generation(state: PlannerState) -> PlannerState:
    """Advance the counter so the next unseeded generation differs."""
    return replace(state, generation_counter=state.generation_counter + 1)


# ─── Derived views ───────────────────────────────────────────────────────────


def candidate_space(
    state: PlannerState,
    config: Optional[CandidateSpaceConfig] = None,
) -> np.ndarray:
    return build_candidates(state.vertices, state.height, config=config)


def check_state(state: PlannerState, rules: Optional[LayoutRules] = None) -> ViolationReport:
    """Validate the snapshot's sources and measurement points."""
    return validate_layout(
        state.source_positions,
        state.source_flags,
        state.measurement_points,
        state.vertices,
        state.height,
        rules,
    )


def generate(
    state: PlannerState,
    config: Optional[SearchConfig] = None,
    rules: Optional[LayoutRules] = None,
) -> Tuple[PlannerState, GenerationOutcome]:
    """Generate a measurement layout for ``state``.

    Returns:
        (next state holding the new points, outcome). Unseeded generations
        advance the generation counter.

    Raises:
        EnclosureConfigError: structurally invalid polygon or height.
    """
    if rules is None:
        rules = LayoutRules()
    check_enclosure(state.vertices, state.height)

    candidates = candidate_space(state, CandidateSpaceConfig(margin=rules.margin))
    selection = select_points(
        state.source_positions,
        state.source_flags,
        candidates,
        seed=state.seed or None,
        generation_counter=state.generation_counter,
        config=config,
        rules=rules,
    )

    new_state = with_measurement_points(state, selection.points)
    if not state.seed:
        new_state = next_generation(new_state)

    report = check_state(new_state, rules)
    issues = summarize_violations(
        new_state.source_positions,
        new_state.source_flags,
        new_state.measurement_points,
        new_state.vertices,
        new_state.height,
        rules,
    )
    outcome = GenerationOutcome(
        selection=selection,
        report=report,
        issues=issues,
        message=_status_message(selection, report, issues),
        candidate_count=len(candidates),
    )
    logger.info(
        "Generation %d: feasible=%s points=%d issues=%d",
        state.generation_counter, selection.feasible, len(selection.points), len(issues),
    )
    return new_state, outcome


def _status_message(selection: SelectionResult, report: ViolationReport, issues: List[str]) -> str:
    count = len(selection.points)
    if not selection.feasible:
        if count == 0:
            return "No candidate positions fit inside the room with the required margins."
        lines = [
            "The rules cannot all be met with this geometry. "
            f"Showing {count} points with maximum separation:"
        ]
        lines.extend(f"- {i}" for i in issues[:MAX_ISSUES_INFEASIBLE])
        return "\n".join(lines)

    warnings = list(issues)
    for label, mark in report.entries():
        if label.startswith("F"):
            warnings.extend(f"{label}: {m}" for m in mark.messages)
    if not warnings:
        return f"Generated {count} valid points."
    lines = [f"Generated {count} points. Check these warnings:"]
    lines.extend(f"- {w}" for w in warnings[:MAX_ISSUES_FEASIBLE])
    return "\n".join(lines)
