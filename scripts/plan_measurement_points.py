#!/usr/bin/env python3
"""
Plan acoustic measurement points inside a room.

Builds the candidate space for the room, selects five measurement points
that respect the spacing rules against the two sources, validates the
result and prints (or saves) the layout.

Usage:
    python scripts/plan_measurement_points.py
    python scripts/plan_measurement_points.py --vertices "0,0 3,0 3,2 0,2" --height 2.5 --seed test123
    python scripts/plan_measurement_points.py --f1 0.5,1.5,1.8 --disable-f2 --output layout.json -v
"""
import sys
import json
import argparse
import logging
from pathlib import Path

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from layout_rules import LayoutRules
from planner_state import (
    default_state, generate, with_height, with_seed, with_source,
    with_generation_counter, with_source_active, with_vertices,
)
from point_selector import SearchConfig
from room_geometry import EnclosureConfigError


def _parse_pair(text: str):
    x, y = (float(v) for v in text.split(","))
    return (x, y)


def _parse_triple(text: str):
    x, y, z = (float(v) for v in text.split(","))
    return (x, y, z)


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Plan five acoustic measurement points in a room.",
    )
    parser.add_argument(
        "--vertices", default=None,
        help='Floor polygon as "x,y x,y ..." (default: 3 x 2 m rectangle)',
    )
    parser.add_argument(
        "--height", type=float, default=None,
        help="Room height in m (default: 2.5)",
    )
    parser.add_argument("--f1", default=None, help="Source F1 as x,y,z")
    parser.add_argument("--f2", default=None, help="Source F2 as x,y,z")
    parser.add_argument("--disable-f1", action="store_true", help="Ignore source F1")
    parser.add_argument("--disable-f2", action="store_true", help="Ignore source F2")
    parser.add_argument(
        "--seed", default="",
        help="Seed string for a reproducible layout (default: unseeded)",
    )
    parser.add_argument(
        "--generation", type=int, default=0,
        help="Generation counter for unseeded runs (default: 0)",
    )
    parser.add_argument(
        "--max-nodes", type=int, default=SearchConfig.max_nodes,
        help=f"Search node budget (default: {SearchConfig.max_nodes})",
    )
    parser.add_argument(
        "--deadline", type=float, default=None,
        help="Wall-clock search budget in seconds (default: none)",
    )
    parser.add_argument(
        "--source-z-unique", action="store_true",
        help="Also forbid measurement points sharing a Z value with a source",
    )
    parser.add_argument(
        "--output", default=None,
        help="Write the layout and diagnostics to this JSON file",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable verbose logging",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
    )

    state = default_state()
    try:
        if args.vertices:
            state = with_vertices(state, [_parse_pair(t) for t in args.vertices.split()])
        if args.height is not None:
            state = with_height(state, args.height)
        if args.f1:
            state = with_source(state, 0, _parse_triple(args.f1))
        if args.f2:
            state = with_source(state, 1, _parse_triple(args.f2))
    except ValueError as exc:
        parser.error(f"Could not parse coordinates: {exc}")
    state = with_source_active(state, 0, not args.disable_f1)
    state = with_source_active(state, 1, not args.disable_f2)
    state = with_seed(state, args.seed)
    state = with_generation_counter(state, max(0, args.generation))

    config = SearchConfig(max_nodes=args.max_nodes, deadline_s=args.deadline)
    rules = LayoutRules(source_z_unique=args.source_z_unique)

    try:
        new_state, outcome = generate(state, config=config, rules=rules)
    except EnclosureConfigError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return 2

    print(f"Room: area {new_state.area:.2f} m2, volume {new_state.volume:.2f} m3, "
          f"{outcome.candidate_count} candidate positions")
    for src in new_state.sources:
        status = "active" if src.active else "inactive"
        x, y, z = src.position
        print(f"  {src.label}: {x:.1f} {y:.1f} {z:.1f} ({status})")
    for i, (x, y, z) in enumerate(new_state.measurement_points):
        print(f"  P{i + 1}: {x:.1f} {y:.1f} {z:.1f}")
    print(f"Feasible: {outcome.feasible}")
    print(outcome.message)

    if args.output:
        payload = {
            "state": new_state.to_dict(),
            "selection": outcome.selection.to_dict(),
            "violations": outcome.report.to_dict(),
            "issues": outcome.issues,
            "area_m2": new_state.area,
            "volume_m3": new_state.volume,
        }
        out_path = Path(args.output)
        out_path.parent.mkdir(parents=True, exist_ok=True)
        with open(out_path, "w") as f:
            json.dump(payload, f, indent=2)
        print(f"\nLayout saved to {out_path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
