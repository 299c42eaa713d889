#!/usr/bin/env python3
"""
pbr-lut-gen — PBR light LUT generator for Source maps

Finds every func_ggx_surface in a VMF, picks the lights that matter for it,
and bakes them into an 8x8 float LUT texture plus a patch material. Lights
toggled through I/O are wired to material_modify_control helpers so the
shader follows them at runtime.

Usage:
    pbr-lut-gen -i mymap.vmf --game C:\\steam\\portal2\\portal2 --draft-run
    pbr-lut-gen -i mymap.vmf --game C:\\steam\\portal2\\portal2 --final
    python -m pbr_lut_gen.cli -i mymap.vmf --final --output-vmf out.vmf
"""
from __future__ import annotations

import argparse
import math
import sys
import time
from pathlib import Path
from typing import List, Optional, Sequence

# Force UTF-8 output on Windows (cp1252 can't handle box-drawing chars)
if sys.platform == 'win32':
    import io
    sys.stdout = io.TextIOWrapper(sys.stdout.buffer, encoding='utf-8', errors='replace')
    sys.stderr = io.TextIOWrapper(sys.stderr.buffer, encoding='utf-8', errors='replace')

from .errors import PBRError
from .lights import LightDef, extract_lights, strip_pbr_entities
from .nut_gen import generate_nut
from .pipeline import LightCluster, process_map_pipeline
from .vmf_parser import VMFMap


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='pbr-lut-gen',
        description="PBR LUT generator — bake per-surface light tables "
                    "for func_ggx_surface entities.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  pbr-lut-gen -i mymap.vmf --draft-run --dump-clusters
  pbr-lut-gen -i mymap.vmf --game C:\\steam\\portal2\\portal2 --final
  pbr-lut-gen -i mymap.vmf --final --output-vmf mymap_compile.vmf --lut-preview
        """,
    )
    parser.add_argument('-i', '--input', type=str, required=True,
                        help='Input VMF file path')
    parser.add_argument('--game', type=str, default=None,
                        help='Game directory that receives materials/ and scripts/ '
                             '(default: current directory)')
    parser.add_argument('--output-vmf', type=str, default=None,
                        help='Output VMF path for --final (default: <input>_pbr.vmf)')
    parser.add_argument('--final', action='store_true',
                        help='Strip func_ggx_* entities and write the modified VMF')
    parser.add_argument('--draft-run', action='store_true',
                        help='Compute and log only, write nothing')
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Per-light score and occlusion traces')
    parser.add_argument('--dump-data', action='store_true',
                        help='Print every extracted PBR light')
    parser.add_argument('--dump-clusters', action='store_true',
                        help='Print accepted and rejected lights per surface')
    parser.add_argument('--lut-preview', action='store_true',
                        help='Write an upscaled PNG preview next to every LUT')
    return parser


def _fmt_score(score: float) -> str:
    return 'FORCE' if math.isinf(score) else f"{score:.3f}"


def dump_lights(lights: Sequence[LightDef]) -> None:
    print("─── PBR lights ───")
    for light in lights:
        pos = ', '.join(f"{v:.1f}" for v in light.pos)
        print(f"  {light.debug_id:<24} {light.light_type.name:<6} pos=({pos}) "
              f"I={light.intensity:.3f} K={light.attenuation_k:.6g} "
              f"range={light.range:.1f}"
              f"{' named' if light.is_named_light else ''}"
              f"{' dark' if light.initially_dark else ''}")
        for idx, blocker in enumerate(light.blockers):
            if blocker is not None:
                print(f"      blocker {idx}: {blocker.width:.1f}x{blocker.height:.1f}"
                      f"x{blocker.depth:.1f} flag={blocker.flag}")


def dump_clusters(clusters: Sequence[LightCluster]) -> None:
    print("─── Clusters ───")
    for cluster in clusters:
        print(f"  {cluster.name} (min score {cluster.min_cluster_score:.2f})")
        for rank, (light, score) in enumerate(cluster.lights):
            print(f"    [{rank}] {light.debug_id:<24} {_fmt_score(score)}")
        for light, score in cluster.rejected_lights:
            print(f"    [-] {light.debug_id:<24} {_fmt_score(score)}")


def main(argv: Optional[List[str]] = None) -> int:
    args = _build_parser().parse_args(argv)

    # ─── Resolve paths ────────────────────────────────────────────────────────
    input_path = Path(args.input).resolve()
    if not input_path.exists():
        print(f"ERROR: Input file not found: {input_path}", file=sys.stderr)
        return 1

    map_name = input_path.stem
    game_dir = Path(args.game).resolve() if args.game else Path.cwd()
    if args.output_vmf:
        output_path = Path(args.output_vmf).resolve()
    else:
        output_path = input_path.with_name(map_name + '_pbr' + input_path.suffix)

    print(f"╔══════════════════════════════════════════════════╗")
    print(f"║               PBR LUT Generator                  ║")
    print(f"╚══════════════════════════════════════════════════╝")
    print(f"  Input:  {input_path}")
    print(f"  Game:   {game_dir}")
    if args.final:
        print(f"  Output: {output_path}")
    if args.draft_run:
        print(f"  Draft run: nothing will be written")
    print()

    t0 = time.perf_counter()
    try:
        # ─── Phase 1: Parse VMF ───────────────────────────────────────────────
        print("[1/4] Parsing VMF...", flush=True)
        vmf = VMFMap.load(input_path)
        print(f"  Parsed in {time.perf_counter() - t0:.2f}s", flush=True)

        # ─── Phase 2: Lights ──────────────────────────────────────────────────
        print("[2/4] Extracting lights...", flush=True)
        lights = extract_lights(vmf, verbose=args.verbose)
        print(f"Found {len(lights)} PBR lights total")
        if args.dump_data:
            dump_lights(lights)

        # ─── Phase 3: Surfaces ────────────────────────────────────────────────
        print("[3/4] Processing surfaces...", flush=True)
        clusters = process_map_pipeline(
            vmf, lights, game_dir, map_name,
            draft_run=args.draft_run,
            verbose=args.verbose,
            lut_preview=args.lut_preview,
        )
        print(f"Generated {len(clusters)} LUT clusters")
        if args.dump_clusters:
            dump_clusters(clusters)

        if args.draft_run:
            print(f"\nDraft run finished in {time.perf_counter() - t0:.2f}s")
            return 0

        # ─── Phase 4: Outputs ─────────────────────────────────────────────────
        print("[4/4] Writing outputs...", flush=True)
        nut_path = (game_dir / 'scripts' / 'vscripts' / '_autogen_debug'
                    / f"{map_name}_pbr.nut")
        generate_nut(nut_path, clusters, lights)
        print(f"  Script data: {nut_path}")

        if args.final:
            removed = strip_pbr_entities(vmf)
            print(f"  Stripped {removed} func_ggx entities")
            vmf.save(output_path)
            print(f"  Map: {output_path}")
        else:
            print("WARNING: --final not set, the modified VMF was not saved.",
                  file=sys.stderr)
    except (PBRError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 1

    print(f"\nDone in {time.perf_counter() - t0:.2f}s")
    return 0


if __name__ == '__main__':
    sys.exit(main())
