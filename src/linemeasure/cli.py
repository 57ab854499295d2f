"""
Command-line interface for linemeasure.

Runs the calibration and measurement pipeline on saved inputs, selects
lines from a saved result, and writes a default config file.
"""

import argparse
import json
import os
import sys

from linemeasure.config import load_config, save_default_config
from linemeasure.tracer import configure_tracer, get_tracer


def main(argv=None):
    """Main entry point for the CLI."""
    parser = argparse.ArgumentParser(
        description="linemeasure: metric 3D line lengths from relative depth and a range sensor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Run command
    run_parser = subparsers.add_parser("run", help="Calibrate depth and measure lines for one frame")
    run_parser.add_argument(
        "--relative", "-r",
        required=True,
        help="Relative depth from the monocular model (.npy or .bin)",
    )
    run_parser.add_argument(
        "--absolute", "-a",
        default=None,
        help="Metric depth from the range sensor (.npy or .bin)",
    )
    run_parser.add_argument(
        "--relative-size",
        nargs=2, type=int, metavar=("W", "H"),
        default=None,
        help="Width and height of a raw .bin relative depth file",
    )
    run_parser.add_argument(
        "--absolute-size",
        nargs=2, type=int, metavar=("W", "H"),
        default=None,
        help="Width and height of a raw .bin absolute depth file",
    )
    run_parser.add_argument(
        "--lines", "-l",
        required=True,
        help="JSON file with detected lines",
    )
    run_parser.add_argument(
        "--intrinsics",
        required=True,
        help="YAML/JSON file with fx, fy, cx, cy, width, height",
    )
    run_parser.add_argument(
        "--image-size",
        nargs=2, type=int, metavar=("W", "H"),
        default=None,
        help="Detection image size (defaults to the intrinsics resolution)",
    )
    run_parser.add_argument(
        "--out", "-o",
        required=True,
        help="Output directory",
    )
    run_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to YAML configuration file",
    )
    run_parser.add_argument(
        "--debug",
        action="store_true",
        help="Write diagnostic depth and error images",
    )
    _add_trace_args(run_parser)

    # Select command
    select_parser = subparsers.add_parser("select", help="Select the line nearest to a point in a saved result")
    select_parser.add_argument(
        "--result",
        required=True,
        help="result.json written by the run command",
    )
    select_parser.add_argument(
        "--point",
        nargs=2, type=float, metavar=("X", "Y"),
        required=True,
        help="Point in display coordinates",
    )
    select_parser.add_argument(
        "--display-size",
        nargs=2, type=float, metavar=("W", "H"),
        default=None,
        help="Display size (defaults to the detection image size)",
    )
    select_parser.add_argument(
        "--config", "-c",
        default=None,
        help="Path to YAML configuration file",
    )

    # Init config command
    init_parser = subparsers.add_parser("init-config", help="Create default config file")
    init_parser.add_argument(
        "--out", "-o",
        default="linemeasure_config.yaml",
        help="Output path for config file",
    )

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "run":
        return handle_run(args)
    elif args.command == "select":
        return handle_select(args)
    elif args.command == "init-config":
        return handle_init_config(args)

    return 0


def _add_trace_args(parser):
    parser.add_argument(
        "--trace",
        action="store_true",
        help="Enable runtime tracing",
    )
    parser.add_argument(
        "--trace-level",
        default="INFO",
        choices=["ERROR", "WARN", "INFO", "DEBUG"],
        help="Trace log level",
    )
    parser.add_argument(
        "--trace-file",
        default=None,
        help="Path to write trace logs",
    )
    parser.add_argument(
        "--trace-json",
        action="store_true",
        help="Enable JSON trace output",
    )


def handle_run(args):
    """Handle the run command."""
    tracer = get_tracer()

    try:
        config = load_config(args.config)

        configure_tracer(
            enabled=args.trace or config.tracing.enabled,
            level=args.trace_level if args.trace else config.tracing.level,
            file_path=args.trace_file or config.tracing.file_path,
            json_output=args.trace_json or config.tracing.json_output,
        )

        from linemeasure.io.load_inputs import load_depth, load_intrinsics, load_lines
        from linemeasure.io.save_artifacts import DebugArtifactWriter, ensure_dir, save_json
        from linemeasure.pipeline import process_frame, write_debug_artifacts

        with tracer.span("cli_run", module="cli"):
            rel_w, rel_h = args.relative_size or (None, None)
            relative = load_depth(args.relative, rel_w, rel_h)

            absolute = None
            if args.absolute:
                abs_w, abs_h = args.absolute_size or (None, None)
                absolute = load_depth(args.absolute, abs_w, abs_h)

            lines = load_lines(args.lines)
            intrinsics = load_intrinsics(args.intrinsics)
            image_size = tuple(args.image_size) if args.image_size else (intrinsics.width, intrinsics.height)

            result = process_frame(relative, absolute, lines, intrinsics, image_size, config)

            ensure_dir(args.out)
            save_json(result.summary(), os.path.join(args.out, "result.json"))

            if args.debug or config.debug.enabled:
                writer = DebugArtifactWriter(
                    args.out, f"frame_{result.frame_index:06d}",
                    enabled=True,
                    max_edge=config.debug.max_edge_scale,
                )
                write_debug_artifacts(result, absolute, writer, config)

        valid = sum(1 for seg in result.lines if seg.valid)
        print(f"\nFrame processed.")
        print(f"  Alignment: {result.alignment.method.value} "
              f"scale={result.alignment.scale:.4f} shift={result.alignment.shift:.4f} "
              f"samples={result.alignment.sample_count}")
        print(f"  Lines measured: {valid}/{len(result.lines)}")
        for seg in result.ranked:
            print(f"    line {seg.source.line_id}: {seg.length:.3f} m")
        if not result.metric_trusted:
            print(f"\n[!] Lengths are not metric: no valid range-sensor calibration for this frame")
        print(f"\nOutputs saved to: {args.out}/")

        return 0

    except Exception as e:
        tracer.event(f"Run failed: {str(e)}", level="ERROR")
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 1


def handle_select(args):
    """Handle the select command."""
    from linemeasure.lines.select import select_nearest
    from linemeasure.io.load_inputs import parse_lines

    try:
        config = load_config(args.config)
        with open(args.result, "r", encoding="utf-8") as f:
            summary = json.load(f)

        lines = parse_lines([seg["source"] for seg in summary["lines"]])
        image_size = tuple(summary["image_size"])
        display_size = tuple(args.display_size) if args.display_size else image_size

        index = select_nearest(
            tuple(args.point), display_size, lines, image_size, config.selection.threshold,
        )
    except Exception as e:
        print(f"\nError: {str(e)}", file=sys.stderr)
        return 1

    if index is None:
        print("No line within selection threshold.")
        return 0

    seg = summary["lines"][index]
    status = seg["status"]
    if status == "ok":
        print(f"Selected line {seg['source']['line_id']} (index {index}): {seg['length']:.3f} m")
    else:
        print(f"Selected line {seg['source']['line_id']} (index {index}): not measurable ({status})")
    return 0


def handle_init_config(args):
    """Handle the init-config command."""
    save_default_config(args.out)
    print(f"Default configuration saved to: {args.out}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
