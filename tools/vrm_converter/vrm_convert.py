#!/usr/bin/env python3
"""Inspect, convert and generate VRM/GLB files.

Usage:
    python vrm_convert.py --input <file> [--evaluate] [--rewrite <file>] [-v]
    python vrm_convert.py --output <file>

Examples:
    # Check a file and print its structure
    python vrm_convert.py --input avatar.vrm

    # Bake node constraints into joint rotations
    python vrm_convert.py --input avatar.vrm --evaluate --rewrite baked.glb

    # Write the default triangle mesh
    python vrm_convert.py --output generated/test.glb
"""
import argparse
import logging
import sys
from pathlib import Path

from conversion_driver import ConversionDriver
from default_document import build_default_document
from scene_report import describe
from vrm_errors import ConstraintError, VrmConversionError

EXIT_USAGE = 1
EXIT_IO_ERROR = 5


def run_input(path: str, evaluate: bool = False, rewrite: str = None) -> int:
    """Decode a file, print its report and optionally re-encode it."""
    data = Path(path).read_bytes()
    driver = ConversionDriver()
    scene = driver.decode(data)
    print(describe(scene))

    if evaluate:
        try:
            results = driver.evaluate()
            print(f"Evaluated {len(results)} constraints")
        except ConstraintError as e:
            if not rewrite:
                raise
            print(f"Constraint evaluation failed, writing without it: {e}", file=sys.stderr)

    if rewrite:
        output = driver.encode()
        Path(rewrite).parent.mkdir(parents=True, exist_ok=True)
        Path(rewrite).write_bytes(output)
        print(f"Wrote {len(output)} bytes to {rewrite}")
    return 0


def run_output(path: str) -> int:
    """Encode the default document to a file."""
    driver = ConversionDriver()
    driver.load(build_default_document())
    output = driver.encode()
    Path(path).parent.mkdir(parents=True, exist_ok=True)
    Path(path).write_bytes(output)
    print(f"Wrote {len(output)} bytes to {path}")
    return 0


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="VRM as code: inspect, convert and generate VRM/GLB files"
    )
    mode = parser.add_mutually_exclusive_group()
    mode.add_argument(
        "--input",
        help="Path to a .vrm/.glb file to parse",
    )
    mode.add_argument(
        "--output",
        help="Path to write the default .glb document to",
    )
    parser.add_argument(
        "--evaluate",
        action="store_true",
        help="Evaluate node constraints after decoding (input mode)",
    )
    parser.add_argument(
        "--rewrite",
        help="Re-encode the decoded document to this path (input mode)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    if not args.input and not args.output:
        print("Run vrm_convert.py --help for more information.", file=sys.stderr)
        return EXIT_USAGE

    try:
        if args.input:
            return run_input(args.input, evaluate=args.evaluate, rewrite=args.rewrite)
        return run_output(args.output)
    except VrmConversionError as e:
        print(f"Failed: {type(e).__name__}: {e}", file=sys.stderr)
        return e.exit_code
    except OSError as e:
        print(f"Failed: {e}", file=sys.stderr)
        return EXIT_IO_ERROR


if __name__ == "__main__":
    sys.exit(main())
