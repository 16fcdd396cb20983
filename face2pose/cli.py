"""
Command-line interface for face2pose.

This module provides the main entry point for the CLI tool: replay a
recorded landmark session through the tracker and write per-frame object
transforms as JSON.
"""

import json
import logging
import sys
from dataclasses import asdict, replace
from typing import Optional

from .config import create_argument_parser, config_from_args, Config
from .errors import ConfigurationInvalid, InsufficientLandmarks
from .face import LandmarkIngest
from .pipeline import FaceTracker


def main(argv: Optional[list] = None) -> int:
    """
    Main entry point for CLI.

    Args:
        argv: Command-line arguments (None = sys.argv)

    Returns:
        Exit code (0 = success, non-zero = error)
    """
    # Parse arguments
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    # Handle --save-config
    if args.save_config:
        template = Config.generate_default_config_template()
        with open(args.save_config, 'w') as f:
            f.write(template)
        print(f"Default configuration saved to: {args.save_config}")
        print(f"Edit this file and use with: face2pose --config {args.save_config} RECORDING.json")
        return 0

    if not args.input:
        parser.print_usage(sys.stderr)
        print("Error: a landmark recording is required", file=sys.stderr)
        return 1

    # Create config
    try:
        config = config_from_args(args)
        if args.fps <= 0:
            raise ConfigurationInvalid(f"--fps must be positive, got {args.fps}")
    except (ValueError, OSError) as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        print("\nUse --help for usage information or --save-config to generate a template.", file=sys.stderr)
        return 1

    # Configure logging
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(name)s: %(message)s")

    try:
        frames, image_size = LandmarkIngest.from_json(args.input)

        # Recorded resolution applies unless overridden on the command line
        if image_size is not None and not args.resolution:
            config = replace(config, calibration=replace(config.calibration, image_size=image_size))

        if args.verbose:
            print("=" * 60, file=sys.stderr)
            print("face2pose - landmark replay", file=sys.stderr)
            print("=" * 60, file=sys.stderr)
            print(f"Input: {args.input}", file=sys.stderr)
            print(f"Frames: {len(frames)}", file=sys.stderr)
            print(f"Resolution: {config.calibration.image_size[0]}x{config.calibration.image_size[1]}", file=sys.stderr)
            print(f"Algorithm: {config.positioning.algorithm}", file=sys.stderr)
            print(f"Depth mode: {config.calibration.depth_mode}", file=sys.stderr)
            print("=" * 60, file=sys.stderr)

        tracker = FaceTracker(config)

        transforms = []
        skipped = []
        for i, frame in enumerate(frames):
            timestamp = frame.timestamp if frame.timestamp is not None else i / args.fps
            try:
                result = tracker.process(frame, timestamp=timestamp)
            except InsufficientLandmarks as e:
                skipped.append(i)
                if args.verbose:
                    print(f"  Skipped frame {i}: {e}", file=sys.stderr)
                continue

            if result.state is None:
                continue

            entry = {"frame": i, "status": tracker.engine.status.value}
            entry.update(result.state.to_dict())
            transforms.append(entry)

        report = {
            "algorithm": tracker.engine.algorithm,
            "transforms": transforms,
            "skipped_frames": skipped,
            "quality": asdict(tracker.engine.get_positioning_quality()),
        }

        if args.output:
            with open(args.output, 'w') as f:
                json.dump(report, f, indent=2)
        else:
            json.dump(report, sys.stdout, indent=2)
            sys.stdout.write("\n")

        if skipped:
            print(f"Skipped {len(skipped)} frame(s) with insufficient landmarks", file=sys.stderr)

        if args.verbose:
            print(f"✓ Wrote {len(transforms)} transforms"
                  + (f" to {args.output}" if args.output else ""), file=sys.stderr)

        return 0

    except FileNotFoundError as e:
        print(f"Error: File not found: {e}", file=sys.stderr)
        return 1
    except ValueError as e:
        print(f"Error: Invalid input: {e}", file=sys.stderr)
        return 1
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
