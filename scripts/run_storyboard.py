#!/usr/bin/env python3
"""
CLI Script: Run Storyboard
==========================

Command-line tool that takes a storyboard file through generation and
rendering.

Usage:
    python scripts/run_storyboard.py examples/storyboard.yaml
    python scripts/run_storyboard.py storyboard.yaml --no-render --status-json status.json
"""

import argparse
import asyncio
import json
import sys
from pathlib import Path

import yaml

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from reelforge import MediaPipeline, Config, ProjectStatus, RenderJobStatus, ReelforgeError
from reelforge.core.logging_config import setup_logging


def parse_args():
    """Parse command line arguments."""
    parser = argparse.ArgumentParser(
        description="Generate and render a video from a storyboard",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s examples/storyboard.yaml
  %(prog)s storyboard.yaml --aspect-ratio 9:16 --no-quality
  %(prog)s storyboard.yaml --no-render --status-json status.json
        """,
    )

    parser.add_argument(
        "storyboard",
        help="Storyboard file (YAML or JSON) with a 'scenes' list",
    )

    # Project settings
    parser.add_argument(
        "--aspect-ratio",
        choices=["16:9", "9:16", "1:1", "4:3", "21:9"],
        help="Aspect ratio (default: from storyboard or config)",
    )
    parser.add_argument(
        "--composition",
        help="Renderer composition id (default: from config)",
    )

    # Stages
    parser.add_argument(
        "--no-render",
        action="store_true",
        help="Stop after generating assets",
    )
    parser.add_argument(
        "--no-quality",
        action="store_true",
        help="Skip quality analysis and regeneration",
    )

    # Output
    parser.add_argument(
        "--status-json",
        help="Write the final project status to this file",
    )

    # Config and logging
    parser.add_argument(
        "--config",
        help="Path to config file",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: from config)",
    )
    parser.add_argument(
        "--structured-logs",
        action="store_true",
        help="Emit one JSON object per log line",
    )

    return parser.parse_args()


def load_storyboard(path: Path) -> dict:
    """Load a storyboard from YAML or JSON."""
    with open(path, "r") as f:
        data = json.load(f) if path.suffix == ".json" else yaml.safe_load(f)
    if isinstance(data, list):
        data = {"scenes": data}
    if not isinstance(data, dict) or not data.get("scenes"):
        raise ValueError(f"{path} has no scenes")
    return data


async def main():
    """Main CLI entry point."""
    args = parse_args()

    storyboard_path = Path(args.storyboard)
    if not storyboard_path.exists():
        print(f"Error: storyboard not found: {storyboard_path}")
        sys.exit(1)

    config = Config.load(args.config)
    if args.no_quality:
        config.quality.enabled = False
    setup_logging(args.log_level or config.logging.level, args.structured_logs or config.logging.structured)

    try:
        storyboard = load_storyboard(storyboard_path)
    except (ValueError, yaml.YAMLError, json.JSONDecodeError) as e:
        print(f"Error: {e}")
        sys.exit(1)

    print("=" * 50)
    print("Reelforge Storyboard Runner")
    print("=" * 50)

    try:
        async with MediaPipeline(config=config) as pipeline:
            project_id = pipeline.create_project(
                storyboard["scenes"],
                target_duration=storyboard.get("target_duration"),
                aspect_ratio=args.aspect_ratio or storyboard.get("aspect_ratio"),
                composition_id=args.composition or storyboard.get("composition_id"),
            )
            print(f"\nProject: {project_id}")
            print(f"Scenes: {len(storyboard['scenes'])}")

            async for event in pipeline.generate_assets(project_id):
                details = ", ".join(f"{k}={v}" for k, v in event.data.items() if k != "uri")
                print(f"  [{event.type.value}] {details}")

            project = pipeline.get_project(project_id)
            if project.review_queue:
                print(f"\nQueued for manual review: {', '.join(project.review_queue)}")

            exit_code = 0 if project.status is ProjectStatus.READY else 1

            if project.status is ProjectStatus.READY and not args.no_render:
                print("\nRendering...")
                job = await pipeline.render_and_wait(project_id)
                print("\n" + "-" * 50)
                print(f"Status: {job.status.value}")
                if job.output_uri:
                    print(f"Output: {job.output_uri}")
                    print(f"Duration: {job.duration_seconds:.2f}s")
                if job.failed_chunk_indices:
                    print(f"Failed chunks: {job.failed_chunk_indices}")
                if job.error_message:
                    print(f"Error: {job.error_message}")
                exit_code = 0 if job.status is RenderJobStatus.COMPLETE else 1

            if args.status_json:
                with open(args.status_json, "w") as f:
                    json.dump(pipeline.get_status(project_id), f, indent=2)
                print(f"Status written: {args.status_json}")

            print("=" * 50)
            sys.exit(exit_code)

    except KeyboardInterrupt:
        print("\nCancelled")
        sys.exit(130)
    except ReelforgeError as e:
        print(f"\nError: {e.message}")
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
