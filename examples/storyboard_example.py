#!/usr/bin/env python3
"""
Storyboard Example
==================

Generate assets for the example storyboard, print progress, and render the
result if a render function is configured.
"""

import asyncio
import os
from pathlib import Path

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

import yaml

from reelforge import MediaPipeline, Config, ProjectStatus, setup_logging


async def main():
    """Storyboard to video example."""

    # Check for API keys
    if not os.getenv("FAL_KEY") and not os.getenv("OPENAI_API_KEY"):
        print("Please set FAL_KEY and/or OPENAI_API_KEY")
        return

    setup_logging("INFO")
    config = Config.load()

    storyboard_path = Path(__file__).parent / "storyboard.yaml"
    with open(storyboard_path, "r") as f:
        storyboard = yaml.safe_load(f)

    print("=== Storyboard Example ===")

    async with MediaPipeline(config=config) as pipeline:
        project_id = pipeline.create_project(
            storyboard["scenes"],
            target_duration=storyboard.get("target_duration"),
            aspect_ratio=storyboard.get("aspect_ratio"),
        )
        print(f"Project: {project_id}")

        async for event in pipeline.generate_assets(project_id):
            print(f"  {event.type.value}: {event.data}")

        project = pipeline.get_project(project_id)
        print(f"\nProject status: {project.status.value}")
        print(f"Total duration: {project.total_duration:.1f}s")
        for scene in project.scenes:
            visual = scene.primary_visual
            print(f"  {scene.scene_id}: {scene.status.value} -> {visual.uri if visual else scene.fallback}")

        if project.status is not ProjectStatus.READY:
            return

        if not (config.render.function_url or os.getenv("RENDER_FUNCTION_URL")):
            print("\nSet RENDER_FUNCTION_URL to render the project")
            return

        print("\nRendering...")
        job = await pipeline.render_and_wait(project_id)
        print(f"Render status: {job.status.value}")
        if job.output_uri:
            print(f"Output: {job.output_uri}")
        if job.error_message:
            print(f"Error: {job.error_message}")


if __name__ == "__main__":
    asyncio.run(main())
