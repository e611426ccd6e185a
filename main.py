"""
Grove - Procedural Forest Demo

Generates a forest of random trees around a central clearing, animates a
few seconds of wind, then grows a second forest from the bundled presets.

Usage:
    python main.py [--count N] [--seed S] [--frames F] [--obj forest.obj] [--png forest.png]
"""

import argparse
import asyncio
import logging

from grove import (
    PresetRepository,
    TextureProvider,
    WindParams,
    export_obj,
    generate_forest,
    generate_preset_forest,
)
from grove.forest import ForestReport

logger = logging.getLogger("grove.demo")

FPS = 30


def animate(report: ForestReport, frames: int, fps: int = FPS) -> None:
    """Step wind over `frames` frames at `fps`."""
    for frame in range(frames):
        report.update(frame / fps)
    logger.info("Animated %d frames (%.1f s)", frames, frames / fps)


async def preset_forest(seed: int, textures: TextureProvider, wind: WindParams) -> ForestReport:
    repository = PresetRepository()
    names = await repository.list()
    print(f"\nPresets: {', '.join(names)}")
    return await generate_preset_forest(repository, names, seed=seed, textures=textures, wind=wind)


def export(report: ForestReport, obj_path: str | None, png_path: str | None) -> None:
    if obj_path:
        meshes = []
        transforms = []
        for tree in report.trees:
            for part, mesh in tree.geometry.meshes():
                meshes.append((f"{tree.name}/{part}".replace(" ", "_"), mesh))
                transforms.append(tree.transform)
        export_obj(obj_path, meshes, transforms)
        print(f"Wrote {obj_path}")
    if png_path:
        # Imported lazily so headless runs without an image target skip matplotlib
        from grove.visualization import save_forest_preview

        save_forest_preview(report, png_path)
        print(f"Wrote {png_path}")


def main() -> None:
    parser = argparse.ArgumentParser(description="Procedural forest demo")
    parser.add_argument("--count", type=int, default=15, help="Random trees to generate")
    parser.add_argument("--seed", type=int, default=0)
    parser.add_argument("--frames", type=int, default=90, help="Wind frames to animate")
    parser.add_argument("--obj", default=None, help="Export the random forest as OBJ")
    parser.add_argument("--png", default=None, help="Save a preview image of the random forest")
    parser.add_argument("--no-presets", action="store_true", help="Skip the preset forest")
    parser.add_argument("-v", "--verbose", action="store_true")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    print("\n" + "=" * 60)
    print("  GROVE: Procedural Forest")
    print("=" * 60)

    textures = TextureProvider()
    wind = WindParams.breezy()

    report = generate_forest(count=args.count, seed=args.seed, textures=textures, wind=wind)
    animate(report, args.frames)
    report.print_summary()
    export(report, args.obj, args.png)

    if not args.no_presets:
        presets = asyncio.run(preset_forest(args.seed, textures, wind))
        animate(presets, args.frames)
        presets.print_summary()

    missing = textures.missing()
    if missing:
        print(f"\nNote: {len(missing)} texture files not found under {textures.root}/")


if __name__ == "__main__":
    main()
