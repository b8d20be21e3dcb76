"""
KISS-Matcher - Command Line Entry Point
Registers a source cloud onto a target cloud and prints the transform
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import numpy as np

from .core.errors import KISSMatcherError
from .core.matcher import KISSMatcher
from .core.matcher_models import KISSMatcherConfig
from .core.point_cloud import PointCloudLoader, PointCloudWriter
from .core.solvers.registration import yaw_rotation
from .utils.logging_config import setup_logging

logger = logging.getLogger("kiss_matcher.main")

EXIT_ERROR = 1
EXIT_DEGENERATE = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="kiss-matcher",
        description="Global registration of a source point cloud onto a target point cloud"
    )
    parser.add_argument("source", type=Path, help="Source cloud (.pcd, .ply, .xyz, .txt, .npy)")
    parser.add_argument("target", type=Path, help="Target cloud")
    parser.add_argument("resolution", type=float, help="Voxel size in cloud units")
    parser.add_argument("yaw_aug_deg", type=float, nargs="?", default=0.0,
                        help="Yaw in degrees applied to the source before registration")
    parser.add_argument("--so3", action="store_true",
                        help="Use the full SO(3) solver instead of the yaw-only solver")
    parser.add_argument("--no-ratio-test", action="store_true", help="Disable the descriptor ratio test")
    parser.add_argument("--no-mutual-filter", action="store_true", help="Disable the mutual filter")
    parser.add_argument("--save-warped", action="store_true",
                        help="Write <source>_warped.pcd next to the source cloud")
    parser.add_argument("--log-level", default=None, help="Logging level (defaults to KISS_MATCHER_LOG_LEVEL)")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(level=args.log_level)

    try:
        config = KISSMatcherConfig.from_settings(
            args.resolution,
            use_quatro=not args.so3,
            use_ratio_test=not args.no_ratio_test,
            use_mutual_filter=not args.no_mutual_filter
        )
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        return EXIT_ERROR

    try:
        source = PointCloudLoader.load_file(args.source)
        target = PointCloudLoader.load_file(args.target)
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load point clouds: {e}")
        return EXIT_ERROR

    if args.yaw_aug_deg:
        source = source @ yaw_rotation(np.radians(args.yaw_aug_deg)).T

    logger.info(f"Source input: {args.source} ({len(source)} points)")
    logger.info(f"Target input: {args.target} ({len(target)} points)")

    matcher = KISSMatcher(config)
    try:
        solution = matcher.estimate(source, target)
    except KISSMatcherError as e:
        logger.error(f"Registration failed: {e}")
        return EXIT_ERROR

    matcher.print()
    with np.printoptions(precision=6, suppress=True):
        print(solution.transformation)

    if not solution.valid:
        logger.error(f"No valid transform: {solution.message}")
        return EXIT_DEGENERATE

    if args.save_warped:
        warped = source @ solution.rotation.T + solution.translation
        warped_path = args.source.parent / f"{args.source.stem}_warped.pcd"
        PointCloudWriter.save_pcd_ascii(warped_path, warped)
        logger.info(f"Saved transformed source point cloud to: {warped_path}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
