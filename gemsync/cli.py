"""
Command-line interface for gemsync.
"""

import argparse
import logging
import sys
from pathlib import Path

from .artifacts import GemFetcher, MakepkgPublisher
from .config import Settings
from .errors import GemSyncError, UpstreamIndexError
from .interfaces import ArtifactFetcher, UpstreamIndex
from .probe import DistroPackageProbe
from .reporting import export_report_csv, print_summary, save_report_json
from .sources import AurClient, IndexCache, PacmanRepository, RubyGemsIndex
from .store import RecipeStore
from .sync import SyncEngine
from .generator import RecipeGenerator


logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="gemsync",
        description="Generate and synchronize Arch Linux PKGBUILDs for Ruby gems"
    )
    parser.add_argument(
        "--root",
        default=".",
        help="Directory holding ruby-*/PKGBUILD recipes. Default: current directory"
    )
    parser.add_argument(
        "--workers",
        type=int,
        default=1,
        help="Number of recipes processed in parallel. Default: 1"
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Timeout in seconds for package lookups. Default: 30"
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable debug logging"
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    sync_parser = subparsers.add_parser("sync", help="Update every discovered recipe")
    sync_parser.add_argument(
        "--publish",
        action="store_true",
        help="Build updated recipes with makepkg and commit them"
    )
    sync_parser.add_argument(
        "--install",
        action="store_true",
        help="Install packages built with --publish"
    )
    sync_parser.add_argument("--report-json", default=None, help="Write the run report as JSON")
    sync_parser.add_argument("--report-csv", default=None, help="Write the run report as CSV")

    generate_parser = subparsers.add_parser(
        "generate",
        help="Create or regenerate the recipe for one gem",
        description="If a slot is given the package is named ruby-<gem>-<slot> "
                    "and the gem version is limited to ~> <slot>.0",
    )
    generate_parser.add_argument("gem_name", help="Name of the gem")
    generate_parser.add_argument("slot", nargs="?", default=None, help="Version slot, e.g. 2.1")
    return parser


def run_sync(
    args, settings: Settings, index: UpstreamIndex, fetcher: ArtifactFetcher, probe: DistroPackageProbe
) -> int:
    store = RecipeStore(settings.root, settings.distro_prefix)
    publisher = MakepkgPublisher(install=args.install) if args.publish else None
    engine = SyncEngine(index, store, fetcher, settings, publisher)
    report = engine.sync_all(probe)
    print_summary(report)

    if args.report_json:
        logger.info("Report saved to: %s", save_report_json(report, Path(args.report_json)))
    if args.report_csv:
        logger.info("Report saved to: %s", export_report_csv(report, Path(args.report_csv)))
    if report.blocked:
        logger.warning("%d recipe(s) are blocked by missing dependency packages", report.blocked)
    return 1 if report.failed else 0


def run_generate(
    args, settings: Settings, index: UpstreamIndex, fetcher: ArtifactFetcher, probe: DistroPackageProbe
) -> int:
    store = RecipeStore(settings.root, settings.distro_prefix)
    generator = RecipeGenerator(index, store, fetcher, settings)
    version_set = index.load_version_set()
    try:
        result = generator.generate(args.gem_name, args.slot, version_set, probe)
    except (GemSyncError, OSError) as e:
        logger.error("%s", e)
        return 1
    logger.info("Wrote %s (%s-%s)", result.path, result.recipe.gem_version, result.recipe.release)
    for name in result.missing:
        logger.warning("Dependency package %s has to be created first", name)
    return 0


def main(argv=None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )
    if args.workers < 1:
        parser.error("--workers must be at least 1")

    settings = Settings(
        root=Path(args.root),
        workers=args.workers,
        probe_timeout=args.timeout,
    )
    cache = IndexCache()
    index = RubyGemsIndex(settings, cache)
    fetcher = GemFetcher(settings, cache.session)
    probe = DistroPackageProbe(PacmanRepository(settings), AurClient(settings, cache))

    try:
        if args.command == "sync":
            return run_sync(args, settings, index, fetcher, probe)
        return run_generate(args, settings, index, fetcher, probe)
    except UpstreamIndexError as e:
        logger.error("%s", e)
        return 2


if __name__ == "__main__":
    sys.exit(main())
