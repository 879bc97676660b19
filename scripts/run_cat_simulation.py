"""
Run a Monte Carlo CAT simulation study and print a markdown report.

Generates a synthetic 3PL item bank, simulates examinees with known ability
through the attempt state machine, and reports test length, precision and
estimation accuracy overall and per ability band.

Exit codes:
    0 - Success
    1 - Invalid configuration
    2 - Simulation error
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

logger = logging.getLogger("cat_simulation")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Simulate adaptive test attempts and report CAT performance",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s --examinees 200
  %(prog)s --examinees 1000 --target-precision 0.25 --max-items 30
  %(prog)s --output reports/simulation.md
        """,
    )
    parser.add_argument(
        "--examinees",
        "-n",
        type=int,
        default=500,
        help="Number of simulated examinees (default: 500)",
    )
    parser.add_argument(
        "--items-per-category",
        type=int,
        default=50,
        help="Synthetic items generated per category (default: 50)",
    )
    parser.add_argument(
        "--target-precision",
        type=float,
        default=0.30,
        help="Stop once SE(theta) is at or below this (default: 0.30)",
    )
    parser.add_argument(
        "--min-items", type=int, default=5, help="Minimum items (default: 5)"
    )
    parser.add_argument(
        "--max-items", type=int, default=20, help="Maximum items (default: 20)"
    )
    parser.add_argument(
        "--theta-mean",
        type=float,
        default=0.0,
        help="Mean of the true ability distribution (default: 0.0)",
    )
    parser.add_argument(
        "--theta-sd",
        type=float,
        default=1.0,
        help="SD of the true ability distribution (default: 1.0)",
    )
    parser.add_argument(
        "--seed", type=int, default=42, help="Random seed (default: 42)"
    )
    parser.add_argument(
        "--output",
        "-o",
        type=Path,
        default=None,
        help="Write the report to this file instead of stdout",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true", help="Log progress at INFO level"
    )
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )

    from adaptive_testing.core.cat.simulation import (
        SimulationConfig,
        generate_item_bank,
        generate_report,
        run_simulation,
    )

    if args.examinees < 1 or args.items_per_category < 1:
        logger.error("--examinees and --items-per-category must be positive")
        return 1

    config = SimulationConfig(
        n_examinees=args.examinees,
        theta_mean=args.theta_mean,
        theta_sd=args.theta_sd,
        target_precision=args.target_precision,
        min_items=args.min_items,
        max_items=args.max_items,
        seed=args.seed,
    )
    try:
        config.to_test_config()
    except ValueError as exc:
        logger.error("Invalid simulation configuration: %s", exc)
        return 1

    try:
        item_bank = generate_item_bank(
            n_items_per_category=args.items_per_category, seed=args.seed
        )
        result = run_simulation(item_bank, config)
    except Exception as exc:
        logger.error("Simulation failed: %s", exc, exc_info=True)
        return 2

    report = generate_report(result)
    if args.output:
        args.output.parent.mkdir(parents=True, exist_ok=True)
        args.output.write_text(report, encoding="utf-8")
        logger.info("Report written to %s", args.output)
    else:
        print(report)

    return 0


if __name__ == "__main__":
    sys.exit(main())
