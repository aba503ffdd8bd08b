"""Run capacity tariff simulations from the bundled scenario catalogue."""
import argparse
import logging
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from custom_components.effekttariff.simulation import (  # noqa: E402
    export_to_csv,
    format_results,
    format_verification,
    load_scenarios,
    verify_results,
)


def run_scenario(scenario, csv_dir=None, verbose=False):
    """Run one scenario, print the report and return True when all checks pass."""
    print(f"\n>>> {scenario.name}")
    print(f"    {scenario.description}")

    result = scenario.run()
    if verbose:
        print(format_results(result))

    if csv_dir:
        files = export_to_csv(result, csv_dir, scenario.key)
        for table, path in files.items():
            print(f"    {table}: {path}")

    if not scenario.expectations:
        print("    (no expectations)")
        return True

    verification = verify_results(result, scenario.expectations)
    print(format_verification(verification))
    return verification["passed"]


def main(argv=None):
    parser = argparse.ArgumentParser(description="Effekttariff scenario simulator")
    parser.add_argument("scenario", nargs="?", help="Scenario key to run")
    parser.add_argument("--all", action="store_true", help="Run every scenario")
    parser.add_argument("--list", action="store_true", help="List available scenarios")
    parser.add_argument("--csv", metavar="DIR", help="Export results as CSV files to DIR")
    parser.add_argument("-v", "--verbose", action="store_true", help="Print full results and debug logs")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    scenarios = load_scenarios()

    if args.list:
        print("Available scenarios:")
        for key, scenario in scenarios.items():
            print(f"  {key:<22} {scenario.name} ({scenario.duration_days} days)")
        return 0

    if args.all:
        selected = list(scenarios.values())
    elif args.scenario:
        if args.scenario not in scenarios:
            print(f"Unknown scenario '{args.scenario}'. Use --list to see available scenarios.")
            return 2
        selected = [scenarios[args.scenario]]
    else:
        parser.print_help()
        return 2

    failed = [s.key for s in selected if not run_scenario(s, args.csv, args.verbose)]

    print("\n" + "=" * 64)
    print(f"{len(selected) - len(failed)}/{len(selected)} scenario(s) passed")
    if failed:
        print("Failed: " + ", ".join(failed))
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
