#!/usr/bin/env python3
"""
Example script demonstrating how to use the Interpreter Fuzzer
"""
import sys
import argparse
from pathlib import Path

# Make the package importable without installing it
sys.path.insert(0, str(Path(__file__).parent.parent))

from interpreter_fuzzer.main import InterpreterFuzzer
from interpreter_fuzzer.fuzzer_engine import ConfigLoader
from interpreter_fuzzer.errors import ConfigurationError


def run_test(config_file, cluster_spec_file=None, seed=None):
    """Run a test described by a configuration file"""
    print("=" * 80)
    print(f"Running Test: {config_file}")
    print("=" * 80)

    config = ConfigLoader.load_from_file(config_file)
    config = ConfigLoader.apply_overrides(config, seed=seed)
    if cluster_spec_file:
        cluster_spec = ConfigLoader.load_cluster_spec_file(cluster_spec_file)
    else:
        cluster_spec = ConfigLoader.load_cluster_spec_from_env()

    fuzzer = InterpreterFuzzer()
    result = fuzzer.run_test(config, cluster_spec)

    print("\n" + "=" * 80)
    print("Test Results")
    print("=" * 80)
    print(f"Run ID: {result.run_id}")
    print(f"Status: {result.status.value}")
    print(f"Duration: {result.end_time - result.start_time:.2f}s")
    print(f"Programs Sent: {result.programs_sent}")
    print(f"Expected Increments: {result.expected_total}")
    print(f"Chaos Events: {len(result.chaos_events)}")
    print(f"\nReproduction Seed: {result.seed}")

    if result.error_message:
        print(f"\nError: {result.error_message}")

    return result


def show_programs(config_file, count):
    """Print the first programs of the seeded workload"""
    config = ConfigLoader.load_from_file(config_file)
    fuzzer = InterpreterFuzzer()
    for i, (key, program) in enumerate(fuzzer.generate_programs(config)):
        if i >= count:
            break
        print(f"ObjectInterpreterL0/{key}: {program.to_dict()}")


def main():
    parser = argparse.ArgumentParser(
        description="Interpreter Fuzzer - Verify durable execution consistency under chaos",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run against an already running cluster
  python run_fuzzer.py run local_chaos.yaml

  # Bootstrap the cluster described in universe.json
  python run_fuzzer.py run local_chaos.yaml --cluster-spec universe.json --seed 42

  # Show the first programs of the workload
  python run_fuzzer.py show local_chaos.yaml --count 3
        """
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    run_parser = subparsers.add_parser('run', help='Run a test')
    run_parser.add_argument('file', help='Path to configuration file')
    run_parser.add_argument('--cluster-spec', help='Container spec (JSON)')
    run_parser.add_argument('--seed', help='Seed for reproducibility')

    show_parser = subparsers.add_parser('show', help='Show generated programs')
    show_parser.add_argument('file', help='Path to configuration file')
    show_parser.add_argument('--count', type=int, default=5, help='Number of programs to show')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return 1

    try:
        if args.command == 'run':
            result = run_test(args.file, args.cluster_spec, args.seed)
            return 0 if result.success else 1
        elif args.command == 'show':
            show_programs(args.file, args.count)
    except ConfigurationError as e:
        print(f"\nInvalid configuration: {e}")
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
