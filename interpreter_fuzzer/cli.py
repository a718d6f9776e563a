#!/usr/bin/env python3
"""
Command-line interface for the Interpreter Fuzzer
Provides commands for running tests, validating configurations and printing seeded workloads.
"""
import sys
import argparse
import json
import yaml
import traceback
import logging
from pathlib import Path
from typing import Dict, Any, Optional
from datetime import datetime
from .main import InterpreterFuzzer
from .fuzzer_engine import ConfigLoader
from .models import ExecutionResult, ClusterSpec, TestConfiguration
from .errors import ConfigurationError
from .utils.run_utils import format_duration


class FuzzerCLI:
    """Command-line interface for the Interpreter Fuzzer"""

    def __init__(self, fuzzer: Optional[InterpreterFuzzer] = None):
        self.fuzzer = fuzzer or InterpreterFuzzer()

    def load_configuration(self, args) -> TestConfiguration:
        """Configuration file plus command line overrides"""
        config = ConfigLoader.load_from_file(args.config)
        config = ConfigLoader.apply_overrides(
            config,
            seed=getattr(args, 'seed', None),
            tests=getattr(args, 'tests', None),
            keys=getattr(args, 'keys', None)
        )
        return ConfigLoader.apply_environment(config)

    def load_cluster_spec(self, args) -> Optional[ClusterSpec]:
        if getattr(args, 'cluster_spec', None):
            return ConfigLoader.load_cluster_spec_file(args.cluster_spec)
        return ConfigLoader.load_cluster_spec_from_env()

    def run_test(self, args) -> int:
        """Execute a test run"""
        self._print_header(f"Test Run: {args.config}")

        try:
            config = self.load_configuration(args)
            cluster_spec = self.load_cluster_spec(args)
        except ConfigurationError as e:
            print(f"Error: Invalid configuration: {e}")
            print(f"\nTry validating your configuration first: interpreter-fuzzer validate {args.config}")
            return 1

        print(f"Seed: {config.seed} (reproducible)")
        print(f"Tests: {config.tests}, keys: {config.keys}")
        if config.bootstrap:
            names = ', '.join(cluster_spec.container_names()) if cluster_spec else 'none'
            print(f"Bootstrap containers: {names}")
        print()

        result = self.fuzzer.run_test(config, cluster_spec)

        if args.verbose:
            self._print_detailed_result(result)
        else:
            self._print_summary_result(result)

        if args.output:
            self._save_result(result, args.output, args.format)

        return 0 if result.success else 1

    def validate_config(self, args) -> int:
        """Validate a configuration file"""
        self._print_header(f"Validating configuration: {args.file}")

        try:
            config = ConfigLoader.load_from_file(args.file)
            print("Configuration loaded and validated successfully")

            cluster_spec = None
            if args.cluster_spec:
                cluster_spec = ConfigLoader.load_cluster_spec_file(args.cluster_spec)
                print("Cluster spec loaded successfully")

            if config.bootstrap and cluster_spec is not None:
                for node in config.rolling_upgrade:
                    spec = next((c for c in cluster_spec.containers if c.name == node), None)
                    if spec is None or not spec.images:
                        raise ConfigurationError(f"Rolling upgrade requested for {node}, which has no images")

            print("\n" + "=" * 60)
            print("Configuration Summary")
            print("=" * 60)
            print(f"Ingress: {config.ingress}")
            print(f"Seed: {config.seed}")
            print(f"Keys: {config.keys}, tests: {config.tests}, max program size: {config.max_program_size}")
            print(f"Bootstrap: {config.bootstrap}")
            print(f"Chaos: {'every ' + str(config.crash_interval) + 'ms' if config.crash_interval else 'disabled'}"
                  f"{' (hard)' if config.crash_hard else ''}")

            if args.verbose:
                if config.register:
                    print(f"\nAdmin: {config.register.admin_url}")
                    for uri in config.register.deployments:
                        print(f"  - {uri}")
                for node, mode in config.rolling_upgrade.items():
                    print(f"Rolling upgrade {node}: {mode.value}")
                if cluster_spec:
                    print(f"\nContainers: {', '.join(cluster_spec.container_names())}")

            print("\nConfiguration is valid!")
            return 0

        except ConfigurationError as e:
            print(f"\nError: Validation failed: {e}")
            if args.verbose:
                traceback.print_exc()
            return 1

    def generate_programs(self, args) -> int:
        """Print the seeded workload as JSON lines"""
        try:
            config = self.load_configuration(args)
        except ConfigurationError as e:
            print(f"Error: Invalid configuration: {e}", file=sys.stderr)
            return 1

        out = open(args.output, 'w') if args.output else sys.stdout
        try:
            for key, program in self.fuzzer.generate_programs(config):
                out.write(json.dumps({'key': key, 'program': program.to_dict()}) + "\n")
        finally:
            if out is not sys.stdout:
                out.close()
        return 0

    def _print_header(self, title: str):
        """Print formatted header"""
        print()
        print("=" * 80)
        print(title)
        print("=" * 80)
        print()

    def _print_summary_result(self, result: ExecutionResult):
        """Print summary of test result"""
        status = "PASSED" if result.success else "FAILED"
        duration = result.end_time - result.start_time

        print(f"\nRun: {result.run_id}")
        print(f"Status: {status} ({result.status.value})")
        print(f"Duration: {format_duration(duration)}")
        print(f"Programs Sent: {result.programs_sent}")
        print(f"Expected Increments: {result.expected_total}")
        print(f"Chaos Events: {len(result.chaos_events)}")
        print(f"Seed: {result.seed} (use to reproduce)")

        if result.error_message:
            print(f"Error: {result.error_message}")

    def _print_detailed_result(self, result: ExecutionResult):
        """Print detailed test result when --verbose flag is specified"""
        self._print_summary_result(result)

        if result.chaos_events:
            print("\nChaos Events:")
            for event in result.chaos_events:
                status = "[NOOP]" if event.no_op else "[PASS]" if event.success else "[FAIL]"
                duration = (event.end_time - event.start_time) if event.end_time else 0
                print(f"  {status} {event.chaos_type.value} on {event.target_node} ({duration:.2f}s)")
                if event.error_message:
                    print(f"    Error: {event.error_message}")

        if result.last_progress is not None:
            progress = result.last_progress
            remaining = format_duration(progress.remaining) if progress.remaining is not None else "N/A"
            print("\nLast Verification Poll:")
            print(f"  Keys differ: {progress.divergence.count_diff}")
            print(f"  Total difference: {progress.divergence.total_diff}")
            print(f"  Max difference: {progress.divergence.max_diff}")
            print(f"  Percent done: {progress.percent_done:.2f}%")
            print(f"  Estimated time remaining: {remaining}")

    def _save_result(self, result: ExecutionResult, output_path: str, format: str):
        """Save test result to file"""
        try:
            output = Path(output_path)
            output.parent.mkdir(parents=True, exist_ok=True)

            data = {
                'timestamp': datetime.now().isoformat(),
                'result': self._result_to_dict(result)
            }

            with open(output, 'w') as f:
                if format == 'json':
                    json.dump(data, f, indent=2)
                elif format == 'yaml':
                    yaml.dump(data, f, default_flow_style=False)

            print(f"\nResults saved to {output_path}")

        except OSError as e:
            print(f"\nFailed to save results: {e}")

    def _result_to_dict(self, result: ExecutionResult) -> Dict[str, Any]:
        """Convert ExecutionResult to dictionary"""
        data = {
            'run_id': result.run_id,
            'success': result.success,
            'status': result.status.value,
            'duration': result.end_time - result.start_time,
            'programs_sent': result.programs_sent,
            'expected_total': result.expected_total,
            'chaos_events': [
                {
                    'chaos_type': event.chaos_type.value,
                    'target_node': event.target_node,
                    'success': event.success,
                    'no_op': event.no_op,
                    'error': event.error_message
                }
                for event in result.chaos_events
            ],
            'seed': result.seed,
            'error_message': result.error_message
        }

        if result.last_progress is not None:
            progress = result.last_progress
            data['last_verification'] = {
                'count_diff': progress.divergence.count_diff,
                'total_diff': progress.divergence.total_diff,
                'max_diff': progress.divergence.max_diff,
                'percent_done': progress.percent_done,
                'elapsed': progress.elapsed,
                'remaining': progress.remaining
            }

        return data


def create_parser() -> argparse.ArgumentParser:
    """Create argument parser for CLI"""
    parser = argparse.ArgumentParser(
        prog='interpreter-fuzzer',
        description='Interpreter Fuzzer - Verify durable execution consistency under chaos',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run a test described by a configuration file
  interpreter-fuzzer run examples/local_chaos.yaml

  # Override the seed and the size of the workload
  interpreter-fuzzer run examples/local_chaos.yaml --seed 42 --tests 1000 --keys 100

  # Bootstrap the cluster from a container spec and save the result
  interpreter-fuzzer run examples/local_chaos.yaml --cluster-spec universe.json --output results.json

  # Validate a configuration file
  interpreter-fuzzer validate examples/local_chaos.yaml

  # Print the seeded workload without sending it
  interpreter-fuzzer generate examples/local_chaos.yaml --tests 5
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version='Interpreter Fuzzer 0.1.0'
    )

    subparsers = parser.add_subparsers(dest='command', help='Command to execute')

    run_parser = subparsers.add_parser(
        'run',
        help='Run a consistency test'
    )
    run_parser.add_argument(
        'config',
        help='Path to configuration file (YAML or JSON)'
    )
    _add_override_arguments(run_parser)
    run_parser.add_argument(
        '--cluster-spec',
        type=str,
        metavar='FILE',
        help='Container spec (JSON) for bootstrapped clusters, defaults to $UNIVERSE_ENV_JSON'
    )
    run_parser.add_argument(
        '--output',
        type=str,
        help='Path to save test results'
    )
    run_parser.add_argument(
        '--format',
        choices=['json', 'yaml'],
        default='json',
        help='Output format for results (default: json)'
    )
    run_parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    validate_parser = subparsers.add_parser(
        'validate',
        help='Validate a configuration file'
    )
    validate_parser.add_argument(
        'file',
        help='Path to configuration file'
    )
    validate_parser.add_argument(
        '--cluster-spec',
        type=str,
        metavar='FILE',
        help='Also validate a container spec against the configuration'
    )
    validate_parser.add_argument(
        '--verbose',
        action='store_true',
        help='Enable verbose output'
    )

    generate_parser = subparsers.add_parser(
        'generate',
        help='Print the seeded programs as JSON lines'
    )
    generate_parser.add_argument(
        'config',
        help='Path to configuration file'
    )
    _add_override_arguments(generate_parser)
    generate_parser.add_argument(
        '--output',
        type=str,
        help='Write to a file instead of stdout'
    )

    return parser


def _add_override_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        '--seed',
        type=str,
        help='Seed for reproducibility (overrides the configuration file)'
    )
    parser.add_argument(
        '--tests',
        type=int,
        help='Number of programs to send'
    )
    parser.add_argument(
        '--keys',
        type=int,
        help='Number of interpreter objects per layer'
    )


def main(argv=None):
    """Main entry point for CLI"""

    logging.basicConfig(
        level=logging.INFO,
        format='%(levelname)-5s | %(filename)s:%(lineno)-3d | %(message)s',
        handlers=[logging.StreamHandler()]
    )

    parser = create_parser()
    args = parser.parse_args(argv)

    if not args.command:
        print("Error: No command specified\n")
        parser.print_help()
        print("\nCommon commands:")
        print("  interpreter-fuzzer run config.yaml          # Run a test")
        print("  interpreter-fuzzer validate config.yaml     # Validate a configuration")
        return 1

    if getattr(args, 'verbose', False):
        logging.getLogger().setLevel(logging.DEBUG)

    cli = FuzzerCLI()

    try:
        if args.command == 'run':
            return cli.run_test(args)
        elif args.command == 'validate':
            return cli.validate_config(args)
        elif args.command == 'generate':
            return cli.generate_programs(args)
    except KeyboardInterrupt:
        print("\n\nInterpreter Fuzzer process was interrupted by user")
        return 130
    except Exception as e:
        print(f"\nUnexpected error: {e}")
        if getattr(args, 'verbose', False):
            traceback.print_exc()
        return 1

    return 0


if __name__ == '__main__':
    sys.exit(main())
