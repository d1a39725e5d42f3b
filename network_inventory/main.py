"""
Main entry point for the Network Inventory Module.

This module provides the command-line interface for the inventory tool,
including argument parsing, pre-flight checks, and graceful shutdown handling.
"""

import argparse
import signal
import sys
from pathlib import Path
from typing import List, Optional

from . import __version__
from .config.config_loader import ConfigLoader
from .core.network_detector import NetworkDetector
from .core.pipeline import PipelineResult, PipelineRunner
from .utils.error_handler import ErrorHandler, NetworkInventoryError, ToolValidator, ValidationError
from .utils.json_reporter import JSONReporter, render_host_tree
from .utils.logger import LogLevel, get_logger, set_log_level
from .utils.network_utils import expand_targets


class NetworkInventoryApp:
    """
    Main application class for Network Inventory Module.

    Handles CLI interface, pre-flight checks, and application lifecycle.
    """

    def __init__(self):
        """Initialize the application."""
        self.logger = get_logger(__name__)
        self.error_handler = ErrorHandler(self.logger)
        self.runner: Optional[PipelineRunner] = None
        self.shutdown_requested = False

        # Register signal handlers for graceful shutdown
        signal.signal(signal.SIGINT, self._signal_handler)
        signal.signal(signal.SIGTERM, self._signal_handler)

    def _signal_handler(self, signum: int, frame) -> None:
        """
        Handle shutdown signals gracefully.

        Args:
            signum: Signal number
            frame: Current stack frame
        """
        signal_names = {signal.SIGINT: "SIGINT", signal.SIGTERM: "SIGTERM"}
        signal_name = signal_names.get(signum, f"Signal {signum}")

        if not self.shutdown_requested:
            self.logger.warning(f"Received {signal_name} - initiating graceful shutdown...")
            self.shutdown_requested = True
            raise KeyboardInterrupt
        self.logger.error("Force shutdown requested - terminating immediately")
        sys.exit(1)

    def _perform_preflight_checks(self) -> bool:
        """
        Perform pre-flight checks for required external tools.

        Returns:
            bool: True if all checks pass, False otherwise
        """
        self.logger.section("PRE-FLIGHT CHECKS")

        validator = ToolValidator(self.error_handler)
        all_available, missing = validator.validate_all_tools()

        if all_available:
            self.logger.success("All pre-flight checks passed")
        else:
            self.logger.error(f"Missing tools: {', '.join(missing)}")
        return all_available

    def _validate_paths(self, config_dir: Optional[str], output_dir: Optional[str]) -> tuple:
        """
        Validate and prepare configuration and output directories.

        Args:
            config_dir: Configuration directory path
            output_dir: Output directory path

        Returns:
            tuple: (validated_config_dir, validated_output_dir)

        Raises:
            ValidationError: If the configuration directory is unusable
            OSError: If the output directory cannot be created
        """
        if config_dir:
            config_path = Path(config_dir)
            if not config_path.is_dir():
                raise ValidationError(f"Configuration directory does not exist: {config_dir}")
            validated_config_dir = str(config_path.resolve())
        else:
            validated_config_dir = str((Path(__file__).parent / "config").resolve())

        output_path = Path(output_dir) if output_dir else Path.cwd() / "results"
        output_path.mkdir(parents=True, exist_ok=True)
        validated_output_dir = str(output_path.resolve())

        self.logger.info(f"Using configuration directory: {validated_config_dir}")
        self.logger.info(f"Using output directory: {validated_output_dir}")
        return validated_config_dir, validated_output_dir

    def _resolve_targets(self, targets_text: Optional[str]) -> List[str]:
        """Expand the --targets value, or derive targets from the local network."""
        if targets_text:
            targets = expand_targets(targets_text)
            self.logger.info(f"Expanded {len(targets)} target addresses")
            return targets

        network_info = NetworkDetector(self.logger).get_host_network_info()
        self.logger.network_info(
            network=network_info.cidr,
            host_ip=network_info.host_ip,
            target_count=len(network_info.scan_range),
        )
        return network_info.scan_range

    def _print_summary(self, result: PipelineResult) -> None:
        self.logger.section("STEP SUMMARY")
        self.logger.table_header(["Step", "Duration", "Result"], [32, 10, 40])
        for outcome in result.steps:
            self.logger.table_row(
                [outcome.name, f"{outcome.duration:.1f}s", outcome.final_message[:40]],
                [32, 10, 40],
            )

        if result.error_statistics:
            self.logger.info("Probe failures by type:")
            for error_type, count in sorted(result.error_statistics.items()):
                self.logger.info(f"  • {error_type}: {count}")

        tree = render_host_tree(result.hosts)
        if tree:
            self.logger.section("HOSTS")
            print(tree)

    def run(self, args: argparse.Namespace) -> int:
        """
        Run the network inventory application.

        Args:
            args: Parsed command line arguments

        Returns:
            int: Exit code (0 for success, non-zero for failure)
        """
        try:
            if args.init_config:
                ConfigLoader(args.config_dir, self.logger).create_default_configs()
                return 0

            if not self._perform_preflight_checks():
                if not args.skip_checks:
                    self.logger.error("Pre-flight checks failed. Use --skip-checks to bypass.")
                    return 1
                self.logger.warning("Skipping pre-flight checks as requested")

            config_dir, output_dir = self._validate_paths(args.config_dir, args.output_dir)
            targets = self._resolve_targets(args.targets)
            if not targets:
                self.logger.error("No target addresses to scan")
                return 1

            steps = [step for step in (args.steps or "").split(",") if step.strip()]
            self.runner = PipelineRunner(
                config_loader=ConfigLoader(config_dir, self.logger),
                logger=self.logger,
                steps=steps or None,
            )

            if self.shutdown_requested:
                self.logger.info("Shutdown requested before scan start")
                return 0

            result = self.runner.run(targets)

            pipeline_config = self.runner.pipeline_config
            reporter = JSONReporter(pipeline_config.output_dir or output_dir, pipeline_config.export_file)
            export_path = reporter.export_hosts(result.hosts, result.started_at)

            self._print_summary(result)
            self.logger.success(f"Inventory saved to: {export_path}")
            return 0

        except KeyboardInterrupt:
            self.logger.warning("Scan interrupted by user")
            return 130  # Standard exit code for SIGINT
        except NetworkInventoryError as e:
            self.logger.error(str(e))
            return 1
        except OSError as e:
            self.logger.error(f"Network inventory failed: {e}", exception=e)
            return 1


def create_argument_parser() -> argparse.ArgumentParser:
    """
    Create and configure the command line argument parser.

    Returns:
        argparse.ArgumentParser: Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="network_inventory",
        description="Network Inventory Module - LAN device discovery and enrichment",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m network_inventory                                  # Scan the local network
  python -m network_inventory --targets 192.168.1.x            # Wildcard octet (1..254)
  python -m network_inventory --targets 10.0.0.5-20,10.0.1.1   # Range plus literal
  python -m network_inventory --steps ping,portscan,http       # Run selected steps only
  python -m network_inventory --init-config --config-dir ./cfg # Write default YAML files
        """
    )

    parser.add_argument(
        "--targets",
        type=str,
        help="Comma-separated targets: addresses, CIDR networks, 'x' wildcard octets "
             "or start-endSuffix ranges. Defaults to the local network"
    )

    parser.add_argument(
        "--config-dir",
        type=str,
        help="Directory containing configuration files (pipeline_config.yml, ping_config.yml, ...). "
             "Defaults to network_inventory/config/"
    )

    parser.add_argument(
        "--output-dir",
        type=str,
        help="Directory for the Hosts.json inventory. Defaults to ./results/"
    )

    parser.add_argument(
        "--steps",
        type=str,
        help="Comma-separated step keys overriding pipeline_config.yml "
             "(arp, ping, dns, mdns, portscan, http, netbios, msrpc, inference)"
    )

    parser.add_argument(
        "--skip-checks",
        action="store_true",
        help="Skip pre-flight checks for external tools (arp, ping)"
    )

    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write default configuration files to the configuration directory and exit"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging output"
    )

    parser.add_argument(
        "--version",
        action="version",
        version=f"Network Inventory Module {__version__}"
    )

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """
    Main entry point for the Network Inventory Module.

    Returns:
        int: Exit code (0 for success, non-zero for failure)
    """
    parser = create_argument_parser()
    args = parser.parse_args(argv)

    if args.verbose:
        set_log_level(LogLevel.DEBUG)

    app = NetworkInventoryApp()
    return app.run(args)


if __name__ == "__main__":
    sys.exit(main())
