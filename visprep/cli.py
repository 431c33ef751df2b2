#!/usr/bin/env python3
"""
VISPREP Command-Line Interface.

Commands:
- visprep run config.yaml          : Correct, flag and average from a YAML config
- visprep info cube.h5             : Show cube file information
- visprep version                  : Show VISPREP version
"""

import sys
import argparse
import logging
from pathlib import Path

from .errors import VisprepError


def cmd_run(args):
    """Run the preprocessing pipeline from a YAML config."""
    from .config import load_config
    from .pipeline import run_pipeline, setup_logging

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        sys.exit(1)

    try:
        config = load_config(config_path)
        setup_logging(config.log_dir, level=logging.DEBUG if args.verbose else logging.INFO)
        result = run_pipeline(config)
    except (VisprepError, FileNotFoundError, FileExistsError) as e:
        print(f"\n{'='*60}")
        print(f"✗ Preprocessing failed")
        print(f"{'='*60}")
        print(f"Error: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        sys.exit(1)

    print(f"\n{'='*60}")
    print(f"✓ Preprocessing completed")
    print(f"{'='*60}")
    print(f"  Output shape:     {result.cube.shape}  (time, chan, baseline, pol)")
    print(f"  Failed baselines: {result.n_failed}")
    if config.output:
        print(f"  Output file:      {config.output}")
    print()


def cmd_info(args):
    """Show cube file information."""
    from .io import describe_cube

    cube_path = Path(args.cube)
    if not cube_path.exists():
        print(f"Error: Cube file not found: {cube_path}")
        sys.exit(1)

    try:
        info = describe_cube(cube_path)
    except (OSError, KeyError) as e:
        print(f"Error reading cube: {e}")
        sys.exit(1)

    f0, f1 = info["freq_range_hz"]
    print(f"\nVISPREP Cube Info")
    print(f"{'='*60}")
    print(f"File: {cube_path}")
    print(f"{'='*60}\n")
    print(f"Format version:  {info['version']}")
    print(f"State:           {info['state'] or 'N/A'}")
    print(f"Telescope:       {info['telescope']}")
    print(f"Antennas:        {info['n_ant']}")
    print(f"Shape:           {info['shape']}")
    print(f"  (time, chan, baseline, pol)")
    print(f"\nFrequency Coverage:")
    print(f"  Start:         {f0 / 1e6:.3f} MHz")
    print(f"  End:           {f1 / 1e6:.3f} MHz")
    print(f"  Channel width: {info['channel_width_hz'] / 1e3:.1f} kHz")
    print(f"\nIntegration:     {info['integration_time_s']:.2f} s")
    print(f"Flagged:         {100 * info['flagged_fraction']:.1f}%")
    if info["config"]:
        print(f"\nRun config:\n{info['config']}")
    print()


def cmd_version(args):
    """Show VISPREP version."""
    from . import __version__

    print(f"VISPREP version {__version__}")
    print(f"Visibility preprocessing: corrections, RFI flagging, averaging")


def main(argv=None):
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(
        prog='visprep',
        description='VISPREP - Radio visibility preprocessing',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  visprep run preprocess.yaml       Run the pipeline from a YAML config
  visprep info obs_avg.h5           Show cube information
  visprep version                   Show VISPREP version
        """
    )
    parser.add_argument('--verbose', '-v', action='store_true',
                        help='Verbose output (debug logging, tracebacks on errors)')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    parser_run = subparsers.add_parser('run', help='Run preprocessing from YAML config')
    parser_run.add_argument('config', type=str, help='Path to YAML configuration file')
    parser_run.set_defaults(func=cmd_run)

    parser_info = subparsers.add_parser('info', help='Show cube file information')
    parser_info.add_argument('cube', type=str, help='Path to HDF5 cube file')
    parser_info.set_defaults(func=cmd_info)

    parser_version = subparsers.add_parser('version', help='Show VISPREP version')
    parser_version.set_defaults(func=cmd_version)

    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        sys.exit(0)

    args.func(args)


if __name__ == '__main__':
    main()
