#!/usr/bin/env python
"""
Survey Labeler - Command Line Interface
=======================================

CLI for reconciling raw survey images against a graded tree.

Usage:
    # Dry run: list survey pairs and problems, write nothing
    python -m survey_labeler.cli preview --graded ./Graded --raw ./Raw

    # Full run: per-survey, merged and problems CSVs
    python -m survey_labeler.cli run --graded ./Graded --raw ./Raw --output ./out

    # One explicit pair
    python -m survey_labeler.cli single --graded ./Graded/20250101_AB_CD \\
        --raw ./Raw/2025/01/20250101_AB --output ./out --survey-id 20250101_AB

    # Show or edit the saved rules
    python -m survey_labeler.cli config show
"""

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Optional

from .config import Rules, RulesStore, RootRunOptions, SingleRunOptions, ConfigError
from .logger_module import SurveyLabelerLogger
from .grading_matcher import ProgressEvent
from .main_orchestrator import ReconciliationOrchestrator, RunSummary
from .checker import ReportChecker
from .sample_data import generate_sample_data


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser."""
    parser = argparse.ArgumentParser(
        prog='survey-labeler',
        description="Label raw survey images by matching them against a graded tree",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Build a sample tree and preview it
  survey-labeler sample ./demo
  survey-labeler preview --graded ./demo/Graded --raw ./demo/Raw

  # Full run with custom rules
  survey-labeler run --graded ./Graded --raw ./Raw --output ./out --rules rules.json

  # Verify an output directory
  survey-labeler check ./out --json ./out/report.json
        """
    )
    parser.add_argument(
        '--config-dir',
        type=Path,
        help='Directory holding rules.json (default: user config directory)'
    )
    parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose output'
    )

    subparsers = parser.add_subparsers(dest='command', required=True)

    # config
    config_parser = subparsers.add_parser('config', help='Show, save or reset the saved rules')
    config_sub = config_parser.add_subparsers(dest='config_command', required=True)
    config_sub.add_parser('show', help='Print the saved rules (initializing defaults)')
    save_parser = config_sub.add_parser('save', help='Save rules from a JSON file')
    save_parser.add_argument('file', type=Path, help='JSON rule document')
    config_sub.add_parser('reset', help='Restore the built-in rules')

    # preview
    preview_parser = subparsers.add_parser('preview', help='Pair survey folders without writing')
    _add_root_args(preview_parser)
    preview_parser.add_argument(
        '--json',
        action='store_true',
        help='Print preview items as JSON'
    )

    # run
    run_parser = subparsers.add_parser('run', help='Full-tree reconciliation')
    _add_root_args(run_parser)
    _add_output_args(run_parser)
    run_parser.add_argument(
        '--no-per-survey',
        action='store_true',
        help='Do not write per-survey CSVs'
    )
    run_parser.add_argument(
        '--no-merged',
        action='store_true',
        help='Do not write the merged CSV'
    )
    run_parser.add_argument('--merged-filename', default='merged.csv')
    run_parser.add_argument('--problems-filename', default='problems.csv')
    run_parser.add_argument('--per-survey-dirname', default='per_survey')

    # single
    single_parser = subparsers.add_parser('single', help='Reconcile one raw/graded pair')
    single_parser.add_argument('--graded', type=Path, required=True, help='Graded survey folder')
    single_parser.add_argument('--raw', type=Path, required=True, help='Raw survey folder')
    single_parser.add_argument('--rules', type=Path, help='JSON rule document (default: saved rules)')
    _add_output_args(single_parser)
    single_parser.add_argument(
        '--survey-id',
        help='Survey id to use instead of detecting it from the graded path'
    )
    single_parser.add_argument('--output-filename', default='single.csv')

    # check
    check_parser = subparsers.add_parser('check', help='Verify the outputs of a full run')
    check_parser.add_argument('output', type=Path, help='Output directory of a full run')
    check_parser.add_argument('--json', type=Path, help='Also export the report to this file')
    check_parser.add_argument('--merged-filename', default='merged.csv')
    check_parser.add_argument('--problems-filename', default='problems.csv')
    check_parser.add_argument('--per-survey-dirname', default='per_survey')

    # sample
    sample_parser = subparsers.add_parser('sample', help='Create a sample Raw/Graded tree')
    sample_parser.add_argument('target', type=Path, help='Directory to create the trees in')

    return parser


def _add_root_args(parser: argparse.ArgumentParser):
    parser.add_argument('--graded', type=Path, required=True, help='Root of the graded tree')
    parser.add_argument('--raw', type=Path, required=True, help='Root of the raw tree')
    parser.add_argument('--rules', type=Path, help='JSON rule document (default: saved rules)')


def _add_output_args(parser: argparse.ArgumentParser):
    parser.add_argument('--output', '-o', type=Path, required=True, help='Output directory')
    parser.add_argument(
        '--no-log',
        action='store_true',
        help='Do not write a session log under <output>/logs'
    )
    parser.add_argument(
        '--quiet', '-q',
        action='store_true',
        help='Suppress progress output'
    )


def validate_args(args: argparse.Namespace) -> bool:
    """Validate command line arguments."""
    for name in ('graded', 'raw'):
        path = getattr(args, name, None)
        if path is None:
            continue
        if not path.exists():
            print(f"Error: Directory not found: {path}")
            return False
        if not path.is_dir():
            print(f"Error: Not a directory: {path}")
            return False

    rules_path = getattr(args, 'rules', None)
    if rules_path is not None and not rules_path.is_file():
        print(f"Error: Rules file not found: {rules_path}")
        return False

    if args.command == 'check' and not args.output.is_dir():
        print(f"Error: Output directory not found: {args.output}")
        return False

    return True


def get_store(args: argparse.Namespace) -> RulesStore:
    if args.config_dir:
        return RulesStore(args.config_dir)
    return RulesStore()


def load_rules(args: argparse.Namespace) -> Rules:
    """Rules from --rules if given, else from the store."""
    if getattr(args, 'rules', None):
        return Rules.from_json(args.rules.read_text(encoding='utf-8'))
    return get_store(args).get_or_init()


def make_progress_callback(quiet: bool):
    """Progress printer for one line per survey."""
    if quiet:
        return None

    def progress_callback(event: ProgressEvent):
        pct = (event.processed / event.total * 100) if event.total > 0 else 0
        print(f"\r  {event.survey_id_base}: {event.processed}/{event.total} ({pct:.1f}%)",
              end="", flush=True)
        if event.processed == event.total:
            print()

    return progress_callback


def make_action_logger(args: argparse.Namespace) -> Optional[SurveyLabelerLogger]:
    if args.no_log:
        return None
    return SurveyLabelerLogger(args.output.resolve() / 'logs', console=not args.quiet)


def print_summary(summary: RunSummary):
    """Print run summary."""
    print("\n" + "=" * 60)
    print("RECONCILIATION COMPLETE")
    print("=" * 60)

    print(f"\nSurveys processed: {summary.processed_surveys}")
    print(f"Rows written: {summary.total_rows}")
    print(f"  Retained (dolphin=1): {summary.dolphin_yes}")
    print(f"  Not retained (dolphin=0): {summary.dolphin_no}")
    if summary.ambiguity_warnings:
        print(f"Ambiguous identities: {summary.ambiguity_warnings}")
    if summary.problems_count:
        print(f"Problems: {summary.problems_count}")

    print(f"\nOutput directory: {summary.output_dir}")
    if summary.merged_csv_path:
        print(f"CSV: {summary.merged_csv_path}")
    if summary.problems_csv_path:
        print(f"Problems report: {summary.problems_csv_path}")


def cmd_config(args: argparse.Namespace) -> int:
    store = get_store(args)
    if args.config_command == 'show':
        rules = store.get_or_init()
    elif args.config_command == 'save':
        rules = store.save(Rules.from_json(args.file.read_text(encoding='utf-8')))
        print(f"Saved rules to {store.rules_path}")
    else:
        rules = store.reset()
        print(f"Reset rules at {store.rules_path}")
    print(rules.to_json())
    return 0


def cmd_preview(args: argparse.Namespace) -> int:
    orchestrator = ReconciliationOrchestrator(load_rules(args))
    items = orchestrator.preview(args.graded.resolve(), args.raw.resolve())

    if args.json:
        print(json.dumps([item.to_dict() for item in items], indent=2, ensure_ascii=False))
        return 0

    print(f"\n{'BASE KEY':20} {'STATUS':8} {'RAW':>6} {'GRADED':>6}  DETAILS")
    print("-" * 70)
    for item in items:
        raw_count = '-' if item.raw_image_count is None else item.raw_image_count
        graded_count = '-' if item.graded_image_count is None else item.graded_image_count
        details = f"{item.problem_type}: {item.details}" if item.problem_type else ''
        print(f"{item.base_key:20} {item.status:8} {raw_count:>6} {graded_count:>6}  {details}")

    ok = sum(1 for item in items if item.status == 'OK')
    print(f"\n{ok} paired, {len(items) - ok} with problems")
    return 0


def cmd_run(args: argparse.Namespace) -> int:
    rules = load_rules(args)
    options = RootRunOptions(
        write_per_survey=not args.no_per_survey,
        write_merged=not args.no_merged,
        merged_filename=args.merged_filename,
        problems_filename=args.problems_filename,
        per_survey_dirname=args.per_survey_dirname,
    )
    action_logger = make_action_logger(args)
    try:
        orchestrator = ReconciliationOrchestrator(
            rules,
            progress_callback=make_progress_callback(args.quiet),
            action_logger=action_logger,
        )
        if not args.quiet:
            print(f"\nGraded root: {args.graded.resolve()}")
            print(f"Raw root: {args.raw.resolve()}")
            print(f"Output directory: {args.output.resolve()}")
            print()
        summary = orchestrator.run_root(
            args.graded.resolve(), args.raw.resolve(), args.output.resolve(), options
        )
    finally:
        if action_logger:
            action_logger.close()

    print_summary(summary)
    return 0


def cmd_single(args: argparse.Namespace) -> int:
    rules = load_rules(args)
    action_logger = make_action_logger(args)
    try:
        orchestrator = ReconciliationOrchestrator(
            rules,
            progress_callback=make_progress_callback(args.quiet),
            action_logger=action_logger,
        )
        summary = orchestrator.run_single(
            args.graded.resolve(), args.raw.resolve(), args.output.resolve(),
            survey_id_override=args.survey_id,
            options=SingleRunOptions(output_filename=args.output_filename),
        )
    finally:
        if action_logger:
            action_logger.close()

    print_summary(summary)
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    options = RootRunOptions(
        merged_filename=args.merged_filename,
        problems_filename=args.problems_filename,
        per_survey_dirname=args.per_survey_dirname,
    )
    checker = ReportChecker(args.output, options)
    checker.print_report()
    if args.json:
        checker.export_report_to_json(args.json)
    return 0


def cmd_sample(args: argparse.Namespace) -> int:
    created = generate_sample_data(args.target)
    print(f"Raw tree: {created['raw_root']}")
    print(f"Graded tree: {created['graded_root']}")
    return 0


COMMANDS = {
    'config': cmd_config,
    'preview': cmd_preview,
    'run': cmd_run,
    'single': cmd_single,
    'check': cmd_check,
    'sample': cmd_sample,
}


def run_cli(args: argparse.Namespace) -> int:
    """Dispatch a parsed command; returns the exit code."""
    try:
        return COMMANDS[args.command](args)

    except KeyboardInterrupt:
        print("\n\nInterrupted! Files written so far are left in place.")
        return 130

    except ConfigError as e:
        print(f"\nConfiguration error: {e}")
        return 2

    except Exception as e:
        print(f"\nError: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


def main(argv=None) -> int:
    """Main entry point."""
    parser = create_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format='%(levelname)s | %(name)s | %(message)s'
    )

    if not validate_args(args):
        return 1

    return run_cli(args)


if __name__ == "__main__":
    sys.exit(main())
