"""
Main Orchestrator Module for the survey labeler.
Coordinates all modules to execute a reconciliation run:
compile rules → discover surveys → pair folders → match images → write CSVs
"""
import logging
from contextlib import ExitStack
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple
from dataclasses import dataclass

from .config import Rules, RootRunOptions, SingleRunOptions, SurveyIdError
from .logger_module import SurveyLabelerLogger
from .pattern_extractor import (
    CompiledRules, compile_rules, extract_detected_id, extract_base_key
)
from .survey_scanner import ScanResult, SurveyFolder, PreviewItem, scan_roots
from .grading_matcher import PairResult, ProgressCallback, process_pair
from .report_writer import (
    CsvReportWriter, ROW_COLUMNS, per_survey_filename,
    write_csv_rows, write_problems_csv
)


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunSummary:
    """Aggregate statistics of a run."""
    processed_surveys: int
    total_rows: int
    dolphin_yes: int
    dolphin_no: int
    ambiguity_warnings: int
    problems_count: int
    output_dir: str
    merged_csv_path: Optional[str] = None
    problems_csv_path: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'processed_surveys': self.processed_surveys,
            'total_rows': self.total_rows,
            'dolphin_yes': self.dolphin_yes,
            'dolphin_no': self.dolphin_no,
            'ambiguity_warnings': self.ambiguity_warnings,
            'problems_count': self.problems_count,
            'output_dir': self.output_dir,
            'merged_csv_path': self.merged_csv_path,
            'problems_csv_path': self.problems_csv_path,
        }


class ReconciliationOrchestrator:
    """
    Runs the reconciliation of a raw tree against a graded tree.

    Entry points:
    1. preview: discover and pair survey folders, count images, write nothing
    2. run_root: full-tree run writing per-survey, merged and problems CSVs
    3. run_single: one explicit raw/graded pair written to a single CSV

    Processing is sequential: one survey pair at a time, images within a
    survey in sorted order.
    """

    def __init__(
        self,
        rules: Rules,
        progress_callback: Optional[ProgressCallback] = None,
        action_logger: Optional[SurveyLabelerLogger] = None,
    ):
        """
        Initialize the orchestrator.

        Args:
            rules: Rule document; compiled here, so a bad pattern fails
                before any file is touched
            progress_callback: Called with a ProgressEvent per raw image
            action_logger: Optional structured session logger
        """
        self.rules = rules
        self.compiled: CompiledRules = compile_rules(rules)
        self.progress_callback = progress_callback
        self.action_logger = action_logger

    def _log_scan(self, scan: ScanResult):
        if not self.action_logger:
            return
        for entry in scan.entries:
            for side, folder in (("raw", entry.raw), ("graded", entry.graded)):
                if folder is not None:
                    self.action_logger.survey_discovered(
                        side, entry.base_key, folder.path, folder.detected_id
                    )
        for problem in scan.problems:
            self.action_logger.problem_found(
                problem.problem_type.value, problem.survey_id_base, problem.details
            )

    def _log_pair(self, base_key: str, pair_result: PairResult):
        if not self.action_logger:
            return
        for path in pair_result.ambiguous_files:
            self.action_logger.ambiguous_identity(path)
        self.action_logger.survey_processed(
            base_key, len(pair_result.rows), pair_result.dolphin_yes,
            pair_result.ambiguity_warnings
        )

    def preview(self, graded_root: Path, raw_root: Path) -> List[PreviewItem]:
        """
        Dry run: pair survey folders and count their images.

        Args:
            graded_root: Root of the graded tree
            raw_root: Root of the raw tree

        Returns:
            PreviewItem per base key, sorted by base key
        """
        scan = scan_roots(Path(raw_root), Path(graded_root), self.compiled, include_counts=True)
        logger.info(
            f"Preview: {len(scan.entries)} survey keys, "
            f"{len(scan.ok_entries)} paired, {len(scan.problems)} problems"
        )
        return scan.preview

    def run_root(
        self,
        graded_root: Path,
        raw_root: Path,
        output_dir: Path,
        options: Optional[RootRunOptions] = None,
    ) -> RunSummary:
        """
        Reconcile two full trees and write the reports.

        Args:
            graded_root: Root of the graded tree
            raw_root: Root of the raw tree
            output_dir: Directory for the CSV outputs (created if needed)
            options: What to write and under which names

        Returns:
            RunSummary
        """
        options = options or RootRunOptions()
        output_dir = Path(output_dir)

        try:
            if self.action_logger:
                self.action_logger.stage_start(
                    "DISCOVERY", f"raw={raw_root} graded={graded_root}"
                )
            scan = scan_roots(Path(raw_root), Path(graded_root), self.compiled)
            self._log_scan(scan)
            if self.action_logger:
                self.action_logger.stage_end(
                    "DISCOVERY",
                    f"{len(scan.ok_entries)} pairs | {len(scan.problems)} problems"
                )

            output_dir.mkdir(parents=True, exist_ok=True)
            per_survey_dir = output_dir / options.per_survey_dirname
            if options.write_per_survey:
                per_survey_dir.mkdir(parents=True, exist_ok=True)

            problems_csv_path = None
            if scan.problems:
                problems_csv_path = output_dir / options.problems_filename
                write_problems_csv(problems_csv_path, scan.problems)
                self._csv_written(problems_csv_path, len(scan.problems))

            merged_csv_path = output_dir / options.merged_filename if options.write_merged else None
            totals = self._process_entries(scan, per_survey_dir, merged_csv_path, options)

        except Exception as e:
            if self.action_logger:
                self.action_logger.error("Run failed", e)
            raise

        processed_surveys, total_rows, dolphin_yes, ambiguity_warnings = totals
        summary = RunSummary(
            processed_surveys=processed_surveys,
            total_rows=total_rows,
            dolphin_yes=dolphin_yes,
            dolphin_no=total_rows - dolphin_yes,
            ambiguity_warnings=ambiguity_warnings,
            problems_count=len(scan.problems),
            output_dir=str(output_dir),
            merged_csv_path=str(merged_csv_path) if merged_csv_path else None,
            problems_csv_path=str(problems_csv_path) if problems_csv_path else None,
        )
        logger.info(f"Run complete: {summary}")
        return summary

    def _process_entries(
        self,
        scan: ScanResult,
        per_survey_dir: Path,
        merged_csv_path: Optional[Path],
        options: RootRunOptions,
    ) -> Tuple[int, int, int, int]:
        """Process every OK pair; returns (surveys, rows, retained, warnings)."""
        processed_surveys = 0
        total_rows = 0
        dolphin_yes = 0
        ambiguity_warnings = 0

        merged_writer = None
        with ExitStack() as stack:
            if merged_csv_path:
                merged_writer = stack.enter_context(CsvReportWriter(merged_csv_path, ROW_COLUMNS))

            if self.action_logger:
                self.action_logger.stage_start("MATCHING", f"{len(scan.ok_entries)} survey pairs")

            for entry in scan.ok_entries:
                if self.action_logger:
                    self.action_logger.survey_paired(entry.base_key, entry.raw.path, entry.graded.path)

                pair_result = process_pair(
                    self.compiled, entry.base_key, entry.raw, entry.graded,
                    progress_callback=self.progress_callback,
                )
                self._log_pair(entry.base_key, pair_result)

                if options.write_per_survey:
                    per_path = per_survey_dir / per_survey_filename(entry.base_key)
                    write_csv_rows(per_path, pair_result.rows)
                    self._csv_written(per_path, len(pair_result.rows))

                if merged_writer:
                    merged_writer.write_rows(pair_result.rows)

                processed_surveys += 1
                total_rows += len(pair_result.rows)
                dolphin_yes += pair_result.dolphin_yes
                ambiguity_warnings += pair_result.ambiguity_warnings

            if self.action_logger:
                self.action_logger.stage_end(
                    "MATCHING", f"{processed_surveys} surveys | {total_rows} rows"
                )

        if merged_writer:
            self._csv_written(merged_writer.path, merged_writer.rows_written)

        return processed_surveys, total_rows, dolphin_yes, ambiguity_warnings

    def resolve_single_survey_id(
        self,
        graded_dir: Path,
        survey_id_override: Optional[str] = None
    ) -> Tuple[str, str]:
        """
        Get (detected_id, base_key) for a single-pair run.

        A usable override wins; otherwise the id is detected from the
        graded directory's path.

        Raises:
            SurveyIdError: If neither yields a base key
        """
        if survey_id_override and survey_id_override.strip():
            base_key = extract_base_key(survey_id_override, self.compiled.base_re)
            if base_key is not None:
                return survey_id_override, base_key
            logger.warning(f"Override {survey_id_override!r} has no base key; detecting from path")

        detected = extract_detected_id(Path(graded_dir), self.compiled.detected_re)
        if detected is not None:
            base_key = extract_base_key(detected, self.compiled.base_re)
            if base_key is not None:
                return detected, base_key

        raise SurveyIdError("Unable to derive survey id base; please provide an override.")

    def run_single(
        self,
        graded_dir: Path,
        raw_dir: Path,
        output_dir: Path,
        survey_id_override: Optional[str] = None,
        options: Optional[SingleRunOptions] = None,
    ) -> RunSummary:
        """
        Reconcile one explicit raw/graded pair into a single CSV.

        Args:
            graded_dir: Graded survey folder
            raw_dir: Raw survey folder
            output_dir: Directory for the CSV (created if needed)
            survey_id_override: Survey id to use instead of detection
            options: Output file name

        Returns:
            RunSummary (no problems report in this mode)
        """
        options = options or SingleRunOptions()
        output_dir = Path(output_dir)
        graded_dir = Path(graded_dir)
        raw_dir = Path(raw_dir)

        try:
            output_dir.mkdir(parents=True, exist_ok=True)
            detected_full, base_key = self.resolve_single_survey_id(graded_dir, survey_id_override)

            raw_folder = SurveyFolder(
                path=raw_dir,
                detected_id=extract_detected_id(raw_dir, self.compiled.detected_re),
            )
            graded_folder = SurveyFolder(path=graded_dir, detected_id=detected_full)
            if self.action_logger:
                self.action_logger.survey_paired(base_key, raw_dir, graded_dir)

            pair_result = process_pair(
                self.compiled, base_key, raw_folder, graded_folder,
                progress_callback=self.progress_callback,
            )
            self._log_pair(base_key, pair_result)

            output_path = output_dir / options.output_filename
            write_csv_rows(output_path, pair_result.rows)
            self._csv_written(output_path, len(pair_result.rows))

        except Exception as e:
            if self.action_logger:
                self.action_logger.error("Single-pair run failed", e)
            raise

        return RunSummary(
            processed_surveys=1,
            total_rows=len(pair_result.rows),
            dolphin_yes=pair_result.dolphin_yes,
            dolphin_no=pair_result.dolphin_no,
            ambiguity_warnings=pair_result.ambiguity_warnings,
            problems_count=0,
            output_dir=str(output_dir),
            merged_csv_path=str(output_path),
            problems_csv_path=None,
        )

    def _csv_written(self, path: Path, rows: int):
        logger.info(f"Wrote {rows} rows to {path}")
        if self.action_logger:
            self.action_logger.csv_written(path, rows)


# Convenience functions

def preview_root_scan(graded_root: Path, raw_root: Path, rules: Rules) -> List[PreviewItem]:
    """Dry-run preview of a full-tree reconciliation."""
    return ReconciliationOrchestrator(rules).preview(graded_root, raw_root)


def run_root_scan(
    graded_root: Path,
    raw_root: Path,
    output_dir: Path,
    options: RootRunOptions,
    rules: Rules,
    progress_callback: Optional[ProgressCallback] = None,
    action_logger: Optional[SurveyLabelerLogger] = None,
) -> RunSummary:
    """Full-tree reconciliation."""
    orchestrator = ReconciliationOrchestrator(
        rules, progress_callback=progress_callback, action_logger=action_logger
    )
    return orchestrator.run_root(graded_root, raw_root, output_dir, options)


def run_single_pair(
    graded_dir: Path,
    raw_dir: Path,
    output_dir: Path,
    survey_id_override: Optional[str],
    options: SingleRunOptions,
    rules: Rules,
    progress_callback: Optional[ProgressCallback] = None,
    action_logger: Optional[SurveyLabelerLogger] = None,
) -> RunSummary:
    """Single-pair reconciliation."""
    orchestrator = ReconciliationOrchestrator(
        rules, progress_callback=progress_callback, action_logger=action_logger
    )
    return orchestrator.run_single(graded_dir, raw_dir, output_dir, survey_id_override, options)
