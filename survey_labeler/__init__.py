"""
Survey Labeler
==============

A tool for labeling raw survey images by matching them against a graded
(curated) copy of the same surveys.

Modules:
- config: Rule document, run options and the rules store
- logger_module: Structured logging
- pattern_extractor: Rule compilation, survey id and image identity extraction
- file_utils: Directory walking and image filtering
- survey_scanner: Survey folder discovery and raw/graded pairing
- grading_matcher: Candidate classification, winner selection, retain flag
- report_writer: CSV outputs
- main_orchestrator: Preview, full-tree and single-pair runs
- checker: Output verification
- sample_data: Sample Raw/Graded trees
"""

from .config import (
    Rules, RootRunOptions, SingleRunOptions, RulesStore,
    ConfigError, SurveyIdError, DEFAULT_RULES, default_rules, get_config_dir
)
from .logger_module import SurveyLabelerLogger, LogAction
from .pattern_extractor import (
    CompiledRules, FileIdentity, compile_rules,
    extract_detected_id, extract_base_key, derive_survey_key, compute_file_id
)
from .file_utils import DirectoryWalker, collect_images, count_images, is_supported_image
from .survey_scanner import (
    ScanStatus, ProblemType, SurveyFolder, ProblemItem, ScanEntry, PreviewItem,
    ScanResult, discover_surveys, reconcile_surveys, scan_roots
)
from .grading_matcher import (
    WinnerType, CandidateWinner, CsvRow, ProgressEvent, PairResult,
    classify_candidate, select_winner, decide_dolphin, process_pair
)
from .report_writer import CsvReportWriter, write_csv_rows, write_problems_csv, load_rows_csv
from .main_orchestrator import (
    ReconciliationOrchestrator, RunSummary,
    preview_root_scan, run_root_scan, run_single_pair
)
from .checker import ReportChecker
from .sample_data import generate_sample_data

__version__ = "0.1.0"
__all__ = [
    'Rules', 'RootRunOptions', 'SingleRunOptions', 'RulesStore',
    'ConfigError', 'SurveyIdError', 'DEFAULT_RULES', 'default_rules', 'get_config_dir',
    'SurveyLabelerLogger', 'LogAction',
    'CompiledRules', 'FileIdentity', 'compile_rules',
    'extract_detected_id', 'extract_base_key', 'derive_survey_key', 'compute_file_id',
    'DirectoryWalker', 'collect_images', 'count_images', 'is_supported_image',
    'ScanStatus', 'ProblemType', 'SurveyFolder', 'ProblemItem', 'ScanEntry', 'PreviewItem',
    'ScanResult', 'discover_surveys', 'reconcile_surveys', 'scan_roots',
    'WinnerType', 'CandidateWinner', 'CsvRow', 'ProgressEvent', 'PairResult',
    'classify_candidate', 'select_winner', 'decide_dolphin', 'process_pair',
    'CsvReportWriter', 'write_csv_rows', 'write_problems_csv', 'load_rows_csv',
    'ReconciliationOrchestrator', 'RunSummary',
    'preview_root_scan', 'run_root_scan', 'run_single_pair',
    'ReportChecker',
    'generate_sample_data',
]
