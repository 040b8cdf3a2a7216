"""
Logging module for the survey labeler.
Provides structured action logging to both console and a session file.
"""
import logging
from pathlib import Path
from datetime import datetime
from typing import Optional
from enum import Enum


class LogAction(Enum):
    """Types of actions that can be logged."""
    # Run stage transitions
    STAGE_START = "STAGE_START"
    STAGE_END = "STAGE_END"

    # Discovery and pairing
    SURVEY_DISCOVERED = "SURVEY_DISCOVERED"
    SURVEY_PAIRED = "SURVEY_PAIRED"
    PROBLEM_FOUND = "PROBLEM_FOUND"

    # Image matching
    AMBIGUOUS_IDENTITY = "AMBIGUOUS_IDENTITY"
    SURVEY_PROCESSED = "SURVEY_PROCESSED"

    # Output
    CSV_WRITTEN = "CSV_WRITTEN"

    # Errors and warnings
    ERROR = "ERROR"
    WARNING = "WARNING"
    INFO = "INFO"


class SurveyLabelerLogger:
    """
    Logger for a reconciliation run.
    Logs to both console and a timestamped file.
    """

    def __init__(self, log_dir: Path, session_name: Optional[str] = None,
                 console: bool = True):
        """
        Initialize the logger.

        Args:
            log_dir: Directory where log files will be stored
            session_name: Optional name for this session (default: timestamp)
            console: Whether to also log INFO and above to the console
        """
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)

        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        self.session_name = session_name or timestamp
        self.log_file = self.log_dir / f"session_{self.session_name}.log"

        self.logger = logging.getLogger(f"survey_labeler_{self.session_name}")
        self.logger.setLevel(logging.DEBUG)
        self.logger.propagate = False

        # Prevent duplicate handlers
        if self.logger.handlers:
            self.logger.handlers.clear()

        # File handler - detailed
        file_handler = logging.FileHandler(self.log_file, encoding='utf-8')
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        self.logger.addHandler(file_handler)

        # Console handler - less verbose
        if console:
            console_handler = logging.StreamHandler()
            console_handler.setLevel(logging.INFO)
            console_handler.setFormatter(logging.Formatter('%(levelname)-8s | %(message)s'))
            self.logger.addHandler(console_handler)

        self.log(LogAction.INFO, f"Session started: {self.session_name}")
        self.log(LogAction.INFO, f"Log file: {self.log_file}")

    def log(self, action: LogAction, message: str, **kwargs):
        """
        Log an action with optional extra data.

        Args:
            action: The type of action being logged
            message: Human-readable message
            **kwargs: Additional data to include in the log
        """
        extra_str = ""
        if kwargs:
            extra_str = " | " + " | ".join(f"{k}={v}" for k, v in kwargs.items())

        full_message = f"[{action.value}] {message}{extra_str}"

        if action == LogAction.ERROR:
            self.logger.error(full_message)
        elif action in (LogAction.WARNING, LogAction.PROBLEM_FOUND):
            self.logger.warning(full_message)
        elif action in (LogAction.SURVEY_DISCOVERED, LogAction.AMBIGUOUS_IDENTITY):
            # One line per folder/file, too noisy for the console
            self.logger.debug(full_message)
        else:
            self.logger.info(full_message)

    def stage_start(self, stage_name: str, detail: str = ""):
        """Log the start of a run stage."""
        self.log(LogAction.STAGE_START, f"=== STAGE START: {stage_name} === {detail}")

    def stage_end(self, stage_name: str, detail: str = ""):
        """Log the end of a run stage."""
        self.log(LogAction.STAGE_END, f"=== STAGE END: {stage_name} === {detail}")

    def survey_discovered(self, side: str, base_key: str, path: Path, detected_id: Optional[str]):
        """Log a survey folder claimed during discovery."""
        self.log(LogAction.SURVEY_DISCOVERED, f"{side}: {base_key}",
                 path=str(path), detected=detected_id or "None")

    def survey_paired(self, base_key: str, raw_path: Path, graded_path: Path):
        """Log a raw/graded pair resolved for processing."""
        self.log(LogAction.SURVEY_PAIRED, f"Paired: {base_key}",
                 raw=str(raw_path), graded=str(graded_path))

    def problem_found(self, problem_type: str, base_key: str, details: Optional[str] = None):
        """Log a structural problem (missing or duplicated survey folder)."""
        self.log(LogAction.PROBLEM_FOUND, f"{problem_type}: {base_key}",
                 details=details or "None")

    def ambiguous_identity(self, path: Path):
        """Log an image whose identity fell back to its bare filename."""
        self.log(LogAction.AMBIGUOUS_IDENTITY, f"Filename-only identity: {path}")

    def survey_processed(self, base_key: str, rows: int, retained: int, warnings: int):
        """Log the outcome of one survey pair."""
        self.log(LogAction.SURVEY_PROCESSED, f"Processed: {base_key}",
                 rows=rows, retained=retained, rejected=rows - retained,
                 ambiguity_warnings=warnings)

    def csv_written(self, path: Path, rows: int):
        """Log a CSV output file."""
        self.log(LogAction.CSV_WRITTEN, f"Wrote: {path}", rows=rows)

    def error(self, message: str, exception: Optional[Exception] = None):
        """Log an error."""
        if exception:
            self.log(LogAction.ERROR, f"{message}: {type(exception).__name__}: {exception}")
        else:
            self.log(LogAction.ERROR, message)

    def warning(self, message: str):
        """Log a warning."""
        self.log(LogAction.WARNING, message)

    def info(self, message: str):
        """Log info message."""
        self.log(LogAction.INFO, message)

    def close(self):
        """Close the logger and finalize the session."""
        self.log(LogAction.INFO, "Session ended")
        for handler in list(self.logger.handlers):
            handler.close()
            self.logger.removeHandler(handler)
