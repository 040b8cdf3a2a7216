"""
CSV report writer for the survey labeler.
Handles the per-survey, merged and problems CSV files.
"""
import re
from pathlib import Path
from typing import Optional, List, Iterable, IO
import pandas as pd

from .grading_matcher import CsvRow
from .survey_scanner import ProblemItem


ROW_COLUMNS = [
    'survey_id_base',
    'raw_relpath',
    'filename',
    'dolphin',
    'graded_relpath',
    'graded_hits',
    'graded_winner_type',
    'survey_id_raw_detected',
    'survey_id_graded_detected',
]

PROBLEM_COLUMNS = [
    'survey_id_base',
    'survey_id_detected',
    'raw_path',
    'graded_path',
    'problem_type',
    'details',
]

LINE_TERMINATOR = '\n'
ENCODING = 'utf-8'
# Undecodable path bytes (surrogates) are written as '?' instead of aborting
ENCODE_ERRORS = 'replace'

_UNSAFE_FILENAME_CHARS = re.compile(r'[\\/:*?"<>|]')


def per_survey_filename(base_key: str) -> str:
    """File name of a survey's CSV, e.g. 20250101_AB.csv."""
    return f"{_UNSAFE_FILENAME_CHARS.sub('_', base_key)}.csv"


def rows_to_dataframe(rows: Iterable[CsvRow]) -> pd.DataFrame:
    """Build a dataframe with the fixed row column order."""
    return pd.DataFrame([row.to_dict() for row in rows], columns=ROW_COLUMNS)


def problems_to_dataframe(problems: Iterable[ProblemItem]) -> pd.DataFrame:
    """Build a dataframe with the fixed problem column order."""
    return pd.DataFrame([p.to_dict() for p in problems], columns=PROBLEM_COLUMNS)


class CsvReportWriter:
    """
    Streams dataframes into one CSV file.

    Opens the file on enter, writes the header once, and always closes
    the file on exit, including when the run aborts. Already written rows
    stay on disk.
    """

    def __init__(self, path: Path, columns: List[str]):
        self.path = Path(path)
        self.columns = list(columns)
        self.rows_written = 0
        self._handle: Optional[IO[str]] = None

    def __enter__(self) -> 'CsvReportWriter':
        self._handle = open(self.path, 'w', encoding=ENCODING, errors=ENCODE_ERRORS, newline='')
        pd.DataFrame(columns=self.columns).to_csv(
            self._handle, index=False, lineterminator=LINE_TERMINATOR
        )
        self._handle.flush()
        return self

    def write_frame(self, df: pd.DataFrame):
        """Append a dataframe's rows (no header)."""
        if self._handle is None:
            raise RuntimeError(f"Writer for {self.path} is not open")
        if df.empty:
            return
        df[self.columns].to_csv(
            self._handle, index=False, header=False, lineterminator=LINE_TERMINATOR
        )
        self._handle.flush()
        self.rows_written += len(df)

    def write_rows(self, rows: List[CsvRow]):
        """Append CsvRow objects."""
        self.write_frame(rows_to_dataframe(rows))

    def __exit__(self, exc_type, exc, tb):
        if self._handle is not None:
            self._handle.close()
            self._handle = None
        return False


def write_csv_rows(path: Path, rows: List[CsvRow]) -> Path:
    """
    Write rows to a standalone CSV file.

    Args:
        path: Output file
        rows: Rows in output order

    Returns:
        The written path
    """
    with CsvReportWriter(path, ROW_COLUMNS) as writer:
        writer.write_rows(rows)
    return Path(path)


def write_problems_csv(path: Path, problems: List[ProblemItem]) -> Path:
    """Write the problems report."""
    with CsvReportWriter(path, PROBLEM_COLUMNS) as writer:
        writer.write_frame(problems_to_dataframe(problems))
    return Path(path)


def _optional(value: str) -> Optional[str]:
    return value if value != '' else None


def load_rows_csv(path: Path) -> List[CsvRow]:
    """
    Read a per-survey or merged CSV back into rows.

    Empty optional fields come back as None.
    """
    df = pd.read_csv(path, dtype=str, keep_default_na=False)
    missing = [c for c in ROW_COLUMNS if c not in df.columns]
    if missing:
        raise ValueError(f"{path} is missing columns: {missing}")

    rows = []
    for record in df[ROW_COLUMNS].to_dict(orient='records'):
        rows.append(CsvRow(
            survey_id_base=record['survey_id_base'],
            raw_relpath=record['raw_relpath'],
            filename=record['filename'],
            dolphin=int(record['dolphin']),
            graded_relpath=record['graded_relpath'],
            graded_hits=int(record['graded_hits']),
            graded_winner_type=record['graded_winner_type'],
            survey_id_raw_detected=_optional(record['survey_id_raw_detected']),
            survey_id_graded_detected=_optional(record['survey_id_graded_detected']),
        ))
    return rows


def load_problems_csv(path: Path) -> pd.DataFrame:
    """Read a problems CSV (all columns as strings)."""
    return pd.read_csv(path, dtype=str, keep_default_na=False)
