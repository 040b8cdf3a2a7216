"""
Report Checker - Verification and metrics for a full-run output directory.
"""
import json
from pathlib import Path
from typing import Dict, Any, Optional
from dataclasses import dataclass, field
import pandas as pd

from .config import RootRunOptions
from .report_writer import ROW_COLUMNS


@dataclass
class RowCountMetrics:
    """Row counts of one CSV (or a group of CSVs)."""
    rows: int = 0
    dolphin_yes: int = 0
    dolphin_no: int = 0
    winner_types: Dict[str, int] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'rows': self.rows,
            'dolphin_yes': self.dolphin_yes,
            'dolphin_no': self.dolphin_no,
            'winner_types': dict(sorted(self.winner_types.items())),
        }

    @classmethod
    def from_frame(cls, df: pd.DataFrame) -> 'RowCountMetrics':
        dolphin = df['dolphin'].astype(int) if len(df) else pd.Series(dtype=int)
        return cls(
            rows=len(df),
            dolphin_yes=int((dolphin == 1).sum()),
            dolphin_no=int((dolphin == 0).sum()),
            winner_types={str(k): int(v) for k, v in df['graded_winner_type'].value_counts().items()},
        )


class ReportChecker:
    """
    Verifies the CSV outputs of a full-tree run.

    Analyzes:
    1. Per-survey CSVs (row counts, retained/rejected)
    2. The merged CSV and whether it equals the per-survey files concatenated
    3. The problems report
    """

    def __init__(self, output_dir: Path, options: Optional[RootRunOptions] = None):
        """
        Initialize the checker with an output directory.

        Args:
            output_dir: Output directory of a full run
            options: The run options used (file and folder names)
        """
        self.output_dir = Path(output_dir)
        if not self.output_dir.exists():
            raise ValueError(f"Output directory does not exist: {output_dir}")

        self.options = options or RootRunOptions()
        self.per_survey_dir = self.output_dir / self.options.per_survey_dirname
        self.merged_path = self.output_dir / self.options.merged_filename
        self.problems_path = self.output_dir / self.options.problems_filename

    @staticmethod
    def _load_csv(path: Path) -> Optional[pd.DataFrame]:
        if not path.exists():
            return None
        return pd.read_csv(path, dtype=str, keep_default_na=False)

    def load_per_survey(self) -> Dict[str, pd.DataFrame]:
        """Per-survey dataframes keyed by file stem, in name order."""
        frames = {}
        if not self.per_survey_dir.exists():
            return frames
        for csv_path in sorted(self.per_survey_dir.glob('*.csv')):
            frames[csv_path.stem] = self._load_csv(csv_path)
        return frames

    def get_detailed_report(self) -> Dict[str, Any]:
        """
        Generate a report on the output directory.

        Returns:
            Dictionary with per-survey metrics, merged metrics, consistency
            flags and problem counts
        """
        per_survey = self.load_per_survey()
        merged_df = self._load_csv(self.merged_path)
        problems_df = self._load_csv(self.problems_path)

        report: Dict[str, Any] = {
            'output_dir': str(self.output_dir),
            'per_survey': {
                name: RowCountMetrics.from_frame(df).to_dict()
                for name, df in per_survey.items()
            },
            'merged': None,
            'merged_matches_per_survey': None,
            'problems': {},
        }

        if merged_df is not None:
            report['merged'] = RowCountMetrics.from_frame(merged_df).to_dict()
            if per_survey:
                # Per-survey files are named after base keys, which is the merged order
                combined = pd.concat(
                    [per_survey[name] for name in sorted(per_survey)], ignore_index=True
                )
                report['merged_matches_per_survey'] = bool(
                    combined[ROW_COLUMNS].equals(merged_df[ROW_COLUMNS].reset_index(drop=True))
                )

        if problems_df is not None:
            report['problems'] = {
                str(k): int(v) for k, v in problems_df['problem_type'].value_counts().sort_index().items()
            }

        report['summary'] = {
            'surveys': len(per_survey),
            'per_survey_rows': sum(m['rows'] for m in report['per_survey'].values()),
            'merged_rows': report['merged']['rows'] if report['merged'] else None,
            'problems_count': sum(report['problems'].values()),
        }
        return report

    def print_report(self):
        """Print a formatted report to console."""
        report = self.get_detailed_report()

        print("\n" + "=" * 70)
        print("SURVEY LABELER - OUTPUT VERIFICATION REPORT")
        print("=" * 70)

        print("\n📁 PER-SURVEY CSVs:")
        print("-" * 50)
        if not report['per_survey']:
            print("  (none)")
        for name, metrics in report['per_survey'].items():
            print(f"  {name:30} rows={metrics['rows']:5d} "
                  f"yes={metrics['dolphin_yes']:5d} no={metrics['dolphin_no']:5d}")

        print("\n📊 MERGED CSV:")
        print("-" * 50)
        merged = report['merged']
        if merged is None:
            print("  (not written)")
        else:
            print(f"  Rows:     {merged['rows']}")
            print(f"  Retained: {merged['dolphin_yes']}")
            print(f"  Rejected: {merged['dolphin_no']}")
            for winner_type, count in merged['winner_types'].items():
                print(f"    {winner_type}: {count}")
            match = report['merged_matches_per_survey']
            if match is not None:
                status = "✓" if match else "✗"
                print(f"  {status} Merged equals per-survey files: {match}")

        print("\n⚠️  PROBLEMS:")
        print("-" * 50)
        if not report['problems']:
            print("  ✓ No problems reported")
        for problem_type, count in report['problems'].items():
            print(f"  {problem_type}: {count}")

        print("\n" + "=" * 70 + "\n")

    def export_report_to_json(self, output_path: Path):
        """Export the report to a JSON file."""
        output_path = Path(output_path)
        output_path.parent.mkdir(parents=True, exist_ok=True)
        with open(output_path, 'w', encoding='utf-8') as f:
            json.dump(self.get_detailed_report(), f, indent=2, ensure_ascii=False)
        print(f"Report exported to: {output_path}")
