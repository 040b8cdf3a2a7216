"""
End-to-end tests for preview, full-tree and single-pair runs on the
sample trees.
"""
import shutil
import sys
import os
import tempfile
from pathlib import Path
from unittest.mock import patch

# Add parent directory to path for imports when running directly
sys.path.insert(0, str(Path(__file__).parent.parent))

from survey_labeler.config import RootRunOptions, SingleRunOptions, SurveyIdError, default_rules
from survey_labeler.logger_module import SurveyLabelerLogger
from survey_labeler.main_orchestrator import (
    ReconciliationOrchestrator, preview_root_scan, run_root_scan, run_single_pair
)
from survey_labeler.pattern_extractor import FileIdentity
from survey_labeler.report_writer import load_problems_csv, load_rows_csv
from survey_labeler.checker import ReportChecker
from survey_labeler.sample_data import generate_sample_data


def _all_files(base: Path) -> set:
    return {p for p in base.rglob('*')}


def test_preview():
    """Preview pairs every base key and writes nothing."""
    print("=" * 60)
    print("PREVIEW TEST")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        created = generate_sample_data(Path(tmp))
        before = _all_files(Path(tmp))

        items = preview_root_scan(created['graded_root'], created['raw_root'], default_rules())

        assert _all_files(Path(tmp)) == before
        assert [item.base_key for item in items] == [
            '20250101_AB', '20250102_CD', '20250103_EF', '20250104_GH'
        ]
        by_key = {item.base_key: item for item in items}

        assert by_key['20250101_AB'].status == 'OK'
        assert by_key['20250101_AB'].raw_image_count == 3
        assert by_key['20250101_AB'].graded_image_count == 2
        assert by_key['20250101_AB'].survey_id_graded_detected == '20250101_AB_CD'

        assert by_key['20250103_EF'].problem_type == 'GRADED_MISSING'
        assert by_key['20250103_EF'].graded_image_count is None
        assert by_key['20250104_GH'].problem_type == 'RAW_MISSING'
        assert by_key['20250104_GH'].details == "No raw survey folder found."

    print("✓ Preview lists 4 survey keys")


def test_full_run():
    """Full run writes per-survey, merged and problems CSVs."""
    print("\n" + "=" * 60)
    print("FULL RUN TEST")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        created = generate_sample_data(Path(tmp) / 'data')
        output_dir = Path(tmp) / 'out'
        events = []

        summary = run_root_scan(
            created['graded_root'], created['raw_root'], output_dir,
            RootRunOptions(), default_rules(), progress_callback=events.append
        )

        assert summary.processed_surveys == 2
        assert summary.total_rows == 6
        assert summary.dolphin_yes == 2
        assert summary.dolphin_no == 4
        assert summary.problems_count == 2
        assert summary.ambiguity_warnings == 0
        assert len(events) == 6

        merged = load_rows_csv(Path(summary.merged_csv_path))
        assert len(merged) == summary.total_rows
        assert [row.survey_id_base for row in merged] == ['20250101_AB'] * 3 + ['20250102_CD'] * 3

        first_survey = {row.filename: row for row in merged[:3]}
        assert first_survey['img_001.jpg'].dolphin == 1
        assert first_survey['img_001.jpg'].graded_relpath == 'img_001.jpg'
        assert first_survey['img_001.jpg'].graded_winner_type == 'OTHER'
        assert first_survey['img_002.jpg'].graded_relpath == 'RAW'
        assert first_survey['img_003.jpg'].dolphin == 1
        assert all(row.dolphin == 0 for row in merged[3:])

        per_survey = output_dir / 'per_survey'
        assert sorted(p.name for p in per_survey.iterdir()) == ['20250101_AB.csv', '20250102_CD.csv']
        assert load_rows_csv(per_survey / '20250101_AB.csv') == merged[:3]

        problems = load_problems_csv(Path(summary.problems_csv_path))
        assert list(problems['survey_id_base']) == ['20250103_EF', '20250104_GH']
        assert list(problems['problem_type']) == ['GRADED_MISSING', 'RAW_MISSING']

    print(f"✓ {summary.total_rows} rows, {summary.problems_count} problems")


def test_rerun_is_byte_identical():
    with tempfile.TemporaryDirectory() as tmp:
        created = generate_sample_data(Path(tmp) / 'data')
        output_dir = Path(tmp) / 'out'
        orchestrator = ReconciliationOrchestrator(default_rules())

        orchestrator.run_root(created['graded_root'], created['raw_root'], output_dir)
        first = {p.name: p.read_bytes() for p in output_dir.rglob('*.csv')}
        orchestrator.run_root(created['graded_root'], created['raw_root'], output_dir)
        second = {p.name: p.read_bytes() for p in output_dir.rglob('*.csv')}

        assert first == second
        assert set(first) == {'merged.csv', 'problems.csv', '20250101_AB.csv', '20250102_CD.csv'}


def test_run_options():
    """Disabled outputs are not written; no problems means no problems CSV."""
    with tempfile.TemporaryDirectory() as tmp:
        created = generate_sample_data(Path(tmp) / 'data')
        shutil.rmtree(created['raw_only'])
        shutil.rmtree(created['graded_only'])
        output_dir = Path(tmp) / 'out'

        options = RootRunOptions(write_merged=False, per_survey_dirname='surveys')
        summary = run_root_scan(
            created['graded_root'], created['raw_root'], output_dir, options, default_rules()
        )

        assert summary.problems_count == 0
        assert summary.problems_csv_path is None
        assert summary.merged_csv_path is None
        assert not (output_dir / 'merged.csv').exists()
        assert not (output_dir / 'problems.csv').exists()
        assert (output_dir / 'surveys' / '20250101_AB.csv').exists()


def test_action_logger():
    with tempfile.TemporaryDirectory() as tmp:
        created = generate_sample_data(Path(tmp) / 'data')
        output_dir = Path(tmp) / 'out'
        action_logger = SurveyLabelerLogger(output_dir / 'logs', session_name='run', console=False)
        try:
            run_root_scan(
                created['graded_root'], created['raw_root'], output_dir,
                RootRunOptions(), default_rules(), action_logger=action_logger
            )
        finally:
            action_logger.close()

        content = (output_dir / 'logs' / 'session_run.log').read_text(encoding='utf-8')
        assert "[SURVEY_PAIRED] Paired: 20250101_AB" in content
        assert "[PROBLEM_FOUND] RAW_MISSING: 20250104_GH" in content
        assert "[CSV_WRITTEN]" in content


def test_single_pair():
    """Single mode detects the id from the graded folder or takes an override."""
    print("\n" + "=" * 60)
    print("SINGLE PAIR TEST")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        created = generate_sample_data(Path(tmp) / 'data')
        raw_dir, graded_dir = created['pairs'][0]
        output_dir = Path(tmp) / 'out'

        summary = run_single_pair(
            graded_dir, raw_dir, output_dir, None, SingleRunOptions(), default_rules()
        )
        assert summary.processed_surveys == 1
        assert summary.total_rows == 3
        assert summary.dolphin_yes == 2
        assert summary.problems_count == 0
        assert summary.problems_csv_path is None
        assert summary.merged_csv_path == str(output_dir / 'single.csv')

        rows = load_rows_csv(output_dir / 'single.csv')
        assert {row.survey_id_base for row in rows} == {'20250101_AB'}
        assert rows[0].survey_id_graded_detected == '20250101_AB_CD'
        assert rows[0].survey_id_raw_detected == '20250101_AB'

        summary = run_single_pair(
            graded_dir, raw_dir, output_dir, '20250101_ab_zz',
            SingleRunOptions(output_filename='override.csv'), default_rules()
        )
        rows = load_rows_csv(Path(summary.merged_csv_path))
        assert rows[0].survey_id_base == '20250101_AB'
        assert rows[0].survey_id_graded_detected == '20250101_ab_zz'

        # An override without a base key falls back to detection
        summary = run_single_pair(
            graded_dir, raw_dir, output_dir, 'not-an-id', SingleRunOptions(), default_rules()
        )
        assert load_rows_csv(Path(summary.merged_csv_path))[0].survey_id_base == '20250101_AB'

    print("✓ Single pair runs")


def test_single_pair_without_id():
    with tempfile.TemporaryDirectory() as tmp:
        base = Path(tmp)
        (base / 'graded' / 'plain').mkdir(parents=True)
        (base / 'raw' / 'plain').mkdir(parents=True)

        try:
            run_single_pair(
                base / 'graded' / 'plain', base / 'raw' / 'plain', base / 'out',
                '   ', SingleRunOptions(), default_rules()
            )
        except SurveyIdError as e:
            assert str(e) == "Unable to derive survey id base; please provide an override."
        else:
            raise AssertionError("Expected SurveyIdError")

        assert not (base / 'out' / 'single.csv').exists()


def test_checker():
    """The checker agrees with the run summary."""
    print("\n" + "=" * 60)
    print("CHECKER TEST")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmp:
        created = generate_sample_data(Path(tmp) / 'data')
        output_dir = Path(tmp) / 'out'
        summary = run_root_scan(
            created['graded_root'], created['raw_root'], output_dir,
            RootRunOptions(), default_rules()
        )

        checker = ReportChecker(output_dir)
        report = checker.get_detailed_report()

        assert report['summary']['surveys'] == summary.processed_surveys
        assert report['summary']['merged_rows'] == summary.total_rows
        assert report['summary']['per_survey_rows'] == summary.total_rows
        assert report['summary']['problems_count'] == summary.problems_count
        assert report['merged_matches_per_survey'] is True
        assert report['merged']['dolphin_yes'] == summary.dolphin_yes
        assert report['merged']['winner_types'] == {'OTHER': 2, 'RAW': 4}
        assert report['problems'] == {'GRADED_MISSING': 1, 'RAW_MISSING': 1}

        json_path = output_dir / 'report.json'
        checker.export_report_to_json(json_path)
        assert json_path.exists()
        checker.print_report()

    print("✓ Checker report consistent")


def test_undecodable_filename():
    """A file name that is not valid UTF-8 is written lossily instead of aborting."""
    with tempfile.TemporaryDirectory() as tmp:
        base = Path(tmp)
        raw_dir = base / 'Raw' / '20250107_OP'
        graded_dir = base / 'Graded' / '20250107_OP'
        raw_dir.mkdir(parents=True)
        graded_dir.mkdir(parents=True)
        (raw_dir / 'good_001.jpg').write_text('r1', encoding='utf-8')
        (graded_dir / 'good_001.jpg').write_text('g1', encoding='utf-8')

        try:
            with open(os.path.join(os.fsencode(raw_dir), b'bad\xff_002.jpg'), 'wb') as f:
                f.write(b'r2')
        except OSError as e:
            # Some filesystems only accept UTF-8 names
            print(f"⚠ Cannot create non-UTF-8 file name here, skipping: {e}")
            return

        output_dir = base / 'out'
        summary = run_root_scan(
            graded_dir.parent, raw_dir.parent, output_dir, RootRunOptions(), default_rules()
        )

        assert summary.total_rows == 2
        merged = load_rows_csv(Path(summary.merged_csv_path))
        assert {row.filename for row in merged} == {'bad?_002.jpg', 'good_001.jpg'}
        assert load_rows_csv(output_dir / 'per_survey' / '20250107_OP.csv') == merged


def test_ambiguity_in_summary():
    """Ambiguous identities from every pair add up in the run summary."""
    with tempfile.TemporaryDirectory() as tmp:
        created = generate_sample_data(Path(tmp) / 'data')

        def filename_only(path, rules):
            return FileIdentity(key=Path(path).name.lower(), ambiguous=True)

        with patch('survey_labeler.grading_matcher.compute_file_id', side_effect=filename_only):
            summary = run_root_scan(
                created['graded_root'], created['raw_root'], Path(tmp) / 'out',
                RootRunOptions(), default_rules()
            )

        # 3 + 2 files in the first pair, 3 + 1 in the second
        assert summary.ambiguity_warnings == 9
        assert summary.total_rows == 6
        assert summary.dolphin_yes == 2


def run_all_tests():
    """Run all orchestrator tests."""
    tests = [
        test_preview,
        test_full_run,
        test_rerun_is_byte_identical,
        test_run_options,
        test_action_logger,
        test_single_pair,
        test_single_pair_without_id,
        test_checker,
        test_undecodable_filename,
        test_ambiguity_in_summary,
    ]

    failed = 0
    for test in tests:
        try:
            test()
        except Exception as e:
            print(f"✗ {test.__name__} failed: {e}")
            failed += 1

    print(f"\nResults: {len(tests) - failed} passed, {failed} failed")
    return failed == 0


if __name__ == "__main__":
    success = run_all_tests()
    sys.exit(0 if success else 1)
