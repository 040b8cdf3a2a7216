"""
Tests for the pattern_extractor module.
"""
import sys
import tempfile
from dataclasses import replace
from pathlib import Path

# Add parent directory to path for imports when running directly
sys.path.insert(0, str(Path(__file__).parent.parent))

from survey_labeler.config import ConfigError, default_rules
from survey_labeler.pattern_extractor import (
    compile_rules, compute_file_id, derive_survey_key,
    extract_base_key, extract_detected_id, normalize_extension, normalize_tokens
)


def test_compile_rules():
    """Compiling the same rules twice gives the same matchers."""
    print("=" * 60)
    print("RULE COMPILATION TEST")
    print("=" * 60)

    first = compile_rules(default_rules())
    second = compile_rules(default_rules())

    assert first.extensions == second.extensions
    assert first.detected_re.pattern == second.detected_re.pattern
    assert first.base_re.pattern == second.base_re.pattern
    assert first.positive_tokens == ('*',)
    assert first.negative_tokens == ('reject',)
    print("✓ Compilation is deterministic")


def test_extension_and_token_normalization():
    """Extensions gain a dot and lose case; blank tokens are dropped."""
    print("\n" + "=" * 60)
    print("NORMALIZATION TEST")
    print("=" * 60)

    assert normalize_extension(' JPG ') == '.jpg'
    assert normalize_extension('.TIFF') == '.tiff'
    assert normalize_tokens([' Best ', '', '   ', 'IND']) == ('best', 'ind')

    rules = replace(default_rules(), extensions=['PNG', ' .Jpg'])
    compiled = compile_rules(rules)
    assert compiled.extensions == frozenset({'.png', '.jpg'})
    print("✓ Extensions and tokens normalized")


def test_invalid_pattern():
    """A pattern that does not compile raises ConfigError."""
    print("\n" + "=" * 60)
    print("INVALID PATTERN TEST")
    print("=" * 60)

    rules = replace(default_rules(), survey_id_regex_base='(unclosed')
    try:
        compile_rules(rules)
    except ConfigError as e:
        assert 'survey_id_regex_base' in str(e)
        print(f"✓ Rejected: {e}")
    else:
        raise AssertionError("Expected ConfigError for an unbalanced pattern")


def test_survey_id_extraction():
    """The last match in a path wins and base keys are upper-cased."""
    print("\n" + "=" * 60)
    print("SURVEY ID EXTRACTION TEST")
    print("=" * 60)

    compiled = compile_rules(default_rules())

    detected = extract_detected_id('/data/20250101_AB_CD/some', compiled.detected_re)
    assert detected == '20250101_AB_CD'
    assert extract_base_key(detected, compiled.base_re) == '20250101_AB'

    deeper = extract_detected_id('/data/20240101_XY/nested/20250101_ab_cd', compiled.detected_re)
    assert deeper == '20250101_ab_cd'
    assert extract_base_key(deeper, compiled.base_re) == '20250101_AB'

    assert extract_detected_id('/data/misc/photos', compiled.detected_re) is None
    print("✓ Detected and base ids extracted")


def test_derive_survey_key():
    compiled = compile_rules(default_rules())

    detected, base_key = derive_survey_key(Path('/surveys/20250102_CD_EF'), compiled)
    assert detected == '20250102_CD_EF'
    assert base_key == '20250102_CD'

    assert derive_survey_key(Path('/surveys/2025/01'), compiled) == (None, None)

    # Base pattern alone still claims a folder the detected pattern misses
    rules = replace(default_rules(), survey_id_regex_detected=r'(SURVEY-\d+)')
    detected, base_key = derive_survey_key(Path('/surveys/20250103_EF'), compile_rules(rules))
    assert detected is None
    assert base_key == '20250103_EF'
    print("✓ Survey keys derived")


def test_compute_file_id():
    """Identity keys come from the stem prefix, else name|size."""
    print("\n" + "=" * 60)
    print("FILE IDENTITY TEST")
    print("=" * 60)

    compiled = compile_rules(default_rules())

    with tempfile.TemporaryDirectory() as tmp:
        tmp = Path(tmp)

        graded = tmp / '20100428_ALA_0449_QP_D.jpg'
        graded.write_bytes(b'graded')
        identity = compute_file_id(graded, compiled)
        assert identity.key == '20100428_ala_0449'
        assert not identity.ambiguous

        raw = tmp / '20100428_ALA_0449.JPG'
        raw.write_bytes(b'raw image bytes')
        assert compute_file_id(raw, compiled).key == identity.key

        sample = tmp / 'sample.jpg'
        sample.write_bytes(b'12345678')
        identity = compute_file_id(sample, compiled)
        assert identity.key == 'sample.jpg|8'
        assert not identity.ambiguous

        missing = compute_file_id(tmp / 'Missing.png', compiled)
        assert missing.key == 'missing.png'
        assert missing.ambiguous

    print("✓ File identities computed")


def run_all_tests():
    """Run all pattern extractor tests."""
    tests = [
        test_compile_rules,
        test_extension_and_token_normalization,
        test_invalid_pattern,
        test_survey_id_extraction,
        test_derive_survey_key,
        test_compute_file_id,
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
