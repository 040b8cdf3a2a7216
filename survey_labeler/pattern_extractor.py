"""
Pattern Extraction Module for the survey labeler.
Compiles the rule document into matchers and extracts survey identities
and per-image identity keys from paths and filenames.
No image content is ever read - purely regex and file size based.
"""
import re
from pathlib import Path
from typing import Optional, List, FrozenSet
from dataclasses import dataclass

from .config import Rules, ConfigError


@dataclass(frozen=True)
class CompiledRules:
    """Rules ready for matching. Compiled once per run."""
    extensions: FrozenSet[str]
    detected_re: re.Pattern
    base_re: re.Pattern
    image_id_re: re.Pattern
    ind_re: re.Pattern
    secondary_tokens: tuple
    negative_tokens: tuple
    positive_tokens: tuple


@dataclass(frozen=True)
class FileIdentity:
    """Identity key of an image file."""
    key: str
    ambiguous: bool = False  # True when metadata was unreadable


def normalize_extension(ext: str) -> str:
    """Trim and lower-case an extension, adding the leading dot if missing."""
    trimmed = ext.strip().lower()
    if trimmed.startswith('.'):
        return trimmed
    return f".{trimmed}"


def normalize_tokens(tokens: List[str]) -> tuple:
    """Trim and lower-case tokens, dropping empty ones."""
    normalized = (token.strip().lower() for token in tokens)
    return tuple(token for token in normalized if token)


def _compile(pattern: str, field_name: str) -> re.Pattern:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise ConfigError(f"Invalid pattern for {field_name}: {pattern!r} ({e})") from e


def compile_rules(rules: Rules) -> CompiledRules:
    """
    Compile a rule document.

    Args:
        rules: The user-editable rules

    Returns:
        CompiledRules

    Raises:
        ConfigError: If any pattern fails to compile
    """
    return CompiledRules(
        extensions=frozenset(normalize_extension(ext) for ext in rules.extensions),
        detected_re=_compile(rules.survey_id_regex_detected, 'survey_id_regex_detected'),
        base_re=_compile(rules.survey_id_regex_base, 'survey_id_regex_base'),
        image_id_re=_compile(rules.image_id_regex, 'image_id_regex'),
        ind_re=_compile(rules.graded_priority_ind_regex, 'graded_priority_ind_regex'),
        secondary_tokens=normalize_tokens(rules.graded_priority_secondary_tokens),
        negative_tokens=normalize_tokens(rules.graded_negative_contains_any),
        positive_tokens=normalize_tokens(rules.graded_positive_contains_any),
    )


def _last_capture(text: str, regex: re.Pattern) -> Optional[str]:
    """First capture group of the last non-overlapping match, if any."""
    last = None
    for last in regex.finditer(text):
        pass
    if last is None or regex.groups < 1:
        return None
    return last.group(1)


def extract_detected_id(path: Path | str, regex: re.Pattern) -> Optional[str]:
    """
    Extract the full survey identity from a path.

    The last match wins, so a deeper, more specific token beats one
    found higher up in the path.
    """
    return _last_capture(str(path), regex)


def extract_base_key(value: str, regex: re.Pattern) -> Optional[str]:
    """Reduce a detected identity (or a raw path string) to its upper-cased base key."""
    captured = _last_capture(value, regex)
    return captured.upper() if captured is not None else None


def derive_survey_key(path: Path, rules: CompiledRules) -> tuple:
    """
    Get (detected_id, base_key) for a directory.

    The base key comes from the detected identity when there is one,
    otherwise from the directory's path string directly.
    """
    detected_id = extract_detected_id(path, rules.detected_re)
    base_key = None
    if detected_id is not None:
        base_key = extract_base_key(detected_id, rules.base_re)
    if base_key is None:
        base_key = extract_base_key(str(path), rules.base_re)
    return detected_id, base_key


def compute_file_id(path: Path, rules: CompiledRules) -> FileIdentity:
    """
    Compute the identity key of an image file.

    The identity-bearing prefix of the stem strips trailing grading labels,
    so a raw file and its graded derivatives collapse onto one key
    (20100428_ALA_0449_QP_D -> 20100428_ala_0449). Without a prefix match
    the key falls back to "<filename>|<size>", or the bare filename flagged
    as ambiguous when the size cannot be read.

    Args:
        path: Image file path
        rules: Compiled rules

    Returns:
        FileIdentity
    """
    path = Path(path)
    match = rules.image_id_re.search(path.stem)
    if match and rules.image_id_re.groups >= 1 and match.group(1) is not None:
        return FileIdentity(key=match.group(1).lower())

    filename_lower = path.name.lower()
    try:
        size = path.stat().st_size
    except OSError:
        return FileIdentity(key=filename_lower, ambiguous=True)
    return FileIdentity(key=f"{filename_lower}|{size}")
