"""
Grading Matcher Module for the survey labeler.
Matches every raw image of a survey pair against the graded images that
share its identity key, picks a winning candidate and decides whether the
raw image was retained (the "dolphin" flag).
"""
import logging
from pathlib import Path
from typing import Optional, List, Dict, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum

from .config import WILDCARD_TOKEN
from .pattern_extractor import CompiledRules, compute_file_id
from .file_utils import DirectoryWalker, collect_images, is_supported_image, normalize_relpath
from .survey_scanner import SurveyFolder


logger = logging.getLogger(__name__)

# Written to graded_relpath when a raw image has no graded counterpart
RAW_SENTINEL = "RAW"


class WinnerType(Enum):
    """Classification of the winning graded candidate."""
    IND = "IND"
    SECONDARY = "SECONDARY"
    OTHER = "OTHER"
    RAW = "RAW"


PRIORITY_RANK = {
    WinnerType.IND: 1,
    WinnerType.SECONDARY: 2,
    WinnerType.OTHER: 99,
}


@dataclass(frozen=True)
class CandidateWinner:
    relpath: str
    winner_type: WinnerType


@dataclass(frozen=True)
class CsvRow:
    """One output row per raw image."""
    survey_id_base: str
    raw_relpath: str
    filename: str
    dolphin: int
    graded_relpath: str
    graded_hits: int
    graded_winner_type: str
    survey_id_raw_detected: Optional[str] = None
    survey_id_graded_detected: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'survey_id_base': self.survey_id_base,
            'raw_relpath': self.raw_relpath,
            'filename': self.filename,
            'dolphin': self.dolphin,
            'graded_relpath': self.graded_relpath,
            'graded_hits': self.graded_hits,
            'graded_winner_type': self.graded_winner_type,
            'survey_id_raw_detected': self.survey_id_raw_detected,
            'survey_id_graded_detected': self.survey_id_graded_detected,
        }


@dataclass(frozen=True)
class ProgressEvent:
    """Emitted once per processed raw image."""
    survey_id_base: str
    processed: int
    total: int

    def to_dict(self) -> dict:
        return {
            'survey_id_base': self.survey_id_base,
            'processed': self.processed,
            'total': self.total,
        }


ProgressCallback = Callable[[ProgressEvent], None]


@dataclass
class GradedMap:
    """Graded relative paths grouped by identity key."""
    candidates: Dict[str, List[str]] = field(default_factory=dict)
    ambiguity_warnings: int = 0
    ambiguous_files: List[Path] = field(default_factory=list)


@dataclass
class PairResult:
    """Rows produced for one survey pair."""
    rows: List[CsvRow] = field(default_factory=list)
    ambiguity_warnings: int = 0
    ambiguous_files: List[Path] = field(default_factory=list)

    @property
    def dolphin_yes(self) -> int:
        return sum(1 for row in self.rows if row.dolphin == 1)

    @property
    def dolphin_no(self) -> int:
        return len(self.rows) - self.dolphin_yes


def classify_candidate(candidate: str, rules: CompiledRules) -> WinnerType:
    """Classify a graded path as IND, SECONDARY or OTHER."""
    lower = candidate.lower()
    if rules.ind_re.search(lower):
        return WinnerType.IND
    if any(token in lower for token in rules.secondary_tokens):
        return WinnerType.SECONDARY
    return WinnerType.OTHER


def select_winner(candidates: List[str], rules: CompiledRules) -> Optional[CandidateWinner]:
    """
    Pick one candidate: IND before SECONDARY before OTHER, then the
    shortest path, then the lexicographically smallest.
    """
    if not candidates:
        return None

    scored = []
    for candidate in candidates:
        winner_type = classify_candidate(candidate, rules)
        scored.append((PRIORITY_RANK[winner_type], len(candidate), candidate, winner_type))
    scored.sort(key=lambda item: item[:3])

    _, _, relpath, winner_type = scored[0]
    return CandidateWinner(relpath=relpath, winner_type=winner_type)


def any_token_match(candidates: Iterable[str], tokens: tuple) -> bool:
    """True if any candidate contains any token (case-insensitive); '*' always matches."""
    if not tokens:
        return False
    if WILDCARD_TOKEN in tokens:
        return True
    return any(
        token in candidate.lower()
        for candidate in candidates
        for token in tokens
    )


def decide_dolphin(candidates: List[str], rules: CompiledRules) -> int:
    """
    Retain flag for a raw image with at least one graded candidate.

    1 when no candidate carries a negative token and the positive tokens
    are empty, wildcarded or matched by some candidate; 0 otherwise.
    """
    if not candidates:
        return 0
    has_negative = any_token_match(candidates, rules.negative_tokens)
    if not rules.positive_tokens or WILDCARD_TOKEN in rules.positive_tokens:
        positive_ok = True
    else:
        positive_ok = any_token_match(candidates, rules.positive_tokens)
    return 1 if (not has_negative and positive_ok) else 0


def build_graded_map(graded_root: Path, rules: CompiledRules) -> GradedMap:
    """
    Index every graded image under graded_root by identity key.

    Args:
        graded_root: Resolved graded survey folder
        rules: Compiled rules

    Returns:
        GradedMap with relative paths per key and the ambiguity count
    """
    graded_root = Path(graded_root)
    result = GradedMap()
    walker = DirectoryWalker()
    for path in walker.walk_files(graded_root):
        if not is_supported_image(path, rules.extensions):
            continue
        identity = compute_file_id(path, rules)
        if identity.ambiguous:
            result.ambiguity_warnings += 1
            result.ambiguous_files.append(path)
        result.candidates.setdefault(identity.key, []).append(normalize_relpath(path, graded_root))
    return result


def _notify(progress_callback: Optional[ProgressCallback], event: ProgressEvent):
    """Deliver a progress event; delivery failures never reach the caller."""
    if progress_callback is None:
        return
    try:
        progress_callback(event)
    except Exception as e:
        logger.debug(f"Progress callback failed: {e}")


def process_pair(
    rules: CompiledRules,
    base_key: str,
    raw: SurveyFolder,
    graded: SurveyFolder,
    progress_callback: Optional[ProgressCallback] = None
) -> PairResult:
    """
    Build one CsvRow per raw image of a survey pair.

    Raw images are visited in sorted path order so the output is
    deterministic.

    Args:
        rules: Compiled rules
        base_key: Survey base key
        raw: Resolved raw folder
        graded: Resolved graded folder
        progress_callback: Called with a ProgressEvent after each image

    Returns:
        PairResult
    """
    graded_map = build_graded_map(graded.path, rules)
    raw_files = collect_images(raw.path, rules.extensions)
    total = len(raw_files)

    result = PairResult(
        ambiguity_warnings=graded_map.ambiguity_warnings,
        ambiguous_files=list(graded_map.ambiguous_files),
    )

    for index, raw_path in enumerate(raw_files):
        identity = compute_file_id(raw_path, rules)
        if identity.ambiguous:
            result.ambiguity_warnings += 1
            result.ambiguous_files.append(raw_path)

        candidates = graded_map.candidates.get(identity.key, [])
        winner = select_winner(candidates, rules)
        if winner is None:
            dolphin = 0
            graded_relpath = RAW_SENTINEL
            winner_type = WinnerType.RAW.value
        else:
            dolphin = decide_dolphin(candidates, rules)
            graded_relpath = winner.relpath
            winner_type = winner.winner_type.value

        result.rows.append(CsvRow(
            survey_id_base=base_key,
            raw_relpath=normalize_relpath(raw_path, raw.path),
            filename=raw_path.name,
            dolphin=dolphin,
            graded_relpath=graded_relpath,
            graded_hits=len(candidates),
            graded_winner_type=winner_type,
            survey_id_raw_detected=raw.detected_id,
            survey_id_graded_detected=graded.detected_id,
        ))

        _notify(progress_callback, ProgressEvent(
            survey_id_base=base_key,
            processed=index + 1,
            total=total,
        ))

    return result
