"""
Survey Scanner Module for the survey labeler.
Discovers survey folders in the raw and graded trees and reconciles them
into raw/graded pairs, recording missing and duplicated folders as problems.
"""
import logging
from pathlib import Path
from typing import Optional, List, Dict, Tuple
from dataclasses import dataclass, field
from enum import Enum

from .pattern_extractor import CompiledRules, derive_survey_key
from .file_utils import DirectoryWalker, count_images


logger = logging.getLogger(__name__)


class ScanStatus(Enum):
    """Status of a base key after reconciliation."""
    OK = "OK"
    PROBLEM = "PROBLEM"


class ProblemType(Enum):
    """Kinds of structural problems."""
    RAW_MISSING = "RAW_MISSING"
    GRADED_MISSING = "GRADED_MISSING"
    DUPLICATE_RAW = "DUPLICATE_RAW"
    DUPLICATE_GRADED = "DUPLICATE_GRADED"


MISSING_DETAILS = {
    ProblemType.RAW_MISSING: "No raw survey folder found.",
    ProblemType.GRADED_MISSING: "No graded survey folder found.",
}


@dataclass(frozen=True)
class SurveyFolder:
    """A directory claimed as a survey folder."""
    path: Path
    detected_id: Optional[str] = None


@dataclass(frozen=True)
class ProblemItem:
    """A survey folder that could not be uniquely resolved on one side."""
    survey_id_base: str
    problem_type: ProblemType
    survey_id_detected: Optional[str] = None
    raw_path: Optional[str] = None
    graded_path: Optional[str] = None
    details: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'survey_id_base': self.survey_id_base,
            'survey_id_detected': self.survey_id_detected,
            'raw_path': self.raw_path,
            'graded_path': self.graded_path,
            'problem_type': self.problem_type.value,
            'details': self.details,
        }


@dataclass
class ScanEntry:
    """Reconciliation result for one base key."""
    base_key: str
    raw: Optional[SurveyFolder]
    graded: Optional[SurveyFolder]
    status: ScanStatus
    problem_type: Optional[ProblemType] = None
    details: Optional[str] = None

    @property
    def is_ok(self) -> bool:
        return self.status == ScanStatus.OK


@dataclass
class PreviewItem:
    """One row of a dry-run preview."""
    base_key: str
    raw_path: Optional[str]
    graded_path: Optional[str]
    status: str
    problem_type: Optional[str] = None
    details: Optional[str] = None
    raw_image_count: Optional[int] = None
    graded_image_count: Optional[int] = None
    survey_id_raw_detected: Optional[str] = None
    survey_id_graded_detected: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            'base_key': self.base_key,
            'raw_path': self.raw_path,
            'graded_path': self.graded_path,
            'status': self.status,
            'problem_type': self.problem_type,
            'details': self.details,
            'raw_image_count': self.raw_image_count,
            'graded_image_count': self.graded_image_count,
            'survey_id_raw_detected': self.survey_id_raw_detected,
            'survey_id_graded_detected': self.survey_id_graded_detected,
        }


@dataclass
class ScanResult:
    """Entries, problems and preview rows, all in base-key order."""
    entries: List[ScanEntry] = field(default_factory=list)
    problems: List[ProblemItem] = field(default_factory=list)
    preview: List[PreviewItem] = field(default_factory=list)

    @property
    def ok_entries(self) -> List[ScanEntry]:
        return [e for e in self.entries if e.is_ok]


def discover_surveys(root: Path, rules: CompiledRules) -> Dict[str, List[SurveyFolder]]:
    """
    Find survey folders under root, grouped by base key.

    A directory that yields a base key is claimed and its subtree is not
    visited; directories without one are skipped but their children are.

    Args:
        root: Root of the raw or graded tree
        rules: Compiled rules

    Returns:
        Mapping of base key to folders in walk order
    """
    surveys: Dict[str, List[SurveyFolder]] = {}
    claimed = set()

    def _claim(directory: Path) -> bool:
        return directory in claimed

    walker = DirectoryWalker()
    for directory in walker.walk_dirs(root, claim=_claim):
        detected_id, base_key = derive_survey_key(directory, rules)
        if base_key is None:
            continue
        surveys.setdefault(base_key, []).append(SurveyFolder(path=directory, detected_id=detected_id))
        claimed.add(directory)
        logger.debug(f"Survey folder {base_key}: {directory} (detected: {detected_id})")

    logger.info(f"Discovered {len(surveys)} survey keys under {root}")
    return surveys


def select_unique(
    base_key: str,
    folders: List[SurveyFolder],
    problem_type: ProblemType
) -> Tuple[Optional[SurveyFolder], Optional[ProblemItem]]:
    """
    Resolve a side to exactly one folder.

    Returns:
        (folder or None, duplicate problem or None)
    """
    if len(folders) <= 1:
        return (folders[0] if folders else None), None

    detail = "; ".join(str(folder.path) for folder in folders)
    return None, ProblemItem(
        survey_id_base=base_key,
        problem_type=problem_type,
        survey_id_detected=folders[0].detected_id,
        details=detail,
    )


def _path_str(folder: Optional[SurveyFolder]) -> Optional[str]:
    return str(folder.path) if folder is not None else None


def _detected(folder: Optional[SurveyFolder]) -> Optional[str]:
    return folder.detected_id if folder is not None else None


def reconcile_surveys(
    raw_map: Dict[str, List[SurveyFolder]],
    graded_map: Dict[str, List[SurveyFolder]],
    rules: CompiledRules,
    include_counts: bool = False
) -> ScanResult:
    """
    Pair raw and graded survey folders by base key.

    Every base key seen in either tree gets exactly one entry. An entry is
    OK only when both sides resolve to exactly one folder. Missing sides
    take priority over duplicates for the entry's problem type.

    Args:
        raw_map: Discovery result for the raw tree
        graded_map: Discovery result for the graded tree
        rules: Compiled rules (used for image counts)
        include_counts: Count images under resolved folders (preview mode)

    Returns:
        ScanResult sorted by base key
    """
    result = ScanResult()

    for base_key in sorted(set(raw_map) | set(graded_map)):
        raw_list = raw_map.get(base_key, [])
        graded_list = graded_map.get(base_key, [])

        raw, raw_duplicate = select_unique(base_key, raw_list, ProblemType.DUPLICATE_RAW)
        graded, graded_duplicate = select_unique(base_key, graded_list, ProblemType.DUPLICATE_GRADED)

        entry_problems: List[ProblemItem] = []
        for duplicate in (raw_duplicate, graded_duplicate):
            if duplicate is not None:
                entry_problems.append(duplicate)

        missing: Optional[ProblemType] = None
        if not raw_list:
            missing = ProblemType.RAW_MISSING
            entry_problems.append(ProblemItem(
                survey_id_base=base_key,
                problem_type=ProblemType.RAW_MISSING,
                survey_id_detected=_detected(graded),
                graded_path=_path_str(graded),
            ))
        if not graded_list:
            missing = ProblemType.GRADED_MISSING
            entry_problems.append(ProblemItem(
                survey_id_base=base_key,
                problem_type=ProblemType.GRADED_MISSING,
                survey_id_detected=_detected(raw),
                raw_path=_path_str(raw),
            ))

        status = ScanStatus.PROBLEM if entry_problems else ScanStatus.OK
        problem_type = None
        details = None
        if missing is not None:
            problem_type = missing
            details = MISSING_DETAILS[missing]
        elif raw_duplicate is not None or graded_duplicate is not None:
            first = raw_duplicate or graded_duplicate
            problem_type = first.problem_type
            details = first.details

        for problem in entry_problems:
            logger.info(f"Problem {problem.problem_type.value}: {base_key}")
        result.problems.extend(entry_problems)

        raw_count = graded_count = None
        if include_counts:
            raw_count = count_images(raw.path, rules.extensions) if raw else None
            graded_count = count_images(graded.path, rules.extensions) if graded else None

        result.entries.append(ScanEntry(
            base_key=base_key,
            raw=raw,
            graded=graded,
            status=status,
            problem_type=problem_type,
            details=details,
        ))
        result.preview.append(PreviewItem(
            base_key=base_key,
            raw_path=_path_str(raw),
            graded_path=_path_str(graded),
            status=status.value,
            problem_type=problem_type.value if problem_type else None,
            details=details,
            raw_image_count=raw_count,
            graded_image_count=graded_count,
            survey_id_raw_detected=_detected(raw),
            survey_id_graded_detected=_detected(graded),
        ))

    return result


def scan_roots(
    raw_root: Path,
    graded_root: Path,
    rules: CompiledRules,
    include_counts: bool = False
) -> ScanResult:
    """Discover both trees and reconcile them."""
    raw_map = discover_surveys(Path(raw_root), rules)
    graded_map = discover_surveys(Path(graded_root), rules)
    return reconcile_surveys(raw_map, graded_map, rules, include_counts=include_counts)
