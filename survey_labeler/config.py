"""
Configuration for the survey labeler.

Holds the user-editable rule document, the run options for the two run
modes, and the JSON-backed store that persists the rules between sessions.
"""
import os
import sys
import json
from pathlib import Path
from dataclasses import dataclass, field, asdict
from typing import List, Optional, Dict, Any

from dotenv import load_dotenv

_env_path = Path(__file__).parent / '.env'
if _env_path.exists():
    load_dotenv(_env_path)


class ConfigError(ValueError):
    """Raised when a rule document is malformed or a pattern does not compile."""


class SurveyIdError(ValueError):
    """Raised when no survey id can be derived for a single-pair run."""


# === Default patterns ===
DEFAULT_IMAGE_ID_REGEX = r'^(.+?_\d{3,5})(?:[ _][A-Za-z0-9]+)*$'

# Survey folders look like 20250101_AB, optionally with a sub-survey marker
# (20250101_AB_CD). The base key drops the marker.
DEFAULT_SURVEY_ID_REGEX_DETECTED = r'(?i)\b(\d{8}_[A-Z]{2}(?:_[A-Z]{2})?)\b'
DEFAULT_SURVEY_ID_REGEX_BASE = r'(?i)\b(\d{8}_[A-Z]{2})(?:_[A-Z]{2})?\b'
DEFAULT_PRIORITY_IND_REGEX = r'(?i)\bind'

DEFAULT_EXTENSIONS = ['.jpg', '.jpeg', '.png', '.tif', '.tiff']

WILDCARD_TOKEN = '*'

# Name of the rules file inside the config directory
RULES_FILENAME = 'rules.json'
CONFIG_DIR_ENV_VAR = 'SURVEY_LABELER_CONFIG_DIR'
APP_DIR_NAME = 'SurveyLabeler'


@dataclass
class Rules:
    """User-editable rule document (the JSON config)."""
    extensions: List[str]
    survey_id_regex_detected: str
    survey_id_regex_base: str
    graded_priority_ind_regex: str
    graded_priority_secondary_tokens: List[str]
    graded_negative_contains_any: List[str]
    graded_positive_contains_any: List[str]
    image_id_regex: str = DEFAULT_IMAGE_ID_REGEX

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-ready dictionary (field order as in the document)."""
        return {
            'extensions': list(self.extensions),
            'survey_id_regex_detected': self.survey_id_regex_detected,
            'survey_id_regex_base': self.survey_id_regex_base,
            'image_id_regex': self.image_id_regex,
            'graded_priority_ind_regex': self.graded_priority_ind_regex,
            'graded_priority_secondary_tokens': list(self.graded_priority_secondary_tokens),
            'graded_negative_contains_any': list(self.graded_negative_contains_any),
            'graded_positive_contains_any': list(self.graded_positive_contains_any),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'Rules':
        """
        Build rules from a parsed JSON document.

        Args:
            data: Parsed rule document

        Returns:
            Rules instance

        Raises:
            ConfigError: If a field is missing or has the wrong type
        """
        if not isinstance(data, dict):
            raise ConfigError(f"Rule document must be an object, got {type(data).__name__}")

        def _string(key: str, default: Optional[str] = None) -> str:
            value = data.get(key, default)
            if value is None:
                raise ConfigError(f"Missing field in rule document: {key}")
            if not isinstance(value, str):
                raise ConfigError(f"Field '{key}' must be a string")
            return value

        def _string_list(key: str) -> List[str]:
            if key not in data:
                raise ConfigError(f"Missing field in rule document: {key}")
            value = data[key]
            if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
                raise ConfigError(f"Field '{key}' must be a list of strings")
            return list(value)

        return cls(
            extensions=_string_list('extensions'),
            survey_id_regex_detected=_string('survey_id_regex_detected'),
            survey_id_regex_base=_string('survey_id_regex_base'),
            image_id_regex=_string('image_id_regex', DEFAULT_IMAGE_ID_REGEX),
            graded_priority_ind_regex=_string('graded_priority_ind_regex'),
            graded_priority_secondary_tokens=_string_list('graded_priority_secondary_tokens'),
            graded_negative_contains_any=_string_list('graded_negative_contains_any'),
            graded_positive_contains_any=_string_list('graded_positive_contains_any'),
        )

    @classmethod
    def from_json(cls, text: str) -> 'Rules':
        """Parse a JSON rule document."""
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ConfigError(f"Rule document is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, ensure_ascii=False)


DEFAULT_RULES = Rules(
    extensions=list(DEFAULT_EXTENSIONS),
    survey_id_regex_detected=DEFAULT_SURVEY_ID_REGEX_DETECTED,
    survey_id_regex_base=DEFAULT_SURVEY_ID_REGEX_BASE,
    image_id_regex=DEFAULT_IMAGE_ID_REGEX,
    graded_priority_ind_regex=DEFAULT_PRIORITY_IND_REGEX,
    graded_priority_secondary_tokens=['best'],
    graded_negative_contains_any=['reject'],
    graded_positive_contains_any=[WILDCARD_TOKEN],
)


def default_rules() -> Rules:
    """Get a fresh copy of the built-in rules."""
    return Rules.from_dict(DEFAULT_RULES.to_dict())


@dataclass
class RootRunOptions:
    """Options for a full-tree reconciliation run."""
    write_per_survey: bool = True
    write_merged: bool = True
    merged_filename: str = 'merged.csv'
    problems_filename: str = 'problems.csv'
    per_survey_dirname: str = 'per_survey'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


@dataclass
class SingleRunOptions:
    """Options for a single-pair reconciliation run."""
    output_filename: str = 'single.csv'

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def get_config_dir() -> Path:
    """Get the directory holding the persisted rules."""
    override = os.environ.get(CONFIG_DIR_ENV_VAR)
    if override:
        return Path(override)
    if sys.platform == "darwin":
        return Path.home() / "Library" / "Application Support" / APP_DIR_NAME
    elif sys.platform == "win32":
        appdata = os.environ.get("APPDATA", str(Path.home() / "AppData" / "Roaming"))
        return Path(appdata) / APP_DIR_NAME
    # Linux and others: XDG base directory
    xdg_config = os.environ.get("XDG_CONFIG_HOME", str(Path.home() / ".config"))
    return Path(xdg_config) / APP_DIR_NAME


@dataclass
class RulesStore:
    """
    Persists the rule document as JSON.

    The reconciliation core never touches this; callers load rules here
    and hand them to the orchestrator.
    """
    config_dir: Path = field(default_factory=get_config_dir)

    def __post_init__(self):
        self.config_dir = Path(self.config_dir)

    @property
    def rules_path(self) -> Path:
        return self.config_dir / RULES_FILENAME

    def get_or_init(self) -> Rules:
        """Load the rules, writing the defaults first if none are saved yet."""
        if not self.rules_path.exists():
            self.config_dir.mkdir(parents=True, exist_ok=True)
            self.rules_path.write_text(DEFAULT_RULES.to_json(), encoding='utf-8')
        return Rules.from_json(self.rules_path.read_text(encoding='utf-8'))

    def save(self, rules: Rules) -> Rules:
        """Save the rules and return them."""
        self.config_dir.mkdir(parents=True, exist_ok=True)
        self.rules_path.write_text(rules.to_json(), encoding='utf-8')
        return rules

    def reset(self) -> Rules:
        """Overwrite the saved rules with the built-in defaults."""
        return self.save(default_rules())
