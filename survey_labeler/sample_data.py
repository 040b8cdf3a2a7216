"""
Sample survey trees for demos and tests.

Builds a Raw/ and a Graded/ tree under a base directory:
- two surveys present on both sides (graded folders carry a sub-survey marker)
- one survey only in the raw tree
- one survey only in the graded tree
"""
from pathlib import Path
from typing import Dict, Any


SAMPLE_SURVEYS = [
    {'base': '20250101_AB', 'full': '20250101_AB_CD', 'dolphins': ['img_001.jpg', 'img_003.jpg']},
    {'base': '20250102_CD', 'full': '20250102_CD_EF', 'dolphins': ['photo_a.jpg']},
]

SAMPLE_RAW_FILES = ['img_001.jpg', 'img_002.jpg', 'img_003.jpg']


def generate_sample_data(base_dir: Path) -> Dict[str, Any]:
    """
    Create the sample trees.

    Args:
        base_dir: Directory to create Raw/ and Graded/ in

    Returns:
        Dictionary with the raw and graded roots and the created survey folders
    """
    base_dir = Path(base_dir)
    raw_root = base_dir / 'Raw'
    graded_root = base_dir / 'Graded'
    raw_root.mkdir(parents=True, exist_ok=True)
    graded_root.mkdir(parents=True, exist_ok=True)

    created = {'raw_root': raw_root, 'graded_root': graded_root, 'pairs': []}

    for survey in SAMPLE_SURVEYS:
        raw_survey = raw_root / '2025' / '01' / survey['base']
        graded_survey = graded_root / survey['full']
        raw_survey.mkdir(parents=True, exist_ok=True)
        graded_survey.mkdir(parents=True, exist_ok=True)

        for name in SAMPLE_RAW_FILES:
            (raw_survey / name).write_text(f"sample:{name}", encoding='utf-8')
        # Graded copies keep the raw name, so the image id prefix matches
        for name in survey['dolphins']:
            (graded_survey / name).write_text(f"sample:{name}", encoding='utf-8')

        created['pairs'].append((raw_survey, graded_survey))

    orphan_raw = raw_root / '2025' / '02' / '20250103_EF'
    orphan_raw.mkdir(parents=True, exist_ok=True)
    (orphan_raw / 'lonely.jpg').write_text('raw:orphan', encoding='utf-8')
    created['raw_only'] = orphan_raw

    orphan_graded = graded_root / '20250104_GH'
    orphan_graded.mkdir(parents=True, exist_ok=True)
    (orphan_graded / 'ghost.jpg').write_text('graded:orphan', encoding='utf-8')
    created['graded_only'] = orphan_graded

    return created
