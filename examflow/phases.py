"""
Phase vocabulary: server progress markers -> internal phases.

The service reports progress as a marker string. Two spellings have shipped
(Section_n and the older Phase_n); everything past this module only sees
InternalPhase.
"""
import logging
from enum import Enum
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class InternalPhase(Enum):
    PHASE_1 = "phase_1"
    PHASE_2 = "phase_2"
    BREAK = "break"
    PHASE_3 = "phase_3"
    PHASE_4 = "phase_4"


# Subject tracks
READING_WRITING = "Reading & Writing"
MATH = "Math"

BREAK_MARKER = "Break_Time"
END_MARKER = "End"

# marker -> phase; None = terminal
SECTION_VOCABULARY: Dict[str, Optional[InternalPhase]] = {
    "Section_1": InternalPhase.PHASE_1,
    "Section_2": InternalPhase.PHASE_2,
    BREAK_MARKER: InternalPhase.BREAK,
    "Section_3": InternalPhase.PHASE_3,
    "Section_4": InternalPhase.PHASE_4,
    END_MARKER: None,
}

PHASE_VOCABULARY: Dict[str, Optional[InternalPhase]] = {
    "Phase_1": InternalPhase.PHASE_1,
    "Phase_2": InternalPhase.PHASE_2,
    BREAK_MARKER: InternalPhase.BREAK,
    "Phase_3": InternalPhase.PHASE_3,
    "Phase_4": InternalPhase.PHASE_4,
    END_MARKER: None,
}

VOCABULARIES = {
    # Current servers still answer with Phase_n for sessions created before the rename.
    "sections": {**PHASE_VOCABULARY, **SECTION_VOCABULARY},
    "phases": PHASE_VOCABULARY,
}

# phase -> (module, part, minutes)
PHASE_PLAN = {
    InternalPhase.PHASE_1: (READING_WRITING, 1, 32),
    InternalPhase.PHASE_2: (READING_WRITING, 2, 32),
    InternalPhase.PHASE_3: (MATH, 1, 35),
    InternalPhase.PHASE_4: (MATH, 2, 35),
}

_SUCCESSOR = {
    InternalPhase.PHASE_1: InternalPhase.PHASE_2,
    InternalPhase.PHASE_2: InternalPhase.BREAK,
    InternalPhase.BREAK: InternalPhase.PHASE_3,
    InternalPhase.PHASE_3: InternalPhase.PHASE_4,
    InternalPhase.PHASE_4: None,
}


def resolve_vocabulary(name: Optional[str]) -> Dict[str, Optional[InternalPhase]]:
    if not name:
        return VOCABULARIES["sections"]
    try:
        return VOCABULARIES[name]
    except KeyError:
        raise ValueError(f"Unknown progress vocabulary {name!r}; expected one of {sorted(VOCABULARIES)}")


def map_server_phase(marker, vocabulary: Optional[Dict[str, Optional[InternalPhase]]] = None) -> Optional[InternalPhase]:
    """
    Translate a server progress marker into an internal phase.

    Returns None for the terminal marker (no more questions). Unknown markers
    fall back to PHASE_1 with a warning; this function never raises.
    """
    table = vocabulary if vocabulary is not None else VOCABULARIES["sections"]
    if isinstance(marker, str) and marker in table:
        return table[marker]
    logger.warning(f"Unknown progress marker {marker!r}, defaulting to {InternalPhase.PHASE_1.name}")
    return InternalPhase.PHASE_1


def next_phase(phase: InternalPhase) -> Optional[InternalPhase]:
    """Deterministic successor used when the server can't tell us. None = exam over."""
    return _SUCCESSOR[phase]


def is_question_phase(phase: Optional[InternalPhase]) -> bool:
    return phase in PHASE_PLAN
