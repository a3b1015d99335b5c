from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable, Optional

from .registry import Implementation, draft_number

AT = "at"
AHEAD = "ahead"
BEHIND = "behind"
NONE = "none"

CLASSIFICATIONS = (AT, AHEAD, BEHIND)
# Plan ordering: most target-relevant first.
CLASS_RANK = {AT: 0, AHEAD: 1, BEHIND: 2}


@dataclass(frozen=True)
class Prediction:
    version: Optional[str]
    classification: str

    @property
    def shared(self) -> bool:
        return self.version is not None


def newest_shared(a: Iterable[str], b: Iterable[str]) -> Optional[str]:
    shared = set(a) & set(b)
    if not shared:
        return None
    return max(shared, key=draft_number)


def classify(version: Optional[str], target: str) -> str:
    if version is None:
        return NONE
    v = draft_number(version)
    t = draft_number(target)
    if v == t:
        return AT
    if v > t:
        return AHEAD
    return BEHIND


def predict(client: Implementation, relay: Implementation, target: str) -> Prediction:
    """Predict the version a client/relay pair negotiates and label it against target.

    The newest draft both sides list is what version negotiation picks on the
    wire; the runner has no control over it, so this is only a label.
    """
    version = newest_shared(client.versions, relay.versions)
    return Prediction(version=version, classification=classify(version, target))
