import re
from dataclasses import dataclass, field, asdict
from typing import Any, Dict, Optional
from app.core.logging import get_logger
from app.services.classification.normalizer import prepare_text
from app.services.classification.rules import (
    PrimaryClass, RuleSet, UNMATCHED_CONFIDENCE, UNMATCHED_SUB_CLASS, load_rule_set,
)

logger = get_logger("classifier")

_TIMEOUT_MS_RE = re.compile(r"(\d+)\s?ms")
MAX_EVIDENCE_CHARS = 2000


@dataclass(frozen=True)
class ClassificationResult:
    primary_class: str
    sub_class: Optional[str]
    confidence: int
    is_manually_classified: bool = False
    classified_by: Optional[str] = None
    evidence_data: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


class RuleBasedClassifier:
    """First-match evaluation of an ordered rule table.

    Confidence is the matched rule's static value. No match degrades to
    ``Unknown`` with a low confidence instead of raising.
    """

    def __init__(self, rules: RuleSet):
        self.rules = rules

    def classify(self, error_message: Optional[str], stack_trace: Optional[str]) -> ClassificationResult:
        text = prepare_text(error_message, stack_trace)
        evidence: Dict[str, Any] = {
            "errorText": (error_message or "")[:MAX_EVIDENCE_CHARS],
            "stackTrace": (stack_trace or "")[:MAX_EVIDENCE_CHARS],
        }

        for r in self.rules:
            match = r.match(text)
            if match is None:
                continue
            evidence["rule"] = r.name
            evidence["matchedText"] = match.group(0)[:200]
            if r.sub_class == "Wait_Timeout":
                timeout = _TIMEOUT_MS_RE.search(text)
                if timeout:
                    evidence["timeoutMs"] = int(timeout.group(1))
            return ClassificationResult(r.primary_class.value, r.sub_class, r.confidence, evidence_data=evidence)

        logger.debug("No classification rule matched; falling back to Unknown")
        return ClassificationResult(PrimaryClass.UNKNOWN.value, UNMATCHED_SUB_CLASS, UNMATCHED_CONFIDENCE, evidence_data=evidence)

default_classifier = RuleBasedClassifier(load_rule_set())
