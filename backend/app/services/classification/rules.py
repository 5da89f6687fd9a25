"""Failure taxonomy and the ordered rule table the classifier evaluates.

Rule order is the disambiguation mechanism: the first rule whose pattern
matches wins, so specific wording (explicit timeouts, missing files) sits
above the generic keyword families ("not found", "invalid", "connection").
"""
import json
import re
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, Iterator, Optional, Tuple
from app.core.config import settings
from app.core.exceptions import ValidationError
from app.core.logging import get_logger

logger = get_logger("classification_rules")


class PrimaryClass(str, Enum):
    AUTOMATION_SCRIPT_ERROR = "AutomationScriptError"
    ENVIRONMENT_ISSUE = "EnvironmentIssue"
    APPLICATION_DEFECT = "ApplicationDefect"
    DATA_ISSUE = "DataIssue"
    UNKNOWN = "Unknown"


TAXONOMY: Dict[PrimaryClass, FrozenSet[str]] = {
    PrimaryClass.AUTOMATION_SCRIPT_ERROR: frozenset({
        "Wait_Timeout", "Locator_Break", "Stale_Element", "Element_State", "Script_Logic", "Automation_Issue",
    }),
    PrimaryClass.ENVIRONMENT_ISSUE: frozenset({
        "Connection_Refused", "Connection_Reset", "DNS_Failure", "SSL_Certificate", "Service_Unavailable",
        "Grid_Node_Down", "Time_Sync", "Network", "Access_Denied", "Infrastructure",
    }),
    PrimaryClass.DATA_ISSUE: frozenset({
        "Missing_Test_Data", "Validation_Error", "Auth_Data", "Data_Conflict", "Precondition",
        "Invalid_Request", "Data_Issue",
    }),
    PrimaryClass.APPLICATION_DEFECT: frozenset({
        "Server_Error", "API_Issue", "CORS_Issue", "UI_Change", "Runtime_Error", "Assertion_Failure",
        "Value_Assertion", "Boolean_Assertion", "Content_Assertion", "Property_Assertion", "Logic_Error",
    }),
    PrimaryClass.UNKNOWN: frozenset({"Unclassified"}),
}

UNMATCHED_SUB_CLASS = "Unclassified"
UNMATCHED_CONFIDENCE = 20


def parse_primary_class(value) -> PrimaryClass:
    try:
        return PrimaryClass(value)
    except ValueError:
        allowed = ", ".join(p.value for p in PrimaryClass)
        raise ValidationError(f"Unknown primary class '{value}'. Expected one of: {allowed}") from None


def validate_classification(primary_class, sub_class: Optional[str]) -> Tuple[PrimaryClass, Optional[str]]:
    """Check a (primary, sub) pair against the taxonomy; ``sub_class`` may be empty."""
    primary = parse_primary_class(primary_class)
    sub_class = (sub_class or "").strip() or None
    if sub_class is not None and sub_class not in TAXONOMY[primary]:
        raise ValidationError(f"Sub class '{sub_class}' is not valid for {primary.value}")
    return primary, sub_class


@dataclass(frozen=True)
class ClassificationRule:
    name: str
    pattern: re.Pattern
    primary_class: PrimaryClass
    sub_class: str
    confidence: int

    def match(self, text: str) -> Optional[re.Match]:
        return self.pattern.search(text)


def rule(name: str, regex: str, primary_class: PrimaryClass, sub_class: str, confidence: int) -> ClassificationRule:
    return ClassificationRule(name, re.compile(regex), primary_class, sub_class, confidence)


class RuleSet:
    """Immutable, ordered rule table. Built once and injected into the classifier."""

    def __init__(self, rules: Iterable[ClassificationRule]):
        rules = tuple(rules)
        for r in rules:
            if r.sub_class not in TAXONOMY[r.primary_class]:
                raise ValidationError(f"Rule '{r.name}' uses sub class '{r.sub_class}' outside {r.primary_class.value}")
            if not 0 <= r.confidence <= 100:
                raise ValidationError(f"Rule '{r.name}' confidence must be within 0-100")
        self._rules = rules

    def __iter__(self) -> Iterator[ClassificationRule]:
        return iter(self._rules)

    def __len__(self) -> int:
        return len(self._rules)

    @classmethod
    def from_file(cls, path) -> "RuleSet":
        """Load a JSON rule table.

        Each entry: ``name``, ``pattern``, ``primaryClass``, ``subClass``,
        ``confidence`` and optionally ``priority`` (lower runs first) and
        ``isActive``. Patterns are matched case-insensitively, since the
        classifier runs them against lowercased error text.
        """
        entries = json.loads(Path(path).read_text(encoding="utf-8"))
        active = [e for e in entries if e.get("isActive", True)]
        # sorted() is stable, so entries without a priority keep file order
        active = sorted(active, key=lambda e: e.get("priority", 100))
        rules = []
        for e in active:
            try:
                rules.append(ClassificationRule(
                    name=e["name"],
                    pattern=re.compile(e["pattern"], re.IGNORECASE),
                    primary_class=parse_primary_class(e["primaryClass"]),
                    sub_class=e["subClass"],
                    confidence=int(e["confidence"]),
                ))
            except (KeyError, TypeError, ValueError, re.error) as err:
                raise ValidationError(f"Invalid rule '{e.get('name')}': {err!r}") from err
        logger.info(f"Loaded {len(rules)} classification rules from {path}")
        return cls(rules)


A = PrimaryClass.AUTOMATION_SCRIPT_ERROR
E = PrimaryClass.ENVIRONMENT_ISSUE
D = PrimaryClass.DATA_ISSUE
P = PrimaryClass.APPLICATION_DEFECT

DEFAULT_RULES = RuleSet([
    # Environment, specific wording
    rule("connection_refused", r"connection refused|econnrefused", E, "Connection_Refused", 85),
    rule("connection_reset", r"connection reset|econnreset|socket hang up", E, "Connection_Reset", 85),
    rule("dns_failure", r"dns.*fail|enotfound|getaddrinfo|name or service not known", E, "DNS_Failure", 85),
    rule("ssl_certificate", r"certificate.*(error|expired|invalid)|cert_|ssl.*error|self[- ]signed", E, "SSL_Certificate", 85),
    rule("service_unavailable", r"\b50[234]\b.*(gateway|unavailable|timeout)|bad gateway|service unavailable", E, "Service_Unavailable", 85),
    rule("grid_node_down", r"grid.*node.*down|selenium.*grid.*unavailable|session not created", E, "Grid_Node_Down", 85),
    rule("time_sync", r"time[ _-]?sync|clock skew|clock.*out of sync", E, "Time_Sync", 80),

    # Automation script, explicit timeouts before generic "not found" wording
    rule("stale_element", r"staleelementreference|stale element", A, "Stale_Element", 90),
    rule("wait_timeout", r"timeouterror|timeoutexception|timeout \d+ ?ms exceeded|timeout.*exceeded|timed out (\d+ ?ms )?waiting|timeout.*waiting", A, "Wait_Timeout", 85),
    rule("locator_break", r"nosuchelement|no such element|element.*not.*found|unable to locate|(locator|selector).*(not found|resolved to 0|did not match)", A, "Locator_Break", 80),
    rule("element_state", r"not visible|not interactable|not attached to the dom|intercepts pointer events|element is (disabled|outside)", A, "Element_State", 75),
    rule("script_logic", r"missing.*await|nullpointerexception.*test|is not a function|syntaxerror|referenceerror.*is not defined", A, "Script_Logic", 75),

    # Test data, specific wording
    rule("missing_file", r"enoent|no such file or directory|file.*not.*found|missing.*file|cannot.*read.*file|\.json.*not found", D, "Missing_Test_Data", 80),
    rule("validation_failed", r"validation.*failed", D, "Validation_Error", 75),
    rule("credentials", r"invalid.*credentials|expired.*credentials|test.*user.*not.*found", D, "Auth_Data", 75),
    rule("data_conflict", r"unique.*constraint|duplicate.*key|already exists", D, "Data_Conflict", 75),
    rule("precondition", r"precondition.*failed|fixture.*missing", D, "Precondition", 75),
    rule("bad_request", r"\b4(00|22)\b.*(bad.*request|unprocessable)|bad request|unprocessable entity", D, "Invalid_Request", 70),

    # Application, specific wording
    rule("server_error", r"\b5\d\d\b.*internal.*server.*error|internal server error", P, "Server_Error", 75),
    rule("api_error", r"api.*error|endpoint.*not.*found", P, "API_Issue", 70),
    rule("cors", r"cors.*error|cross.?origin", P, "CORS_Issue", 70),
    rule("ui_change", r"ui.*mismatch|dom.*diff|screenshot.*differ|breaking.*changes", P, "UI_Change", 70),
    rule("runtime_error", r"nullreference|typeerror.*app", P, "Runtime_Error", 65),

    # Environment, generic keywords
    rule("network", r"network|net::err|fetch failed", E, "Network", 70),
    rule("connection", r"connection", E, "Infrastructure", 65),
    rule("access_denied", r"unauthori[sz]ed|permission denied|permission|forbidden|\b40[13]\b", E, "Access_Denied", 65),

    # Test data, generic keywords
    rule("invalid_or_missing", r"\binvalid\b|\bmissing\b", D, "Data_Issue", 60),

    # Automation, generic wait and "not found" wording
    rule("generic_wait", r"\bwait(ing|for)?\b", A, "Wait_Timeout", 60),
    rule("generic_not_found", r"not found|locator|selector", A, "Locator_Break", 60),

    # Assertion failures without any of the patterns above
    rule("boolean_assertion", r"expect\(.*\)\.(not\.)?to(befalsy|betruthy)", P, "Boolean_Assertion", 65),
    rule("value_assertion", r"expect\(.*\)\.(not\.)?to(be|equal|strictequal)\(", P, "Value_Assertion", 65),
    rule("content_assertion", r"expect\(.*\)\.(not\.)?tocontain", P, "Content_Assertion", 65),
    rule("property_assertion", r"expect\(.*\)\.(not\.)?tohave", P, "Property_Assertion", 65),
    rule("assertion_failed", r"assertionerror|assertion.*failed|assert.*error|expected.*but.*(received|was|got)|expected.*to.*be|should.*be.*but.*was", P, "Assertion_Failure", 60),
])


def load_rule_set(path: Optional[str] = None) -> RuleSet:
    path = path or settings.CLASSIFICATION_RULES_FILE
    if path:
        return RuleSet.from_file(path)
    return DEFAULT_RULES
