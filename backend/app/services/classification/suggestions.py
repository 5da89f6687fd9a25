from typing import Dict, List, Optional, Tuple
from app.services.classification.rules import PrimaryClass

A = PrimaryClass.AUTOMATION_SCRIPT_ERROR.value
E = PrimaryClass.ENVIRONMENT_ISSUE.value
D = PrimaryClass.DATA_ISSUE.value
P = PrimaryClass.APPLICATION_DEFECT.value

SPECIFIC_FIXES: Dict[Tuple[str, str], List[str]] = {
    (A, "Wait_Timeout"): [
        "Increase explicit wait timeout",
        "Add proper wait conditions (visibility, clickability)",
        "Implement retry mechanism for flaky elements",
    ],
    (A, "Locator_Break"): [
        "Use data-test-id attributes for stable selectors",
        "Add fallback locators in Page Object Model",
        "Update selectors to match current DOM structure",
    ],
    (A, "Stale_Element"): [
        "Re-find element before interaction",
        "Use fresh locators instead of cached elements",
        "Add wait for element to be refreshed",
    ],
    (A, "Element_State"): [
        "Wait for the element to become visible and enabled before interacting",
        "Scroll the element into view or close overlapping dialogs",
    ],
    (A, "Script_Logic"): [
        "Check for missing await on asynchronous calls",
        "Verify helper functions and imports used by the test",
    ],
    (E, "Connection_Refused"): [
        "Verify the target service is running and listening on the expected port",
        "Check firewall or proxy rules between the runner and the service",
    ],
    (E, "DNS_Failure"): [
        "Check DNS resolution of the target host from the runner",
        "Verify the base URL configured for this environment",
    ],
    (E, "SSL_Certificate"): [
        "Verify SSL certificates are valid and not expired",
        "Install the environment's CA certificate on the runner",
    ],
    (E, "Grid_Node_Down"): [
        "Check Selenium grid node health and capacity",
        "Verify browser and driver versions match on the grid",
    ],
    (D, "Missing_Test_Data"): [
        "Verify the test data file exists and is generated before the test runs",
        "Check relative paths against the runner's working directory",
    ],
    (D, "Data_Conflict"): [
        "Generate unique test data per run",
        "Clean up records created by previous runs",
    ],
    (D, "Auth_Data"): [
        "Rotate or refresh the test account credentials",
        "Verify the test user exists in this environment",
    ],
    (P, "Server_Error"): [
        "Check application server logs around the failure time",
        "Reproduce the failing request manually",
    ],
}

PRIMARY_FALLBACKS: Dict[str, List[str]] = {
    A: [
        "Review test script logic",
        "Check for missing assertions or validations",
        "Verify test data and preconditions",
    ],
    E: [
        "Check network connectivity and DNS resolution",
        "Verify SSL certificates are valid",
        "Ensure test infrastructure is running",
        "Check for firewall or proxy issues",
    ],
    D: [
        "Refresh test data and fixtures",
        "Check user credentials and permissions",
        "Verify database state and constraints",
        "Update test data for current environment",
    ],
    P: [
        "Check application logs for errors",
        "Verify API responses and status codes",
        "Test manually to confirm defect",
        "Create bug report with reproduction steps",
    ],
}

GENERIC_FIXES = ["Review error details and logs"]


def suggest_fixes(primary_class: str, sub_class: Optional[str]) -> List[str]:
    """Remediation hints for a classification. Pure lookup, never raises."""
    primary = getattr(primary_class, "value", primary_class)
    specific = SPECIFIC_FIXES.get((primary, sub_class or ""))
    if specific:
        return list(specific)
    return list(PRIMARY_FALLBACKS.get(primary, GENERIC_FIXES))
