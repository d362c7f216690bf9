"""
Feature Area
============
Derives the logical feature area of a failing test, the coarsest coupling
signal the classifier knows about.

IMPORTANT:  Feature area != error signature.  These are separate axes.
  - Error signature says "these failures probably share one root cause"
  - Feature area only says "these tests exercise the same part of the product"

Resolution order:
  1. Area declared by the runner in the diagnostic payload
  2. First package directory below the test root ("tests/api/..." → "api")
  3. Leading word of the module name ("tests/test_billing_tax.py" → "billing")
"""
from pathlib import PurePosixPath
from typing import Optional

from repair_orchestrator.models.test_outcome import TestOutcome

# Directory names that only mark "this is where tests live"
_TEST_ROOTS = {"tests", "test", "testing", "spec", "specs", "unit", "integration", "e2e", "functional"}


def _module_area(stem: str) -> Optional[str]:
    name = stem
    if name.startswith("test_"):
        name = name[len("test_"):]
    elif name.endswith("_test"):
        name = name[:-len("_test")]
    word = name.split("_", 1)[0].strip().lower()
    return word or None


def area_from_test_id(test_id: str) -> Optional[str]:
    """
    Classify a test id into a feature area using only its module path.

    Parameters
    ----------
    test_id : str
        Runner test id, e.g. "tests/api/test_login.py::TestLogin::test_ok".

    Returns
    -------
    str | None
        Lower-cased area name, or None if nothing could be derived.
    """
    module = test_id.split("::", 1)[0].replace("\\", "/")
    if "/" not in module and "." in module and not module.endswith(".py"):
        # dotted JUnit classname: tests.api.test_login.TestLogin
        module = "/".join(part for part in module.split(".") if not part[:1].isupper())

    path = PurePosixPath(module)
    dirs = [d.lower() for d in path.parent.parts if d not in ("", ".")]
    for directory in dirs:
        if directory not in _TEST_ROOTS:
            return directory

    stem = path.stem if path.suffix else path.name
    return _module_area(stem)


def classify_feature_area(outcome: TestOutcome) -> Optional[str]:
    """Declared area first, then the area derived from the test id."""
    if outcome.diagnostic and outcome.diagnostic.feature_area:
        return outcome.diagnostic.feature_area.strip().lower() or None
    return area_from_test_id(outcome.test_id)
