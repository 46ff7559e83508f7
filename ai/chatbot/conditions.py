"""
Condition evaluator for edge conditions.

The grammar is a small set of string patterns rather than a general
expression language:

    context.<name> == 'value'          (also !=, contains, startsWith, matches)
    userInput.contains('x')            (also equals, startsWith, matches)
    contains('x')                      (bare form of the userInput tests)
    true / false
    <name>                             (truthiness of an existing context key)

String comparisons are case-insensitive. ``matches`` applies a
case-insensitive regular expression search.
"""

import logging
import re
from typing import Dict, Any, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)

CONTEXT_PATTERN = re.compile(
    r"^context\.(?P<name>[\w.]+)\s*(?P<op>==|!=|contains|startsWith|matches)\s*"
    r"(?P<quote>['\"])(?P<value>.*)(?P=quote)$"
)
INPUT_PATTERN = re.compile(
    r"^(?:userInput\.)?(?P<func>contains|equals|startsWith|matches)\(\s*"
    r"(?P<quote>['\"])(?P<value>.*)(?P=quote)\s*\)$"
)
IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z_]\w*$")


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _lookup(context: Dict[str, Any], name: str) -> Any:
    """Resolve a (possibly dotted) variable name against the context."""
    if name in context:
        return context[name]
    current: Any = context
    for part in name.split('.'):
        if not isinstance(current, dict) or part not in current:
            return None
        current = current[part]
    return current


class ConditionEvaluator:
    """Evaluates edge condition strings against context and user input."""

    def __init__(self, unknown_default: Optional[bool] = None):
        if unknown_default is None:
            unknown_default = settings.CHATBOT_UNKNOWN_CONDITION_DEFAULT
        self.unknown_default = unknown_default

    def evaluate(self, condition: Optional[str], context: Dict[str, Any], user_input: str) -> bool:
        """Evaluate a condition. Errors (e.g. invalid regex) evaluate to False."""
        if condition is None or not condition.strip():
            return True

        try:
            return self._evaluate(condition.strip(), context or {}, user_input or "")
        except Exception as e:
            logger.warning(f"Error evaluating condition '{condition}': {e}")
            return False

    def is_recognized(self, condition: Optional[str], context: Optional[Dict[str, Any]] = None) -> bool:
        """Return True if the condition matches one of the supported patterns.

        Bare identifiers are accepted without a context since the variable may
        be set at runtime.
        """
        if condition is None or not condition.strip():
            return True
        text = condition.strip()
        if text.lower() in ("true", "false"):
            return True
        if CONTEXT_PATTERN.match(text) or INPUT_PATTERN.match(text):
            return True
        if IDENTIFIER_PATTERN.match(text):
            return context is None or text in context
        return False

    def _evaluate(self, text: str, context: Dict[str, Any], user_input: str) -> bool:
        match = CONTEXT_PATTERN.match(text)
        if match:
            actual = _as_text(_lookup(context, match.group('name')))
            return self._compare(match.group('op'), actual, match.group('value'))

        match = INPUT_PATTERN.match(text)
        if match:
            return self._compare(match.group('func'), user_input, match.group('value'))

        lowered = text.lower()
        if lowered == "true":
            return True
        if lowered == "false":
            return False

        if IDENTIFIER_PATTERN.match(text) and text in context:
            return bool(context[text])

        logger.warning(
            f"Unrecognized condition '{text}', defaulting to {self.unknown_default}"
        )
        return self.unknown_default

    @staticmethod
    def _compare(op: str, actual: str, expected: str) -> bool:
        if op == "matches":
            return re.search(expected, actual, re.IGNORECASE) is not None

        actual_lower = actual.lower()
        expected_lower = expected.lower()

        if op in ("==", "equals"):
            return actual_lower == expected_lower
        if op == "!=":
            return actual_lower != expected_lower
        if op == "contains":
            return expected_lower in actual_lower
        if op == "startsWith":
            return actual_lower.startswith(expected_lower)

        raise ValueError(f"Unsupported operator: {op}")
