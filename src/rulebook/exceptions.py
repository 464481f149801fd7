"""
Rulebook Exception Classes

Structured error classes with error codes, contextual messages, and suggestions.
"""

from enum import Enum
from typing import List, Optional


class RulebookErrorCode(Enum):
    """Error codes for Rulebook exceptions."""

    # Rule construction errors (RB-001 to RB-099)
    RULE_SYNTAX = "RB-001"
    NOT_VALIDATING = "RB-002"
    UNKNOWN_FUNCTION = "RB-003"
    UNKNOWN_GROUP = "RB-004"
    DUPLICATE_RULE_NAME = "RB-005"

    # Configuration errors (RB-100 to RB-199)
    UNRECOGNIZED_OPTION = "RB-100"
    INVALID_OPTION_VALUE = "RB-101"
    RULE_FILE = "RB-102"

    # Evaluation errors (RB-200 to RB-299)
    UNRESOLVED_VARIABLE = "RB-200"
    EVALUATION_FAILED = "RB-201"
    EVALUATION_TIMEOUT = "RB-202"


class RulebookError(Exception):
    """
    Base exception for Rulebook errors.

    All Rulebook exceptions include:
    - Error code for searchability
    - Contextual error message
    - Suggested actions to resolve

    Example:
        raise RulebookError(
            message="variable 'turnover' not found in data",
            code=RulebookErrorCode.UNRESOLVED_VARIABLE,
            suggestions=["Did you mean 'turnover_total'?"],
        )
    """

    def __init__(
        self,
        message: str,
        code: RulebookErrorCode,
        suggestions: Optional[List[str]] = None,
        cause: Optional[Exception] = None,
    ):
        """
        Initialize RulebookError.

        Args:
            message: Clear description of what went wrong
            code: Error code from RulebookErrorCode enum
            suggestions: List of suggested actions to resolve the error
            cause: Original exception that caused this error (if wrapping)
        """
        self.message = message
        self.code = code
        self.suggestions = suggestions or []
        self.cause = cause

        full_message = self._format_message(message)

        super().__init__(full_message)

    def _format_message(self, message: str) -> str:
        """Format error message with code and suggestions."""

        lines = [
            f"{self.__class__.__name__} ({self.code.value}): {message}",
        ]

        if self.suggestions:
            lines.append("")
            lines.append("Suggested actions:")
            for i, suggestion in enumerate(self.suggestions, 1):
                lines.append(f"  {i}. {suggestion}")

        if self.cause:
            lines.append("")
            lines.append(f"Caused by: {type(self.cause).__name__}: {str(self.cause)}")

        return "\n".join(lines)


# Rule construction errors


class RuleSyntaxError(RulebookError):
    """Raised when rule text cannot be parsed."""

    def __init__(self, message: str, text: str = "", position: Optional[int] = None):
        self.text = text
        self.position = position
        suggestions = []
        if text and position is not None:
            suggestions.append(f"Check the rule near: {text[:position]}<HERE>{text[position:]}")
        super().__init__(
            message=message,
            code=RulebookErrorCode.RULE_SYNTAX,
            suggestions=suggestions,
        )


class NotValidatingExpression(RulebookError):
    """Raised when an expression cannot be shown to produce a truth value."""

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        code: RulebookErrorCode = RulebookErrorCode.NOT_VALIDATING,
    ):
        super().__init__(
            message=message,
            code=code,
            suggestions=suggestions
            or [
                "A rule must be a comparison, a logical expression, a membership test, "
                "a type check, a conditional (if) or a functional dependency (->)",
            ],
        )


class UnknownFunction(NotValidatingExpression):
    """Raised when a rule calls a function outside the closed function registry."""

    def __init__(self, name: str, known: List[str]):
        self.name = name
        super().__init__(
            message=f"unknown function '{name}'",
            suggestions=suggest_similar_field_names(name, known),
            code=RulebookErrorCode.UNKNOWN_FUNCTION,
        )


class UnknownGroupReference(RulebookError):
    """Raised when a name is used as a variable group but was never declared."""

    def __init__(self, name: str, declared: Optional[List[str]] = None):
        self.name = name
        declared = declared or []
        super().__init__(
            message=f"'{name}' is used as a variable group but no group of that name is declared",
            code=RulebookErrorCode.UNKNOWN_GROUP,
            suggestions=(
                suggest_similar_field_names(name, declared)
                if declared
                else ["Declare the group first, e.g. 'G := var_group(a, b)'"]
            ),
        )


class DuplicateRuleName(RulebookError):
    """Raised when two rules in one rule set share a name."""

    def __init__(self, names: List[str]):
        self.names = names
        super().__init__(
            message=f"duplicate rule names: {format_field_list(names)}",
            code=RulebookErrorCode.DUPLICATE_RULE_NAME,
            suggestions=["Give every rule a unique name, or leave it unnamed to auto-generate one"],
        )


# Configuration errors


class UnrecognizedOption(RulebookError):
    """Raised when an options layer contains an unknown key."""

    def __init__(self, key: str, known: List[str]):
        self.key = key
        super().__init__(
            message=f"unrecognized option '{key}'",
            code=RulebookErrorCode.UNRECOGNIZED_OPTION,
            suggestions=suggest_similar_field_names(key, known),
        )


class InvalidOptionValue(RulebookError):
    """Raised when an option value does not validate."""

    def __init__(self, message: str, cause: Optional[Exception] = None):
        super().__init__(
            message=message,
            code=RulebookErrorCode.INVALID_OPTION_VALUE,
            suggestions=[
                "raise must be one of 'none', 'errors', 'all'",
                "na.value must be TRUE, FALSE or NA",
                "lin.ineq.eps and lin.eq.eps must be non-negative numbers",
            ],
            cause=cause,
        )


class RuleFileError(RulebookError):
    """Raised when a rule file cannot be read or its includes cannot be resolved."""

    def __init__(
        self,
        message: str,
        suggestions: Optional[List[str]] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message=message,
            code=RulebookErrorCode.RULE_FILE,
            suggestions=suggestions,
            cause=cause,
        )


# Evaluation errors


class UnresolvedVariable(RulebookError):
    """Raised when a rule references a name found in neither the data nor the reference data."""

    def __init__(self, name: str, available: List[str]):
        self.name = name
        super().__init__(
            message=f"variable '{name}' not found in data or reference data",
            code=RulebookErrorCode.UNRESOLVED_VARIABLE,
            suggestions=suggest_similar_field_names(name, available) if available else None,
        )


class EvaluationError(RulebookError):
    """Raised when a rule fails at runtime (type mismatch, arithmetic error, ...)."""

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        cause: Optional[Exception] = None,
        code: RulebookErrorCode = RulebookErrorCode.EVALUATION_FAILED,
    ):
        self.rule = rule
        prefix = f"rule '{rule}': " if rule else ""
        super().__init__(
            message=f"{prefix}{message}",
            code=code,
            cause=cause,
        )


class EvaluationTimeout(EvaluationError):
    """Raised when a rule exceeds its evaluation deadline."""

    def __init__(self, rule: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            message=f"evaluation exceeded {timeout:g}s",
            rule=rule,
            code=RulebookErrorCode.EVALUATION_TIMEOUT,
        )


class NameConflictWarning(UserWarning):
    """A variable name exists in both the data and the reference data; the data wins."""


# Utility Functions for Error Suggestions


def suggest_similar_field_names(
    invalid_field: str,
    valid_fields: List[str],
    max_suggestions: int = 3,
) -> List[str]:
    """
    Generate "Did you mean?" suggestions for name typos.

    Args:
        invalid_field: The invalid name provided by user
        valid_fields: List of valid names
        max_suggestions: Maximum number of suggestions to return

    Returns:
        List of suggestions
    """
    from difflib import get_close_matches

    similar = get_close_matches(
        invalid_field,
        list(valid_fields),
        n=max_suggestions,
        cutoff=0.6,
    )

    if similar:
        return [f"Did you mean '{field}'?" for field in similar]
    else:
        return [f"Available names: {', '.join(valid_fields)}"]


def format_field_list(fields: List[str]) -> str:
    """Format a list of fields for error messages."""
    return ", ".join(f"'{field}'" for field in fields)
