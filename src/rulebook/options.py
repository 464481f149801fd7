"""
Layered rule options.

Options are resolved from an ordered sequence of partial layers, merged key by
key with later layers winning. Keys may be written the way rule files write
them (``na.value``) or as Python identifiers (``na_value``).
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from rulebook.exceptions import InvalidOptionValue, UnrecognizedOption

logger = logging.getLogger(__name__)

RaisePolicy = Literal["none", "errors", "all"]

_NA_SPELLINGS = {"NA": None, "TRUE": True, "FALSE": False}


class Options(BaseModel):
    """Effective options for a rule set or a single rule.

    Example:
        >>> Options.model_validate({"raise": "errors", "na.value": False})
        Options(raise_='errors', na_value=False, ...)
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="forbid")

    raise_: RaisePolicy = Field(
        default="none",
        alias="raise",
        description="Failure policy: 'none' captures, 'errors' aborts on errors, 'all' also on warnings",
    )
    na_value: Optional[bool] = Field(
        default=None,
        alias="na.value",
        description="How indeterminate outcomes are counted in summaries (None keeps them apart)",
    )
    lin_ineq_eps: float = Field(
        default=1e-8,
        ge=0,
        alias="lin.ineq.eps",
        description="Tolerance for linear inequalities",
    )
    lin_eq_eps: float = Field(
        default=1e-8,
        ge=0,
        alias="lin.eq.eps",
        description="Tolerance for linear equalities",
    )
    sequential: bool = Field(
        default=False,
        description="Evaluate block by block and report block membership",
    )

    @field_validator("na_value", mode="before")
    @classmethod
    def _na_spelling(cls, value: Any) -> Any:
        if isinstance(value, str) and value.upper() in _NA_SPELLINGS:
            return _NA_SPELLINGS[value.upper()]
        return value

    def as_layer(self) -> Dict[str, Any]:
        """All options keyed by their rule-file names."""
        return self.model_dump(by_alias=True)


DEFAULT_OPTIONS = Options()

OPTION_NAMES = tuple(field.alias or name for name, field in Options.model_fields.items())
_KEYS = {
    **{name: field.alias or name for name, field in Options.model_fields.items()},
    **{name: name for name in OPTION_NAMES},
}


def canonical_key(key: str) -> Optional[str]:
    """Rule-file name of an option key, or None if unknown."""
    return _KEYS.get(key) or _KEYS.get(key.replace("-", "_"))


def normalize_layer(layer: Union[Options, Mapping[str, Any]], ignore_unknown: bool = False) -> Dict[str, Any]:
    """Reduce a layer to its explicitly set keys, using rule-file names."""
    if isinstance(layer, Options):
        return layer.model_dump(by_alias=True, exclude_unset=True)
    normalized: Dict[str, Any] = {}
    for key, value in layer.items():
        name = canonical_key(str(key))
        if name is None:
            if ignore_unknown:
                logger.debug("Ignoring unknown option '%s'", key)
                continue
            raise UnrecognizedOption(str(key), list(OPTION_NAMES))
        normalized[name] = value
    return normalized


def resolve(
    layers: Iterable[Union[Options, Mapping[str, Any], None]],
    *,
    ignore_unknown: bool = False,
    defaults: Optional[Options] = None,
) -> Options:
    """
    Merge option layers, lowest precedence first.

    Args:
        layers: Partial options; None entries are skipped
        ignore_unknown: Drop unknown keys instead of raising
        defaults: Base options (built-in defaults when omitted)

    Returns:
        Effective Options

    Raises:
        UnrecognizedOption: a layer has an unknown key
        InvalidOptionValue: a merged value does not validate

    Example:
        >>> resolve([{"raise": "errors"}, {}], defaults=Options(raise_="none")).raise_
        'errors'
    """
    merged = (defaults or DEFAULT_OPTIONS).as_layer()
    explicit: Dict[str, Any] = {}
    for layer in layers:
        if layer is None:
            continue
        explicit.update(normalize_layer(layer, ignore_unknown=ignore_unknown))
    merged.update(explicit)
    try:
        options = Options.model_validate(merged)
    except ValidationError as exc:
        raise InvalidOptionValue(f"invalid option value in {explicit!r}", cause=exc) from exc
    return options
