# config.py - Environment-driven defaults for rulebook
# Global option defaults, logging defaults and engine settings are read from
# RULEBOOK_* environment variables and an optional .env file.

from functools import lru_cache
from typing import Any, Dict, Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class RulebookSettings(BaseSettings):
    """Process-wide defaults, read once from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="RULEBOOK_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Option defaults ---
    # Unset values fall through to the built-in option defaults
    raise_policy: Optional[Literal["none", "errors", "all"]] = Field(
        default=None, description="Default failure policy ('raise' option)"
    )
    na_value: Optional[bool] = Field(
        default=None, description="Default value reported for indeterminate outcomes"
    )
    lin_ineq_eps: Optional[float] = Field(
        default=None, ge=0, description="Default tolerance for linear inequalities"
    )
    lin_eq_eps: Optional[float] = Field(
        default=None, ge=0, description="Default tolerance for linear equalities"
    )
    sequential: Optional[bool] = Field(
        default=None, description="Evaluate block by block by default"
    )

    # --- Logging ---
    log_level: str = Field(default="WARNING", description="Root log level")
    log_format: Literal["text", "json"] = Field(default="text", description="Log output format")
    log_file: Optional[str] = Field(default=None, description="Optional log file path")

    # --- Engine ---
    workers: int = Field(default=1, ge=1, description="Worker threads used by confront()")
    timeout: Optional[float] = Field(
        default=None, gt=0, description="Per-rule evaluation deadline in seconds"
    )

    def option_layer(self) -> Dict[str, Any]:
        """The options explicitly set in the environment, keyed by option name."""
        layer: Dict[str, Any] = {}
        if self.raise_policy is not None:
            layer["raise"] = self.raise_policy
        if "na_value" in self.model_fields_set:
            layer["na.value"] = self.na_value
        if self.lin_ineq_eps is not None:
            layer["lin.ineq.eps"] = self.lin_ineq_eps
        if self.lin_eq_eps is not None:
            layer["lin.eq.eps"] = self.lin_eq_eps
        if self.sequential is not None:
            layer["sequential"] = self.sequential
        return layer


@lru_cache
def get_settings() -> RulebookSettings:
    """
    Get cached settings.

    Returns:
        Validated RulebookSettings instance

    Example:
        ```python
        from rulebook.config import get_settings

        workers = get_settings().workers
        ```
    """
    return RulebookSettings()


def clear_settings_cache() -> None:
    """Forget cached settings so the environment is read again."""
    get_settings.cache_clear()
