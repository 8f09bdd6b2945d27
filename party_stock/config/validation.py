"""Configuration validation utilities."""

from dataclasses import dataclass, fields
from typing import Any
from urllib.parse import urlparse

from .defaults import DefaultConfig


@dataclass(frozen=True)
class ValidationError:
    """Represents a configuration validation error."""
    field: str
    message: str
    value: Any


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


class ConfigValidator:
    """Validates configuration parameters."""

    @staticmethod
    def validate_structure(config: dict[str, Any]) -> list[ValidationError]:
        """Reject sections and keys that DefaultConfig does not define."""
        errors = []
        sections = {f.name: f for f in fields(DefaultConfig)}

        for section, params in config.items():
            if section not in sections:
                errors.append(ValidationError(
                    field=section,
                    message="Unknown configuration section",
                    value=params
                ))
                continue
            if not isinstance(params, dict):
                errors.append(ValidationError(
                    field=section,
                    message="Must be a mapping",
                    value=params
                ))
                continue
            known = {f.name for f in fields(sections[section].type)}
            for key in params:
                if key not in known:
                    errors.append(ValidationError(
                        field=f"{section}.{key}",
                        message="Unknown configuration key",
                        value=params[key]
                    ))

        return errors

    @staticmethod
    def validate_market_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate market parameters."""
        errors = []

        if "companies" in params:
            value = params["companies"]
            if (not isinstance(value, (list, tuple)) or not value
                    or not all(isinstance(c, str) and c for c in value)
                    or len(set(value)) != len(value)):
                errors.append(ValidationError(
                    field="companies",
                    message="Must be a non-empty list of unique company names",
                    value=value
                ))

        for name in ("initial_price", "initial_supply", "max_rounds"):
            if name in params:
                value = params[name]
                if not _is_int(value) or value <= 0:
                    errors.append(ValidationError(
                        field=name,
                        message="Must be a positive integer",
                        value=value
                    ))

        if "fluctuation_interval" in params:
            value = params["fluctuation_interval"]
            if not _is_int(value) or value < 0:
                errors.append(ValidationError(
                    field="fluctuation_interval",
                    message="Must be a non-negative integer",
                    value=value
                ))

        for name in ("initial_prices", "supply_by_company"):
            value = params.get(name)
            if value is None:
                continue
            if not isinstance(value, dict) or not all(_is_int(v) and v > 0 for v in value.values()):
                errors.append(ValidationError(
                    field=name,
                    message="Must map company names to positive integers",
                    value=value
                ))

        schedule = params.get("price_schedule")
        if schedule is not None:
            if not isinstance(schedule, dict) or not all(
                isinstance(prices, list) and all(_is_int(p) and p > 0 for p in prices)
                for prices in schedule.values()
            ):
                errors.append(ValidationError(
                    field="price_schedule",
                    message="Must map company names to lists of positive integer prices",
                    value=schedule
                ))

        return errors

    @staticmethod
    def validate_fluctuation_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate fluctuation parameters."""
        errors = []

        if "max_change_pct" in params:
            value = params["max_change_pct"]
            if not _is_number(value) or value < 0 or value >= 1:
                errors.append(ValidationError(
                    field="max_change_pct",
                    message="Must be a number in [0, 1)",
                    value=value
                ))

        for name in ("price_step", "min_price", "max_price"):
            if name in params:
                value = params[name]
                if not _is_int(value) or value <= 0:
                    errors.append(ValidationError(
                        field=name,
                        message="Must be a positive integer",
                        value=value
                    ))

        min_price = params.get("min_price")
        max_price = params.get("max_price")
        if _is_int(min_price) and _is_int(max_price) and min_price > max_price:
            errors.append(ValidationError(
                field="min_price",
                message="Must not exceed max_price",
                value=min_price
            ))

        return errors

    @staticmethod
    def validate_loan_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate loan parameters."""
        errors = []

        if "principal" in params:
            value = params["principal"]
            if not _is_int(value) or value <= 0:
                errors.append(ValidationError(
                    field="principal",
                    message="Must be a positive integer",
                    value=value
                ))

        if "interest_rate" in params:
            value = params["interest_rate"]
            if not _is_number(value) or value < 0:
                errors.append(ValidationError(
                    field="interest_rate",
                    message="Must be a non-negative number",
                    value=value
                ))

        if "max_loans" in params:
            value = params["max_loans"]
            if not _is_int(value) or value < 0:
                errors.append(ValidationError(
                    field="max_loans",
                    message="Must be a non-negative integer",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_holding_limit_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate holding limit parameters."""
        errors = []

        if "enabled" in params and not isinstance(params["enabled"], bool):
            errors.append(ValidationError(
                field="enabled",
                message="Must be a boolean",
                value=params["enabled"]
            ))

        if "fraction" in params:
            value = params["fraction"]
            if not _is_number(value) or value <= 0 or value > 1:
                errors.append(ValidationError(
                    field="fraction",
                    message="Must be a positive number between 0 and 1",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_account_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate account parameters."""
        errors = []

        if "initial_money" in params:
            value = params["initial_money"]
            if not _is_int(value) or value < 0:
                errors.append(ValidationError(
                    field="initial_money",
                    message="Must be a non-negative integer",
                    value=value
                ))

        return errors

    @staticmethod
    def validate_relay_params(params: dict[str, Any]) -> list[ValidationError]:
        """Validate registration relay parameters."""
        errors = []

        url = params.get("url")
        if url is not None:
            parsed = urlparse(url) if isinstance(url, str) else None
            if parsed is None or parsed.scheme not in ("http", "https") or not parsed.netloc:
                errors.append(ValidationError(
                    field="url",
                    message="Must be an http(s) URL with a host",
                    value=url
                ))

        if "timeout_seconds" in params:
            value = params["timeout_seconds"]
            if not _is_number(value) or value <= 0:
                errors.append(ValidationError(
                    field="timeout_seconds",
                    message="Must be a positive number",
                    value=value
                ))

        if "retry_delay_seconds" in params:
            value = params["retry_delay_seconds"]
            if not _is_number(value) or value < 0:
                errors.append(ValidationError(
                    field="retry_delay_seconds",
                    message="Must be a non-negative number",
                    value=value
                ))

        if "retry_attempts" in params:
            value = params["retry_attempts"]
            if not _is_int(value) or value < 0:
                errors.append(ValidationError(
                    field="retry_attempts",
                    message="Must be a non-negative integer",
                    value=value
                ))

        headers = params.get("headers")
        if headers is not None and not (
            isinstance(headers, dict)
            and all(isinstance(k, str) and isinstance(v, str) for k, v in headers.items())
        ):
            errors.append(ValidationError(
                field="headers",
                message="Must map header names to string values",
                value=headers
            ))

        return errors

    @staticmethod
    def validate_lifetime_params(section: str, key: str,
                                 params: dict[str, Any]) -> list[ValidationError]:
        """Validate an hours value of the session or persistence section."""
        if key not in params:
            return []
        value = params[key]
        if not _is_number(value) or value < 0:
            return [ValidationError(
                field=f"{section}.{key}",
                message="Must be a non-negative number of hours",
                value=value
            )]
        return []

    @staticmethod
    def validate_config(config: dict[str, Any]) -> list[ValidationError]:
        """Validate complete configuration."""
        errors = ConfigValidator.validate_structure(config)
        if errors:
            return errors

        if "market" in config:
            errors.extend(ConfigValidator.validate_market_params(config["market"]))

        if "fluctuation" in config:
            errors.extend(ConfigValidator.validate_fluctuation_params(config["fluctuation"]))

        if "account" in config:
            errors.extend(ConfigValidator.validate_account_params(config["account"]))

        if "loan" in config:
            errors.extend(ConfigValidator.validate_loan_params(config["loan"]))

        if "holding_limit" in config:
            errors.extend(ConfigValidator.validate_holding_limit_params(config["holding_limit"]))

        if "relay" in config:
            errors.extend(ConfigValidator.validate_relay_params(config["relay"]))

        if "session" in config:
            errors.extend(ConfigValidator.validate_lifetime_params(
                "session", "ttl_hours", config["session"]))

        if "persistence" in config:
            errors.extend(ConfigValidator.validate_lifetime_params(
                "persistence", "retention_hours", config["persistence"]))

        return errors
