"""Environment backed configuration of the chat memory bridge."""

import logging
import os

from shared.exceptions import ConfigError

_TRUTHY = ("true", "1", "yes", "on")
_FALSY = ("false", "0", "no", "off")


class HelperConfig:
    """Typed access to environment variables.

    Keys are case-insensitive and blank values count as unset. Every getter
    treats ``default=None`` as "required" and raises ConfigError when the key
    is missing.
    """

    def __init__(self, logger: logging.Logger, environ: dict[str, str] | None = None) -> None:
        self._logger = logger
        # tests pass an explicit mapping instead of touching os.environ
        self._environ = environ

    def _get_raw(self, key: str) -> str | None:
        source = self._environ if self._environ is not None else os.environ
        value = source.get(key.upper())
        if value is None or not value.strip():
            return None
        return value.strip()

    @staticmethod
    def _missing(key: str) -> ConfigError:
        return ConfigError(f"Environment variable '{key.upper()}' is not set.", operation="config")

    def get_string_val(self, key: str, default: str | None = None) -> str:
        raw = self._get_raw(key)
        if raw is not None:
            return raw
        if default is None:
            raise self._missing(key)
        return default

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Reads an int, or a float when the value contains a dot or an exponent.

        Raises:
            ConfigError: If the key is required and unset, or not numeric.
        """
        raw = self._get_raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        try:
            return float(raw) if any(c in raw for c in ".eE") else int(raw)
        except ValueError:
            raise ConfigError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.", operation="config")

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Reads a flag. Accepts true/false, 1/0, yes/no and on/off.

        Raises:
            ConfigError: If the key is required and unset, or not a recognized flag.
        """
        raw = self._get_raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        flag = raw.lower()
        if flag in _TRUTHY:
            return True
        if flag in _FALSY:
            return False
        raise ConfigError(f"Environment variable '{key.upper()}' is not a boolean: '{raw}'.", operation="config")

    def get_list_val(self, key: str, default: list[str] | None = None, separator: str = ",", element_type: type = str) -> list:
        """Reads a bracketed list such as ``[keyword,other]``.

        Args:
            key (str): Environment variable name.
            default (list[str] | None): Returned when unset.
            separator (str): Element delimiter.
            element_type (type): Cast applied to every element.

        Raises:
            ConfigError: If the key is required and unset, the value is not
                bracketed, or an element cannot be cast.
        """
        raw = self._get_raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        if not (raw.startswith("[") and raw.endswith("]")):
            raise ConfigError(
                f"Environment variable '{key.upper()}' must look like '[a{separator}b]', got '{raw}'.",
                operation="config",
            )
        elements = [part.strip() for part in raw[1:-1].split(separator) if part.strip()]
        try:
            return [element_type(element) for element in elements]
        except ValueError as e:
            raise ConfigError(
                f"Environment variable '{key.upper()}' holds a value that is not {element_type.__name__}: {e}",
                operation="config",
            )

    def get_logger(self) -> logging.Logger:
        return self._logger
