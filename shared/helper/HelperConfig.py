"""Environment backed configuration for the knowledge indexing and retrieval service."""

import logging
import os

DEFAULT_TIMEZONE = "Asia/Ho_Chi_Minh"


class HelperConfig:
    """Reads every setting from environment variables and hands out the application logger.

    Keys are case-insensitive. An empty variable counts as unset. Passing
    ``default=None`` makes a key mandatory.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @staticmethod
    def _raw(key: str) -> str | None:
        return (os.getenv(key.upper()) or "").strip() or None

    @staticmethod
    def _missing(key: str) -> ValueError:
        return ValueError(f"Environment variable '{key.upper()}' is not set.")

    ##########################################
    ################ SCALARS #################
    ##########################################

    def get_string_val(self, key: str, default: str | None = None) -> str:
        """Read a string variable.

        Raises:
            ValueError: If the variable is not set and no default is provided.
        """
        raw = self._raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        return raw

    def get_number_val(self, key: str, default: float | int | None = None) -> float | int:
        """Read a numeric variable. Values containing a dot are parsed as float, others as int.

        Raises:
            ValueError: If the variable is not set and no default is provided,
                or if the value is not a number.
        """
        raw = self._raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        try:
            return float(raw) if "." in raw else int(raw)
        except ValueError:
            raise ValueError(f"Environment variable '{key.upper()}' is not a valid number: '{raw}'.")

    def get_int_val(self, key: str, default: int | None = None, minimum: int | None = None) -> int:
        """Read an integer variable, optionally clamped to a lower bound.

        Example:
            ``get_int_val("WORKER_CONCURRENCY", default=2, minimum=1)``
        """
        value = int(self.get_number_val(key, default=default))
        return max(minimum, value) if minimum is not None else value

    def get_float_val(self, key: str, default: float | None = None) -> float:
        return float(self.get_number_val(key, default=default))

    def get_bool_val(self, key: str, default: bool | None = None) -> bool:
        """Read a boolean variable. "true", "1" and "yes" are truthy, anything else is false.

        Raises:
            ValueError: If the variable is not set and no default is provided.
        """
        raw = self._raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        return raw.lower() in ("true", "1", "yes")

    def get_list_val(self, key: str, default: list[str] | None = None, separator: str = ",", element_type: type = str) -> list:
        """Read a list variable written as "[elem1,elem2,...]".

        Args:
            key (str): Environment variable name.
            default (list[str] | None): Fallback value if the variable is not set.
            separator (str): The delimiter between elements.
            element_type (type): The type to which each element is cast.

        Raises:
            ValueError: If the variable is not set and no default is provided,
                if the brackets are missing, or if an element cannot be cast.
        """
        raw = self._raw(key)
        if raw is None:
            if default is None:
                raise self._missing(key)
            return default
        if not (raw.startswith("[") and raw.endswith("]")):
            raise ValueError(f"Environment variable '{key.upper()}' must be in the format '[elem1{separator}elem2{separator}...]'. Got: '{raw}'")
        elements = [v.strip() for v in raw[1:-1].split(separator) if v.strip()]
        try:
            return [element_type(elem) for elem in elements]
        except ValueError as e:
            raise ValueError(f"Environment variable '{key.upper()}' contains invalid elements: {e}. Type set to {element_type.__name__}. Got: '{raw}'")

    ##########################################
    ################ SHARED ##################
    ##########################################

    def get_timezone_name(self) -> str:
        """Timezone used for log timestamps and for dates rendered into indexed text."""
        return self.get_string_val("TIMEZONE", default=DEFAULT_TIMEZONE)

    def get_logger(self) -> logging.Logger:
        return self._logger
