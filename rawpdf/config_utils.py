"""
Helpers to populate settings dataclasses from user-provided configuration,
typically the ``reader`` section of a YAML document.

Keys in configuration dictionaries are written with hyphens
(``max-depth``), and mapped onto the underscored field names of the
dataclass (``max_depth``).
"""

import dataclasses
from typing import Iterable

__all__ = [
    'ConfigurationError', 'ConfigurableMixin', 'check_config_keys',
    'require_int',
]


class ConfigurationError(ValueError):
    """Signal configuration errors."""
    pass


def _config_key(name: str) -> str:
    return name.replace('_', '-')


def _check_type(config_name: str, key: str, value, expected):
    # bool is a subclass of int, but true/false is never a valid count
    if expected is int:
        ok = isinstance(value, int) and not isinstance(value, bool)
    elif isinstance(expected, type):
        ok = isinstance(value, expected)
    else:
        # not a plain type annotation; nothing to check
        return
    if not ok:
        raise ConfigurationError(
            f"'{_config_key(key)}' in configuration for {config_name} "
            f"should be of type {expected.__name__}, not "
            f"{type(value).__name__}."
        )


def require_int(config_dict: dict, key: str, minimum: int):
    """
    Check that an integer setting is at least ``minimum``, if it is present.

    :param config_dict:
        Configuration dictionary, with underscored keys.
    :param key:
        The key to check.
    :param minimum:
        The smallest acceptable value.
    :raises ConfigurationError:
        If the value is too small.
    """
    value = config_dict.get(key)
    if value is not None and value < minimum:
        raise ConfigurationError(
            f"'{_config_key(key)}' must be at least {minimum}, "
            f"not {value}."
        )


@dataclasses.dataclass(frozen=True)
class ConfigurableMixin:
    """General configuration mixin for settings dataclasses."""

    @classmethod
    def process_entries(cls, config_dict):
        """
        Hook method to validate or tweak values in the configuration
        dictionary before the dataclass is instantiated.
        Types have already been checked against the field annotations
        at this point.

        Subclasses that override this method should call
        ``super().process_entries()``.

        :param config_dict:
            A dictionary containing configuration values, with underscored
            keys.
        :raises ConfigurationError:
            when there is a problem processing a relevant entry.
        """
        pass

    @classmethod
    def from_config(cls, config_dict):
        """
        Instantiate the class on which it is called from a configuration
        dictionary.

        The keys are checked against the fields of the dataclass, the values
        are checked against the field types, and the result is passed through
        :meth:`process_entries`. Fields that are not mentioned keep their
        default value.

        :param config_dict:
            A dictionary containing configuration values.
        :return:
            An instance of the class on which it is called.
        :raises ConfigurationError:
            when an unexpected key is encountered, a required key is missing,
            or one of the values is invalid.
        """
        fields = {f.name: f for f in dataclasses.fields(cls)}
        check_config_keys(cls.__name__, fields.keys(), config_dict)
        config_dict = {
            key.replace('-', '_'): v for key, v in config_dict.items()
        }
        for key, value in config_dict.items():
            _check_type(cls.__name__, key, value, fields[key].type)

        missing = sorted(
            _config_key(name) for name, f in fields.items()
            if name not in config_dict
            and f.default is dataclasses.MISSING
            and f.default_factory is dataclasses.MISSING
        )
        if missing:
            raise ConfigurationError(
                f"Missing required configuration for {cls.__name__}: "
                f"{', '.join(missing)}."
            )

        cls.process_entries(config_dict)
        return cls(**config_dict)


def check_config_keys(config_name: str, expected_keys: Iterable[str],
                      config_dict):
    """
    Check that a configuration dictionary only contains known keys.

    :param config_name:
        Name of the configuration section, for error messages.
    :param expected_keys:
        The keys that are allowed, with either hyphens or underscores.
    :param config_dict:
        The configuration dictionary.
    :raises ConfigurationError:
        If ``config_dict`` is not a dictionary, or contains unknown keys.
    """
    if not isinstance(config_dict, dict):
        raise ConfigurationError(
            f"{config_name} requires a dictionary to initialise."
        )
    expected = {_config_key(k) for k in expected_keys}
    unexpected_keys = {_config_key(str(k)) for k in config_dict} - expected
    if unexpected_keys:
        raise ConfigurationError(
            f"Unexpected {'key' if len(unexpected_keys) == 1 else 'keys'} "
            f"in configuration for {config_name}: "
            f"{', '.join(sorted(unexpected_keys))}."
        )
