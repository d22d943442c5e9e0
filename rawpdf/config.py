"""
Reader settings and logging configuration.

Both can be loaded from a YAML document using :func:`parse_config`::

    reader:
        strict: false
        max-depth: 64
    logging:
        root-level: INFO
        by-module:
            rawpdf.xref:
                level: DEBUG
                output: xref.log
"""

import enum
import logging
import sys
from dataclasses import dataclass, field
from typing import Dict, Optional, Union

import yaml

from .config_utils import (
    ConfigurableMixin,
    ConfigurationError,
    check_config_keys,
    require_int,
)
from .misc import DEFAULT_CHUNK_SIZE

__all__ = [
    'ReaderSettings', 'DEFAULT_READER_SETTINGS',
    'StdLogOutput', 'LogConfig', 'parse_logging_config', 'logging_setup',
    'RawPdfConfig', 'parse_config', 'DEFAULT_ROOT_LOGGER_LEVEL',
    'LOG_FORMAT_STRING',
]


@dataclass(frozen=True)
class ReaderSettings(ConfigurableMixin):
    """
    Settings that control how tolerant the reader is of malformed input,
    and how much work it is willing to do.
    """

    strict: bool = False
    """
    Turn recovery paths (xref reconstruction, ``/Length`` correction,
    content stream resynchronisation, ...) into errors.
    """

    max_depth: int = 64
    """
    Maximal depth of indirect object resolution chains and of the page tree.
    """

    startxref_window: int = 1024
    """
    Number of trailing bytes searched for the ``startxref`` keyword.
    """

    endstream_tolerance: int = 8
    """
    Number of whitespace bytes allowed between the end of a stream's payload
    (according to ``/Length``) and the ``endstream`` keyword.
    """

    chunk_size: int = DEFAULT_CHUNK_SIZE
    """
    Size of the chunks in which data is read from the byte source.
    """

    @classmethod
    def process_entries(cls, config_dict):
        super().process_entries(config_dict)
        for key in ('max_depth', 'startxref_window', 'chunk_size'):
            require_int(config_dict, key, minimum=1)
        require_int(config_dict, 'endstream_tolerance', minimum=0)


DEFAULT_READER_SETTINGS = ReaderSettings()


class StdLogOutput(enum.Enum):
    STDERR = enum.auto()
    STDOUT = enum.auto()


DEFAULT_ROOT_LOGGER_LEVEL = logging.INFO

LOG_FORMAT_STRING = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'


def _parse_log_level(value, where: str) -> int:
    if isinstance(value, bool) or not isinstance(value, (int, str)):
        raise ConfigurationError(
            f"Log level for {where} must be an int or a level name, "
            f"not {type(value).__name__}"
        )
    if isinstance(value, int):
        return value
    # getLevelName maps known names to their numeric value
    level = logging.getLevelName(value.upper())
    if not isinstance(level, int):
        raise ConfigurationError(
            f"Unknown log level '{value}' for {where}"
        )
    return level


def _parse_log_output(value, where: str) -> Union[StdLogOutput, str]:
    if not isinstance(value, str):
        raise ConfigurationError(
            f"Log output for {where} must be specified as a string."
        )
    try:
        return StdLogOutput[value.upper()]
    except KeyError:
        return value


@dataclass(frozen=True)
class LogConfig:
    level: int
    """
    Numeric logging level.
    """

    output: Union[StdLogOutput, str] = StdLogOutput.STDERR
    """
    Name of the output file, or a standard stream.
    """

    @classmethod
    def from_config(cls, config, where: str) -> 'LogConfig':
        """
        Parse the logging settings for a single logger.

        :param config:
            Either a bare level, or a dictionary with a ``level`` and an
            optional ``output`` key.
        :param where:
            Name of the logger, for error messages.
        """
        if not isinstance(config, dict):
            return cls(level=_parse_log_level(config, where))
        check_config_keys(f"logger {where}", ('level', 'output'), config)
        try:
            level = config['level']
        except KeyError:
            raise ConfigurationError(
                f"Logging config for {where} does not define a log level."
            )
        output = config.get('output', 'stderr')
        return cls(
            level=_parse_log_level(level, where),
            output=_parse_log_output(output, where),
        )


def parse_logging_config(log_config_spec) -> Dict[Optional[str], LogConfig]:
    """
    Parse a logging configuration dictionary.

    :param log_config_spec:
        Dictionary with (optional) keys ``root-level``, ``root-output`` and
        ``by-module``. The settings for a logger in ``by-module`` can
        be abbreviated to a level.
    :return:
        A dictionary mapping logger names to :class:`.LogConfig` objects.
        The root logger's configuration is stored under ``None``.
    """
    if not isinstance(log_config_spec, dict):
        raise ConfigurationError('logging config should be a dictionary')
    check_config_keys(
        'logging', ('root-level', 'root-output', 'by-module'), log_config_spec
    )

    root_config = LogConfig(
        level=_parse_log_level(
            log_config_spec.get('root-level', DEFAULT_ROOT_LOGGER_LEVEL),
            'the root logger'
        ),
        output=_parse_log_output(
            log_config_spec.get('root-output', 'stderr'), 'the root logger'
        ),
    )
    log_config = {None: root_config}

    logging_by_module = log_config_spec.get('by-module') or {}
    if not isinstance(logging_by_module, dict):
        raise ConfigurationError('logging.by-module should be a dict')

    for module, module_logging_settings in logging_by_module.items():
        if not isinstance(module, str):
            raise ConfigurationError(
                "Keys in logging.by-module should be strings"
            )
        log_config[module] = LogConfig.from_config(
            module_logging_settings, module
        )

    return log_config


# handlers installed by logging_setup, by logger name
_installed_handlers: Dict[Optional[str], logging.Handler] = {}


def logging_setup(log_configs: Dict[Optional[str], LogConfig]):
    """
    Attach handlers to loggers according to a parsed logging configuration.
    The library itself never calls this function.

    Calling this function again replaces the handlers installed by the
    previous call, instead of adding more.
    """
    for module, log_config in log_configs.items():
        cur_logger = logging.getLogger(module)
        cur_logger.setLevel(log_config.level)
        previous = _installed_handlers.pop(module, None)
        if previous is not None:
            cur_logger.removeHandler(previous)
            previous.close()
        handler: logging.Handler
        if log_config.output == StdLogOutput.STDOUT:
            handler = logging.StreamHandler(sys.stdout)
        elif log_config.output == StdLogOutput.STDERR:
            handler = logging.StreamHandler()
        else:
            handler = logging.FileHandler(log_config.output)
        handler.setFormatter(logging.Formatter(LOG_FORMAT_STRING))
        cur_logger.addHandler(handler)
        _installed_handlers[module] = handler


@dataclass
class RawPdfConfig:
    reader_settings: ReaderSettings = DEFAULT_READER_SETTINGS
    log_config: Dict[Optional[str], LogConfig] = field(default_factory=dict)


def parse_config(yaml_str) -> RawPdfConfig:
    """
    Parse a YAML configuration document.

    :param yaml_str:
        The YAML source.
    :return:
        A :class:`.RawPdfConfig` object.
    :raises ConfigurationError:
        If the configuration is invalid.
    """
    config_dict = yaml.safe_load(yaml_str) or {}
    if not isinstance(config_dict, dict):
        raise ConfigurationError("Configuration should be a dictionary")
    check_config_keys('RawPdfConfig', ('reader', 'logging'), config_dict)
    reader_spec = config_dict.get('reader', {}) or {}
    reader_settings = ReaderSettings.from_config(reader_spec)
    log_config_spec = config_dict.get('logging', {}) or {}
    log_config = parse_logging_config(log_config_spec)
    return RawPdfConfig(
        reader_settings=reader_settings, log_config=log_config
    )
