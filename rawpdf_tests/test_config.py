import logging

import pytest

from rawpdf.config import (
    DEFAULT_READER_SETTINGS,
    DEFAULT_ROOT_LOGGER_LEVEL,
    LogConfig,
    ReaderSettings,
    StdLogOutput,
    logging_setup,
    parse_config,
    parse_logging_config,
)
from rawpdf.config_utils import ConfigurationError, check_config_keys
from rawpdf.misc import InvalidDocument
from rawpdf.reader import PdfDocument
from rawpdf_tests.samples import simple_document


def test_reader_settings_defaults():
    settings = ReaderSettings.from_config({})
    assert settings == DEFAULT_READER_SETTINGS
    assert not settings.strict
    assert settings.max_depth == 64


def test_reader_settings_from_config():
    settings = ReaderSettings.from_config({
        'strict': True, 'max-depth': 10, 'endstream-tolerance': 0,
        'startxref-window': 4096, 'chunk-size': 512,
    })
    assert settings.strict
    assert settings.max_depth == 10
    assert settings.endstream_tolerance == 0
    assert settings.startxref_window == 4096
    assert settings.chunk_size == 512


def test_reader_settings_unknown_key():
    with pytest.raises(ConfigurationError, match='bogus'):
        ReaderSettings.from_config({'strict': True, 'bogus': 1})


@pytest.mark.parametrize('config_dict', [
    {'strict': 'yes'},
    {'max-depth': 0},
    {'max-depth': 'deep'},
    {'max-depth': True},
    {'chunk-size': -5},
    {'startxref-window': 1.5},
    {'endstream-tolerance': -1},
])
def test_reader_settings_invalid(config_dict):
    with pytest.raises(ConfigurationError):
        ReaderSettings.from_config(config_dict)


def test_reader_settings_error_messages():
    with pytest.raises(ConfigurationError, match="'max-depth'.*int"):
        ReaderSettings.from_config({'max-depth': 'deep'})
    with pytest.raises(ConfigurationError, match="'chunk-size'.*at least 1"):
        ReaderSettings.from_config({'chunk-size': 0})


def test_check_config_keys_accepts_underscores():
    check_config_keys('Test', ('max_depth',), {'max-depth': 1})
    check_config_keys('Test', ('max-depth',), {'max_depth': 1})
    with pytest.raises(ConfigurationError, match='requires a dictionary'):
        check_config_keys('Test', ('max-depth',), ['max-depth'])


def test_parse_config():
    config = parse_config(
        """
        reader:
            strict: true
            max-depth: 16
        logging:
            root-level: WARNING
            by-module:
                rawpdf.xref:
                    level: DEBUG
                    output: stdout
                rawpdf.reader:
                    level: 10
                    output: reader.log
        """
    )
    assert config.reader_settings == ReaderSettings(strict=True, max_depth=16)
    log_config = config.log_config
    assert log_config[None] == LogConfig(logging.WARNING, StdLogOutput.STDERR)
    assert log_config['rawpdf.xref'] == LogConfig(
        logging.DEBUG, StdLogOutput.STDOUT
    )
    assert log_config['rawpdf.reader'] == LogConfig(10, 'reader.log')


@pytest.mark.parametrize('yaml_str', ['', 'reader:', 'logging: {}'])
def test_parse_empty_config(yaml_str):
    config = parse_config(yaml_str)
    assert config.reader_settings == DEFAULT_READER_SETTINGS
    assert config.log_config == {
        None: LogConfig(DEFAULT_ROOT_LOGGER_LEVEL, StdLogOutput.STDERR)
    }


@pytest.mark.parametrize('yaml_str', [
    '- reader',
    'unknown: 1',
    'reader: [1, 2]',
    'reader:\n    strict: maybe',
    'logging: [1, 2]',
    'logging:\n    by-module: [1, 2]',
    'logging:\n    by-module:\n        rawpdf: LOUD',
    'logging:\n    by-module:\n        rawpdf:\n'
    '            level: 10\n            colour: red',
    'logging:\n    root-colour: red',
    'logging:\n    by-module:\n        rawpdf:\n            output: stderr',
    'logging:\n    root-output: 12',
    'logging:\n    root-level: [DEBUG]',
])
def test_parse_config_errors(yaml_str):
    with pytest.raises(ConfigurationError):
        parse_config(yaml_str)


def test_parse_logging_config_output_spec():
    log_config = parse_logging_config({
        'root-output': 'STDOUT',
        'by-module': {'rawpdf.content': {'level': 'INFO'}},
    })
    assert log_config[None].output == StdLogOutput.STDOUT
    assert log_config[None].level == DEFAULT_ROOT_LOGGER_LEVEL
    assert log_config['rawpdf.content'].output == StdLogOutput.STDERR


def test_parse_logging_config_level_shorthand():
    log_config = parse_logging_config({
        'root-level': 'warning',
        'by-module': {'rawpdf.xref': 'DEBUG', 'rawpdf.reader': 5},
    })
    assert log_config[None].level == logging.WARNING
    assert log_config['rawpdf.xref'] == LogConfig(logging.DEBUG)
    assert log_config['rawpdf.reader'] == LogConfig(5, StdLogOutput.STDERR)


def test_logging_setup_replaces_handlers(capsys):
    logger_name = 'rawpdf_tests.repeated_setup'
    logger = logging.getLogger(logger_name)
    try:
        logging_setup({logger_name: LogConfig(logging.INFO, StdLogOutput.STDOUT)})
        logging_setup({logger_name: LogConfig(logging.INFO, StdLogOutput.STDOUT)})
        assert len(logger.handlers) == 1
        logger.info('only once')
    finally:
        _remove_handlers(logger)
    assert capsys.readouterr().out.count('only once') == 1


def _remove_handlers(logger):
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()


def test_logging_setup_file(tmp_path):
    log_file = tmp_path / 'out.log'
    logger_name = 'rawpdf_tests.file_logger'
    logging_setup({logger_name: LogConfig(logging.DEBUG, str(log_file))})
    logger = logging.getLogger(logger_name)
    try:
        assert logger.level == logging.DEBUG
        logger.debug('written to file')
    finally:
        _remove_handlers(logger)
    content = log_file.read_text()
    assert 'written to file' in content
    assert logger_name in content


def test_logging_setup_stdout(capsys):
    logger_name = 'rawpdf_tests.stdout_logger'
    logging_setup({logger_name: LogConfig(logging.INFO, StdLogOutput.STDOUT)})
    logger = logging.getLogger(logger_name)
    try:
        logger.info('written to stdout')
        logger.debug('not written')
    finally:
        _remove_handlers(logger)
    out = capsys.readouterr().out
    assert 'written to stdout' in out
    assert 'not written' not in out


def test_settings_from_config_applied():
    data = simple_document(b'BT ET')
    data = data[:data.rindex(b'startxref')] + b'startxref\n99999\n%%EOF\n'
    lenient = parse_config('reader:\n    strict: false').reader_settings
    assert PdfDocument.from_bytes(data, settings=lenient).page_count() == 1
    strict = parse_config('reader:\n    strict: true').reader_settings
    with pytest.raises(InvalidDocument):
        PdfDocument.from_bytes(data, settings=strict)
