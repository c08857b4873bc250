"""Failures raised while loading the dataset behind the index."""


class LoadError(Exception):
    """Base class for failures that leave the index unqueryable."""

    error_code = "LOAD_ERROR"


class ConfigurationError(LoadError):
    """Raised when no dataset file can be located."""

    error_code = "CONFIGURATION_ERROR"


class DatasetReadError(LoadError):
    """Raised when the dataset file cannot be read to the end."""

    error_code = "DATASET_READ_ERROR"


class DatasetParseError(LoadError):
    """Raised when the dataset is not a well-formed delimited file."""

    error_code = "DATASET_PARSE_ERROR"
