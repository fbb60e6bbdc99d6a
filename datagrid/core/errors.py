from __future__ import annotations


class DataGridError(Exception):
    """Base class for every fatal data grid error."""


class InvalidArgumentError(DataGridError, ValueError):
    pass


class InvalidDataSourceError(InvalidArgumentError):
    def __init__(self, source: object):
        self.source = source
        super().__init__(
            "Invalid data source passed to the database handler "
            f"[{type(source).__name__}]. Must be a mapped model instance / model query / "
            "dynamic relationship, or a database query."
        )


class InvalidThrottleError(InvalidArgumentError):
    def __init__(self, throttle: object):
        self.throttle = throttle
        super().__init__(f"Invalid throttle of [{throttle}], must be a positive integer.")


class SortColumnNotFoundError(DataGridError, LookupError):
    def __init__(self, column: str):
        self.column = column
        super().__init__(f"Sort column [{column}] does not exist in data.")
