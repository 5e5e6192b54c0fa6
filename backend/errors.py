"""
Error types raised by the schema, type system, repository and service.

Request-level errors subclass the builtins the HTTP layer already maps
(`ValueError` -> 400, `PermissionError` -> 403, `LookupError` -> 404).
Startup errors (`ConfigError`, `DbError`) abort the process.
"""


class ConfigError(Exception):
    """The schema document is malformed or inconsistent."""


class DbError(Exception):
    """Connectivity, transaction or DDL failure."""


class InternalError(Exception):
    """An invariant of the loaded schema did not hold."""


class ConversionError(ValueError):
    """A single value could not be coerced into its column type."""


class MissingValue(ConversionError):
    def __init__(self, column: str):
        self.column = column
        super().__init__(f'required value "{column}" was omitted')


class TimestampFormat(ConversionError):
    def __init__(self, detail: str):
        self.detail = detail
        super().__init__(f"could not parse timestamp: {detail}")


class TimestampTooLarge(ConversionError):
    def __init__(self):
        super().__init__("could not parse timestamp: value out of range")


class BadRequest(ValueError):
    """Malformed batch: bad `_t` or a failed conversion."""


class Forbidden(PermissionError):
    """Secret key did not match the app."""


class AppNotFound(LookupError):
    def __init__(self, app_id: str):
        self.app_id = app_id
        super().__init__(f"unknown app: {app_id}")


class TableNotAuthorized(LookupError):
    def __init__(self, app_id: str, table: str):
        self.app_id = app_id
        self.table = table
        super().__init__(f"app {app_id} may not write to table {table}")
