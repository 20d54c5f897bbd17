class AnalyticsTableError(Exception):
    """Base class for every error raised by the materialization engine."""


class ConfigurationError(AnalyticsTableError):
    """Bad settings or metadata; raised before anything is written."""


class SqlTemplateError(ConfigurationError):
    pass


class PopulationError(AnalyticsTableError):
    def __init__(self, table: str, partition: str, cause: Exception):
        super().__init__(f"Populating '{table}' partition '{partition}' failed: {cause}")
        self.table = table
        self.partition = partition
        self.cause = cause


class SwapError(AnalyticsTableError):
    def __init__(self, table: str, cause: Exception):
        super().__init__(f"Swapping '{table}' failed: {cause}")
        self.table = table
        self.cause = cause


class RefreshInProgressError(AnalyticsTableError):
    def __init__(self, tables):
        self.tables = sorted(tables)
        super().__init__(
            f"A refresh is already running for: {', '.join(self.tables)}"
        )
