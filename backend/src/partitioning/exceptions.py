"""Partitioning exceptions."""


class PartitionError(Exception):
    """Base exception for partition rotation and archival."""
    pass


class PartitionAlreadyExistsError(PartitionError):
    """Raised when a partition with the same name is already attached."""

    def __init__(self, table_name: str, partition_name: str):
        super().__init__(f"Partition {partition_name} already exists on {table_name}")
        self.table_name = table_name
        self.partition_name = partition_name


class PartitionNotFoundError(PartitionError):
    """Raised when an archive manifest cannot be found."""
    pass


class ExportLimitExceededError(PartitionError):
    """Raised when a partition export passes the configured row or byte ceiling."""
    pass
