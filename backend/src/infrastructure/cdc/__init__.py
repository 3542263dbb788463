"""Change data capture adapters."""

from .change_data_capture import SqlChangeDataCaptureService

__all__ = ["SqlChangeDataCaptureService"]
