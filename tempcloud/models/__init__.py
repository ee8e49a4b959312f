"""Models module"""

from tempcloud.models.file_record import FileRecord, FileSummary, UploadSession

__all__ = ["FileRecord", "FileSummary", "UploadSession"]
