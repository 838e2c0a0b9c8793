from __future__ import annotations

import uuid

from selly_base.models.import_job import ImportStatus


class ImportJobError(Exception):
    """Base class for import pipeline failures that a caller can act on."""

    status_code: int = 400

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class UnsupportedFileFormatError(ImportJobError):
    pass


class FileParseError(ImportJobError):
    pass


class EmptyFileError(ImportJobError):
    def __init__(self) -> None:
        super().__init__("Empty file")


class ImportFileMissingError(ImportJobError):
    def __init__(self, job_id: uuid.UUID) -> None:
        super().__init__("File data not found. Please re-upload the file.")
        self.job_id = job_id


class ImportJobNotFoundError(ImportJobError):
    status_code = 404

    def __init__(self, job_id: uuid.UUID) -> None:
        super().__init__("Import job not found")
        self.job_id = job_id


class InvalidStatusTransitionError(ImportJobError):
    status_code = 409

    def __init__(self, current: ImportStatus, target: ImportStatus) -> None:
        super().__init__(
            f"Job status is '{current.value}', cannot move to '{target.value}'"
        )
        self.current = current
        self.target = target


class RowIndexOutOfRangeError(ImportJobError):
    def __init__(self, indices: list[int], total_rows: int) -> None:
        listed = ", ".join(str(i) for i in indices)
        super().__init__(
            f"Row indices out of range: {listed}. The file has {total_rows} data rows."
        )
        self.indices = indices
