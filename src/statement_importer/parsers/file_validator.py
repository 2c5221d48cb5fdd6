"""Upload validation: size, extension, MIME type, and content shape checks."""

import re
from pathlib import PurePath
from typing import Optional

from statement_importer.models.upload import RawUpload
from statement_importer.utils.logging_config import get_logger

logger = get_logger(__name__)

# Maximum upload size (10 MiB)
MAX_FILE_SIZE = 10 * 1024 * 1024

# Bytes of content inspected for MIME and shape checks
SAMPLE_SIZE = 4096

# Maximum share of non-printable bytes before content counts as binary
MAX_NON_PRINTABLE_RATIO = 0.1

ALLOWED_EXTENSIONS = ("csv", "ofx", "qif", "txt")

MIME_TYPES = {
    "csv": ("text/csv", "text/plain", "application/csv", "application/vnd.ms-excel"),
    "txt": ("text/plain",),
    "ofx": ("text/plain", "application/x-ofx", "application/xml", "text/xml", "application/sgml"),
    "qif": ("text/plain", "application/qif", "application/x-qif"),
}

# Anything outside printable ASCII, tab, LF, CR and the Latin-1 letter range
_NON_PRINTABLE = re.compile(rb"[^\x20-\x7E\t\n\r\xC0-\xFF]")

# Leading magic bytes of common binary formats
_BINARY_SIGNATURES = (
    (b"%PDF", "application/pdf"),
    (b"PK\x03\x04", "application/zip"),
    (b"\xd0\xcf\x11\xe0", "application/vnd.ms-excel"),
    (b"\x1f\x8b", "application/gzip"),
    (b"\x89PNG", "image/png"),
    (b"\xff\xd8\xff", "image/jpeg"),
    (b"GIF8", "image/gif"),
)


class ValidationError(Exception):
    """Exception raised when an upload is rejected.

    The message is safe to show to the uploader.
    """

    def __init__(self, message: str, filename: Optional[str] = None):
        """Initialize ValidationError.

        Args:
            message: User-facing reason for the rejection.
            filename: Optional name of the rejected file.
        """
        self.filename = filename
        super().__init__(message)


def non_printable_ratio(sample: bytes) -> float:
    """Share of bytes in the sample that are not printable text.

    Args:
        sample: Leading bytes of the file.

    Returns:
        Ratio between 0.0 and 1.0.
    """
    return len(_NON_PRINTABLE.findall(sample)) / max(1, len(sample))


def sniff_mime_type(sample: bytes) -> str:
    """Guess the MIME type of a file from its leading bytes.

    Only the distinctions the allow-lists care about are made: empty,
    well-known binary formats, XML, HTML, and plain text.

    Args:
        sample: Leading bytes of the file.

    Returns:
        MIME type string.
    """
    if not sample:
        return "application/x-empty"

    for signature, mime_type in _BINARY_SIGNATURES:
        if sample.startswith(signature):
            return mime_type

    if b"\x00" in sample or non_printable_ratio(sample) > 0.3:
        return "application/octet-stream"

    head = sample.lstrip(b"\xef\xbb\xbf \t\r\n")[:512].lower()
    if head.startswith(b"<?xml"):
        return "text/xml"
    if head.startswith(b"<!doctype html") or head.startswith(b"<html"):
        return "text/html"
    return "text/plain"


class FileValidator:
    """Validates uploaded statement files before any parsing happens."""

    def __init__(
        self,
        max_file_size: int = MAX_FILE_SIZE,
        sample_size: int = SAMPLE_SIZE,
        max_non_printable_ratio: float = MAX_NON_PRINTABLE_RATIO,
    ):
        """Initialize the validator.

        Args:
            max_file_size: Largest accepted upload in bytes.
            sample_size: Number of leading bytes inspected for content checks.
            max_non_printable_ratio: Binary-content threshold.
        """
        self.max_file_size = max_file_size
        self.sample_size = sample_size
        self.max_non_printable_ratio = max_non_printable_ratio

    @property
    def allowed_extensions(self) -> tuple[str, ...]:
        """Return the accepted file extensions."""
        return ALLOWED_EXTENSIONS

    def validate(
        self,
        filename: str,
        byte_length: int,
        content: Optional[bytes] = None,
    ) -> str:
        """Run all checks on an upload.

        MIME and content checks only run when content is supplied.

        Args:
            filename: Original file name.
            byte_length: Size of the upload in bytes.
            content: File content, or at least its leading bytes.

        Returns:
            The validated lowercase extension.

        Raises:
            ValidationError: If any check fails.
        """
        self.validate_size(byte_length, filename)
        extension = self.validate_extension(filename)

        if content is not None:
            sample = content[: self.sample_size]
            self.validate_mime_type(sample, extension, filename)
            self.validate_content(sample, extension, filename)

        logger.debug(f"Validated {filename} ({byte_length} bytes) as .{extension}")
        return extension

    def validate_upload(self, upload: RawUpload) -> str:
        """Validate a RawUpload.

        Args:
            upload: The uploaded file.

        Returns:
            The validated lowercase extension.

        Raises:
            ValidationError: If any check fails.
        """
        if upload.declared_mime:
            logger.debug(f"{upload.filename}: declared MIME {upload.declared_mime} (not trusted)")
        return self.validate(upload.filename, upload.byte_length, upload.content)

    def validate_size(self, byte_length: int, filename: Optional[str] = None) -> None:
        """Reject uploads above the size ceiling.

        Raises:
            ValidationError: If the upload is too large.
        """
        if byte_length > self.max_file_size:
            limit_mb = self.max_file_size / 1024 / 1024
            raise ValidationError(f"File too large. Maximum size is {limit_mb:g}MB.", filename)

    def validate_extension(self, filename: str) -> str:
        """Check the file extension against the allowed list.

        Args:
            filename: Original file name.

        Returns:
            The validated lowercase extension.

        Raises:
            ValidationError: If the extension is not supported.
        """
        extension = PurePath(filename).suffix.lower().lstrip(".")
        if extension not in ALLOWED_EXTENSIONS:
            raise ValidationError(
                f"Unsupported file format. Supported formats: {', '.join(ALLOWED_EXTENSIONS)}",
                filename,
            )
        return extension

    def validate_mime_type(
        self,
        sample: bytes,
        extension: str,
        filename: Optional[str] = None,
    ) -> None:
        """Check the sniffed MIME type against the extension's allow-list.

        Plain .txt uploads with an unexpected MIME type are let through
        with a warning; the content checks still apply to them.

        Raises:
            ValidationError: If the MIME type does not fit the extension.
        """
        mime_type = sniff_mime_type(sample)
        allowed = MIME_TYPES.get(extension, ("text/plain",))
        # Empty uploads are reported by the content check
        if mime_type in allowed or mime_type == "application/x-empty":
            return

        if extension == "txt":
            logger.warning(f"{filename}: unexpected MIME type {mime_type} for .txt file, continuing")
            return

        raise ValidationError(
            f"Invalid file type. Expected {' or '.join(allowed)} for .{extension} file, "
            f"got: {mime_type}",
            filename,
        )

    def validate_content(
        self,
        sample: bytes,
        extension: str,
        filename: Optional[str] = None,
    ) -> None:
        """Check that the content looks like the format its extension claims.

        Raises:
            ValidationError: If the content is empty, binary, or the wrong shape.
        """
        if not sample:
            raise ValidationError("File is empty or unreadable.", filename)

        if self.contains_binary_data(sample):
            raise ValidationError(
                "File appears to be binary. Only text-based financial files are supported.",
                filename,
            )

        text = sample.decode("latin-1")
        if extension in ("csv", "txt"):
            self._validate_csv_content(text, filename)
        elif extension == "ofx":
            self._validate_ofx_content(text, filename)
        elif extension == "qif":
            self._validate_qif_content(text, filename)

    def contains_binary_data(self, sample: bytes) -> bool:
        """Check if content contains binary (non-printable) data.

        Args:
            sample: Leading bytes of the file.

        Returns:
            True on any NUL byte or a high ratio of non-printable bytes.
        """
        if b"\x00" in sample:
            return True
        return non_printable_ratio(sample) > self.max_non_printable_ratio

    def _validate_csv_content(self, text: str, filename: Optional[str]) -> None:
        lines = [line for line in text.split("\n") if line.strip()]
        if len(lines) < 2:
            raise ValidationError(
                "CSV file must contain at least a header row and one data row.", filename
            )

        first_line = lines[0]
        if not any(delimiter in first_line for delimiter in (",", ";", "\t")):
            raise ValidationError(
                "CSV file does not appear to have valid delimiters (comma, semicolon, or tab).",
                filename,
            )

    def _validate_ofx_content(self, text: str, filename: Optional[str]) -> None:
        upper = text.upper()
        if "OFXHEADER:" not in upper and "<OFX>" not in upper and "<?OFX" not in upper:
            raise ValidationError(
                "File does not appear to be a valid OFX file. Missing OFX header or tags.",
                filename,
            )

    def _validate_qif_content(self, text: str, filename: Optional[str]) -> None:
        upper = text.upper()
        if "!TYPE:" not in upper and "!ACCOUNT" not in upper:
            raise ValidationError(
                "File does not appear to be a valid QIF file. Missing !Type: or !Account header.",
                filename,
            )
        if "^" not in text:
            raise ValidationError(
                "File does not appear to be a valid QIF file. "
                "Missing transaction end markers (^).",
                filename,
            )
