# app/services/file_inspect.py
import fitz, hashlib, math, os, secrets, time
from typing import Dict, List, Optional, Tuple
from pydantic import BaseModel

XLSX_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
DOCX_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

DOCUMENT_TYPES = [
    "application/pdf",
    XLSX_TYPE,
    "application/vnd.ms-excel",
    DOCX_TYPE,
    "application/msword",
    "text/csv",
]

ALLOWED_FILE_TYPES = ["image/jpeg", "image/png", "image/webp", "image/tiff"] + DOCUMENT_TYPES

FILE_EXTENSIONS: Dict[str, str] = {
    "image/jpeg": ".jpg, .jpeg",
    "image/png": ".png",
    "image/webp": ".webp",
    "image/tiff": ".tiff, .tif",
    "application/pdf": ".pdf",
    XLSX_TYPE: ".xlsx",
    "application/vnd.ms-excel": ".xls",
    DOCX_TYPE: ".docx",
    "application/msword": ".doc",
    "text/csv": ".csv",
}

DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024


class PdfInfo(BaseModel):
    ok: bool = True
    filename: str
    page_count: int = 0
    sha256: str
    error: Optional[str] = None


def _sha256(data: bytes) -> str:
    return hashlib.sha256(data).hexdigest()


def validate_file(mime_type: str, size: int, allowed_types: Optional[List[str]] = None,
                  max_size: int = DEFAULT_MAX_FILE_SIZE) -> Tuple[bool, List[str]]:
    allowed = ALLOWED_FILE_TYPES if allowed_types is None else allowed_types
    errors: List[str] = []
    if mime_type not in allowed:
        errors.append(f'File type "{mime_type}" is not supported.')
    if size > max_size:
        errors.append(f"File size exceeds the maximum allowed size ({round(max_size / 1024 / 1024)}MB).")
    return not errors, errors


def format_file_size(n: int) -> str:
    if n == 0:
        return "0 Bytes"
    sizes = ["Bytes", "KB", "MB", "GB"]
    i = min(int(math.floor(math.log(n, 1024))), len(sizes) - 1)
    value = round(n / (1024 ** i), 2)
    return f"{value:g} {sizes[i]}"


def get_file_extension(filename: str) -> str:
    # "archive.tar.gz" -> "gz", ".bashrc" -> "", "README" -> ""
    base = os.path.basename(filename)
    dot = base.rfind(".")
    return base[dot + 1:] if dot > 0 else ""


def is_image_file(mime_type: str) -> bool:
    return (mime_type or "").startswith("image/")


def is_document_file(mime_type: str) -> bool:
    return mime_type in DOCUMENT_TYPES


def generate_unique_filename(original: str) -> str:
    return f"{int(time.time() * 1000)}-{secrets.token_hex(4)}.{get_file_extension(original)}"


def inspect_pdf_bytes(filename: str, data: bytes) -> PdfInfo:
    """Open the upload with PyMuPDF so broken PDFs are rejected before the model call."""
    filehash = _sha256(data)
    try:
        doc = fitz.open(stream=data, filetype="pdf")
    except Exception as e:
        return PdfInfo(ok=False, filename=filename, sha256=filehash, error=f"Cannot open as PDF: {e}")
    with doc:
        return PdfInfo(filename=filename, page_count=len(doc), sha256=filehash)
