"""Text extraction from uploaded tax documents.

PDFs are read with PyMuPDF. Plain-text formats are decoded with a UTF-8,
UTF-8-BOM, Latin-1 fallback chain. Anything else (images, office files)
yields no text and is classified by filename alone.
"""

from dataclasses import dataclass

from docintake.core.logging import get_logger

logger = get_logger(__name__)

TEXT_EXTENSIONS = {".txt", ".md", ".csv", ".tsv", ".json"}
PDF_EXTENSIONS = {".pdf"}


@dataclass
class DocumentText:
    """Text pulled out of an uploaded file, plus how it was read."""

    text: str
    method: str  # 'pdf', 'text', or 'none'
    page_count: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.text.strip()


def _get_extension(filename: str) -> str:
    """Lowercased extension of ``filename`` including the dot, or empty."""
    if "." in filename:
        return "." + filename.rsplit(".", 1)[-1].lower()
    return ""


def _decode_bytes(raw_bytes: bytes) -> str:
    """
    Decode plain-text uploads, trying UTF-8 first and Latin-1 last.

    Raises:
        ValueError: none of the encodings accept the bytes
    """
    if raw_bytes.startswith(b"\xef\xbb\xbf"):
        try:
            return raw_bytes.decode("utf-8-sig")
        except UnicodeDecodeError:
            pass

    for encoding in ("utf-8", "latin-1"):
        try:
            return raw_bytes.decode(encoding)
        except UnicodeDecodeError:
            continue

    raise ValueError("Unable to decode file content. Supported encodings: UTF-8, UTF-8-BOM, Latin-1.")


def _extract_pdf(raw_bytes: bytes) -> DocumentText:
    import fitz

    with fitz.open(stream=raw_bytes, filetype="pdf") as pdf:
        pages = [page.get_text() for page in pdf]
    return DocumentText(text="\n".join(pages), method="pdf", page_count=len(pages))


def extract_document_text(
    filename: str,
    content_type: str | None,
    raw_bytes: bytes,
    max_chars: int | None = None,
) -> DocumentText:
    """
    Extract whatever text can be read from an upload.

    Extraction failures are logged and produce an empty result; the
    classifier then works from the filename.

    Args:
        filename: Name the file was uploaded under
        content_type: Declared MIME type, if the client sent one
        raw_bytes: Raw file bytes
        max_chars: Truncate extracted text to this many characters

    Returns:
        DocumentText (possibly empty)
    """
    extension = _get_extension(filename)
    content_type = (content_type or "").lower()

    try:
        if extension in PDF_EXTENSIONS or content_type == "application/pdf":
            result = _extract_pdf(raw_bytes)
        elif extension in TEXT_EXTENSIONS or content_type.startswith("text/"):
            result = DocumentText(text=_decode_bytes(raw_bytes), method="text")
        else:
            result = DocumentText(text="", method="none")
    except Exception as e:
        logger.warning(f"Text extraction failed for {filename}: {e}")
        result = DocumentText(text="", method="none")

    if max_chars is not None and len(result.text) > max_chars:
        result.text = result.text[:max_chars]
    return result
