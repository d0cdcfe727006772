import base64
import mimetypes
from io import BytesIO
from typing import Optional

import PyPDF2
import structlog
from docx import Document

from resumai.errors import ExtractionError

logger = structlog.get_logger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png")
SUPPORTED_EXTENSIONS = (".pdf", ".docx", ".txt") + IMAGE_EXTENSIONS


def supports(filename: str) -> bool:
    return filename.lower().endswith(SUPPORTED_EXTENSIONS)


class DocumentService:
    """Turn an uploaded resume file into plain text.

    Dispatch is on the lowercase filename suffix. Unknown suffixes give an
    empty string. Every failure, whatever the cause, surfaces as a single
    ExtractionError so the caller can ask the user to paste the text instead.
    """

    def __init__(self, ai_service=None):
        # Only needed for images
        self.ai_service = ai_service

    def extract(self, filename: str, data: bytes, mime_type: Optional[str] = None) -> str:
        name = filename.lower()
        try:
            if name.endswith(".pdf"):
                text = self.extract_pdf(data)
            elif name.endswith(".docx"):
                text = self.extract_docx(data)
            elif name.endswith(".txt"):
                text = data.decode("utf-8")
            elif name.endswith(IMAGE_EXTENSIONS):
                text = self.extract_image(data, mime_type or mimetypes.guess_type(name)[0] or "image/png")
            else:
                logger.info("Unsupported file type, nothing extracted", filename=filename)
                return ""
        except Exception as e:
            logger.warning("Extraction failed", filename=filename, exc=str(e))
            raise ExtractionError() from e

        return text.strip()

    @staticmethod
    def extract_pdf(pdf_bytes: bytes) -> str:
        reader = PyPDF2.PdfReader(BytesIO(pdf_bytes))
        pages = []
        for page in reader.pages:
            pages.append(" ".join((page.extract_text() or "").split()))
        return "\n".join(pages)

    @staticmethod
    def extract_docx(docx_bytes: bytes) -> str:
        document = Document(BytesIO(docx_bytes))
        lines = [paragraph.text for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                lines.append("\t".join(cell.text for cell in row.cells))
        return "\n".join(lines)

    def extract_image(self, image_bytes: bytes, mime_type: str) -> str:
        if self.ai_service is None:
            raise RuntimeError("Image extraction requires an AI service")
        encoded = base64.b64encode(image_bytes).decode("ascii")
        return self.ai_service.extract_text_from_image(encoded, mime_type)
