import pytest
from io import BytesIO
from typing import List

from docx import Document
from fastapi.testclient import TestClient

from resumai.config import Settings
from resumai.gateway import LocalStorage, PersistenceGateway
from resumai.main import app, get_auth_service, get_storage
from resumai.models import ResumeAnalysis
from resumai.services.auth_service import AuthService
from resumai.services.storage_service import MemoryStorage

SAMPLE_ANALYSIS = {
    "advisorNote": "Solid engineer, weak metrics.",
    "summary": "Backend developer with five years of Python.",
    "skills": ["Python", "FastAPI"],
    "missingSkills": ["Kubernetes"],
    "job_matches": [{"role": "Backend Engineer", "fit_score": 82, "reason": "Strong API work"}],
    "improvements": [{"issue": "No numbers", "suggestion": "Quantify impact"}],
    "score": 71,
    "atsScore": 64,
    "improvedBulletPoints": [{"original": "Built APIs", "improved": "Cut latency 40% by rewriting APIs"}],
    "atsAnalysis": {
        "formattingStatus": "Good",
        "formattingFeedback": "Clean single column layout.",
        "keywordDensityScore": 58,
        "standardSectionsFound": ["experience", "education", "skills"],
        "missingStandardSections": ["summary"],
    },
}

RESUME_TEXT = (
    "Jane Doe\nSoftware Engineer\n"
    "Built internal APIs in Python and FastAPI for five years at Acme Corp."
)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        jwt_secret="test-secret",
        bcrypt_rounds=4,
        gemini_api_key="test-key",
        local_storage_path=None,
    )


@pytest.fixture
def auth_service(settings) -> AuthService:
    return AuthService(settings)


@pytest.fixture
def analysis() -> ResumeAnalysis:
    return ResumeAnalysis.model_validate(SAMPLE_ANALYSIS)


@pytest.fixture
def storage() -> MemoryStorage:
    return MemoryStorage()


@pytest.fixture
def test_client(storage, auth_service):
    """API client backed by a fresh in-memory store."""
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_auth_service] = lambda: auth_service
    app.state.storage = storage

    yield TestClient(app)

    app.dependency_overrides.clear()


@pytest.fixture
def remote_gateway(test_client, auth_service) -> PersistenceGateway:
    """Gateway whose remote calls go straight to the in-process app."""
    return PersistenceGateway(storage=LocalStorage(), http_client=test_client, password_hasher=auth_service)


def auth_header(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# --- File builders ---

def build_pdf(pages: List[str]) -> bytes:
    """Minimal multi-page PDF with one Helvetica text line per page."""
    page_count = len(pages)
    font_num = 3 + 2 * page_count
    kids = " ".join(f"{3 + 2 * i} 0 R" for i in range(page_count))

    objects = [
        b"<< /Type /Catalog /Pages 2 0 R >>",
        f"<< /Type /Pages /Kids [{kids}] /Count {page_count} >>".encode(),
    ]
    for i, text in enumerate(pages):
        content_num = 4 + 2 * i
        objects.append(
            f"<< /Type /Page /Parent 2 0 R /MediaBox [0 0 612 792] "
            f"/Contents {content_num} 0 R /Resources << /Font << /F1 {font_num} 0 R >> >> >>".encode()
        )
        stream = f"BT /F1 12 Tf 72 720 Td ({text}) Tj ET".encode()
        objects.append(b"<< /Length %d >>\nstream\n" % len(stream) + stream + b"\nendstream")
    objects.append(b"<< /Type /Font /Subtype /Type1 /BaseFont /Helvetica >>")

    out = b"%PDF-1.4\n"
    offsets = []
    for num, body in enumerate(objects, start=1):
        offsets.append(len(out))
        out += f"{num} 0 obj\n".encode() + body + b"\nendobj\n"

    xref_pos = len(out)
    out += f"xref\n0 {len(objects) + 1}\n0000000000 65535 f \n".encode()
    for offset in offsets:
        out += f"{offset:010d} 00000 n \n".encode()
    out += f"trailer\n<< /Size {len(objects) + 1} /Root 1 0 R >>\nstartxref\n{xref_pos}\n%%EOF\n".encode()
    return out


def build_docx(paragraphs: List[str]) -> bytes:
    document = Document()
    for paragraph in paragraphs:
        document.add_paragraph(paragraph)
    buffer = BytesIO()
    document.save(buffer)
    return buffer.getvalue()
