from typing import List, Optional

import structlog

from resumai.errors import AITimeout, AuthError, MissingCredential, ValidationError
from resumai.gateway import PersistenceGateway
from resumai.models import HistoryItem, ResumeAnalysis
from resumai.services.document_service import DocumentService

logger = structlog.get_logger(__name__)

MIN_RESUME_CHARS = 50

# Shown when the AI engine is unreachable in local development
MOCK_ANALYSIS = ResumeAnalysis.model_validate({
    "advisorNote": "Local dev analysis (mock). The real AI engine was unreachable or timed out.",
    "summary": "This is a mocked summary for local development.",
    "skills": ["communication", "problem-solving"],
    "missingSkills": ["domain-specific skill"],
    "job_matches": [{"role": "Developer", "fit_score": 50, "reason": "Transferable skills"}],
    "improvements": [
        {"issue": "Add metrics", "suggestion": "Quantify achievements", "example_fix": "Increased revenue by 12%"}
    ],
    "score": 50,
    "atsScore": 55,
    "improvedBulletPoints": [{"original": "Old bullet", "improved": "Accomplished X as measured by Y by doing Z"}],
    "atsAnalysis": {
        "formattingStatus": "Warning",
        "formattingFeedback": "Some sections missing for ATS parsing.",
        "keywordDensityScore": 40,
        "standardSectionsFound": ["experience", "education"],
        "missingStandardSections": ["certifications"],
    },
})


class ResumeWorkflow:
    """Upload -> analyze -> persist, for the signed-in user."""

    def __init__(self, ai_service, gateway: PersistenceGateway, documents: Optional[DocumentService] = None):
        self.ai_service = ai_service
        self.gateway = gateway
        self.documents = documents or DocumentService(ai_service)
        self.resume_text = ""

    def upload(self, filename: str, data: bytes, mime_type: Optional[str] = None) -> str:
        """Replace the working text with the file's contents, unless nothing was extracted."""
        extracted = self.documents.extract(filename, data, mime_type)
        if extracted:
            self.resume_text = extracted
        return self.resume_text

    def submit(self, text: Optional[str] = None) -> ResumeAnalysis:
        user = self.gateway.get_active_user()
        if not user:
            raise AuthError("Sign in to analyze a resume")

        text = self.resume_text if text is None else text
        if len(text.strip()) < MIN_RESUME_CHARS:
            raise ValidationError(f"Resume text must be at least {MIN_RESUME_CHARS} characters")
        self.resume_text = text

        try:
            analysis = self.ai_service.analyze(text)
        except (AITimeout, MissingCredential) as e:
            logger.warning("AI engine unavailable, using mock analysis", reason=e.message)
            analysis = MOCK_ANALYSIS

        self.gateway.save_analysis(user.id, text, analysis)
        return analysis

    def history(self) -> List[HistoryItem]:
        user = self.gateway.get_active_user()
        return self.gateway.get_user_history(user.id) if user else []

    def delete(self, item_id: str) -> bool:
        user = self.gateway.get_active_user()
        if not user:
            raise AuthError("Sign in to manage history")
        return self.gateway.delete_analysis(user.id, item_id)
