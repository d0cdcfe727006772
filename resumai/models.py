from pydantic import BaseModel, ConfigDict, Field, field_validator
from datetime import datetime
from typing import List, Literal, Optional

FORMATTING_STATUSES = ("Good", "Warning", "Critical")


def clamp_score(value) -> int:
    """Coerce an AI-supplied score to an int within [0, 100]."""
    try:
        score = int(round(float(value)))
    except (TypeError, ValueError):
        raise ValueError(f"score must be a number, got {value!r}")
    return min(max(score, 0), 100)


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# --- Analysis ---

class JobMatch(CamelModel):
    role: str
    fit_score: int
    reason: str

    @field_validator("fit_score", mode="before")
    @classmethod
    def clamp_fit_score(cls, value):
        return clamp_score(value)


class Improvement(CamelModel):
    issue: str
    suggestion: str
    example_fix: Optional[str] = None


class BulletRewrite(CamelModel):
    original: str
    improved: str


class ATSAnalysis(CamelModel):
    formatting_status: Literal["Good", "Warning", "Critical"] = Field(alias="formattingStatus")
    formatting_feedback: str = Field(alias="formattingFeedback")
    keyword_density_score: int = Field(alias="keywordDensityScore")
    standard_sections_found: List[str] = Field(default_factory=list, alias="standardSectionsFound")
    missing_standard_sections: List[str] = Field(default_factory=list, alias="missingStandardSections")

    @field_validator("keyword_density_score", mode="before")
    @classmethod
    def clamp_density(cls, value):
        return clamp_score(value)

    @field_validator("formatting_status", mode="before")
    @classmethod
    def normalize_status(cls, value):
        if isinstance(value, str):
            for status in FORMATTING_STATUSES:
                if value.strip().lower() == status.lower():
                    return status
        return value


class ResumeAnalysis(CamelModel):
    advisor_note: str = Field(alias="advisorNote")
    summary: str
    skills: List[str] = Field(default_factory=list)
    missing_skills: List[str] = Field(default_factory=list, alias="missingSkills")
    job_matches: List[JobMatch] = Field(default_factory=list)
    improvements: List[Improvement] = Field(default_factory=list)
    score: int
    ats_score: int = Field(alias="atsScore")
    improved_bullet_points: List[BulletRewrite] = Field(default_factory=list, alias="improvedBulletPoints")
    ats_analysis: ATSAnalysis = Field(alias="atsAnalysis")

    @field_validator("score", "ats_score", mode="before")
    @classmethod
    def clamp_scores(cls, value):
        return clamp_score(value)


# --- Users & history ---

class User(CamelModel):
    id: str
    email: str
    name: Optional[str] = None


class UserRecord(BaseModel):
    """Stored user, including the password hash. Never returned over the wire."""
    id: str
    email: str
    password_hash: str
    name: Optional[str] = None
    created_at: datetime

    def public(self) -> User:
        return User(id=self.id, email=self.email, name=self.name)


class AnalysisRecord(CamelModel):
    id: str
    user_id: str = Field(alias="userId")
    resume_text: str = Field(alias="resumeText")
    analysis: dict
    created_at: datetime = Field(alias="createdAt")


class HistoryItem(CamelModel):
    id: str
    user_id: str = Field(alias="userId")
    timestamp: int
    resume_text: str = Field(alias="resumeText")
    analysis: ResumeAnalysis


# --- Request / response bodies ---

class RegisterRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None
    name: Optional[str] = None


class LoginRequest(BaseModel):
    email: Optional[str] = None
    password: Optional[str] = None


class AnalysisCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    resume_text: Optional[str] = Field(default=None, alias="resumeText")
    analysis: Optional[dict] = None


class AuthResponse(BaseModel):
    token: str
    user: User
