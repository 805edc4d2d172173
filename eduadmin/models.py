"""Data models for the education admin backend."""

from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, model_validator


def _today() -> str:
    return date.today().isoformat()


class FinalResult(str, Enum):
    PASS = 'pass'
    FAIL = 'fail'


class GraduationStatus(str, Enum):
    PENDING = 'pending'
    PASSED = 'passed'
    FAILED = 'failed'


class UserRole(str, Enum):
    ADMIN = 'admin'
    TEACHER = 'teacher'
    VIEWER = 'viewer'


class Record(BaseModel):
    """Base for anything kept in the evaluation store."""
    id: Optional[str] = None
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Evaluations
# ---------------------------------------------------------------------------

class TeacherEvaluation(Record):
    """Per-student score set recorded by a teacher."""
    student_id: str = Field(min_length=1)
    student_name: str = ''
    teacher_name: str = ''
    class_code: str = ''
    score: float = Field(default=0.0, ge=0, le=100)
    attitude: float = Field(default=0.0, ge=0, le=100)
    participation: float = Field(default=0.0, ge=0, le=100)
    feedback: str = ''
    date: str = Field(default_factory=_today)


class GraduationEvaluation(Record):
    """GPA, credit completion, thesis and final exam scores for a student."""
    student_id: str = Field(min_length=1)
    student_name: str = ''
    gpa: float = Field(default=0.0, ge=0, le=4.0)
    total_credits: int = Field(default=0, ge=0)
    required_credits: int = Field(default=120, ge=0)
    thesis_score: float = Field(default=0.0, ge=0, le=100)
    final_exam_score: float = Field(default=0.0, ge=0, le=100)
    status: GraduationStatus = GraduationStatus.PENDING
    evaluation_date: str = Field(default_factory=_today)
    notes: str = ''


class PromotionResult(BaseModel):
    """Derived promotion decision for one student. Never persisted."""
    student_id: str
    student_name: str
    teacher_score: float = 0.0
    teacher_attitude: float = 0.0
    teacher_participation: float = 0.0
    graduation_gpa: float = 0.0
    graduation_credits: int = 0
    graduation_status: str = ''
    final_result: FinalResult = FinalResult.FAIL
    reason: str = ''
    evaluation_date: str = ''


class PromotionSummary(BaseModel):
    passed: int
    failed: int
    total: int
    pass_rate: int


# ---------------------------------------------------------------------------
# Directory records
# ---------------------------------------------------------------------------

class Student(Record):
    name: str = Field(min_length=1)
    email: str = ''
    phone: str = ''
    address: str = ''
    major: str = ''
    gpa: float = Field(default=0.0, ge=0, le=4.0)
    enrollment_date: str = Field(default_factory=_today)


class Teacher(Record):
    name: str = Field(min_length=1)
    email: str = ''
    phone: str = ''
    address: str = ''
    department: str = ''
    specialization: str = ''
    years_of_experience: int = Field(default=0, ge=0)
    hire_date: str = Field(default_factory=_today)


class SchoolClass(Record):
    class_name: str = Field(min_length=1)
    class_code: str = Field(min_length=1)
    major: str = ''
    semester: str = ''
    year: str = ''
    max_students: int = Field(default=0, ge=0)
    current_students: int = Field(default=0, ge=0)
    teacher_name: str = ''
    room: str = ''
    schedule: str = ''
    description: str = ''

    @model_validator(mode='after')
    def check_capacity(self) -> 'SchoolClass':
        if self.max_students and self.current_students > self.max_students:
            raise ValueError('current_students cannot exceed max_students')
        return self


class Subject(Record):
    code: str = Field(min_length=1)
    name: str = Field(min_length=1)
    credits: int = Field(default=0, ge=0)
    semester: str = ''
    year: str = ''
    teacher_name: str = ''
    room: str = ''
    schedule: str = ''
    description: str = ''


class User(Record):
    """Console account. ``password_hash`` is never returned by the API."""
    username: str = Field(min_length=1)
    password_hash: str = ''
    name: str = ''
    email: str = ''
    role: UserRole = UserRole.VIEWER


class UserCreate(BaseModel):
    username: str = Field(min_length=1)
    password: str = Field(min_length=1)
    name: str = ''
    email: str = ''
    role: UserRole = UserRole.VIEWER


class UserUpdate(BaseModel):
    """Empty ``password`` keeps the current one."""
    username: str = Field(min_length=1)
    password: Optional[str] = None
    name: str = ''
    email: str = ''
    role: UserRole = UserRole.VIEWER


class UserOut(BaseModel):
    id: Optional[str] = None
    username: str
    name: str = ''
    email: str = ''
    role: UserRole
    created_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# API payloads
# ---------------------------------------------------------------------------

class LoginPayload(BaseModel):
    username: str
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = 'bearer'
    user: UserOut


class ImportResponse(BaseModel):
    success: bool
    message: str
    imported: int
    skipped: int


class TTSRequest(BaseModel):
    text: str
    voice: str = 'banmai_north'
    speed: float = 0


class AuditStats(BaseModel):
    total_activities: int
    total_logins: int
    active_users: int
    failed_actions: int


class ActivityLog(BaseModel):
    id: str
    user_id: str = ''
    username: str = ''
    user_role: str = ''
    action_type: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    resource_name: Optional[str] = None
    description: str = ''
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status: str = 'success'
    error_message: Optional[str] = None
    timestamp: datetime
    metadata: Dict[str, Any] = Field(default_factory=dict)
