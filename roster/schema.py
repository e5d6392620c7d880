"""
Data models for student records and CSV imports.
Uses Pydantic for validation and type safety.
"""

import re
from enum import Enum
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class Program(str, Enum):
    """Programs a student can be enrolled in."""
    ESOL = "ESOL"
    HCP = "HCP"


class CoursePlacement(str, Enum):
    """Course placements as enumerated by the students table."""
    ESOL_BEGINNER_L1_PART_1 = "ESOL Beginner L1 part 1"
    ESOL_BEGINNER_L1_PART_2 = "ESOL Beginner L1 part 2"
    ESOL_BEGINNER_L1_PART_3 = "ESOL Beginner L1 part 3"
    ESOL_L2_PART_1 = "ESOL L2 part 1"
    ESOL_L2_PART_2 = "ESOL L2 part 2"
    ESOL_L2_PART_3 = "ESOL L2 part 3"
    ESOL_INTERMEDIATE_PART_1 = "ESOL Intermediate part 1"
    ESOL_INTERMEDIATE_PART_2 = "ESOL Intermediate part 2"
    ESOL_INTERMEDIATE_PART_3 = "ESOL Intermediate part 3"
    HCP_ENGLISH_PRE_TEAS_PART_1 = "HCP English Pre-TEAS part 1"
    HCP_ENGLISH_PRE_TEAS_PART_2 = "HCP English Pre-TEAS part 2"
    HCP_ENGLISH_TEAS = "HCP English TEAS"
    HCP_MATH_TEAS = "HCP Math TEAS"
    OTHER = "Other"


COURSE_PLACEMENTS = [placement.value for placement in CoursePlacement]
# An ESOL import stamps one of these on every row
ESOL_PLACEMENTS = [p for p in COURSE_PLACEMENTS if p.startswith("ESOL ")] + [CoursePlacement.OTHER.value]


class Role(str, Enum):
    ADMIN = "admin"
    TEACHER = "teacher"


GENDERS = ["Male", "Female", "Non-binary", "Other", "Prefer not to say"]

ENROLLMENT_STATUSES = ["active", "inactive"]

US_STATES = [
    "AL", "AK", "AZ", "AR", "CA", "CO", "CT", "DE", "FL", "GA", "HI", "ID", "IL",
    "IN", "IA", "KS", "KY", "LA", "ME", "MD", "MA", "MI", "MN", "MS", "MO", "MT",
    "NE", "NV", "NH", "NJ", "NM", "NY", "NC", "ND", "OH", "OK", "OR", "PA", "RI",
    "SC", "SD", "TN", "TX", "UT", "VT", "VA", "WA", "WV", "WI", "WY",
]

# Columns of the students table that an import or a form may write.
STUDENT_COLUMNS = {
    "student_code",
    "legal_first_name",
    "legal_last_name",
    "preferred_name",
    "email",
    "phone",
    "address_street",
    "address_city",
    "address_state",
    "address_zip",
    "residence",
    "age",
    "gender",
    "ethnicity_hispanic_latino",
    "race",
    "country_of_birth",
    "native_language",
    "language_spoken_at_home",
    "highest_education",
    "employment",
    "computer_access",
    "referral",
    "household_income",
    "healthcare_certification",
    "teas_taken_before",
    "program",
    "course_placement",
    "enrollment_status",
}

# Columns managed by the store or by audit stamping; never copied from a CSV.
PROTECTED_COLUMNS = {"id", "created_at", "created_by", "updated_at", "updated_by", "student_code"}

STUDENT_CODE_PATTERN = re.compile(r"^STU-\d{1,5}$")
EMAIL_PATTERN = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")

# A mapped CSV row: student column (or import-only field) -> normalized value.
StudentData = Dict[str, Any]


class ErrorType(str, Enum):
    """Error categories reported by an import run."""
    MISSING_EMAIL = "MISSING_EMAIL"
    MISSING_NAME = "MISSING_NAME"
    INVALID_EMAIL = "INVALID_EMAIL"
    DUPLICATE_IN_CSV = "DUPLICATE_IN_CSV"
    DUPLICATE_STUDENT = "DUPLICATE_STUDENT"
    MISSING_STUDENT_CODE = "MISSING_STUDENT_CODE"
    STUDENT_CODE_NOT_FOUND = "STUDENT_CODE_NOT_FOUND"
    NAME_MISMATCH = "NAME_MISMATCH"
    NAME_MISMATCH_SKIPPED = "NAME_MISMATCH_SKIPPED"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    LOOKUP_FAILED = "LOOKUP_FAILED"
    INSERT_FAILED = "INSERT_FAILED"
    UPDATE_FAILED = "UPDATE_FAILED"
    BATCH_ERROR = "BATCH_ERROR"
    UNKNOWN_ERROR = "UNKNOWN_ERROR"


SYSTEM_ERROR_TYPES = {
    ErrorType.INSERT_FAILED,
    ErrorType.UPDATE_FAILED,
    ErrorType.LOOKUP_FAILED,
    ErrorType.BATCH_ERROR,
    ErrorType.UNKNOWN_ERROR,
}


class ErrorDetail(BaseModel):
    """One actionable problem found while importing a CSV row."""
    row_number: int
    student_name: str = "Unknown"
    student_code: Optional[str] = None
    error_type: Optional[ErrorType] = None
    message: str


class ImportRow(BaseModel):
    """A mapped CSV row and the spreadsheet row it came from (headers are row 1)."""
    row_number: int
    data: StudentData = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return student_display_name(self.data)

    @property
    def student_code(self) -> Optional[str]:
        code = self.data.get("student_code")
        return code if isinstance(code, str) and code else None


class InvalidRow(BaseModel):
    row: ImportRow
    error: str
    error_type: ErrorType = ErrorType.VALIDATION_ERROR


class NameMismatch(BaseModel):
    """A returning student whose CSV name differs from the stored name."""
    student_code: str
    db_first_name: str = ""
    db_last_name: str = ""
    csv_first_name: str = ""
    csv_last_name: str = ""
    csv_row: StudentData = Field(default_factory=dict)
    row_number: int


class NameMismatchDecision(BaseModel):
    """Admin decision for one name mismatch."""
    student_code: str
    action: Literal["approve", "skip", "edit"] = "skip"
    first_name: Optional[str] = None
    last_name: Optional[str] = None

    @field_validator("student_code")
    @classmethod
    def _normalize_code(cls, value: str) -> str:
        return value.strip().upper()

    @model_validator(mode="after")
    def _edit_needs_a_name(self):
        if self.action == "edit":
            first = (self.first_name or "").strip()
            last = (self.last_name or "").strip()
            if not first and not last:
                raise ValueError(f"Edit decision for {self.student_code} needs a first or last name")
            self.first_name = first
            self.last_name = last
        return self


class ImportStatus(str, Enum):
    COMPLETED = "completed"
    ABORTED = "aborted"
    AWAITING_DECISIONS = "awaiting_decisions"
    CANCELLED = "cancelled"


class ImportBatchResult(BaseModel):
    """Aggregated outcome of one import run. Frozen once the run ends."""
    model_config = ConfigDict(frozen=True)

    new_count: int = 0
    updated_count: int = 0
    unchanged_count: int = 0
    skipped_count: int = 0
    failed_count: int = 0
    errors: List[ErrorDetail] = Field(default_factory=list)


class ImportOutcome(BaseModel):
    """What an import endpoint hands back to the caller."""
    import_id: str
    status: ImportStatus
    result: ImportBatchResult
    mismatches: List[NameMismatch] = Field(default_factory=list)
    message: str = ""


class AllowedEmail(BaseModel):
    email: str
    created_at: Optional[str] = None
    created_by: Optional[str] = None
    role: Role = Role.TEACHER


class StudentForm(BaseModel):
    """
    Fields accepted by the add/edit student forms.
    Blank strings from HTML forms are treated as missing.
    """
    legal_first_name: str
    legal_last_name: str
    preferred_name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    address_street: Optional[str] = None
    address_city: Optional[str] = None
    address_state: Optional[str] = None
    address_zip: Optional[str] = None
    age: Optional[int] = Field(default=None, ge=0, le=120)
    gender: Optional[str] = None
    ethnicity_hispanic_latino: Optional[bool] = None
    race: List[str] = Field(default_factory=list)
    country_of_birth: Optional[str] = None
    native_language: Optional[str] = None
    highest_education: Optional[str] = None
    employment: Optional[str] = None
    program: Program
    course_placement: CoursePlacement
    enrollment_status: Optional[str] = "active"

    @model_validator(mode="before")
    @classmethod
    def _blank_to_none(cls, values: Any) -> Any:
        if isinstance(values, dict):
            return {k: (None if isinstance(v, str) and not v.strip() else v) for k, v in values.items()}
        return values

    @field_validator("legal_first_name", "legal_last_name")
    @classmethod
    def _required_name(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("is required")
        return value

    @field_validator("email")
    @classmethod
    def _valid_email(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        value = value.strip().lower()
        if not EMAIL_PATTERN.match(value):
            raise ValueError("is not a valid email address")
        return value

    @field_validator("phone")
    @classmethod
    def _phone_digits(cls, value: Optional[str]) -> Optional[str]:
        if value is None:
            return None
        return re.sub(r"\D", "", value) or None

    @field_validator("address_state")
    @classmethod
    def _state_code(cls, value: Optional[str]) -> Optional[str]:
        # Imported rows carry the form's free-text answer ("Massachusetts")
        if value is None:
            return None
        value = value.strip()
        return value.upper() if value.upper() in US_STATES else value

    @field_validator("gender")
    @classmethod
    def _strip_gender(cls, value: Optional[str]) -> Optional[str]:
        return value.strip() if value is not None else None

    @field_validator("enrollment_status")
    @classmethod
    def _known_status(cls, value: Optional[str]) -> Optional[str]:
        if value is not None and value not in ENROLLMENT_STATUSES:
            raise ValueError("must be active or inactive")
        return value

    @field_validator("race", mode="before")
    @classmethod
    def _race_list(cls, value: Any) -> List[str]:
        if value is None:
            return []
        if isinstance(value, str):
            value = [value]
        return [part.strip() for item in value for part in str(item).split(",") if part.strip()]

    def to_row(self) -> Dict[str, Any]:
        """Column values for the students table (enums as plain strings)."""
        return self.model_dump(mode="json")


def student_display_name(data: Dict[str, Any]) -> str:
    """'First Last' from legal names, or 'Unknown'."""
    first = data.get("legal_first_name") if isinstance(data.get("legal_first_name"), str) else ""
    last = data.get("legal_last_name") if isinstance(data.get("legal_last_name"), str) else ""
    return f"{first} {last}".strip() or "Unknown"
