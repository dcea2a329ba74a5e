"""
Pydantic schemas for the discharge orchestration endpoint.

Request bodies arrive in camelCase from the dashboard and browser
extension; fields are snake_case here with camelCase aliases.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator
from pydantic.alias_generators import to_camel


CaseSource = Literal[
    "manual",
    "mobile_app",
    "web_dashboard",
    "idexx_neo",
    "idexx_extension",
    "ezyvet_api",
]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Input
# =============================================================================


class RawDataInput(CamelModel):
    """Fresh clinical data to ingest into a new case."""
    mode: Literal["text", "structured"]
    source: CaseSource
    text: Optional[str] = None
    data: Optional[Dict[str, Any]] = None


class EmailContent(CamelModel):
    subject: str
    html: str
    text: str


class ExistingCaseInput(CamelModel):
    """An already ingested case, optionally with pre-rendered email content."""
    case_id: UUID
    summary_id: Optional[UUID] = None
    email_content: Optional[EmailContent] = None


class OrchestrationInput(CamelModel):
    raw_data: Optional[RawDataInput] = None
    existing_case: Optional[ExistingCaseInput] = None

    @model_validator(mode="after")
    def exactly_one_source(self) -> "OrchestrationInput":
        if (self.raw_data is None) == (self.existing_case is None):
            raise ValueError("input must contain exactly one of rawData or existingCase")
        return self


# =============================================================================
# Step configuration
# =============================================================================


class StepConfigBase(CamelModel):
    enabled: Optional[bool] = None


class IngestStepConfig(StepConfigBase):
    options: Optional[Dict[str, Any]] = None


class ExtractEntitiesStepConfig(StepConfigBase):
    force_refresh: Optional[bool] = None


class TemplateStepConfig(StepConfigBase):
    template_id: Optional[UUID] = None


class ScheduleEmailStepConfig(StepConfigBase):
    recipient_email: Optional[EmailStr] = None
    scheduled_for: Optional[datetime] = None


class ScheduleCallStepConfig(StepConfigBase):
    phone_number: Optional[str] = None
    scheduled_for: Optional[datetime] = None


class OrchestrationSteps(CamelModel):
    """Each step is either a boolean toggle or an object of step options."""
    ingest: Optional[Union[bool, IngestStepConfig]] = None
    extract_entities: Optional[Union[bool, ExtractEntitiesStepConfig]] = None
    generate_summary: Optional[Union[bool, TemplateStepConfig]] = None
    prepare_email: Optional[Union[bool, TemplateStepConfig]] = None
    schedule_email: Optional[Union[bool, ScheduleEmailStepConfig]] = None
    schedule_call: Optional[Union[bool, ScheduleCallStepConfig]] = None

    def to_plan_config(self) -> Dict[str, Any]:
        """Steps keyed by camelCase step name; objects become plain dicts."""
        config: Dict[str, Any] = {}
        for field_name, field in type(self).model_fields.items():
            value = getattr(self, field_name)
            if value is None:
                continue
            key = field.alias or field_name
            if isinstance(value, bool):
                config[key] = value
            else:
                config[key] = value.model_dump(by_alias=True, exclude_none=True)
        return config


class OrchestrationOptions(CamelModel):
    parallel: bool = True
    stop_on_error: bool = False
    dry_run: bool = False


class OrchestrationRequest(CamelModel):
    input: OrchestrationInput
    steps: OrchestrationSteps
    options: OrchestrationOptions = Field(default_factory=OrchestrationOptions)


# =============================================================================
# Result
# =============================================================================


class StepError(BaseModel):
    step: str
    error: str


class OrchestrationData(BaseModel):
    completedSteps: List[str] = Field(default_factory=list)
    skippedSteps: List[str] = Field(default_factory=list)
    failedSteps: List[str] = Field(default_factory=list)
    ingestion: Optional[Any] = None
    extractedEntities: Optional[Any] = None
    summary: Optional[Any] = None
    email: Optional[Any] = None
    emailSchedule: Optional[Any] = None
    call: Optional[Any] = None


class OrchestrationMetadata(BaseModel):
    totalProcessingTime: int
    stepTimings: Dict[str, int] = Field(default_factory=dict)
    parallelExecution: bool = False
    errors: List[StepError] = Field(default_factory=list)
    plan: Optional[Dict[str, Any]] = None


class OrchestrationResult(BaseModel):
    success: bool
    data: OrchestrationData
    metadata: OrchestrationMetadata
