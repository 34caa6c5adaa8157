from datetime import date
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from app.integrations.base import Money, TransactionData

Frequency = Literal["weekly", "monthly", "bimonthly", "quarterly"]
AnalysisStage = Literal["chunking", "processing", "merging", "complete"]


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# Subscription Schemas
class DetectedSubscription(CamelModel):
    beneficiary: str
    average_amount: Money
    currency: str
    frequency: Frequency
    confidence: float = Field(ge=0.0, le=1.0)
    transactions: List[TransactionData] = Field(default_factory=list)
    next_estimated_payment: date
    total_paid_amount: Money
    category: str = "other"
    last_transaction_date: date


# Analysis Schemas
class AnalysisMetadata(CamelModel):
    processing_time: int  # milliseconds
    extraction_method: str
    pdf_pages: Optional[int] = None
    date_range_start: Optional[date] = None
    date_range_end: Optional[date] = None
    candidates_found: int = 0
    validation_used: bool = False


class AnalysisResponse(CamelModel):
    subscriptions: List[DetectedSubscription]
    total_subscriptions: int
    total_transactions: int
    processing_time: int
    analysis_metadata: AnalysisMetadata


class AnalysisProgress(CamelModel):
    stage: AnalysisStage
    current_chunk: int
    total_chunks: int
    message: str


class AnalysisJobResponse(BaseModel):
    job_id: str
    task_id: str
    status: str = "queued"


# Candidate validation (structured model output)
class ValidatedSubscription(BaseModel):
    model_config = ConfigDict(extra="forbid")

    merchant_name: str
    category: str
    average_amount: float
    currency: str
    frequency: str
    confidence: int = Field(ge=0, le=100)


class ValidationBatchResponse(BaseModel):
    model_config = ConfigDict(extra="forbid")

    subscriptions: List[ValidatedSubscription]
