"""
Schemas for reconciliation endpoints.
"""

from datetime import date

from pydantic import BaseModel, Field, model_validator


class ReconciliationRunRequest(BaseModel):
    """Request body for POST /reconciliation/run."""
    start_date: date = Field(description="First settlement date to reconcile")
    end_date: date = Field(description="Last settlement date to reconcile (inclusive)")
    retry_failed: bool = Field(default=False, description="Reopen units that previously failed")
    check_difficulty: bool = Field(default=False, description="Also flag records computed with outdated difficulty")

    @model_validator(mode="after")
    def check_range(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class ReconciliationResumeRequest(BaseModel):
    """Request body for POST /reconciliation/resume."""
    check_difficulty: bool = False
