"""Imports schemas."""

from pydantic import BaseModel, Field


class CsvImportRequest(BaseModel):
    school_id: str
    content: str = Field(..., description="CSV text; a leading byte-order mark is accepted")


class CsvImportResponse(BaseModel):
    students_count: int
    fees_count: int
    students_processed: int
    fees_processed: int
