"""Accounts schemas. Password hashes never appear in responses."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field

from app.core.enums import AccountRole
from app.core.reconciler import SyncIssue


class AccountCreate(BaseModel):
    email: str = Field(..., min_length=3)
    password: str = Field(..., min_length=6)
    name: str = Field(..., min_length=1)
    username: Optional[str] = None
    role: AccountRole = AccountRole.SCHOOL_ADMIN
    school_id: Optional[str] = None
    grade_levels: List[str] = Field(default_factory=list)


class AccountUpdate(BaseModel):
    email: Optional[str] = Field(None, min_length=3)
    password: Optional[str] = Field(None, min_length=6)
    name: Optional[str] = Field(None, min_length=1)
    username: Optional[str] = None
    role: Optional[AccountRole] = None
    school_id: Optional[str] = None
    grade_levels: Optional[List[str]] = None


class AccountResponse(BaseModel):
    id: str
    name: str
    email: str
    username: str
    role: AccountRole
    school_id: Optional[str] = None
    school_name: Optional[str] = None
    school_logo: Optional[str] = None
    grade_levels: List[str] = Field(default_factory=list)
    last_login: Optional[datetime] = None
    created_at: Optional[datetime] = None


class SyncStatusResponse(BaseModel):
    total_local: int
    total_remote: int
    local_only: List[AccountResponse]
    remote_only: List[AccountResponse]
    is_synced: bool
    error: Optional[str] = None


class FixReportResponse(BaseModel):
    fixed_local_accounts: List[str]
    fixed_remote_accounts: List[str]
    errors: List[SyncIssue]
    is_synced: bool


class SyncResponse(BaseModel):
    synced: bool
