"""
Core data models for reference data: materials and clients.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ReferenceSource(str, Enum):
    MASTER = "master"
    GMAIL = "gmail"
    MANUAL = "manual"


class MaterialCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    hsn_code: Optional[str] = None
    source: ReferenceSource = ReferenceSource.MASTER


class Material(MaterialCreate):
    model_config = ConfigDict(frozen=True)

    id: str
    normalized_name: str
    created_at: datetime


class ClientCreate(BaseModel):
    name: str = Field(min_length=1)
    email: Optional[str] = None
    contact: Optional[str] = None
    source: ReferenceSource = ReferenceSource.MASTER


class Client(ClientCreate):
    model_config = ConfigDict(frozen=True)

    id: str
    normalized_name: str
    created_at: datetime
