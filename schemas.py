"""
Database Schemas for the Communities API

Each Pydantic model either represents a MongoDB document or an API payload.
Communities live in the "communities" collection, one document per community.
Field names are snake_case in Python and camelCase on the wire and in the
stored documents; either spelling is accepted on input.
"""

from datetime import datetime
from typing import Optional, Set

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

COMMUNITY_COLLECTION = "communities"

# Fields an authorized updater may replace
PROFILE_FIELDS = ("name", "description", "category", "is_private")


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Community(CamelModel):
    id: Optional[str] = Field(None, description="Store-assigned identifier")
    name: str = Field(..., min_length=1, description="Community name")
    description: Optional[str] = Field(None, description="What this community is about")
    category: Optional[str] = Field(None, description="Skill category")
    is_private: bool = Field(False, description="Hidden from public listings when true")
    creator_id: Optional[str] = Field(None, description="User ID of creator")
    member_ids: Set[str] = Field(default_factory=set, description="User IDs of members")
    admin_ids: Set[str] = Field(default_factory=set, description="User IDs of admins")
    created_at: Optional[datetime] = Field(None, description="Creation instant (UTC)")
    updated_at: Optional[datetime] = Field(None, description="Last mutation instant (UTC)")

    def is_member(self, user_id: str) -> bool:
        return user_id in self.member_ids

    def is_admin(self, user_id: str) -> bool:
        return user_id in self.admin_ids

    def is_creator(self, user_id: Optional[str]) -> bool:
        return user_id is not None and self.creator_id == user_id


class CommunityCreate(CamelModel):
    name: str = Field(..., min_length=1, description="Community name")
    description: Optional[str] = Field(None, description="What this community is about")
    category: Optional[str] = Field(None, description="Skill category")
    is_private: bool = Field(False, description="Hidden from public listings when true")

    def to_community(self) -> Community:
        return Community(**self.model_dump())


class CommunityUpdate(CamelModel):
    name: str = Field(..., min_length=1, description="Community name")
    description: Optional[str] = Field(None, description="What this community is about")
    category: Optional[str] = Field(None, description="Skill category")
    is_private: bool = Field(False, description="Hidden from public listings when true")


class ErrorResponse(BaseModel):
    error: str = Field(..., description="Machine-readable error kind")
    detail: str = Field(..., description="Human-readable message")
