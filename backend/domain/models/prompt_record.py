from typing import Optional
from datetime import datetime
from sqlalchemy import DateTime
from sqlmodel import Field, SQLModel

from domain.models.prompt import utc_now

class PromptRecord(SQLModel, table=True):
    """最新バージョンを保持する行"""
    __tablename__ = "prompts"
    id: str = Field(primary_key=True)
    name: str
    content: str
    description: Optional[str] = None
    is_template: bool = Field(default=False)
    category: Optional[str] = None
    # SQLModel は metadata 属性を予約しているため JSON 文字列で保持する
    metadata_json: Optional[str] = None
    # TIMESTAMPTZ (UTC で書き込む)
    created_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=utc_now, sa_type=DateTime(timezone=True))
    version: int = Field(default=1)

class PromptVersionRecord(SQLModel, table=True):
    """追記のみのバージョン履歴"""
    __tablename__ = "prompt_versions"
    prompt_id: str = Field(primary_key=True)
    version: int = Field(primary_key=True)
    name: str
    content: str
    description: Optional[str] = None
    is_template: bool = Field(default=False)
    category: Optional[str] = None
    metadata_json: Optional[str] = None
    created_at: datetime = Field(sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(sa_type=DateTime(timezone=True))

class Tag(SQLModel, table=True):
    __tablename__ = "tags"
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(unique=True)

class PromptTag(SQLModel, table=True):
    __tablename__ = "prompt_tags"
    prompt_id: str = Field(primary_key=True)
    tag_id: int = Field(primary_key=True)

class PromptVariable(SQLModel, table=True):
    __tablename__ = "prompt_variables"
    prompt_id: str = Field(primary_key=True)
    variable_name: str = Field(primary_key=True)
    variable_order: int = Field(default=0)
