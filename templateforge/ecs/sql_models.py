"""
SQLAlchemy models for template storage.

One row per stored template version. The `(name, version)` pair is unique and
all versions of a template share `template_id`; `is_live` marks the row that
holds the template's current version.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean, DateTime, Integer, JSON, String, Text, UniqueConstraint, Uuid
)
from sqlalchemy.orm import DeclarativeBase, mapped_column

from templateforge.ecs.entity import Template


class Base(DeclarativeBase):
    """SQLAlchemy declarative base class."""
    pass


def _as_utc(value: Optional[datetime]) -> Optional[datetime]:
    # SQLite drops tzinfo on the way back out
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class TemplateSQL(Base):
    """SQLAlchemy model for stored template versions."""
    __tablename__ = "template"
    __table_args__ = (
        UniqueConstraint("name", "version", name="uix_template_name_version"),
    )

    # Primary database key (auto-incremented integer)
    id = mapped_column(Integer, primary_key=True, autoincrement=True)

    template_id = mapped_column(Uuid, nullable=False, index=True)
    name = mapped_column(String(255), nullable=False, index=True)
    version = mapped_column(String(64), nullable=False)
    category = mapped_column(String(50), nullable=False, index=True)
    status = mapped_column(String(20), nullable=False, index=True)
    description = mapped_column(Text, nullable=False, default="")
    content = mapped_column(Text, nullable=False, default="")
    author = mapped_column(String(255), nullable=True)

    parameters = mapped_column(JSON, nullable=False, default=list)
    dependencies = mapped_column(JSON, nullable=False, default=list)
    version_history = mapped_column(JSON, nullable=False, default=list)

    is_live = mapped_column(Boolean, nullable=False, default=True, index=True)
    created_at = mapped_column(DateTime(timezone=True), nullable=False)
    updated_at = mapped_column(DateTime(timezone=True), nullable=False)

    @staticmethod
    def _columns_from_entity(template: Template) -> Dict[str, Any]:
        data = template.model_dump(mode="json")
        return {
            "template_id": template.id,
            "name": template.name,
            "version": template.version,
            "category": template.category.value,
            "status": template.status.value,
            "description": template.description,
            "content": template.content,
            "author": template.author,
            "parameters": data["parameters"],
            "dependencies": data["dependencies"],
            "version_history": data["version_history"],
            "created_at": template.created_at,
            "updated_at": template.updated_at,
        }

    @classmethod
    def from_entity(cls, template: Template) -> "TemplateSQL":
        """Create a row from a Template entity."""
        return cls(**cls._columns_from_entity(template))

    def update_from_entity(self, template: Template) -> None:
        """Overwrite this row's columns with the entity's values."""
        for column, value in self._columns_from_entity(template).items():
            setattr(self, column, value)

    def to_entity(self) -> Template:
        """Convert this row back into a Template entity."""
        return Template.model_validate({
            "id": self.template_id,
            "name": self.name,
            "version": self.version,
            "category": self.category,
            "status": self.status,
            "description": self.description or "",
            "content": self.content or "",
            "author": self.author,
            "parameters": self.parameters or [],
            "dependencies": self.dependencies or [],
            "version_history": self.version_history or [],
            "created_at": _as_utc(self.created_at),
            "updated_at": _as_utc(self.updated_at),
        })
