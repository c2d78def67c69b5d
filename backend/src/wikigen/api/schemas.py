"""Pydantic schemas for API requests and responses."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from wikigen.generation.models import RepositorySnapshot, SourceFile


class SourceFileIn(BaseModel):
    """One repository file as supplied by the caller."""

    path: str
    content: str
    language: str = ""
    size: int = 0

    def to_source_file(self) -> SourceFile:
        return SourceFile(
            path=self.path,
            content=self.content,
            language=self.language,
            size=self.size or len(self.content),
        )


class GenerateWikiRequest(BaseModel):
    """Request to generate a wiki for a repository snapshot."""

    model_config = ConfigDict(populate_by_name=True)

    owner: str = Field(..., min_length=1, description="Repository owner")
    repo: str = Field(..., min_length=1, description="Repository name")
    description: str | None = None
    primary_language: str | None = Field(default=None, alias="primaryLanguage")
    files: list[SourceFileIn] = Field(default_factory=list)
    package_manifest: dict[str, Any] | None = Field(default=None, alias="packageManifest")
    readme: str | None = None
    mode: Literal["levels", "linear"] | None = Field(
        default=None, description="Override the configured scheduling mode"
    )

    def to_snapshot(self) -> RepositorySnapshot:
        return RepositorySnapshot(
            owner=self.owner,
            repo=self.repo,
            files=tuple(f.to_source_file() for f in self.files),
            description=self.description,
            primary_language=self.primary_language,
            package_manifest=self.package_manifest,
            readme=self.readme,
        )
