"""Registry index schema definitions using Pydantic.

This module defines the schema for the index.yaml file at the root of the
clipack registry. The index lists the path of every package manifest.
"""

from pydantic import BaseModel, Field


class RegistryIndexSchema(BaseModel):
    """Root schema for registry index.yaml files."""

    packages: list[str] = Field(
        default_factory=list,
        description="Paths of manifest files relative to the registry root",
    )
