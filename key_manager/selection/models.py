"""Selection models: which keys, or accounts for new keys, an operation applies to."""

from typing import List, Optional

from pydantic import BaseModel, Field

from ..client.models import ConfigurationError, CredentialRecord


class KeyTarget(BaseModel):
    """A key an operation will be applied to."""

    name: str = Field(..., min_length=1, description="Key name")
    hash: str = Field(..., min_length=1, description="Key hash")
    limit: Optional[float] = Field(None, description="Spending limit if known")

    @classmethod
    def from_record(cls, record: CredentialRecord) -> "KeyTarget":
        return cls(name=record.name, hash=record.hash, limit=record.limit)

    def __str__(self) -> str:
        return f"{self.name} ({self.hash})"


class AccountEntry(BaseModel):
    """One account a batch create issues a key for."""

    email: str = Field(..., min_length=1, description="Account email, first part of the key name")
    tags: List[str] = Field(default_factory=list, description="Tags placed between email and date")

    def __str__(self) -> str:
        return self.email


class SelectionCriterion(BaseModel):
    """Exactly one of an exact hash or a name glob."""

    hash: Optional[str] = Field(None, description="Exact key hash")
    pattern: Optional[str] = Field(None, description="Glob matched against names")

    def validate_exclusive(self) -> None:
        """Reject criteria with both or neither field set.

        Raises:
            ConfigurationError: If the criterion is ambiguous or empty
        """
        if self.hash and self.pattern:
            raise ConfigurationError(
                "Cannot specify both --pattern and --hash. Choose one."
            )
        if not self.hash and not self.pattern:
            raise ConfigurationError("Either --pattern or --hash must be provided")

    def describe(self) -> str:
        if self.hash:
            return f"hash={self.hash}"
        return f"pattern={self.pattern}"
