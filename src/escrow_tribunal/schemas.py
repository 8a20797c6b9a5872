"""Pydantic read models for cases, sessions, votes, and voters."""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, computed_field, field_validator


class CaseView(BaseModel):
    """Full case read model."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)
    case_id: str
    client_id: str
    contractor_id: str
    contract_amount: int
    fee_amount: int
    escrowed_total: int
    state: str
    created_at: str
    verdict_percent: int | None
    verdict_explanation: str | None
    verdict_issued_at: str | None
    verdict_deadline: str | None
    client_accepted: bool
    contractor_accepted: bool
    dispute_raised_by: str | None
    dispute_raised_at: str | None
    resolution_path: str | None
    final_contractor_percent: int | None
    resolved_at: str | None

    @field_validator("state", "resolution_path", mode="before")
    @classmethod
    def enum_to_plain_string(cls, value: object) -> object:
        """Render enum members as their string values."""
        return str(value) if value is not None else None


class VoteView(BaseModel):
    """Vote read model. Outcome fields are null until finalization."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)
    case_id: str
    voter_id: str
    value: int
    karma: int
    cast_at: str
    deviation: int | None
    is_outlier: bool
    karma_delta: int | None


class SessionView(BaseModel):
    """Voting session read model."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)
    case_id: str
    started_by: str
    start_time: str
    end_time: str
    active: bool
    finalized: bool
    consensus_percent: int | None
    dispersion: int | None
    outlier_threshold: int | None
    reward_pool: int | None
    finalized_at: str | None
    karma_applied: bool
    votes: list[VoteView]

    @computed_field  # type: ignore[prop-decorator]
    @property
    def vote_count(self) -> int:
        """Number of votes cast."""
        return len(self.votes)


class VoterView(BaseModel):
    """Voter read model."""

    model_config = ConfigDict(extra="forbid", from_attributes=True)
    voter_id: str
    karma: int
    active: bool
    banned: bool
    registered_at: str
    updated_at: str


class ErrorView(BaseModel):
    """Standard error body for any transport in front of the tribunal."""

    model_config = ConfigDict(extra="forbid")
    error: str
    message: str
    details: dict[str, object]
