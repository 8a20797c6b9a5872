"""Static role-table authorization provider."""

from __future__ import annotations

from typing import TYPE_CHECKING

from escrow_tribunal.services.protocols import AuthDecision, Capability

if TYPE_CHECKING:
    from collections.abc import Iterable

    from escrow_tribunal.services.protocols import VoterEligibility


class RoleAuthorizer:
    """
    Answers capability checks from an in-process role table.

    The voter capability is delegated to a ``VoterEligibility`` source (the
    karma ledger) when one is attached; otherwise it is looked up in the table
    like every other capability.
    """

    def __init__(
        self,
        automated_agents: Iterable[str] = (),
        case_admins: Iterable[str] = (),
        voters: Iterable[str] = (),
    ) -> None:
        self._roles: dict[Capability, set[str]] = {
            Capability.AUTOMATED_AGENT: set(automated_agents),
            Capability.CASE_ADMIN: set(case_admins),
            Capability.VOTER: set(voters),
        }
        self._voter_source: VoterEligibility | None = None

    def attach_voter_source(self, source: VoterEligibility) -> None:
        """Delegate voter checks to ``source``."""
        self._voter_source = source

    def grant(self, caller: str, capability: Capability) -> None:
        """Add a capability to a caller."""
        self._roles[capability].add(caller)

    def revoke(self, caller: str, capability: Capability) -> None:
        """Remove a capability from a caller, if held."""
        self._roles[capability].discard(caller)

    def authorize(self, caller: str, capability: Capability) -> AuthDecision:
        """Check whether caller holds capability."""
        if capability is Capability.VOTER and self._voter_source is not None:
            if self._voter_source.is_eligible(caller):
                return AuthDecision(True, "eligible voter")
            return AuthDecision(False, "not an eligible voter")

        if caller in self._roles[capability]:
            return AuthDecision(True, f"holds {capability}")
        return AuthDecision(False, f"missing {capability}")
