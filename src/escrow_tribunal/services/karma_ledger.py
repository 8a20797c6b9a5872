"""Per-voter reputation: registration, bans, and karma updates."""

from __future__ import annotations

from threading import RLock
from typing import TYPE_CHECKING

from escrow_tribunal.exceptions import (
    InvalidInputError,
    InvalidStateError,
    NotFoundError,
    UnauthorizedError,
)
from escrow_tribunal.logging import get_logger
from escrow_tribunal.services.protocols import Capability
from escrow_tribunal.services.records import KarmaAuditEntry, VoterRecord
from escrow_tribunal.services.timestamps import now_iso

if TYPE_CHECKING:
    from collections.abc import Iterable

    from escrow_tribunal.services.consensus_math import KarmaRules
    from escrow_tribunal.services.protocols import AuthorizationProvider, VoterRepository

BANNED_KARMA = 0


class KarmaLedger:
    """Owns voter records and writes an audit entry for every change."""

    def __init__(
        self,
        store: VoterRepository,
        authorizer: AuthorizationProvider,
        rules: KarmaRules,
        lock: RLock | None = None,
    ) -> None:
        self._store = store
        self._authorizer = authorizer
        self._rules = rules
        self._lock = lock if lock is not None else RLock()
        self._logger = get_logger(__name__)

    @property
    def rules(self) -> KarmaRules:
        """Karma bounds in force."""
        return self._rules

    def _require_admin(self, caller: str, action: str) -> None:
        decision = self._authorizer.authorize(caller, Capability.CASE_ADMIN)
        if not decision.allowed:
            raise UnauthorizedError(
                f"Only case administrators can {action}",
                {"caller": caller, "reason": decision.reason},
            )

    def get_voter(self, voter_id: str) -> VoterRecord:
        """Return a voter or raise VOTER_NOT_FOUND."""
        voter = self._store.get_voter(voter_id)
        if voter is None:
            raise NotFoundError("VOTER_NOT_FOUND", "Voter not found", {"voter_id": voter_id})
        return voter

    def is_eligible(self, voter_id: str) -> bool:
        """Active, not banned, and at or above the karma floor."""
        voter = self._store.get_voter(voter_id)
        if voter is None:
            return False
        return voter.active and not voter.banned and voter.karma >= self._rules.floor

    def audit_log(self, voter_id: str) -> list[KarmaAuditEntry]:
        """All recorded changes for a voter, oldest first."""
        return self._store.get_audit_log(voter_id)

    def _audit_line(self, entry: KarmaAuditEntry) -> None:
        self._logger.info(
            "Karma audit",
            extra={
                "voter_id": entry.voter_id,
                "old_karma": entry.old_karma,
                "new_karma": entry.new_karma,
                "reason": entry.reason,
                "actor": entry.actor,
            },
        )

    def register_voter(self, voter_id: str, caller: str) -> VoterRecord:
        """Create a voter at the starting karma, or re-activate one keeping its karma."""
        self._require_admin(caller, "register voters")
        if not isinstance(voter_id, str) or voter_id.strip() == "":
            raise InvalidInputError("voter_id must be a non-empty string", {"field": "voter_id"})

        with self._lock:
            timestamp = now_iso()
            existing = self._store.get_voter(voter_id)
            if existing is None:
                voter = VoterRecord(
                    voter_id=voter_id,
                    karma=self._rules.start,
                    active=True,
                    banned=False,
                    registered_at=timestamp,
                    updated_at=timestamp,
                )
                entry = KarmaAuditEntry(
                    voter_id, None, voter.karma, "register", caller, timestamp
                )
                self._store.insert_voter(voter, entry)
            else:
                if existing.banned:
                    raise InvalidStateError(
                        "Banned voters cannot be re-registered", {"voter_id": voter_id}
                    )
                if existing.active:
                    raise InvalidStateError(
                        "Voter is already registered", {"voter_id": voter_id}
                    )
                entry = KarmaAuditEntry(
                    voter_id, existing.karma, existing.karma, "register", caller, timestamp
                )
                self._store.update_voter(
                    voter_id, {"active": True, "updated_at": timestamp}, entry
                )
                voter = self.get_voter(voter_id)

        self._audit_line(entry)
        return voter

    def remove_voter(self, voter_id: str, caller: str) -> VoterRecord:
        """Deactivate a voter; karma is kept for a later re-registration."""
        self._require_admin(caller, "remove voters")
        with self._lock:
            voter = self.get_voter(voter_id)
            if not voter.active:
                raise InvalidStateError("Voter is not active", {"voter_id": voter_id})
            timestamp = now_iso()
            entry = KarmaAuditEntry(voter_id, voter.karma, voter.karma, "remove", caller, timestamp)
            self._store.update_voter(voter_id, {"active": False, "updated_at": timestamp}, entry)
            voter = self.get_voter(voter_id)

        self._audit_line(entry)
        return voter

    def ban_voter(self, voter_id: str, caller: str) -> VoterRecord:
        """Permanently revoke eligibility; karma drops to zero."""
        self._require_admin(caller, "ban voters")
        with self._lock:
            voter = self.get_voter(voter_id)
            if voter.banned:
                raise InvalidStateError("Voter is already banned", {"voter_id": voter_id})
            timestamp = now_iso()
            entry = KarmaAuditEntry(voter_id, voter.karma, BANNED_KARMA, "ban", caller, timestamp)
            self._store.update_voter(
                voter_id,
                {"active": False, "banned": True, "karma": BANNED_KARMA, "updated_at": timestamp},
                entry,
            )
            voter = self.get_voter(voter_id)

        self._audit_line(entry)
        return voter

    def adjust_karma(self, voter_id: str, new_karma: int, caller: str) -> VoterRecord:
        """Set a voter's karma to an explicit value within bounds."""
        self._require_admin(caller, "adjust karma")
        if (
            isinstance(new_karma, bool)
            or not isinstance(new_karma, int)
            or not self._rules.floor <= new_karma <= self._rules.max
        ):
            raise InvalidInputError(
                f"Karma must be an integer between {self._rules.floor} and {self._rules.max}",
                {"karma": new_karma},
            )
        with self._lock:
            voter = self.get_voter(voter_id)
            if voter.banned:
                raise InvalidStateError(
                    "Banned voters cannot have karma adjusted", {"voter_id": voter_id}
                )
            timestamp = now_iso()
            entry = KarmaAuditEntry(
                voter_id, voter.karma, new_karma, "admin_adjust", caller, timestamp
            )
            self._store.update_voter(voter_id, {"karma": new_karma, "updated_at": timestamp}, entry)
            voter = self.get_voter(voter_id)

        self._audit_line(entry)
        return voter

    def current_karma_for(self, voter_ids: Iterable[str]) -> dict[str, int]:
        """Live karma of the given voters, skipping unknown and banned ones."""
        karma: dict[str, int] = {}
        for voter_id in voter_ids:
            voter = self._store.get_voter(voter_id)
            if voter is None or voter.banned:
                continue
            karma[voter.voter_id] = voter.karma
        return karma

    def apply_session_outcome(
        self,
        case_id: str,
        changes: dict[str, int],
        previous: dict[str, int],
    ) -> bool:
        """
        Write post-session karma for every participant in one transaction.

        Keyed by the session, so a repeat call after a successful write changes
        nothing and returns False.
        """
        if len(changes) == 0:
            return False
        with self._lock:
            timestamp = now_iso()
            entries = [
                KarmaAuditEntry(
                    voter_id,
                    previous.get(voter_id),
                    karma,
                    f"session:{case_id}",
                    "consensus_engine",
                    timestamp,
                )
                for voter_id, karma in sorted(changes.items())
            ]
            applied = self._store.apply_karma_changes(changes, entries, timestamp)

        if not applied:
            self._logger.warning("Session karma already applied", extra={"case_id": case_id})
            return False
        self._logger.info(
            "Session karma applied",
            extra={"case_id": case_id, "voters_updated": len(changes)},
        )
        return True
