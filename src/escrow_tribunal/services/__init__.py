"""Service layer exports."""

from escrow_tribunal.services.adjudication_gate import AdjudicationGate
from escrow_tribunal.services.authorization import RoleAuthorizer
from escrow_tribunal.services.case_registry import CaseRegistry
from escrow_tribunal.services.case_store import CaseStore
from escrow_tribunal.services.consensus_engine import ConsensusEngine
from escrow_tribunal.services.escrow_coordinator import EscrowCoordinator
from escrow_tribunal.services.karma_ledger import KarmaLedger
from escrow_tribunal.services.ledger_client import LedgerClient
from escrow_tribunal.services.session_store import SessionStore
from escrow_tribunal.services.voter_store import VoterStore

__all__ = [
    "AdjudicationGate",
    "CaseRegistry",
    "CaseStore",
    "ConsensusEngine",
    "EscrowCoordinator",
    "KarmaLedger",
    "LedgerClient",
    "RoleAuthorizer",
    "SessionStore",
    "VoterStore",
]
