"""Tribunal wiring and lifecycle management."""

from __future__ import annotations

from contextlib import contextmanager
from threading import RLock
from typing import TYPE_CHECKING

from escrow_tribunal.config import get_safe_config, get_settings
from escrow_tribunal.core.state import Tribunal, init_tribunal, reset_tribunal
from escrow_tribunal.logging import get_logger, setup_logging
from escrow_tribunal.services.adjudication_gate import AdjudicationGate
from escrow_tribunal.services.authorization import RoleAuthorizer
from escrow_tribunal.services.case_registry import CaseRegistry
from escrow_tribunal.services.case_store import CaseStore
from escrow_tribunal.services.consensus_engine import ConsensusEngine
from escrow_tribunal.services.consensus_math import KarmaRules, OutlierRules
from escrow_tribunal.services.escrow_coordinator import EscrowCoordinator
from escrow_tribunal.services.karma_ledger import KarmaLedger
from escrow_tribunal.services.ledger_client import LedgerClient
from escrow_tribunal.services.session_store import SessionStore
from escrow_tribunal.services.voter_store import VoterStore

if TYPE_CHECKING:
    from collections.abc import Iterator

    from escrow_tribunal.config import Settings
    from escrow_tribunal.services.protocols import AuthorizationProvider, LedgerCustodian


def build_tribunal(
    settings: Settings,
    custodian: LedgerCustodian,
    authorizer: AuthorizationProvider | None = None,
) -> Tribunal:
    """
    Wire stores and components from settings.

    Without an explicit authorizer, a RoleAuthorizer is built from the
    ``roles`` section and its voter capability is delegated to the karma ledger.
    """
    lock = RLock()
    db_path = settings.database.path
    case_store = CaseStore(db_path=db_path)
    session_store = SessionStore(db_path=db_path)
    voter_store = VoterStore(db_path=db_path)

    role_authorizer: RoleAuthorizer | None = None
    if authorizer is None:
        role_authorizer = RoleAuthorizer(
            automated_agents=settings.roles.automated_agents,
            case_admins=settings.roles.case_admins,
        )
        authorizer = role_authorizer

    karma_rules = KarmaRules(
        floor=settings.karma.floor,
        start=settings.karma.start,
        max=settings.karma.max,
        max_penalty=settings.karma.max_penalty,
    )
    karma = KarmaLedger(store=voter_store, authorizer=authorizer, rules=karma_rules, lock=lock)
    if role_authorizer is not None:
        role_authorizer.attach_voter_source(karma)

    cases = CaseRegistry(
        store=case_store,
        escrow=EscrowCoordinator(custodian=custodian, store=case_store),
        fee_percent=settings.fees.fee_percent,
        min_fee=settings.fees.min_fee,
        lock=lock,
    )
    adjudication = AdjudicationGate(
        registry=cases,
        authorizer=authorizer,
        acceptance_window_seconds=settings.adjudication.acceptance_window_seconds,
        max_explanation_length=settings.adjudication.max_explanation_length,
    )
    consensus = ConsensusEngine(
        store=session_store,
        registry=cases,
        gate=adjudication,
        karma=karma,
        authorizer=authorizer,
        outlier_rules=OutlierRules(
            multiplier=settings.voting.outlier_multiplier,
            minimum=settings.voting.min_outlier_threshold,
        ),
        duration_seconds=settings.voting.duration_seconds,
        min_duration_seconds=settings.voting.min_duration_seconds,
        max_duration_seconds=settings.voting.max_duration_seconds,
        min_votes=settings.voting.min_votes,
        lock=lock,
    )

    return Tribunal(
        settings=settings,
        lock=lock,
        custodian=custodian,
        authorizer=authorizer,
        case_store=case_store,
        session_store=session_store,
        voter_store=voter_store,
        cases=cases,
        adjudication=adjudication,
        karma=karma,
        consensus=consensus,
    )


@contextmanager
def tribunal_lifespan(custodian: LedgerCustodian | None = None) -> Iterator[Tribunal]:
    """
    Manage tribunal startup and shutdown from the loaded configuration.

    When no custodian is given, a LedgerClient is built from the ``ledger`` section.
    """
    settings = get_settings()

    setup_logging(settings.logging.level, settings.service.name, settings.logging.directory)
    logger = get_logger(__name__)

    ledger_client: LedgerClient | None = None
    if custodian is None:
        if settings.ledger is None:
            msg = "No ledger custodian given and no ledger section configured"
            raise ValueError(msg)
        ledger_client = LedgerClient(
            base_url=settings.ledger.base_url,
            timeout_seconds=settings.ledger.timeout_seconds,
        )
        custodian = ledger_client

    tribunal = init_tribunal(build_tribunal(settings, custodian))
    logger.debug("Loaded configuration", extra={"config": get_safe_config()})
    logger.info(
        "Tribunal starting",
        extra={
            "service": settings.service.name,
            "version": settings.service.version,
            "database": settings.database.path,
        },
    )

    try:
        yield tribunal
    finally:
        logger.info("Tribunal shutting down", extra={"uptime_seconds": tribunal.uptime_seconds})
        tribunal.close()
        if ledger_client is not None:
            ledger_client.close()
        reset_tribunal()
