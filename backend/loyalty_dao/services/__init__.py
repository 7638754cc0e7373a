"""Loyalty DAO governance services"""
from .ledger import LedgerStore
from .voting_power import VotingPowerResolver, VotingPowerResult
from .lifecycle import ProposalLifecycle, evaluate
from .tally import VoteTallyService, ProposalResults
from .bridge import ChangeRequestBridge, ChangeSubmission, SubmissionOutcome
from .execution import ExecutionCoordinator, ExecutionOutcome, ExecutionResult
from .config_store import ConfigurationStore, DatabaseConfigurationStore, get_config_store
from .organizations import OrganizationService, DAOStats
from .audit import AuditService


__all__ = [
    "LedgerStore",
    "VotingPowerResolver",
    "VotingPowerResult",
    # Lifecycle and voting
    "ProposalLifecycle",
    "evaluate",
    "VoteTallyService",
    "ProposalResults",
    # Change requests and execution
    "ChangeRequestBridge",
    "ChangeSubmission",
    "SubmissionOutcome",
    "ExecutionCoordinator",
    "ExecutionOutcome",
    "ExecutionResult",
    "ConfigurationStore",
    "DatabaseConfigurationStore",
    "get_config_store",
    # Organizations
    "OrganizationService",
    "DAOStats",
    "AuditService",
]
