from presale.infrastructure.proposals.in_memory import InMemoryProposalRepository
from presale.infrastructure.proposals.postgres import PostgresProposalRepository
from presale.infrastructure.proposals.sqlite import SqliteProposalRepository

__all__ = [
    "InMemoryProposalRepository",
    "PostgresProposalRepository",
    "SqliteProposalRepository",
]
