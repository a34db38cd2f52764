"""
Repository layer for database operations.

Provides a clean API for CRUD operations on database models.
"""

from docflow.db.repositories.base import BaseRepository
from docflow.db.repositories.changeset import ChangesetBatchRepository
from docflow.db.repositories.classification import (
    ClassificationRepository,
    RagContextRepository,
)
from docflow.db.repositories.message import MessageRepository
from docflow.db.repositories.proposal import ProposalRepository
from docflow.db.repositories.ruleset import RulesetRepository
from docflow.db.repositories.watermark import WatermarkRepository

__all__ = [
    "BaseRepository",
    "ChangesetBatchRepository",
    "ClassificationRepository",
    "MessageRepository",
    "ProposalRepository",
    "RagContextRepository",
    "RulesetRepository",
    "WatermarkRepository",
]
