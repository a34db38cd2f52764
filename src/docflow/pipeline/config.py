"""
Domain and pipeline configuration.

Both are JSON documents validated with pydantic. Missing files fall back to
built-in defaults so a fresh install can run the pipeline immediately.
"""

import enum
import logging
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field, ValidationError

logger = logging.getLogger(__name__)


class CategoryDefinition(BaseModel):
    """A classification category offered to the model."""

    id: str = Field(min_length=1)
    label: str = Field(min_length=1)
    description: str = ""
    priority: int = Field(default=50, ge=0, le=100)
    examples: list[str] = Field(default_factory=list)


class KeywordFilter(BaseModel):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)
    case_sensitive: bool = False


class PathFilter(BaseModel):
    include: list[str] = Field(default_factory=list)
    exclude: list[str] = Field(default_factory=list)


class SecurityConfig(BaseModel):
    block_patterns: list[str] = Field(default_factory=list)
    max_proposals_per_batch: int = Field(default=100, gt=0)


class DomainContext(BaseModel):
    project_name: str = "Documentation"
    domain: str = "General"
    target_audience: str = "All users"
    documentation_purpose: str = "Provide comprehensive technical documentation"


class DomainConfig(BaseModel):
    """Tenant domain: category taxonomy, filters and project context."""

    domain_id: str = "generic"
    name: str = "Generic Documentation"
    description: str = ""
    categories: list[CategoryDefinition] = Field(min_length=1)
    keywords: Optional[KeywordFilter] = None
    rag_paths: PathFilter = Field(default_factory=PathFilter)
    security: SecurityConfig = Field(default_factory=SecurityConfig)
    context: DomainContext = Field(default_factory=DomainContext)

    def category_priority(self, category_id: str, default: int = 50) -> int:
        for category in self.categories:
            if category.id == category_id:
                return category.priority
        return default


class StepType(str, enum.Enum):
    FILTER = "filter"
    CLASSIFY = "classify"
    ENRICH = "enrich"
    GENERATE = "generate"
    REVIEW = "review"
    VALIDATE = "validate"
    CONDENSE = "condense"


class StepConfig(BaseModel):
    step_id: str
    step_type: StepType
    enabled: bool = True
    config: dict[str, Any] = Field(default_factory=dict)


class PipelineConfig(BaseModel):
    """Ordered stage list for a pipeline run."""

    pipeline_id: str = "default-v1"
    description: str = ""
    stop_on_error: bool = True
    steps: list[StepConfig]

    def enabled_steps(self) -> list[StepConfig]:
        return [step for step in self.steps if step.enabled]


DEFAULT_DOMAIN_CONFIG = DomainConfig(
    categories=[
        CategoryDefinition(
            id="troubleshooting",
            label="Troubleshooting",
            description="Users solving problems",
            priority=90,
        ),
        CategoryDefinition(
            id="question",
            label="Question",
            description="Users asking how to do something",
            priority=85,
        ),
        CategoryDefinition(
            id="information",
            label="Information",
            description="Users sharing knowledge or updates",
            priority=80,
        ),
        CategoryDefinition(
            id="update",
            label="Update",
            description="Technology changes or announcements",
            priority=75,
        ),
        CategoryDefinition(
            id="no-doc-value",
            label="No Documentation Value",
            description="Small talk, greetings, or anything not worth documenting",
            priority=0,
        ),
    ],
    rag_paths=PathFilter(exclude=["i18n/**"]),
    security=SecurityConfig(
        block_patterns=[r"private[_\s]?key", r"secret[_\s]?token"],
        max_proposals_per_batch=100,
    ),
)

DEFAULT_PIPELINE_CONFIG = PipelineConfig(
    description="Default documentation analysis pipeline",
    steps=[
        StepConfig(step_id="keyword-filter", step_type=StepType.FILTER),
        StepConfig(
            step_id="batch-classify",
            step_type=StepType.CLASSIFY,
            config={"temperature": 0.2, "max_tokens": 8192},
        ),
        StepConfig(
            step_id="rag-enrich",
            step_type=StepType.ENRICH,
            config={"top_k": 5, "min_similarity": 0.7, "deduplicate_translations": True},
        ),
        StepConfig(
            step_id="proposal-generate",
            step_type=StepType.GENERATE,
            config={"temperature": 0.4, "max_tokens": 8192, "max_proposals_per_thread": 5},
        ),
        StepConfig(step_id="ruleset-review", step_type=StepType.REVIEW),
        StepConfig(step_id="content-validate", step_type=StepType.VALIDATE),
        StepConfig(
            step_id="length-reduce",
            step_type=StepType.CONDENSE,
            config={"temperature": 0.3, "max_tokens": 8192},
        ),
    ],
)


def load_domain_config(path: Optional[str | Path] = None) -> DomainConfig:
    """Load a domain config file, falling back to defaults.

    Raises:
        ValidationError: If the file exists but does not validate
    """
    if not path:
        return DEFAULT_DOMAIN_CONFIG
    path = Path(path)
    if not path.exists():
        logger.warning(f"Domain config not found at {path}, using defaults")
        return DEFAULT_DOMAIN_CONFIG
    try:
        config = DomainConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError:
        logger.error(f"Invalid domain config: {path}")
        raise
    logger.info(f"Loaded domain config {config.domain_id} from {path}")
    return config


def load_pipeline_config(path: Optional[str | Path] = None) -> PipelineConfig:
    """Load a pipeline config file, falling back to defaults."""
    if not path:
        return DEFAULT_PIPELINE_CONFIG
    path = Path(path)
    if not path.exists():
        logger.warning(f"Pipeline config not found at {path}, using defaults")
        return DEFAULT_PIPELINE_CONFIG
    try:
        config = PipelineConfig.model_validate_json(path.read_text(encoding="utf-8"))
    except ValidationError:
        logger.error(f"Invalid pipeline config: {path}")
        raise
    logger.info(f"Loaded pipeline config {config.pipeline_id} from {path}")
    return config
