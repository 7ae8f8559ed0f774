"""Queue message schemas exchanged between pipeline stages.

Messages carry only the identifiers needed to reload durable state; the
database stays the source of truth. On the wire every field uses its
camelCase name.
"""

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from copyguard.db.models import TakedownPlatform


class QueueMessage(BaseModel):
    """Base for stage-to-stage messages."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
    )

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)

    @classmethod
    def from_json(cls, raw: str | bytes):
        return cls.model_validate_json(raw)


class CrawlMessage(QueueMessage):
    """One query of a monitoring task to crawl. Lower priority runs first."""

    job_id: str
    work_id: str
    tenant_id: str
    query: str
    priority: int = Field(default=0, ge=0)


class ExtractionMessage(QueueMessage):
    """A stored crawl result awaiting classification."""

    crawl_result_id: str
    url: str
    content_ref: str


class TakedownMessage(QueueMessage):
    """A takedown request awaiting dispatch."""

    case_id: str
    takedown_request_id: str
    platform: TakedownPlatform
    attempt: int = Field(default=1, ge=1)
