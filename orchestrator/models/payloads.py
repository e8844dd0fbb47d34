"""
Typed task payloads — one versioned dataclass per task type.

The `metadata` column of an AutomatedTask is always produced by
`parse_payload(task_type, raw).to_dict()`, so stored payloads carry a
`schema_version` and only the fields their type declares. Keys a type does
not declare survive under `extra`.

New task types register with `@register_payload('type_name')`.
"""
from dataclasses import dataclass, field, fields, asdict
from typing import Any, Dict, Optional, Type

from orchestrator.config import LEAD_PIPELINE
from orchestrator.errors import ValidationError


PAYLOAD_TYPES: Dict[str, Type['TaskPayload']] = {}


def register_payload(task_type: str):
    """Class decorator: bind a payload dataclass to a task type."""
    def decorator(cls):
        cls.task_type = task_type
        PAYLOAD_TYPES[task_type] = cls
        return cls
    return decorator


@dataclass
class TaskPayload:
    """Fields shared by every task type."""
    schema_version: int = 1
    lead_id: Optional[str] = None
    client_name: Optional[str] = None
    advance_lead_to: Optional[str] = None   # lead status implied by completion
    extra: Dict[str, Any] = field(default_factory=dict)

    task_type = ''

    def validate(self):
        """Hook for type-specific checks; raise ValidationError on bad data."""

    def to_dict(self) -> Dict[str, Any]:
        data = {k: v for k, v in asdict(self).items() if v is not None}
        if not data.get('extra'):
            data.pop('extra', None)
        data['type'] = self.task_type
        return data


@register_payload('lead_followup')
@dataclass
class LeadFollowupPayload(TaskPayload):
    property_id: Optional[str] = None
    template_id: Optional[str] = None
    channel: str = 'whatsapp'


@register_payload('document_generation')
@dataclass
class DocumentGenerationPayload(TaskPayload):
    template_id: Optional[str] = None
    property_id: Optional[str] = None
    document_kind: str = 'contract'


@register_payload('compliance_check')
@dataclass
class ComplianceCheckPayload(TaskPayload):
    property_id: Optional[str] = None
    regulator: str = 'RERA'


@register_payload('social_media')
@dataclass
class SocialMediaPayload(TaskPayload):
    platform: str = 'instagram'
    campaign_id: Optional[str] = None
    post_count: int = 1

    def validate(self):
        if not isinstance(self.post_count, int) or self.post_count < 1:
            raise ValidationError("social_media.post_count must be a positive integer")


@register_payload('email_campaign')
@dataclass
class EmailCampaignPayload(TaskPayload):
    campaign_id: Optional[str] = None
    template_id: Optional[str] = None
    recipient_count: int = 0

    def validate(self):
        if not isinstance(self.recipient_count, int) or self.recipient_count < 0:
            raise ValidationError("email_campaign.recipient_count must be >= 0")


@register_payload('whatsapp_sequence')
@dataclass
class WhatsAppSequencePayload(TaskPayload):
    template_id: Optional[str] = None
    property_id: Optional[str] = None
    sequence_step: int = 1
    total_steps: int = 1

    def validate(self):
        if not (isinstance(self.sequence_step, int) and isinstance(self.total_steps, int)):
            raise ValidationError("whatsapp_sequence steps must be integers")
        if not 1 <= self.sequence_step <= self.total_steps:
            raise ValidationError(
                f"whatsapp_sequence.sequence_step {self.sequence_step} "
                f"outside 1..{self.total_steps}"
            )


@register_payload('market_report')
@dataclass
class MarketReportPayload(TaskPayload):
    area: Optional[str] = None
    period: str = 'monthly'


_CAMEL_ALIASES = {
    'leadId': 'lead_id',
    'clientName': 'client_name',
    'propertyId': 'property_id',
    'templateId': 'template_id',
    'campaignId': 'campaign_id',
    'sequenceStep': 'sequence_step',
    'totalSteps': 'total_steps',
}


def parse_payload(task_type: str, raw: Optional[Dict[str, Any]]) -> TaskPayload:
    """
    Build the typed payload for a task type from a raw metadata dict.

    Raises ValidationError for unregistered types or values that fail the
    payload's own validation.
    """
    cls = PAYLOAD_TYPES.get(task_type)
    if cls is None:
        raise ValidationError(
            f"Unknown task type '{task_type}'. Registered: {sorted(PAYLOAD_TYPES)}"
        )
    raw = dict(raw or {})
    raw.pop('type', None)

    known = {f.name for f in fields(cls)}
    kwargs = {}
    extra = dict(raw.pop('extra', None) or {})
    for key, value in raw.items():
        key = _CAMEL_ALIASES.get(key, key)
        if key in known:
            kwargs[key] = value
        else:
            extra[key] = value
    kwargs['extra'] = extra

    schema_version = kwargs.get('schema_version', 1)
    if schema_version != 1:
        raise ValidationError(f"Unsupported {task_type} payload schema_version {schema_version}")

    try:
        payload = cls(**kwargs)
    except TypeError as e:
        raise ValidationError(f"Bad {task_type} payload: {e}") from e

    if payload.advance_lead_to is not None and payload.advance_lead_to not in LEAD_PIPELINE:
        raise ValidationError(f"advance_lead_to '{payload.advance_lead_to}' is not a lead status")
    payload.validate()
    return payload
