"""Takedown notice templates.

The registry is built once at import time and exposed read-only. Templates
are Jinja2 sources rendered against snake_case data keys:

    work_title, work_author, work_isbn, infringing_url, domain,
    claimant_name, claimant_email, claimant_company, claimant_address,
    claimant_phone, evidence_url, detection_date, signature

Optional fields sit in ``{% if %}`` blocks so an absent value drops the whole
line instead of leaving an empty label behind.
"""

from dataclasses import dataclass
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping, Optional

from jinja2 import Environment, Template

from copyguard.db.models import TakedownPlatform
from copyguard.errors import TemplateNotFoundError

REQUIRED_FIELDS = ("work_title", "infringing_url", "claimant_name", "claimant_email")


class DeliveryType(str, Enum):
    EMAIL = "EMAIL"
    FORM = "FORM"


@dataclass(frozen=True)
class TakedownTemplate:
    id: str
    platform: TakedownPlatform
    name: str
    delivery: DeliveryType
    subject: str
    body: str
    required_fields: tuple[str, ...] = REQUIRED_FIELDS
    recipient_email: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "platform": self.platform.value,
            "name": self.name,
            "type": self.delivery.value,
            "requiredFields": list(self.required_fields),
            "recipientEmail": self.recipient_email,
        }


@dataclass(frozen=True)
class RenderedNotice:
    subject: str
    body: str


GOOGLE_SEARCH_BODY = """\
DMCA TAKEDOWN NOTICE

I, {{ claimant_name }}, am the copyright owner (or authorized agent) of the work described below.

IDENTIFICATION OF COPYRIGHTED WORK:
Title: {{ work_title }}
{% if work_author %}
Author: {{ work_author }}
{% endif %}
{% if work_isbn %}
ISBN: {{ work_isbn }}
{% endif %}

INFRINGING MATERIAL:
URL: {{ infringing_url }}
{% if domain %}
Domain: {{ domain }}
{% endif %}
{% if detection_date %}
Date Detected: {{ detection_date }}
{% endif %}
{% if evidence_url %}
Evidence: {{ evidence_url }}
{% endif %}

I have a good faith belief that use of the copyrighted materials described above on the allegedly infringing web pages is not authorized by the copyright owner, its agent, or the law.

I swear, under penalty of perjury, that the information in the notification is accurate and that I am the copyright owner or am authorized to act on behalf of the owner of an exclusive right that is allegedly infringed.

I acknowledge that under Section 512(f) of the DMCA any person who knowingly materially misrepresents that material or activity is infringing may be subject to liability for damages.

CONTACT INFORMATION:
Name: {{ claimant_name }}
{% if claimant_company %}
Company: {{ claimant_company }}
{% endif %}
Email: {{ claimant_email }}
{% if claimant_phone %}
Phone: {{ claimant_phone }}
{% endif %}
{% if claimant_address %}
Address: {{ claimant_address }}
{% endif %}

Signature: {{ signature or claimant_name }}
{% if detection_date %}
Date: {{ detection_date }}
{% endif %}
"""

GENERIC_DMCA_BODY = """\
Dear Sir/Madam,

I am writing to notify you of copyright infringement on your platform.

I, {{ claimant_name }}, am the copyright owner (or authorized representative) of the following work:

COPYRIGHTED WORK:
- Title: {{ work_title }}
{% if work_author %}
- Author: {{ work_author }}
{% endif %}
{% if work_isbn %}
- ISBN: {{ work_isbn }}
{% endif %}

INFRINGING CONTENT LOCATION:
{{ infringing_url }}

This content has been uploaded/published without authorization from the copyright holder.

Pursuant to the Digital Millennium Copyright Act (17 U.S.C. § 512), I request that you expeditiously remove or disable access to the infringing material.

I have a good faith belief that use of the material in the manner complained of is not authorized by the copyright owner, its agent, or the law.

I swear, under penalty of perjury, that the information in this notification is accurate, and that I am the copyright owner or am authorized to act on behalf of the owner.

Please confirm receipt of this notice and inform me of any action taken.

Sincerely,

{{ claimant_name }}
{% if claimant_company %}
{{ claimant_company }}
{% endif %}
{{ claimant_email }}
{% if claimant_phone %}
Tel: {{ claimant_phone }}
{% endif %}
"""

SCRIBD_BODY = """\
To Scribd Copyright Team,

I am reporting copyright infringement of my work on your platform.

COPYRIGHTED WORK:
Title: {{ work_title }}
{% if work_author %}
Author: {{ work_author }}
{% endif %}
{% if work_isbn %}
ISBN: {{ work_isbn }}
{% endif %}

INFRINGING URL:
{{ infringing_url }}

I am the copyright owner (or authorized to act on behalf of the owner) and I did not authorize this upload.

Please remove this content immediately.

Contact Information:
{{ claimant_name }}
{{ claimant_email }}
{% if claimant_company %}
{{ claimant_company }}
{% endif %}

I declare under penalty of perjury that this notice is accurate and that I am the copyright owner or authorized to act on behalf of the owner.

{{ signature or claimant_name }}
{% if detection_date %}
{{ detection_date }}
{% endif %}
"""


TEMPLATES: Mapping[str, TakedownTemplate] = MappingProxyType({
    t.id: t
    for t in (
        TakedownTemplate(
            id="google-search-dmca",
            platform=TakedownPlatform.GOOGLE_SEARCH,
            name="Google Search DMCA Notice",
            delivery=DeliveryType.FORM,
            subject="DMCA Takedown Request - {{ work_title }}",
            body=GOOGLE_SEARCH_BODY,
        ),
        TakedownTemplate(
            id="generic-dmca-email",
            platform=TakedownPlatform.GENERIC_DMCA,
            name="Generic DMCA Email",
            delivery=DeliveryType.EMAIL,
            subject="DMCA Copyright Infringement Notice - {{ work_title }}",
            body=GENERIC_DMCA_BODY,
        ),
        TakedownTemplate(
            id="scribd-dmca",
            platform=TakedownPlatform.SCRIBD,
            name="Scribd DMCA Notice",
            delivery=DeliveryType.EMAIL,
            subject="Copyright Infringement Report - {{ work_title }}",
            body=SCRIBD_BODY,
            recipient_email="copyright@scribd.com",
        ),
    )
})

# Plain-text notices: no HTML escaping
_env = Environment(trim_blocks=True, lstrip_blocks=True, autoescape=False)

_COMPILED: Mapping[str, tuple[Template, Template]] = MappingProxyType({
    t.id: (_env.from_string(t.subject), _env.from_string(t.body))
    for t in TEMPLATES.values()
})


def get_template(template_id: str) -> TakedownTemplate:
    """Look up a template.

    Raises:
        TemplateNotFoundError: If no template has this id
    """
    try:
        return TEMPLATES[template_id]
    except KeyError:
        raise TemplateNotFoundError(template_id) from None


def list_templates(platform: Optional[TakedownPlatform] = None) -> list[TakedownTemplate]:
    if platform is None:
        return list(TEMPLATES.values())
    return [t for t in TEMPLATES.values() if t.platform == platform]


def validate(template_id: str, data: Mapping[str, Any]) -> list[str]:
    """Required fields that are absent or empty in ``data``, in template order."""
    template = get_template(template_id)
    return [field for field in template.required_fields if not data.get(field)]


def render(template_id: str, data: Mapping[str, Any]) -> RenderedNotice:
    """Render subject and body. Absent optional fields never raise."""
    get_template(template_id)
    subject_tpl, body_tpl = _COMPILED[template_id]
    return RenderedNotice(
        subject=subject_tpl.render(**data).strip(),
        body=body_tpl.render(**data).strip() + "\n",
    )
