"""Consent-management tables.

A complete example schema: subjects give consent for purposes on
domains under a policy, and every change lands in the audit log.
"""

from __future__ import annotations

from collections.abc import Iterable

from schemakit.fields import DefaultKind, field
from schemakit.schema import TableFragment

SUBJECT = TableFragment(
    "subject",
    {
        "isIdentified": field("boolean", default=DefaultKind.FALSE),
        "externalId": field("string", required=False),
        "identityProvider": field("string", required=False),
        "lastIpAddress": field("string", required=False),
        "createdAt": field("date", default=DefaultKind.NOW),
        "updatedAt": field("date", default=DefaultKind.NOW),
        "subjectTimezone": field("timezone", required=False, default="UTC"),
    },
    order=1,
)

CONSENT_PURPOSE = TableFragment(
    "consentPurpose",
    {
        "code": field("string", unique=True),
        "name": field("string"),
        "description": field("string"),
        "isEssential": field("boolean", default=DefaultKind.FALSE),
        "dataCategory": field("string", required=False),
        "legalBasis": field("string", required=False),
        "isActive": field("boolean", default=True),
        "createdAt": field("date", default=DefaultKind.NOW),
        "updatedAt": field("date", default=DefaultKind.NOW),
    },
    order=1,
)

DOMAIN = TableFragment(
    "domain",
    {
        "name": field("string", unique=True),
        "description": field("string", required=False),
        "allowedOrigins": field("string[]", required=False),
        "isVerified": field("boolean", default=True),
        "isActive": field("boolean", default=True),
        "createdAt": field("date", default=DefaultKind.NOW),
        "updatedAt": field("date", required=False),
    },
    order=1,
)

CONSENT_POLICY = TableFragment(
    "consentPolicy",
    {
        "version": field("string"),
        "name": field("string"),
        "effectiveDate": field("date"),
        "expirationDate": field("date", required=False),
        "content": field("string"),
        "contentHash": field("string"),
        "isActive": field("boolean", default=True),
        "createdAt": field("date", default=DefaultKind.NOW),
    },
    order=2,
    unique_constraints=(("version", "name"),),
)

CONSENT = TableFragment(
    "consent",
    {
        "subjectId": field("string", references="subject.id", indexed=True),
        "domainId": field("string", references="domain.id"),
        "purposeIds": field("string[]", required=False),
        "metadata": field("json", required=False),
        "policyId": field("string", required=False, references="consentPolicy.id"),
        "ipAddress": field("string", required=False),
        "userAgent": field("string", required=False),
        "status": field("string", default="active"),
        "withdrawalReason": field("string", required=False),
        "givenAt": field("date", default=DefaultKind.NOW),
        "validUntil": field("date", required=False),
        "isActive": field("boolean", default=True),
    },
    order=3,
)

AUDIT_LOG = TableFragment(
    "auditLog",
    {
        "entityType": field("string"),
        "entityId": field("string", indexed=True),
        "actionType": field("string"),
        "subjectId": field("string", required=False, references="subject.id"),
        "ipAddress": field("string", required=False),
        "userAgent": field("string", required=False),
        "changes": field("json", required=False),
        "metadata": field("json", required=False),
        "createdAt": field("date", default=DefaultKind.NOW),
        "eventTimezone": field("timezone", default="UTC"),
    },
    order=5,
)

CORE_FRAGMENTS = (SUBJECT, CONSENT_PURPOSE, DOMAIN, CONSENT_POLICY, CONSENT, AUDIT_LOG)


def get_consent_fragments(plugins: Iterable[TableFragment] = ()) -> list[TableFragment]:
    """Core consent tables followed by plugin contributions.

    Plugin fragments that share a key with a core table extend it; the
    rest become tables of their own.
    """
    return [*CORE_FRAGMENTS, *plugins]
