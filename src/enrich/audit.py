"""Builders for canonical link audit records.

Every canonical resolution, automatic or manual, leaves one
``CanonicalLinkAudit`` behind. Audits are never updated after creation.
"""

from datetime import datetime

from load.models import CanonicalLinkAudit, Resolution, SourceFlow

from .models import ThresholdBand

NO_PROVIDER = "none"


def create_auto_link_audit(
    source_flow: SourceFlow, confidence: float, candidate_id: str, provider: str
) -> CanonicalLinkAudit:
    return CanonicalLinkAudit(
        source_flow=source_flow,
        resolution_mode="auto",
        confidence=confidence,
        provider=provider,
        provider_candidate_id=candidate_id,
        resolved_at=datetime.now(),
    )


def create_user_confirmed_audit(
    source_flow: SourceFlow, confidence: float, candidate_id: str, provider: str
) -> CanonicalLinkAudit:
    return CanonicalLinkAudit(
        source_flow=source_flow,
        resolution_mode="user-confirmed",
        confidence=confidence,
        provider=provider,
        provider_candidate_id=candidate_id,
        resolved_at=datetime.now(),
    )


def create_provisional_audit(
    source_flow: SourceFlow,
    confidence: float | None = None,
    candidate_id: str | None = None,
    provider: str | None = None,
) -> CanonicalLinkAudit:
    """Audit for a fallback record. The provider is "none" unless a candidate was seen."""
    return CanonicalLinkAudit(
        source_flow=source_flow,
        resolution_mode="provisional",
        confidence=confidence,
        provider=(provider or NO_PROVIDER) if candidate_id else NO_PROVIDER,
        provider_candidate_id=candidate_id,
        resolved_at=datetime.now(),
    )


def create_audit_from_band(
    source_flow: SourceFlow,
    band: ThresholdBand,
    confidence: float | None = None,
    candidate_id: str | None = None,
    provider: str | None = None,
) -> CanonicalLinkAudit:
    """Build the audit matching a threshold band.

    Raises:
        ValueError: If an auto/confirm audit is requested without a candidate
    """
    if band == "provisional":
        return create_provisional_audit(source_flow, confidence, candidate_id, provider)
    if confidence is None or candidate_id is None or provider is None:
        raise ValueError(f"A '{band}' audit needs a confidence, candidate id and provider")
    if band == "auto":
        return create_auto_link_audit(source_flow, confidence, candidate_id, provider)
    return create_user_confirmed_audit(source_flow, confidence, candidate_id, provider)


def create_alias_reuse_audit(
    source_flow: SourceFlow, resolution: Resolution, confidence: float
) -> CanonicalLinkAudit:
    """Audit for a book resolved through an existing alias, with no provider call."""
    return CanonicalLinkAudit(
        source_flow=source_flow,
        resolution_mode=resolution,
        confidence=confidence,
        provider=NO_PROVIDER,
        provider_candidate_id=None,
        resolved_at=datetime.now(),
    )
