"""
Triage Application DTOs
========================

Data Transfer Objects for the webhook and API layer.

Pydantic models for request/response validation.
"""

from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, Field

from triage_relay.triage.domain import Ticket


# ========== Request DTOs ==========

class HubSpotTicketProperties(BaseModel):
    """Ticket properties sent by HubSpot."""
    hs_ticket_id: Optional[str] = None
    subject: str = Field(..., min_length=1, description="Ticket subject")
    content: str = Field(..., min_length=1, description="Ticket body")
    hs_pipeline_stage: Optional[str] = None
    hs_ticket_priority: Optional[str] = None
    source_type: Optional[str] = None


class HubSpotContact(BaseModel):
    """Contact associated with the ticket."""
    id: int
    email: Optional[str] = None
    firstname: Optional[str] = None
    lastname: Optional[str] = None
    company: Optional[str] = None


class HubSpotCustomProperties(BaseModel):
    customer_tier: Optional[str] = None
    product_area: Optional[str] = None


class HubSpotWebhookPayload(BaseModel):
    """Request model for the HubSpot ticket webhook."""
    objectId: int
    subscriptionType: str
    portalId: int
    occurredAt: int
    properties: HubSpotTicketProperties
    associatedContacts: Optional[List[HubSpotContact]] = None
    customProperties: Optional[HubSpotCustomProperties] = None

    @property
    def ticket_id(self) -> str:
        """HubSpot may omit hs_ticket_id; objectId identifies the ticket then."""
        return self.properties.hs_ticket_id or str(self.objectId)

    def to_domain(
        self,
        request_id: str,
        portal_base_url: str,
        received_at: Optional[datetime] = None
    ) -> Ticket:
        """Normalize into the pipeline's Ticket."""
        contact = self.associatedContacts[0] if self.associatedContacts else None
        customer_name = None
        if contact:
            customer_name = " ".join(
                part for part in (contact.firstname, contact.lastname) if part
            ).strip() or None
        custom = self.customProperties or HubSpotCustomProperties()
        ticket_id = self.ticket_id

        return Ticket(
            ticket_id=ticket_id,
            subject=self.properties.subject,
            body=self.properties.content,
            received_at=received_at or datetime.now(timezone.utc),
            customer_email=contact.email if contact else None,
            customer_name=customer_name,
            customer_tier=custom.customer_tier,
            product_area=custom.product_area,
            source_url=f"{portal_base_url.rstrip('/')}/contacts/{self.portalId}/ticket/{ticket_id}",
            request_id=request_id,
        )


# ========== Response DTOs ==========

class WebhookResponse(BaseModel):
    """Response model for an accepted webhook."""
    status: Literal["accepted"] = "accepted"
    ticket_id: str
    request_id: str


class ErrorResponse(BaseModel):
    """Error body for rejected requests."""
    error: str
    message: str
    request_id: Optional[str] = None


class ProviderCount(BaseModel):
    provider: str
    count: int


class StatsResponse(BaseModel):
    """Response model for triage statistics."""
    total: int
    by_provider: List[ProviderCount]
    success_rate: float = Field(..., ge=0.0, le=1.0)


class DependencyStatus(BaseModel):
    status: Literal["healthy", "unhealthy", "unknown"]
    latency_ms: Optional[int] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Response model for the health check."""
    status: Literal["healthy", "degraded"]
    timestamp: datetime
    version: str
    environment: str
    uptime_seconds: int
    dependencies: Dict[str, DependencyStatus]
    warnings: List[str] = Field(default_factory=list)
