"""
Inbound provider callbacks

A callback is matched to a tenant, then to either a one-off request or a
tracking. Request callbacks only refresh the stored result. Tracking callbacks
append history and move the tracking through its status lifecycle; a new
history entry also raises a publication, one notification and, when
configured, an email. Every side effect after tenant resolution is isolated:
a failure is logged and recorded on the result, never raised to the provider.
"""

import html
import json
import logging
from datetime import datetime, timezone
from typing import Optional, Dict, Any, Callable

from pydantic import ValidationError

from lexdesk.database.records import TenantRecords
from lexdesk.errors import InvalidWebhook, NotFound
from lexdesk.models.ledger import NotificationCreate, PublicationCreate
from lexdesk.models.tracking import HistoryEntry, Tracking, TrackingStatus
from lexdesk.models.webhook import ReconcileResult, WebhookEventType, WebhookPayload
from lexdesk.provider.client import ProviderClient, request_status
from lexdesk.services.emails import EmailService
from lexdesk.services.notifications import NotificationService
from lexdesk.services.publications import PublicationsService
from lexdesk.services.requests import RequestRepository
from lexdesk.services.trackings import HistoryRepository, TrackingRepository
from lexdesk.webhooks.ownership import OwnerMatch, OwnershipResolver, notification_emails, row_resolution

logger = logging.getLogger(__name__)


def next_status(event_type: Optional[str]) -> TrackingStatus:
    """Status a tracking moves to after a callback of this type"""
    event = (event_type or "").strip().lower()
    if not event or event == WebhookEventType.RESPONSE_CREATED.value:
        return TrackingStatus.UPDATED
    return TrackingStatus.UPDATING


def _process_number(payload: WebhookPayload) -> str:
    data = payload.response_data if isinstance(payload.response_data, dict) else {}
    return str(
        payload.search.get("search_key")
        or data.get("lawsuit_cnj")
        or data.get("code")
        or ""
    )


class WebhookReconciler:
    """Applies provider callbacks to tenant data"""

    def __init__(
        self,
        tenants,
        client: ProviderClient,
        ownership: Optional[OwnershipResolver] = None,
        notifications: Optional[NotificationService] = None,
        publications: Optional[PublicationsService] = None,
        emails: Optional[EmailService] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.tenants = tenants
        self.client = client
        self.ownership = ownership or OwnershipResolver(tenants)
        self.notifications = notifications or NotificationService()
        self.publications = publications or PublicationsService()
        self.emails = emails or EmailService()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    async def handle(
        self,
        body: Any,
        tenant_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ReconcileResult:
        """
        Process one callback body

        Raises:
            InvalidWebhook: body is malformed or lacks a tenant or correlation key
            NotFound: the tenant does not exist
        """
        if not isinstance(body, dict):
            raise InvalidWebhook("Webhook body must be a JSON object")
        try:
            payload = WebhookPayload.model_validate(body)
        except ValidationError as e:
            raise InvalidWebhook(f"Malformed webhook body: {e.error_count()} invalid field(s)") from e

        if payload.is_heartbeat:
            logger.debug("Provider heartbeat for request %s", payload.request_id or payload.reference_id)
            return ReconcileResult(heartbeat=True)

        tracking_id = payload.tracking_ref
        request_id = payload.request_ref
        uncorrelated = not tracking_id and not request_id
        if uncorrelated and not payload.is_lawsuit_reference:
            raise InvalidWebhook("Webhook carries neither a tracking nor a request reference")

        tenant_id = tenant_id or payload.tenant_id
        if not tenant_id:
            raise InvalidWebhook("Missing tenantId")
        if not await self.tenants.get_tenant(tenant_id):
            raise NotFound(f"Tenant {tenant_id} not found")

        # lawsuit callbacks without a tracking are acknowledged so the provider stops redelivering
        if uncorrelated:
            logger.info(
                "Lawsuit callback %s for tenant %s has no tracking or request to reconcile",
                payload.reference_id,
                tenant_id,
            )
            return ReconcileResult(tenant_id=tenant_id)
        records = await self.tenants.records(tenant_id)

        result = ReconcileResult(tenant_id=tenant_id, tracking_id=tracking_id, request_id=request_id)
        user_hint = user_id or payload.user_id

        if request_id:
            await self._reconcile_request(records, tenant_id, request_id, result)
        if tracking_id:
            await self._reconcile_tracking(records, tenant_id, tracking_id, user_hint, payload, result)

        if result.errors:
            logger.warning(
                "Webhook for tenant %s processed with %d error(s): %s",
                tenant_id,
                len(result.errors),
                "; ".join(result.errors),
            )
        return result

    async def _reconcile_request(
        self,
        records: TenantRecords,
        tenant_id: str,
        request_id: str,
        result: ReconcileResult,
    ):
        """Refresh a one-off request from the provider's authoritative responses"""
        repo = RequestRepository(records)
        try:
            row = await repo.get_by_request_id(request_id)
            if row is None:
                logger.info("Webhook for unknown request %s in tenant %s", request_id, tenant_id)
                return
            result.user_id = row.get("user_id")
            api_key = await self.tenants.get_api_key(tenant_id)
            data = await self.client.fetch_responses(api_key, request_id)
            status = (data.get("request_status") if isinstance(data, dict) else None) or request_status(
                data, row.get("status") or "pending"
            )
            await repo.store_result(request_id, status, data)
            result.status = status
        except Exception as e:
            logger.exception("Failed to refresh request %s for tenant %s", request_id, tenant_id)
            result.errors.append(f"request_refresh: {e}")

    async def _reconcile_tracking(
        self,
        records: TenantRecords,
        tenant_id: str,
        tracking_id: str,
        user_hint: Optional[str],
        payload: WebhookPayload,
        result: ReconcileResult,
    ):
        trackings = TrackingRepository(records)
        history = HistoryRepository(records)

        local_row = await self._step(result, "tracking_lookup", trackings.get_by_tracking_id(tracking_id))
        tracking_view = self._tracking_view(tracking_id, payload, local_row)
        owner = await self.ownership.resolve_for_webhook(records, tenant_id, local_row, user_hint, tracking_view)
        result.user_id = owner.user_id
        result.owner_resolution = owner.resolution.value

        await self._ensure_local_row(trackings, tracking_id, tracking_view, local_row, owner, result)

        response_id = payload.resolved_response_id
        if response_id:
            entry = HistoryEntry(
                tracking_id=tracking_id,
                response_id=response_id,
                response_type=payload.resolved_response_type,
                response_data=payload.response_data,
                created_at=payload.timestamp,
            )
            try:
                inserted = await history.append(entry)
                result.history_appended = inserted is not None
                result.duplicate = inserted is None
            except Exception as e:
                logger.exception("Failed to append history %s for tracking %s", response_id, tracking_id)
                result.errors.append(f"history_append: {e}")

        status = next_status(payload.event_type)
        # a paused tracking leaves paused only through an explicit resume
        updated = await self._step(
            result, "status_update", trackings.update_status(tracking_id, status, keep_paused=True)
        )
        if updated:
            result.status = updated.get("status")
        elif local_row is not None:
            result.status = local_row.get("status")
        await self._step(result, "webhook_stamp", trackings.stamp_webhook(tracking_id, self.clock()))

        if result.duplicate:
            logger.info("Duplicate delivery of response %s for tracking %s", response_id, tracking_id)
            return
        if not response_id:
            logger.info("Callback for tracking %s carries no response id; nothing to publish", tracking_id)
            return
        await self._publish(records, tracking_id, owner, payload, tracking_view, result)

    def _tracking_view(
        self,
        tracking_id: str,
        payload: WebhookPayload,
        local_row: Optional[Dict[str, Any]],
    ) -> Dict[str, Any]:
        """What is known about the tracking: the local row, else the callback itself"""
        if local_row:
            view = dict(local_row)
        else:
            view = {"tracking_id": tracking_id, "search": payload.search}
            if payload.notification_emails:
                view["notification_emails"] = payload.notification_emails
            if payload.hour_range is not None:
                view["hour_range"] = payload.hour_range
        view["tracking_id"] = tracking_id
        return view

    async def _ensure_local_row(
        self,
        trackings: TrackingRepository,
        tracking_id: str,
        tracking_view: Dict[str, Any],
        local_row: Optional[Dict[str, Any]],
        owner: OwnerMatch,
        result: ReconcileResult,
    ):
        try:
            if local_row is None:
                tracking = Tracking.from_provider(tracking_view, owner.user_id, owner.resolution)
                await trackings.save(tracking)
                logger.info(
                    "Stored tracking %s discovered by webhook under %s (%s)",
                    tracking_id,
                    owner.user_id,
                    owner.resolution.value,
                )
            elif local_row.get("user_id") != owner.user_id or row_resolution(local_row) != owner.resolution:
                await trackings.update_owner(tracking_id, owner.user_id, owner.resolution)
                logger.info("Reassigned tracking %s to %s (%s)", tracking_id, owner.user_id, owner.resolution.value)
        except Exception as e:
            logger.exception("Failed to store tracking %s", tracking_id)
            result.errors.append(f"tracking_store: {e}")

    async def _publish(
        self,
        records: TenantRecords,
        tracking_id: str,
        owner: OwnerMatch,
        payload: WebhookPayload,
        tracking_view: Dict[str, Any],
        result: ReconcileResult,
    ):
        response_id = payload.resolved_response_id
        process_number = _process_number(payload)
        try:
            publication = await self.publications.create_publication(
                records,
                owner.user_id,
                PublicationCreate(
                    oab_number="",
                    process_number=process_number,
                    publication_date=self.clock().date().isoformat(),
                    content=json.dumps(payload.model_dump(mode="json", by_alias=True), default=str),
                    source="provider",
                    external_id=str(response_id),
                    status="nova",
                    metadata={
                        "trackingId": tracking_id,
                        "response_id": response_id,
                        "response_type": payload.resolved_response_type,
                        "search": payload.search,
                        "event_type": payload.event_type,
                    },
                ),
            )
            result.publication_id = publication.get("id")
        except Exception as e:
            logger.exception("Failed to create publication for tracking %s", tracking_id)
            result.errors.append(f"publication: {e}")

        try:
            notification = await self.notifications.create_notification(
                records,
                NotificationCreate(
                    user_id=owner.user_id,
                    actor_id="system",
                    type="system",
                    title="Tracking updated",
                    message=f"Tracking {tracking_id} received update {process_number or response_id}",
                    payload={
                        "trackingId": tracking_id,
                        "response_id": response_id,
                        "publicationId": result.publication_id,
                        "event_type": payload.event_type,
                    },
                    link=f"/publications/{result.publication_id}" if result.publication_id else None,
                ),
            )
            result.notification_id = notification.get("id")
        except Exception as e:
            logger.exception("Failed to notify %s for tracking %s", owner.user_id, tracking_id)
            result.errors.append(f"notification: {e}")

        recipients = notification_emails(tracking_view) or payload.notification_emails
        if recipients and self.emails.has_smtp_config():
            subject = f"Tracking update: {process_number or tracking_id}"
            body = (
                f"<p>Tracking <b>{html.escape(tracking_id)}</b> received a new update.</p>"
                f"<p>Case: {html.escape(process_number or '-')}</p>"
                f"<p>Event: {html.escape(payload.event_type or '-')}</p>"
            )
            try:
                await self.emails.send_email(recipients, subject, body)
            except Exception as e:
                logger.exception("Failed to email update for tracking %s", tracking_id)
                result.errors.append(f"email: {e}")

    async def _step(self, result: ReconcileResult, name: str, operation) -> Any:
        """Await one side effect; failures are logged and recorded"""
        try:
            return await operation
        except Exception as e:
            logger.exception("Webhook step %s failed", name)
            result.errors.append(f"{name}: {e}")
            return None
