"""Nomination summaries and the hand-off to the hosted payment providers."""

from __future__ import annotations

import logging
import os
from decimal import Decimal
from typing import Any, Dict, List, Optional

import httpx

from . import datastore as ds
from . import pricing
from .errors import ExternalServiceError, NotFoundError, ValidationError
from .models import Driver, Nomination, NominationEntry
from .nominations import load_classes, load_event

logger = logging.getLogger(__name__)

PROVIDERS = {
    "square": "/api/payments/square/create-session",
    "paypal": "/api/payments/paypal/create-session",
}


def nomination_summary(nomination_id: Any) -> Dict[str, Any]:
    """Classes and prices for a nomination and every nomination paid with it.

    Nominations sharing the ``group_id`` at the same event are paid together,
    so their classes are listed side by side. The preference class is free.
    """
    row = ds.get_nomination(nomination_id)
    if not row:
        raise NotFoundError("nomination", nomination_id, "We couldn't find your nomination.")
    nomination = Nomination.from_row(row)
    event = load_event(nomination.event_id)
    if nomination.group_id:
        group = [Nomination.from_row(r) for r in ds.list_group_nominations(event.id, nomination.group_id)]
    else:
        group = [nomination]
    if not any(n.id == nomination.id for n in group):
        group.insert(0, nomination)

    drivers = {d["id"]: Driver.from_row(d) for d in ds.list_drivers({n.driver_id for n in group})}
    names = {c.class_id: c.class_name for c in load_classes(event.id, enabled_only=False)}
    entries = [NominationEntry.from_row(e) for e in ds.list_entries([n.id for n in group])]
    driver_by_nom = {n.id: n.driver_id for n in group}
    position = {n.id: i for i, n in enumerate(group)}

    classes: List[Dict[str, Any]] = []
    total = Decimal("0")
    for entry in sorted(entries, key=lambda e: (position.get(e.nomination_id, 0), e.order_index)):
        driver = drivers.get(driver_by_nom.get(entry.nomination_id))
        if driver is None:
            continue
        amount = pricing.price(driver, event, entry.is_preference)
        total += amount
        classes.append(
            {
                "id": entry.class_id,
                "name": names.get(entry.class_id, ""),
                "price": pricing.as_amount(amount),
                "driver_id": driver.id,
                "driver_name": driver.full_name,
                "is_preference": entry.is_preference,
            }
        )
    return {
        "nomination": nomination.to_dict(),
        "event": {"id": event.id, "name": event.name, "event_date": event.event_date, "track": event.track},
        "classes": classes,
        "total": pricing.as_amount(total),
    }


class PaymentGateway:
    """Creates checkout sessions with Square or PayPal via the payments service."""

    def __init__(self, base_url: Optional[str] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.BaseTransport] = None):
        self.base_url = (base_url if base_url is not None else os.environ.get("PAYMENTS_BASE_URL", "")).rstrip("/")
        if timeout is None:
            try:
                timeout = float(os.environ.get("PAYMENTS_TIMEOUT", "10"))
            except ValueError:
                timeout = 10.0
        self.timeout = timeout
        self.transport = transport

    def create_session(
        self,
        provider: str,
        nomination_id: Any,
        event_id: Any,
        total: float,
        classes: List[Dict[str, Any]],
    ) -> str:
        """POST the session request and return the provider's redirect URL."""
        path = PROVIDERS.get((provider or "").lower())
        if path is None:
            raise ValidationError(f"Unknown payment provider: {provider}")
        if not nomination_id or not event_id:
            raise ValidationError("Missing nomination or event information.")
        if not self.base_url:
            raise ExternalServiceError(provider, "Payments are not configured.")

        payload = {
            "nominationId": nomination_id,
            "eventId": event_id,
            "total": total,
            "classes": [{"id": c.get("id"), "name": c.get("name"), "price": c.get("price")} for c in classes],
        }
        try:
            with httpx.Client(timeout=self.timeout, transport=self.transport) as client:
                response = client.post(f"{self.base_url}{path}", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as exc:
            logger.warning("%s create-session rejected (%s)", provider, exc.response.status_code)
            raise ExternalServiceError(provider, "Unable to start payment session.") from exc
        except httpx.HTTPError as exc:
            logger.warning("%s create-session failed (%s)", provider, exc)
            raise ExternalServiceError(provider, "Unable to start payment session.") from exc
        except ValueError as exc:
            raise ExternalServiceError(provider, "Payment service returned an invalid response.") from exc

        redirect_url = data.get("redirectUrl") if isinstance(data, dict) else None
        if not redirect_url:
            raise ExternalServiceError(provider, "Payment session did not return a redirect URL.")
        return str(redirect_url)


def start_payment(provider: str, nomination_id: Any, gateway: Optional[PaymentGateway] = None) -> str:
    """Summarize the nomination group and open a checkout session for its total."""
    summary = nomination_summary(nomination_id)
    if summary["nomination"]["paid"]:
        raise ValidationError("This nomination has already been paid.")
    gateway = gateway or PaymentGateway()
    return gateway.create_session(
        provider,
        summary["nomination"]["id"],
        summary["event"]["id"],
        summary["total"],
        summary["classes"],
    )
