"""Event views."""
from collections.abc import Sequence
from typing import Optional

from blacksheep.exceptions import NotFound
from naks.checkout.app import app
from naks.checkout.auth import User
from naks.checkout.docs import docs_helper
from naks.checkout.models.event import Event, EventConfig
from naks.checkout.services.checkout import CheckoutService
from naks.checkout.util import check_not_found
from naks.checkout.views.responses import EventResponse


def get_visible_event(
    event_config: EventConfig, event_id: str, user: Optional[User]
) -> Event:
    """Get an event, raising :class:`NotFound` if the user can't see it."""
    event = check_not_found(event_config.get_event(event_id))
    if not event.is_visible_to(user):
        raise NotFound
    return event


@app.router.get("/events")
@docs_helper(
    response_type=list[EventResponse],
    response_summary="The list of available events",
    tags=["Event"],
)
async def list_events(event_config: EventConfig, user: User) -> Sequence[EventResponse]:
    """List the available events."""
    return [
        EventResponse.create(e) for e in event_config.events if e.is_visible_to(user)
    ]


@app.router.get("/events/{event_id}")
@docs_helper(response_type=EventResponse, response_summary="The event", tags=["Event"])
async def read_event(
    event_id: str,
    event_config: EventConfig,
    checkout_service: CheckoutService,
    user: User,
) -> EventResponse:
    """Get an event by ID, with current ticket availability."""
    event = get_visible_event(event_config, event_id, user)
    event = await checkout_service.get_available_event(event)
    return EventResponse.create(event)
