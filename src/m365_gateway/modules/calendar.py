"""Outlook calendar capabilities."""

import base64
import datetime as dt
import logging
from typing import Any

from ..errors import InvalidEntitiesError
from ..normalizers import normalize_event
from .base import BaseHandlerModule, as_bool, as_int, as_list, recipients, require

logger = logging.getLogger(__name__)

DEFAULT_TIME_ZONE = "UTC"
DEFAULT_RANGE_DAYS = 7

# Event fields the caller may change through updateEvent
UPDATABLE_FIELDS = ("subject", "location", "body", "start", "end", "attendees", "isOnlineMeeting")

MAX_ATTACHMENT_BYTES = 10 * 1024 * 1024
ATTACHMENT_CONTENT_TYPES = (
    "application/pdf",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
    "application/vnd.openxmlformats-officedocument.presentationml.presentation",
    "text/plain",
    "application/octet-stream",
    "image/jpeg",
    "image/png",
    "image/gif",
)


def _date_time(value: Any, time_zone: str) -> dict[str, str]:
    if isinstance(value, dict):
        return {
            "dateTime": value.get("dateTime"),
            "timeZone": value.get("timeZone") or time_zone,
        }
    return {"dateTime": str(value), "timeZone": time_zone}


def _range_bound(value: Any, default: dt.datetime, end: bool = False) -> str:
    """ISO timestamp for a calendarView bound; plain dates cover the whole day."""
    if not value:
        return default.strftime("%Y-%m-%dT%H:%M:%SZ")
    value = str(value)
    if len(value) == 10:
        return f"{value}T23:59:59Z" if end else f"{value}T00:00:00Z"
    return value


def _attendees(value: Any) -> list[dict[str, Any]]:
    return [
        {**recipient, "type": "required"} for recipient in recipients(as_list(value))
    ]


class CalendarModule(BaseHandlerModule):
    id = "calendar"
    name = "Outlook Calendar"
    handlers = {
        "getEvents": "get_events",
        "createEvent": "create_event",
        "updateEvent": "update_event",
        "getAvailability": "get_availability",
        "acceptEvent": "accept_event",
        "tentativelyAcceptEvent": "tentatively_accept_event",
        "declineEvent": "decline_event",
        "cancelEvent": "cancel_event",
        "findMeetingTimes": "find_meeting_times",
        "getRooms": "get_rooms",
        "getCalendars": "get_calendars",
        "addAttachment": "add_attachment",
        "removeAttachment": "remove_attachment",
    }

    async def get_events(self, entities, context) -> list[dict[str, Any]]:
        now = dt.datetime.now(dt.timezone.utc)
        start = _range_bound(entities.get("start"), now)
        end = _range_bound(
            entities.get("end"), now + dt.timedelta(days=DEFAULT_RANGE_DAYS), end=True
        )
        limit = as_int(entities.get("limit"), 50, "limit")

        params = {
            "startDateTime": start,
            "endDateTime": end,
            "$orderby": "start/dateTime",
            "$top": min(limit, 100),
        }
        events = await self.graph.collect("/me/calendarView", params=params, limit=limit)
        result = [normalize_event(event) for event in events]
        logger.info(f"get_events: {len(result)} events between {start} and {end}")
        return result

    async def create_event(self, entities, context) -> dict[str, Any]:
        require(entities, "subject", "start", "end")
        time_zone = entities.get("timeZone") or DEFAULT_TIME_ZONE
        event = {
            "subject": entities["subject"],
            "start": _date_time(entities["start"], time_zone),
            "end": _date_time(entities["end"], time_zone),
        }
        if entities.get("location"):
            event["location"] = {"displayName": entities["location"]}
        if entities.get("body"):
            event["body"] = {"contentType": "Text", "content": entities["body"]}
        if entities.get("attendees"):
            event["attendees"] = _attendees(entities["attendees"])
        if as_bool(entities.get("isOnlineMeeting")):
            event["isOnlineMeeting"] = True
            event["onlineMeetingProvider"] = "teamsForBusiness"

        created = await self.graph.request("POST", "/me/events", json=event)
        logger.info(f"create_event: created event {created.get('id')}")
        return normalize_event(created)

    async def update_event(self, entities, context) -> dict[str, Any]:
        require(entities, "id")
        time_zone = entities.get("timeZone") or DEFAULT_TIME_ZONE
        changes: dict[str, Any] = {}
        for field in UPDATABLE_FIELDS:
            if entities.get(field) in (None, ""):
                continue
            value = entities[field]
            if field in ("start", "end"):
                changes[field] = _date_time(value, time_zone)
            elif field == "location":
                changes[field] = {"displayName": value}
            elif field == "body":
                changes[field] = {"contentType": "Text", "content": value}
            elif field == "attendees":
                changes[field] = _attendees(value)
            elif field == "isOnlineMeeting":
                changes[field] = as_bool(value)
            else:
                changes[field] = value
        if not changes:
            raise InvalidEntitiesError(
                "Nothing to update", context={"id": entities["id"]}
            )

        updated = await self.graph.request(
            "PATCH", f"/me/events/{entities['id']}", json=changes
        )
        return normalize_event(updated)

    async def get_availability(self, entities, context) -> list[dict[str, Any]]:
        require(entities, "users", "start", "end")
        time_zone = entities.get("timeZone") or DEFAULT_TIME_ZONE
        payload = {
            "schedules": as_list(entities["users"]),
            "startTime": _date_time(entities["start"], time_zone),
            "endTime": _date_time(entities["end"], time_zone),
            "availabilityViewInterval": as_int(entities.get("interval"), 30, "interval"),
        }
        result = await self.graph.request(
            "POST", "/me/calendar/getSchedule", json=payload
        )
        return [
            {
                "user": schedule.get("scheduleId"),
                "availabilityView": schedule.get("availabilityView"),
                "busy": [
                    {
                        "status": item.get("status"),
                        "start": (item.get("start") or {}).get("dateTime"),
                        "end": (item.get("end") or {}).get("dateTime"),
                    }
                    for item in schedule.get("scheduleItems") or []
                ],
            }
            for schedule in (result or {}).get("value", [])
        ]

    async def _respond(self, entities, action: str) -> dict[str, Any]:
        require(entities, "id")
        payload = {"sendResponse": as_bool(entities.get("sendResponse"), True)}
        if entities.get("comment"):
            payload["comment"] = entities["comment"]
        await self.graph.request(
            "POST", f"/me/events/{entities['id']}/{action}", json=payload
        )
        logger.info(f"{action}: event {entities['id']}")
        return {"id": entities["id"], "response": action}

    async def accept_event(self, entities, context) -> dict[str, Any]:
        return await self._respond(entities, "accept")

    async def tentatively_accept_event(self, entities, context) -> dict[str, Any]:
        return await self._respond(entities, "tentativelyAccept")

    async def decline_event(self, entities, context) -> dict[str, Any]:
        return await self._respond(entities, "decline")

    async def cancel_event(self, entities, context) -> dict[str, Any]:
        require(entities, "id")
        payload = {}
        if entities.get("comment"):
            payload["comment"] = entities["comment"]
        await self.graph.request(
            "POST", f"/me/events/{entities['id']}/cancel", json=payload
        )
        return {"id": entities["id"], "cancelled": True}

    async def find_meeting_times(self, entities, context) -> dict[str, Any]:
        require(entities, "attendees")
        time_zone = entities.get("timeZone") or DEFAULT_TIME_ZONE
        duration = as_int(entities.get("durationMinutes"), 30, "durationMinutes")
        payload: dict[str, Any] = {
            "attendees": _attendees(entities["attendees"]),
            "meetingDuration": f"PT{duration}M",
            "maxCandidates": as_int(entities.get("maxCandidates"), 10, "maxCandidates"),
            "returnSuggestionReasons": True,
        }
        if entities.get("start") and entities.get("end"):
            payload["timeConstraint"] = {
                "timeslots": [
                    {
                        "start": _date_time(entities["start"], time_zone),
                        "end": _date_time(entities["end"], time_zone),
                    }
                ]
            }

        result = await self.graph.request("POST", "/me/findMeetingTimes", json=payload)
        result = result or {}
        return {
            "suggestions": [
                {
                    "start": suggestion["meetingTimeSlot"]["start"]["dateTime"],
                    "end": suggestion["meetingTimeSlot"]["end"]["dateTime"],
                    "confidence": suggestion.get("confidence"),
                    "reason": suggestion.get("suggestionReason"),
                }
                for suggestion in result.get("meetingTimeSuggestions", [])
            ],
            "emptySuggestionsReason": result.get("emptySuggestionsReason") or None,
        }

    async def get_rooms(self, entities, context) -> list[dict[str, Any]]:
        limit = as_int(entities.get("limit"), 100, "limit")
        rooms = await self.graph.collect(
            "/places/microsoft.graph.room", params={"$top": min(limit, 100)}, limit=limit
        )
        building = str(entities.get("building") or "").lower()
        min_capacity = as_int(entities.get("minCapacity"), 0, "minCapacity")

        result = []
        for room in rooms:
            if building and building not in str(room.get("building") or "").lower():
                continue
            if (room.get("capacity") or 0) < min_capacity:
                continue
            result.append(
                {
                    "id": room.get("id"),
                    "name": room.get("displayName"),
                    "email": room.get("emailAddress"),
                    "capacity": room.get("capacity"),
                    "building": room.get("building"),
                    "floor": room.get("floorLabel"),
                }
            )
        logger.info(f"get_rooms: {len(result)} of {len(rooms)} rooms matched")
        return result

    async def get_calendars(self, entities, context) -> list[dict[str, Any]]:
        calendars = await self.graph.collect("/me/calendars", params={"$top": 100})
        return [
            {
                "id": calendar.get("id"),
                "name": calendar.get("name"),
                "color": calendar.get("color"),
                "isDefault": bool(calendar.get("isDefaultCalendar")),
                "canEdit": bool(calendar.get("canEdit")),
                "owner": (calendar.get("owner") or {}).get("address"),
            }
            for calendar in calendars
        ]

    async def add_attachment(self, entities, context) -> dict[str, Any]:
        """Attach a base64-encoded file to an event.

        Only common document and image types up to 10 MB are accepted.
        """
        require(entities, "id", "name", "contentBytes")
        content_type = entities.get("contentType") or "application/octet-stream"
        if content_type not in ATTACHMENT_CONTENT_TYPES:
            raise InvalidEntitiesError(
                f"Attachment content type {content_type} is not allowed",
                context={"contentType": content_type},
            )
        try:
            size = len(base64.b64decode(entities["contentBytes"], validate=True))
        except ValueError:
            raise InvalidEntitiesError(
                "contentBytes is not valid base64", context={"name": entities["name"]}
            )
        if size > MAX_ATTACHMENT_BYTES:
            raise InvalidEntitiesError(
                f"Attachment size exceeds the limit of {MAX_ATTACHMENT_BYTES // (1024 * 1024)} MB",
                context={"name": entities["name"], "size": size},
            )

        created = await self.graph.request(
            "POST",
            f"/me/events/{entities['id']}/attachments",
            json={
                "@odata.type": "#microsoft.graph.fileAttachment",
                "name": entities["name"],
                "contentType": content_type,
                "contentBytes": entities["contentBytes"],
            },
        )
        created = created or {}
        logger.info(f"add_attachment: {size} bytes added to event {entities['id']}")
        return {
            "id": created.get("id"),
            "eventId": entities["id"],
            "name": created.get("name", entities["name"]),
            "contentType": content_type,
            "size": created.get("size", size),
        }

    async def remove_attachment(self, entities, context) -> dict[str, Any]:
        require(entities, "id", "attachmentId")
        await self.graph.request(
            "DELETE", f"/me/events/{entities['id']}/attachments/{entities['attachmentId']}"
        )
        return {"id": entities["id"], "attachmentId": entities["attachmentId"], "removed": True}
