"""Uniform shapes for Microsoft Graph resources returned by handler modules."""

from typing import Any, Optional

PREVIEW_LENGTH = 150


def _require_mapping(value: Any, kind: str) -> dict[str, Any]:
    if not isinstance(value, dict):
        raise ValueError(f"Invalid {kind} object for normalization")
    return value


def _address(recipient: Optional[dict[str, Any]]) -> Optional[dict[str, Any]]:
    email_address = (recipient or {}).get("emailAddress")
    if not email_address:
        return None
    return {"name": email_address.get("name"), "email": email_address.get("address")}


def _string_or_none(value: Any) -> Optional[str]:
    return value if isinstance(value, str) else None


def normalize_email(message: dict[str, Any]) -> dict[str, Any]:
    message = _require_mapping(message, "email")
    return {
        "id": message.get("id"),
        "type": "email",
        "subject": message.get("subject"),
        "from": _address(message.get("from")),
        "to": [
            address
            for address in map(_address, message.get("toRecipients") or [])
            if address
        ],
        "received": message.get("receivedDateTime"),
        "sent": message.get("sentDateTime"),
        "preview": (message.get("bodyPreview") or "")[:PREVIEW_LENGTH],
        "isRead": bool(message.get("isRead")),
        "importance": message.get("importance"),
        "hasAttachments": bool(message.get("hasAttachments")),
        "conversationId": message.get("conversationId"),
    }


def normalize_event(event: dict[str, Any]) -> dict[str, Any]:
    event = _require_mapping(event, "event")
    location = event.get("location") or {}
    return {
        "id": event.get("id"),
        "type": "event",
        "subject": event.get("subject"),
        "start": (event.get("start") or {}).get("dateTime"),
        "end": (event.get("end") or {}).get("dateTime"),
        "timeZone": (event.get("start") or {}).get("timeZone"),
        "location": _string_or_none(location.get("displayName")),
        "organizer": _address(event.get("organizer")),
        "attendees": [
            address
            for address in map(_address, event.get("attendees") or [])
            if address
        ],
        "isAllDay": bool(event.get("isAllDay")),
        "isCancelled": bool(event.get("isCancelled")),
        "isOnlineMeeting": bool(event.get("isOnlineMeeting")),
        "importance": event.get("importance"),
        "webLink": _string_or_none(event.get("webLink")),
        "preview": (event.get("bodyPreview") or "")[:PREVIEW_LENGTH],
        "seriesMasterId": event.get("seriesMasterId"),
    }


def normalize_file(item: dict[str, Any]) -> dict[str, Any]:
    item = _require_mapping(item, "file")
    file_facet = item.get("file") or {}
    return {
        "id": item.get("id"),
        "type": "folder" if "folder" in item else "file",
        "name": item.get("name"),
        "size": item.get("size", 0),
        "webUrl": _string_or_none(item.get("webUrl")),
        "parentId": (item.get("parentReference") or {}).get("id"),
        "modified": item.get("lastModifiedDateTime"),
        "created": item.get("createdDateTime"),
        "mimeType": file_facet.get("mimeType"),
        "eTag": item.get("eTag"),
        "download_url": item.get("@microsoft.graph.downloadUrl"),
    }


def normalize_person(person: dict[str, Any]) -> dict[str, Any]:
    """Normalize a /people entry or a directory user."""
    person = _require_mapping(person, "person")
    scored = person.get("scoredEmailAddresses") or []
    email = (
        scored[0].get("address")
        if scored
        else person.get("mail") or person.get("userPrincipalName")
    )
    return {
        "id": person.get("id"),
        "type": "person",
        "displayName": person.get("displayName"),
        "givenName": person.get("givenName"),
        "surname": person.get("surname"),
        "email": email,
        "jobTitle": _string_or_none(person.get("jobTitle")),
        "department": _string_or_none(person.get("department")),
        "companyName": _string_or_none(person.get("companyName")),
        "officeLocation": _string_or_none(person.get("officeLocation")),
        "relevanceScore": scored[0].get("relevanceScore") if scored else None,
    }
