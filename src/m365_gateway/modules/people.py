"""People and directory capabilities."""

import logging
from typing import Any

from ..errors import InvalidEntitiesError
from ..normalizers import normalize_person
from .base import BaseHandlerModule, as_int, require

logger = logging.getLogger(__name__)

PEOPLE_FIELDS = (
    "id,displayName,givenName,surname,scoredEmailAddresses,jobTitle,"
    "department,companyName,officeLocation"
)
USER_FIELDS = (
    "id,displayName,givenName,surname,mail,userPrincipalName,jobTitle,"
    "department,companyName,officeLocation"
)


class PeopleModule(BaseHandlerModule):
    id = "people"
    name = "People"
    handlers = {
        "findPeople": "find_people",
        "searchPeople": "search_people",
        "getRelevantPeople": "get_relevant_people",
        "getPersonById": "get_person_by_id",
    }

    async def get_relevant_people(self, entities, context) -> list[dict[str, Any]]:
        limit = as_int(entities.get("limit"), 10, "limit")
        people = await self.graph.collect(
            "/me/people",
            params={"$top": min(limit, 100), "$select": PEOPLE_FIELDS},
            limit=limit,
        )
        return [normalize_person(person) for person in people]

    async def search_people(self, entities, context) -> list[dict[str, Any]]:
        require(entities, "query")
        limit = as_int(entities.get("limit"), 10, "limit")
        query = str(entities["query"]).replace('"', "")
        people = await self.graph.collect(
            "/me/people",
            params={
                "$search": f'"{query}"',
                "$top": min(limit, 100),
                "$select": PEOPLE_FIELDS,
            },
            limit=limit,
        )
        result = [normalize_person(person) for person in people]
        logger.info(f"search_people: {len(result)} matches")
        return result

    async def find_people(self, entities, context) -> list[dict[str, Any]]:
        """Find people by name or email.

        Ranked /me/people results come first; the directory is only
        consulted when they yield nothing.
        """
        query = entities.get("query") or entities.get("name") or entities.get("email")
        if not query:
            raise InvalidEntitiesError(
                "One of query, name or email is required",
                context={"missing": ["query"]},
            )

        people = await self.search_people({**entities, "query": query}, context)
        if people:
            return people

        term = str(query).replace("'", "''")
        users = await self.graph.collect(
            "/users",
            params={
                "$filter": (
                    f"startswith(displayName,'{term}') or startswith(mail,'{term}')"
                ),
                "$select": USER_FIELDS,
                "$top": 10,
            },
            limit=10,
        )
        return [normalize_person(user) for user in users]

    async def get_person_by_id(self, entities, context) -> dict[str, Any]:
        require(entities, "id")
        user = await self.graph.request(
            "GET", f"/users/{entities['id']}", params={"$select": USER_FIELDS}
        )
        if not user:
            raise InvalidEntitiesError(
                f"Person with ID {entities['id']} not found",
                context={"id": entities["id"]},
            )
        return normalize_person(user)
