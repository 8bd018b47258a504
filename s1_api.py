"""
Thin SentinelOne management API access for the duplicate cleanup.

Only the three calls the cleanup needs: list sites, list agents for a site,
decommission one agent. Listing failures raise; decommission failures are
returned as a DecommissionResult so one bad agent never stops the run.
"""

import dataclasses
import datetime as dt
from collections import Counter

import requests

API_PREFIX = "/web/api/v2.1"
DEFAULT_TIMEOUT = 30

OLDEST = dt.datetime.min.replace(tzinfo=dt.timezone.utc)


class SentinelOneError(Exception):
    pass


class SiteListingError(SentinelOneError):
    pass


class AgentListingError(SentinelOneError):
    pass


def parse_timestamp(value):
    """
    SentinelOne timestamps look like 2024-03-01T10:22:31.123456Z.
    Missing or unparsable values sort as the oldest possible time.
    """
    if not value or not isinstance(value, str):
        return OLDEST
    try:
        parsed = dt.datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return OLDEST
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=dt.timezone.utc)
    return parsed


@dataclasses.dataclass(frozen=True)
class Site:
    id: str
    name: str

    @classmethod
    def from_api(cls, record: dict) -> "Site":
        return cls(id=str(record.get("id") or ""), name=record.get("name") or "")


@dataclasses.dataclass(frozen=True)
class Agent:
    id: str
    uuid: str
    computer_name: str
    updated_at: str
    is_active: bool
    is_decommissioned: bool

    @classmethod
    def from_api(cls, record: dict) -> "Agent":
        name = record.get("computerName")
        if name is None:
            name = ""
        if not isinstance(name, str):
            name = str(name)
        return cls(
            id=str(record.get("id") or ""),
            uuid=record.get("uuid") or "",
            computer_name=name,
            updated_at=record.get("updatedAt") or "",
            is_active=bool(record.get("isActive")),
            is_decommissioned=bool(record.get("isDecommissioned")),
        )

    @property
    def updated(self) -> dt.datetime:
        return parse_timestamp(self.updated_at)


@dataclasses.dataclass
class DecommissionResult:
    agent_id: str
    ok: bool
    error: str = ""


def join_name_filters(filters):
    """Strip each filter and join the non-empty ones the way name__contains expects."""
    if not filters:
        return ""
    return ",".join(f.strip() for f in filters if f and f.strip())


class SentinelOneClient:
    def __init__(self, base_url: str, api_token: str, timeout: int = DEFAULT_TIMEOUT, session=None):
        self.base_url = base_url.rstrip("/") + API_PREFIX
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update(
            {
                "Authorization": f"ApiToken {api_token.strip()}",
                "Content-Type": "application/json",
            }
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        self.session.close()

    def _get_json(self, path, params):
        response = self.session.get(f"{self.base_url}{path}", params=params, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _paginate(self, path, params, error_cls):
        """
        Yield each page payload, following pagination.nextCursor until it is absent.
        Any request or decoding failure is re-raised as error_cls.
        """
        params = dict(params)
        while True:
            try:
                payload = self._get_json(path, params)
            except (requests.RequestException, ValueError) as e:
                raise error_cls(f"GET {path} failed: {e}") from e

            yield payload

            cursor = (payload.get("pagination") or {}).get("nextCursor")
            if not cursor:
                return
            params["cursor"] = cursor

    def iter_sites(self, name_filters=None):
        params = {"sortBy": "name", "state": "active"}
        joined = join_name_filters(name_filters)
        if joined:
            params["name__contains"] = joined

        for payload in self._paginate("/sites", params, SiteListingError):
            for record in (payload.get("data") or {}).get("sites") or []:
                yield Site.from_api(record)

    def collect_agents(self, site_id):
        """
        Return (roster, tally) for every active, non-decommissioned agent in a site.
        The tally counts agents per computer name and is built in the same pass.
        """
        roster = []
        tally = Counter()
        params = {"isDecommissioned": "False", "siteIds": site_id}

        for payload in self._paginate("/agents", params, AgentListingError):
            for record in payload.get("data") or []:
                agent = Agent.from_api(record)
                roster.append(agent)
                tally[agent.computer_name] += 1

        return roster, tally

    def decommission_agent(self, agent_id) -> DecommissionResult:
        body = {"filter": {"ids": str(agent_id)}}
        try:
            response = self.session.post(
                f"{self.base_url}/agents/actions/decommission",
                json=body,
                timeout=self.timeout,
            )
            response.raise_for_status()
        except requests.RequestException as e:
            return DecommissionResult(agent_id=str(agent_id), ok=False, error=repr(e))

        try:
            affected = (response.json().get("data") or {}).get("affected")
        except ValueError:
            affected = None
        if affected == 0:
            return DecommissionResult(agent_id=str(agent_id), ok=False, error="no agents affected")
        return DecommissionResult(agent_id=str(agent_id), ok=True)
