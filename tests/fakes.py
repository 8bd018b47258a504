import requests

from s1_api import Agent


class FakeResponse:
    def __init__(self, payload=None, status_code=200):
        self.payload = payload
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Error")

    def json(self):
        if self.payload is None:
            raise ValueError("No JSON object could be decoded")
        return self.payload


class FakeSession:
    """Serves queued GET responses per path suffix and records every call."""

    def __init__(self, pages=None, post_status=None):
        self.headers = {}
        self.pages = {path: list(responses) for path, responses in (pages or {}).items()}
        self.post_status = post_status or {}
        self.gets = []
        self.posts = []
        self.closed = False

    def get(self, url, params=None, timeout=None):
        self.gets.append((url, dict(params or {})))
        for path, responses in self.pages.items():
            if url.endswith(path):
                item = responses.pop(0)
                if isinstance(item, Exception):
                    raise item
                return item
        raise AssertionError(f"unexpected GET {url}")

    def post(self, url, json=None, timeout=None):
        self.posts.append((url, json))
        agent_id = json["filter"]["ids"]
        status = self.post_status.get(agent_id, 200)
        if isinstance(status, Exception):
            raise status
        if isinstance(status, FakeResponse):
            return status
        return FakeResponse({"data": {"affected": 1}}, status_code=status)

    def close(self):
        self.closed = True


def agent(id, name, updated, active=False):
    return Agent(
        id=str(id),
        uuid=f"uuid-{id}",
        computer_name=name,
        updated_at=updated,
        is_active=active,
        is_decommissioned=False,
    )


def agent_record(id, name, updated, active=False):
    return {
        "id": str(id),
        "uuid": f"uuid-{id}",
        "computerName": name,
        "updatedAt": updated,
        "isActive": active,
        "isDecommissioned": False,
    }


def sites_page(sites, cursor=None):
    return FakeResponse(
        {
            "data": {"sites": [{"id": sid, "name": name} for sid, name in sites]},
            "pagination": {"nextCursor": cursor, "totalItems": len(sites)},
        }
    )


def agents_page(records, cursor=None):
    return FakeResponse({"data": records, "pagination": {"nextCursor": cursor}})
