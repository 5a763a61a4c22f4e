import json
from collections import namedtuple

import pytest
import requests
from requests.structures import CaseInsensitiveDict

REGISTRY = "https://myregistry.io"
REALM = "https://auth.example/token"
TOKEN = "t0ken"

Call = namedtuple("Call", ["method", "url", "headers", "params", "auth"])


def make_response(status, body=b"", headers=None, url=None):
    """A real requests.Response, as if it came off the wire"""

    if isinstance(body, (dict, list)):
        body = json.dumps(body).encode()
    elif isinstance(body, str):
        body = body.encode()

    r = requests.Response()
    r.status_code = status
    r._content = body
    r.headers = CaseInsensitiveDict(headers or {})
    r.encoding = "utf-8"
    r.url = url
    return r


class FakeRegistry:
    """Stand in for the requests module.  Behaves like a token
    authenticated registry with a token service at REALM.  Every
    request is recorded in calls.

    The canned answers can be replaced by setting token_response,
    manifest_response or delete_response to (status, body, headers).
    Set challenge to None to get a 401 without WWW-Authenticate.
    """

    def __init__(self, url=REGISTRY):
        self.url = url
        self.calls = []
        self.tags = {}
        self.challenge = 'Bearer realm="%s",service="registry",scope="repository:{repo}:{action}"' % REALM
        self.token_response = (200, {"token": TOKEN}, None)
        self.manifest_response = None
        self.delete_response = None

    def request(self, method, url, headers=None, params=None, auth=None):
        headers = dict(headers or {})
        self.calls.append(Call(method, url, headers, params, auth))

        if url == REALM:
            return make_response(*self.token_response, url=url)

        repo, ref = url[len(self.url + "/v2/"):].split("/manifests/")

        if headers.get("Authorization") != f"Bearer {TOKEN}":
            if self.challenge is None:
                return make_response(401, "unauthorized", url=url)
            action = "delete" if method == "DELETE" else "pull"
            return make_response(401, {"errors": [{"code": "UNAUTHORIZED"}]},
                                 {"WWW-Authenticate": self.challenge.format(repo=repo, action=action)},
                                 url=url)

        if method == "GET":
            if self.manifest_response:
                return make_response(*self.manifest_response, url=url)
            digest = self.tags.get((repo, ref))
            if digest is None:
                return make_response(404, {"errors": [{"code": "MANIFEST_UNKNOWN"}]}, url=url)
            return make_response(200, {"schemaVersion": 2},
                                 {"Docker-Content-Digest": digest,
                                  "Content-Type": "application/vnd.oci.image.manifest.v1+json"},
                                 url=url)

        if method == "DELETE":
            if self.delete_response:
                return make_response(*self.delete_response, url=url)
            gone = [k for k, v in self.tags.items() if k[0] == repo and v == ref]
            if not gone:
                return make_response(404, {"errors": [{"code": "MANIFEST_UNKNOWN"}]}, url=url)
            for k in gone:
                del self.tags[k]
            return make_response(202, url=url)

        return make_response(405, url=url)

    def authenticated(self, method=None):
        """The requests that were made to the registry with a token"""

        return [c for c in self.calls
                if c.url != REALM and c.headers.get("Authorization") == f"Bearer {TOKEN}"
                and (method is None or c.method == method)]


@pytest.fixture
def fake_registry():
    reg = FakeRegistry()
    reg.tags[("app", "v1")] = "sha256:abc"
    return reg
