from dataclasses import replace

import httpx
import pytest
from httpx import AsyncClient

from app.packages.registry_proxy import RegistryRelay
from app.packages.registry_proxy.tests.registry_test_utils import (
    CHALLENGE,
    RecordingUpstream,
    challenge_unless_bearer,
    fake_response,
    token_and_registry,
)


async def test_anonymous_pull_is_authenticated_by_proxy(
    client: AsyncClient, upstream: RecordingUpstream
):
    blob = bytes(range(256)) * 1024
    upstream.handler = token_and_registry(
        challenge_unless_bearer(
            body=blob, headers={"Docker-Content-Digest": "sha256:abc"}
        )
    )

    response = await client.get("/v2/library/ubuntu/blobs/sha256:abc")

    assert response.status_code == 200
    assert response.content == blob
    assert response.headers["docker-content-digest"] == "sha256:abc"
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["cache-control"] == "no-store"
    assert upstream.hosts() == ["registry.example", "auth.example", "registry.example"]

    token_call = upstream.requests[1]
    assert token_call.url.params["scope"] == "repository:library/ubuntu:pull"
    assert token_call.url.params["service"] == "registry.example"
    assert upstream.requests[2].headers["authorization"] == "Bearer issued-token"


async def test_short_path_uses_default_scope(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = token_and_registry(challenge_unless_bearer(body=b"{}"))

    response = await client.get("/v2/onlyonesegment")

    assert response.status_code == 200
    assert upstream.requests[1].url.params["scope"] == "repository:library/ubuntu:pull"


async def test_non_401_answer_is_returned_without_token_call(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = lambda request: fake_response(
        404,
        json={"errors": [{"code": "MANIFEST_UNKNOWN"}]},
        headers={"Docker-Distribution-API-Version": "registry/2.0"},
    )

    response = await client.get("/v2/library/ubuntu/manifests/nope")

    assert response.status_code == 404
    assert response.json() == {"errors": [{"code": "MANIFEST_UNKNOWN"}]}
    assert response.headers["docker-distribution-api-version"] == "registry/2.0"
    assert response.headers["access-control-allow-origin"] == "*"
    assert response.headers["cache-control"] == "no-store"
    assert upstream.hosts() == ["registry.example"]


async def test_head_request_is_relayed_as_head(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = lambda request: fake_response(
        200, headers={"Docker-Content-Digest": "sha256:def"}
    )

    response = await client.head("/v2/library/ubuntu/manifests/latest")

    assert response.status_code == 200
    assert response.headers["docker-content-digest"] == "sha256:def"
    assert upstream.requests[0].method == "HEAD"


async def test_path_and_query_are_passed_through(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = lambda request: fake_response(200, json={"tags": []})

    await client.get("/v2/library/ubuntu/tags/list?n=5&last=20.04")

    assert upstream.requests[0].url.raw_path == (
        b"/v2/library/ubuntu/tags/list?n=5&last=20.04"
    )
    assert upstream.requests[0].url.host == "registry.example"


async def test_version_check_without_trailing_slash(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = lambda request: fake_response(200, json={})

    response = await client.get("/v2")

    assert response.status_code == 200
    assert upstream.requests[0].url.path == "/v2"


async def test_client_authorization_is_preserved_on_first_attempt(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = lambda request: fake_response(200, content=b"ok")

    await client.get(
        "/v2/library/ubuntu/manifests/latest",
        headers={"Authorization": "Bearer client-token"},
    )

    (first,) = upstream.requests
    assert first.headers["authorization"] == "Bearer client-token"
    assert first.headers["host"] == "registry.example"


async def test_rejected_client_token_is_replaced_on_retry(
    client: AsyncClient, upstream: RecordingUpstream
):
    def registry(request):
        if request.headers.get("authorization") == "Bearer issued-token":
            return fake_response(200, content=b"ok")
        return fake_response(401, headers={"WWW-Authenticate": CHALLENGE})

    upstream.handler = token_and_registry(registry)

    response = await client.get(
        "/v2/library/ubuntu/manifests/latest",
        headers={"Authorization": "Bearer expired-token"},
    )

    assert response.status_code == 200
    retry = upstream.requests[2]
    assert retry.headers.get_list("authorization") == ["Bearer issued-token"]


async def test_401_without_challenge_is_passed_through(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = lambda request: fake_response(401, text="denied")

    response = await client.get("/v2/library/ubuntu/manifests/latest")

    assert response.status_code == 401
    assert response.text == "denied"
    assert upstream.hosts() == ["registry.example"]


async def test_token_failure_returns_502_without_retry(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = token_and_registry(
        challenge_unless_bearer(), token_response=fake_response(500)
    )

    response = await client.get("/v2/library/ubuntu/manifests/latest")

    assert response.status_code == 502
    assert response.json()["error"] == "token_issuance_failed"
    assert response.headers["access-control-allow-origin"] == "*"
    assert upstream.hosts() == ["registry.example", "auth.example"]


async def test_unreachable_registry_returns_502(
    client: AsyncClient, upstream: RecordingUpstream
):
    def handler(request):
        raise httpx.ConnectError("secret-host refused", request=request)

    upstream.handler = handler

    response = await client.get("/v2/library/ubuntu/manifests/latest")

    assert response.status_code == 502
    assert response.json() == {
        "error": "upstream_unreachable",
        "message": "Could not reach the upstream registry.",
    }
    assert "secret-host" not in response.text


async def test_challenge_realm_points_at_proxy(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = token_and_registry(
        lambda request: fake_response(401, headers={"WWW-Authenticate": CHALLENGE})
    )

    response = await client.get("/v2/")

    assert response.status_code == 401
    assert response.headers["www-authenticate"] == (
        'Bearer realm="http://proxy.test/token",service="registry.example"'
    )


async def test_challenge_realm_uses_public_url(
    client: AsyncClient, upstream: RecordingUpstream, relay: RegistryRelay
):
    relay.config = replace(relay.config, public_url="https://mirror.example")
    upstream.handler = token_and_registry(
        lambda request: fake_response(401, headers={"WWW-Authenticate": CHALLENGE})
    )

    response = await client.get("/v2/")

    assert response.headers["www-authenticate"].startswith(
        'Bearer realm="https://mirror.example/token"'
    )


async def test_challenge_realm_kept_when_rewrite_disabled(
    client: AsyncClient, upstream: RecordingUpstream, relay: RegistryRelay
):
    relay.config = replace(relay.config, rewrite_realm=False)
    upstream.handler = token_and_registry(
        lambda request: fake_response(401, headers={"WWW-Authenticate": CHALLENGE})
    )

    response = await client.get("/v2/")

    assert response.headers["www-authenticate"] == CHALLENGE


async def test_write_methods_rejected_by_default(
    client: AsyncClient, upstream: RecordingUpstream
):
    response = await client.put("/v2/library/ubuntu/manifests/latest", content=b"{}")

    assert response.status_code == 405
    assert response.json()["errors"][0]["code"] == "UNSUPPORTED"
    assert upstream.requests == []


async def test_write_methods_replay_body_on_retry(
    client: AsyncClient, upstream: RecordingUpstream, relay: RegistryRelay
):
    relay.config = replace(relay.config, allow_write_methods=True)

    def registry(request):
        if request.headers.get("authorization") == "Bearer issued-token":
            return fake_response(201, content=request.content)
        return fake_response(401, headers={"WWW-Authenticate": CHALLENGE})

    upstream.handler = token_and_registry(registry)

    response = await client.put(
        "/v2/acme/app/manifests/v1", content=b'{"schemaVersion": 2}'
    )

    assert response.status_code == 201
    assert response.content == b'{"schemaVersion": 2}'
    first, _, retry = upstream.requests
    assert first.content == retry.content == b'{"schemaVersion": 2}'


async def test_token_request_is_forwarded_verbatim(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = lambda request: fake_response(
        200, json={"token": "t", "expires_in": 300}
    )

    response = await client.get(
        "/token?service=registry.example&scope=repository:library/ubuntu:pull",
        headers={"Authorization": "Basic dXNlcjpwYXNz"},
    )

    assert response.status_code == 200
    assert response.json() == {"token": "t", "expires_in": 300}
    (request,) = upstream.requests
    assert request.url.host == "auth.example"
    assert request.url.raw_path == (
        b"/token?service=registry.example&scope=repository:library/ubuntu:pull"
    )
    assert request.headers["authorization"] == "Basic dXNlcjpwYXNz"


async def test_token_request_error_status_is_passed_through(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = lambda request: fake_response(401, json={"details": "bad"})

    response = await client.get("/token?service=registry.example")

    assert response.status_code == 401
    assert response.json() == {"details": "bad"}


async def test_token_request_failure_returns_502(
    client: AsyncClient, upstream: RecordingUpstream
):
    def handler(request):
        raise httpx.ConnectError("refused", request=request)

    upstream.handler = handler

    response = await client.get("/token?service=registry.example")

    assert response.status_code == 502
    assert response.json() == {"error": "Authentication request failed."}


@pytest.mark.parametrize("method", ["TRACE", "PROPFIND"])
async def test_other_methods_are_relayed(
    client: AsyncClient, upstream: RecordingUpstream, method: str
):
    upstream.handler = lambda request: fake_response(
        405, json={"errors": [{"code": "UNSUPPORTED"}]}
    )

    response = await client.request(method, "/v2/library/ubuntu/manifests/latest")

    assert response.status_code == 405
    assert response.json() == {"errors": [{"code": "UNSUPPORTED"}]}
    (request,) = upstream.requests
    assert request.method == method
    assert request.url.path == "/v2/library/ubuntu/manifests/latest"


async def test_empty_namespace_uses_default_scope(
    client: AsyncClient, upstream: RecordingUpstream
):
    upstream.handler = token_and_registry(challenge_unless_bearer(body=b"{}"))

    response = await client.get("/v2//ubuntu/manifests/latest")

    assert response.status_code == 200
    assert upstream.requests[1].url.params["scope"] == "repository:library/ubuntu:pull"


async def test_unreachable_token_host_returns_502(
    client: AsyncClient, upstream: RecordingUpstream
):
    registry = challenge_unless_bearer()

    def handler(request):
        if request.url.host == "auth.example":
            raise httpx.ConnectError("auth-host refused", request=request)
        return registry(request)

    upstream.handler = handler

    response = await client.get("/v2/library/ubuntu/manifests/latest")

    assert response.status_code == 502
    assert response.json()["error"] == "upstream_unreachable"
    assert "auth-host" not in response.text
    assert upstream.hosts() == ["registry.example", "auth.example"]
