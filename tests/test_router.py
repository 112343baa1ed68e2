"""
Tests for request dispatch, CORS and error envelopes.
"""
from grappa import should

CORS = {
    "access-control-allow-origin": "*",
    "access-control-allow-methods": "GET, POST, OPTIONS",
    "access-control-allow-headers": "Content-Type, Authorization",
}


def assert_cors(response):
    for header, value in CORS.items():
        response.headers[header] | should.equal(value)


def test_options_short_circuits(make_client):
    """Preflight on any path answers 200 with an empty body and never reaches the backend"""
    client, backend = make_client()

    for path in ("/v1/chat/completions", "/anything/at/all"):
        response = client.options(path)
        response.status_code | should.equal(200)
        response.content | should.equal(b"")
        assert_cors(response)

    backend.requests | should.have.length(0)


def test_list_models(make_client, settings):
    client, backend = make_client()

    response = client.get("/v1/models")

    response.status_code | should.equal(200)
    assert_cors(response)
    body = response.json()
    body["object"] | should.equal("list")
    [m["id"] for m in body["data"]] | should.equal(list(settings.model_mapping))
    for model in body["data"]:
        model | should.have.keys("id", "object", "created", "owned_by")
        model["object"] | should.equal("model")
        model["owned_by"] | should.equal("nvidia-nim-proxy")
        (model["created"] > 10 ** 12) | should.be.true
    backend.requests | should.have.length(0)


def test_list_models_follows_mapping(make_client):
    client, _ = make_client(model_mapping={"only-one": "nim/one"})

    data = client.get("/v1/models").json()["data"]

    data | should.have.length(1)
    data[0]["id"] | should.equal("only-one")


def test_unknown_path_returns_404(test_client):
    response = test_client.get("/nope")

    response.status_code | should.equal(404)
    assert_cors(response)
    error = response.json()["error"]
    error["code"] | should.equal(404)
    error["type"] | should.equal("invalid_request_error")
    error["message"] | should.contain("/nope")


def test_wrong_method_returns_404(test_client):
    test_client.get("/v1/chat/completions").status_code | should.equal(404)
    test_client.post("/v1/models", json={}).status_code | should.equal(404)
    test_client.delete("/health").status_code | should.equal(404)


def test_unrouted_method_returns_404_envelope(test_client):
    """Methods the catch-all route does not register still get the 404 error envelope"""
    for method in ("TRACE", "PURGE"):
        response = test_client.request(method, "/v1/models")

        response.status_code | should.equal(404)
        assert_cors(response)
        error = response.json()["error"]
        error["code"] | should.equal(404)
        error["message"] | should.equal("Endpoint /v1/models not found")


def test_docs_routes_are_not_exposed(test_client):
    test_client.get("/docs").status_code | should.equal(404)
    test_client.get("/openapi.json").status_code | should.equal(404)
