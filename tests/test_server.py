import json

from fastapi.testclient import TestClient

from web.server import app

client = TestClient(app)


def edge(src, src_port, dst, dst_port):
    return {"from": {"nodeId": src, "port": src_port}, "to": {"nodeId": dst, "port": dst_port}}


def branch_graph():
    return {
        "nodes": [
            {"id": "in", "type": "TextInput", "config": {"text": "{answer}"}},
            {"id": "cond", "type": "Conditional", "config": {"operator": "equals", "target": "yes"}},
            {"id": "ok", "type": "TextOutput", "config": {"text": "Positive"}},
            {"id": "no", "type": "TextOutput", "config": {"text": "Negative"}},
        ],
        "edges": [
            edge("in", "text", "cond", "value"),
            edge("cond", "true", "ok", "text"),
            edge("cond", "false", "no", "text"),
        ],
    }


def test_node_types():
    resp = client.get("/api/node-types")
    assert resp.status_code == 200
    data = resp.json()
    assert "Conditional" in data["types"]
    assert data["nodes"]["ApiCall"]["params"]["properties"]["method"]["default"] == "GET"


def test_validate_ok_and_error():
    resp = client.post("/api/validate", json={"graph": branch_graph()})
    assert resp.json() == {"valid": True, "order": ["in", "cond", "ok", "no"]}

    graph = branch_graph()
    graph["nodes"][1]["type"] = "Nope"
    resp = client.post("/api/validate", json={"graph": graph})
    assert resp.json() == {"valid": False, "error": "UNKNOWN_NODE_TYPE:cond:Nope"}


def test_run_returns_result_and_events():
    resp = client.post("/api/run", json={"graph": branch_graph(), "inputs": {"in": {"answer": "yes"}}})
    assert resp.status_code == 200
    data = resp.json()

    result = data["result"]
    assert result["outcome"] == "completed"
    assert result["nodes"]["ok"]["outputs"] == {"content": "Positive"}
    assert result["nodes"]["no"]["status"] == "skipped"
    assert data["events"][-1]["type"] == "run_finished"


def test_run_rejects_invalid_graph():
    graph = branch_graph()
    graph["edges"].append(edge("ok", "content", "in", "text"))

    resp = client.post("/api/run", json={"flow": graph})

    assert resp.status_code == 422
    assert resp.json()["error"].startswith("UNKNOWN_OUTPUT_PORT")


def test_run_stream_ndjson():
    resp = client.post(
        "/api/run/stream", json={"graph": branch_graph(), "inputs": {"in": {"answer": "no"}}}
    )
    assert resp.status_code == 200
    items = [json.loads(line) for line in resp.text.splitlines() if line]

    assert items[0] == {"type": "step_started", "node_id": "in", "status": "running"}
    assert items[-1]["type"] == "result"
    assert items[-1]["result"]["nodes"]["no"]["outputs"] == {"content": "Negative"}
    assert items[-1]["result"]["nodes"]["ok"]["status"] == "skipped"
    assert "run_finished" in [item["type"] for item in items]


def test_run_rejects_malformed_inputs():
    resp = client.post("/api/run", json={"graph": branch_graph(), "inputs": {"in": "yes"}})

    assert resp.status_code == 422
    assert resp.json()["error"] == "INITIAL_INPUTS_NOT_OBJECT:in"
