import json
import logging
from types import MappingProxyType

from nodeflow.logging_utils import RunLogAdapter, RunLogFormatter, to_json
from nodeflow.nodes.input import ImagePayload


def make_record(msg, **extra):
    record = logging.LogRecord("nodeflow.test", logging.INFO, __file__, 1, msg, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


def test_formatter_folds_lines_and_tags_run_and_node():
    formatter = RunLogFormatter(fmt="%(message)s")

    line = formatter.format(make_record("node\n  failed:\tboom", run_id="r1", node_id="n2"))

    assert line == "node failed: boom [run_id=r1 node_id=n2]"
    assert formatter.format(make_record("plain")) == "plain"


def test_formatter_truncates():
    formatter = RunLogFormatter(fmt="%(message)s", max_len=5)
    assert formatter.format(make_record("abcdefgh")) == "abcde...(truncated)"


def test_adapter_attaches_run_and_node_ids(caplog):
    log = RunLogAdapter(logging.getLogger("nodeflow.test"), {"run_id": "r1"})

    with caplog.at_level(logging.DEBUG, logger="nodeflow.test"):
        log.info("run started")
        log.for_node("n1").debug("loaded")

    first, second = caplog.records
    assert (first.run_id, getattr(first, "node_id", None)) == ("r1", None)
    assert (second.run_id, second.node_id) == ("r1", "n1")


def test_to_json_handles_outputs():
    image = ImagePayload(data=b"\x89PNG", format="PNG", width=1, height=1)
    payload = {"out": MappingProxyType({"text": "é"}), "raw": b"abc", "image": image}

    assert json.loads(to_json(payload)) == {
        "out": {"text": "é"},
        "raw": "<3 bytes>",
        "image": "<image PNG 1x1 4B>",
    }
