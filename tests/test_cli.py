"""
Integration tests for the command-line entry point with a fake HTTP client.
"""

import json

import pytest

from squash import cli
from squash.errors import TransportError
from squash.models import SendResult

from fakes import header, make_response


class FakeClient:
    """Stands in for HttpClient: requires the X-Key header on every request."""

    def __init__(self, config, timeout=None):
        self.history = []

    def send(self, spec, save=False):
        if spec.host == "down.test":
            raise TransportError("refused")
        if header(spec, "x-key") != "k":
            return SendResult(response=make_response(status=403, body=b"no"))
        return SendResult(response=make_response())

    def close(self):
        pass


@pytest.fixture
def workdir(tmp_path, monkeypatch):
    monkeypatch.setattr(cli, "HttpClient", FakeClient)
    har = {
        "log": {
            "entries": [
                {
                    "request": {
                        "method": "GET",
                        "url": "https://ok.test/a?b=1",
                        "headers": [{"name": "X-Key", "value": "k"}, {"name": "Accept", "value": "*/*"}],
                    }
                },
                {"request": {"method": "GET", "url": "https://down.test/", "headers": []}},
            ]
        }
    }
    (tmp_path / "capture.har").write_text(json.dumps(har), encoding="utf-8")
    (tmp_path / "config.yaml").write_text(
        "input_har: {0}\nminimization:\n  min_delay_ms: 0\n  timeout_ms: 0\n  max_retries: 0\n".format(
            tmp_path / "capture.har"
        ),
        encoding="utf-8",
    )
    return tmp_path


class TestMain:
    def test_single_request(self, workdir):
        report = workdir / "report.json"
        out = workdir / "min.har"

        code = cli.main(
            ["--config", str(workdir / "config.yaml"), "--request-id", "0", "--report", str(report), "--output-har", str(out)]
        )

        assert code == 0
        data = json.loads(report.read_text(encoding="utf-8"))
        assert data[0]["result"] == "success"
        assert data[0]["final_request"]["url"] == "https://ok.test/a"
        assert data[0]["final_request"]["headers"] == [{"name": "X-Key", "value": "k"}]
        assert len(json.loads(out.read_text(encoding="utf-8"))["log"]["entries"]) == 1

    def test_all_requests_with_a_failure(self, workdir):
        assert cli.main(["--config", str(workdir / "config.yaml")]) == 1

    def test_missing_input_har(self, tmp_path):
        assert cli.main(["--config", str(tmp_path / "none.yaml")]) == 2
