import importlib
import json

import pytest

import app
import engine as Eng
from config import NotificationAction

WARNING = "EC2 Spot Instance Interruption Warning"


class RecordingEngine(Eng.FleetReplacementEngine):
    def __init__(self):
        self.runs = []

    def run(self, config):
        self.runs.append(config)


class RecordingTermination:
    calls = []

    def __init__(self, region):
        self.region = region

    def execute_action(self, instance_id, action):
        RecordingTermination.calls.append((instance_id, action, self.region))
        return True


@pytest.fixture
def agent(make_config):
    RecordingTermination.calls = []
    conf   = make_config()
    engine = RecordingEngine()
    return app.make_handler(conf, engine, termination_factory=RecordingTermination), engine


class TestHandler:
    def test_interruption_triggers_termination(self, agent):
        handler, engine = agent
        handler({"detailType": WARNING, "region": "us-east-1",
                 "detail": {"instance-id": "i-0123", "instance-action": "terminate"}}, None)
        assert RecordingTermination.calls == [("i-0123", NotificationAction.AUTO, "us-east-1")]
        assert engine.runs == []

    def test_scheduled_event_runs_engine_once(self, agent):
        handler, engine = agent
        handler({"detailType": "Scheduled Event", "region": "eu-west-1"}, None)
        assert len(engine.runs) == 1
        assert RecordingTermination.calls == []

    def test_sns_wrapped_interruption(self, agent):
        handler, engine = agent
        message = json.dumps({"detail-type": WARNING, "region": "eu-central-1",
                              "detail": {"instance-id": "i-0456", "state": "shutting-down"}})
        handler({"Records": [{"EventSource": "aws:sns", "Sns": {"Message": message}}]}, None)
        assert RecordingTermination.calls == [("i-0456", NotificationAction.AUTO, "eu-central-1")]

    def test_malformed_payload_is_dropped(self, agent):
        handler, engine = agent
        assert handler(b"{not json", None) is None
        assert engine.runs == []
        assert RecordingTermination.calls == []

    def test_interruption_without_instance_does_nothing(self, agent):
        handler, engine = agent
        handler({"detail-type": WARNING, "region": "us-east-1", "detail": {}}, None)
        assert engine.runs == []
        assert RecordingTermination.calls == []

    def test_engine_errors_propagate(self, make_config):
        class FailingEngine(Eng.FleetReplacementEngine):
            def run(self, config):
                raise RuntimeError("boom")
        handler = app.make_handler(make_config(), FailingEngine(), termination_factory=RecordingTermination)
        with pytest.raises(RuntimeError):
            handler({}, None)


class TestDirectMode:
    def test_no_lambda_handler(self):
        assert app.MODE == "direct"
        assert not hasattr(app, "lambda_handler")

    def test_main_runs_engine(self, monkeypatch, instance_data_url):
        engine = RecordingEngine()
        monkeypatch.setattr(app.Eng, "load_engine", lambda reference: engine)
        assert app.main(["--instance_data_url", instance_data_url, "--regions", "eu-*"]) == 0
        assert len(engine.runs) == 1
        assert engine.runs[0].regions == ("eu-*",)

    def test_version_exits_before_validation(self, capsys):
        with pytest.raises(SystemExit) as e:
            app.main(["--version", "--bidding_policy", "nonsense", "--instance_data_url", "file:///nowhere.json"])
        assert e.value.code == 0
        assert capsys.readouterr().out.startswith("SpotSwap build: ")

    def test_invalid_value_exits(self, instance_data_url):
        with pytest.raises(SystemExit) as e:
            app.main(["--instance_data_url", instance_data_url, "--bidding_policy", "nonsense"])
        assert e.value.code == 1

    def test_missing_instance_data_exits(self, tmp_path):
        with pytest.raises(SystemExit) as e:
            app.main(["--instance_data_url", (tmp_path / "missing.json").as_uri()])
        assert e.value.code == 1

    def test_unknown_engine_exits(self, instance_data_url):
        with pytest.raises(SystemExit) as e:
            app.main(["--instance_data_url", instance_data_url, "--replacement_engine", "no_such_module_here:Engine"])
        assert e.value.code == 1


class TestTriggeredMode:
    def test_handler_is_built_at_import(self, monkeypatch, instance_data_url):
        monkeypatch.setenv("AWS_LAMBDA_FUNCTION_NAME", "spotswap")
        monkeypatch.setenv("INSTANCE_DATA_URL", instance_data_url)
        try:
            importlib.reload(app)
            assert app.MODE == "triggered"
            assert callable(app.lambda_handler)
        finally:
            monkeypatch.delenv("AWS_LAMBDA_FUNCTION_NAME")
            monkeypatch.delenv("INSTANCE_DATA_URL")
            importlib.reload(app)
            # reload keeps attributes the direct-mode module never defines
            app.__dict__.pop("lambda_handler", None)
        assert app.MODE == "direct"
