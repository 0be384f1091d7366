import json

import pytest

import envelope
import router
from config import NotificationAction

WARNING = "EC2 Spot Instance Interruption Warning"


class TestInstanceIdDueForTermination:
    @pytest.mark.parametrize("detail,expected", [
        ({"instance-id": "i-0123", "instance-action": "terminate"}, "i-0123"),
        ({"instance-id": "i-0123", "instance-action": "stop"}, "i-0123"),
        ({"instance-id": "i-0123", "state": "shutting-down"}, "i-0123"),
        ({"instance-id": "i-0123", "state": "running"}, None),
        ({"instance-id": "i-0123"}, None),
        ({"instance-action": "terminate"}, None),
        ({"instance-id": "", "instance-action": "terminate"}, None),
        ({"instance-id": 12, "instance-action": "terminate"}, None),
        (None, None),
        ("i-0123", None),
    ])
    def test_detail(self, detail, expected):
        assert router.instance_id_due_for_termination(detail) == expected


class TestRoute:
    def test_interruption(self, make_config):
        conf  = make_config(termination_notification_action="detach")
        event = {"detailType": WARNING, "region": "us-east-1",
                 "detail": {"instance-id": "i-0123", "instance-action": "terminate"}}
        action = router.route(envelope.classify(event), conf)
        assert action == router.InvokeTermination("i-0123", "us-east-1", NotificationAction.DETACH)

    def test_interruption_default_action(self, make_config):
        event = {"detail-type": WARNING, "region": "ap-south-1",
                 "detail": {"instance-id": "i-0456", "instance-action": "terminate"}}
        action = router.route(envelope.classify(json.dumps(event)), make_config())
        assert action == router.InvokeTermination("i-0456", "ap-south-1", NotificationAction.AUTO)

    def test_event_region_falls_back_to_main_region(self, make_config):
        event = {"detail-type": WARNING, "detail": {"instance-id": "i-0123", "instance-action": "terminate"}}
        action = router.route(envelope.classify(event), make_config())
        assert action.region == "eu-west-1"

    def test_interruption_without_terminating_instance(self, make_config):
        event = {"detail-type": WARNING, "region": "us-east-1", "detail": {"instance-id": "i-0123", "state": "running"}}
        action = router.route(envelope.classify(event), make_config())
        assert isinstance(action, router.NoAction)

    def test_scheduled(self, make_config):
        action = router.route(envelope.classify({"detailType": "Scheduled Event", "region": "eu-west-1"}), make_config())
        assert action == router.InvokeScheduledRun()

    def test_unrecognized(self, make_config):
        action = router.route(envelope.classify(b"{not json"), make_config())
        assert isinstance(action, router.NoAction)
        assert "pub/sub envelope" in action.reason
