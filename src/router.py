from collections import namedtuple

from envelope import EventKind

import sslog
log = sslog.logger(__name__)

InvokeTermination  = namedtuple("InvokeTermination", ["instance_id", "region", "notification_action"])
InvokeScheduledRun = namedtuple("InvokeScheduledRun", [])
NoAction           = namedtuple("NoAction", ["reason"])


def instance_id_due_for_termination(detail):
    """ Return the instance id an event detail announces the shutdown of, or None.
    """
    if not isinstance(detail, dict):
        return None
    instance_id = detail.get("instance-id")
    if not isinstance(instance_id, str) or instance_id == "":
        return None
    if detail.get("instance-action"):
        return instance_id
    if detail.get("state") == "shutting-down":
        return instance_id
    return None


def route(classified, config):
    if classified.kind == EventKind.UNRECOGNIZED:
        return NoAction(classified.reason)

    if classified.kind == EventKind.INTERRUPTION:
        instance_id = instance_id_due_for_termination(classified.detail)
        if instance_id is None:
            log.info("Interruption event does not identify a terminating instance. Nothing to do.")
            return NoAction("no instance due for termination")
        region = classified.region if classified.region != "" else config.main_region
        log.info("Instance '%s' in region '%s' is due for termination (action=%s)." %
                (instance_id, region, config.termination_notification_action.value))
        return InvokeTermination(instance_id, region, config.termination_notification_action)

    log.info("Starting scheduled replacement run.")
    return InvokeScheduledRun()
