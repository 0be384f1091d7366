""" termination.py

Handle a spot instance about to be reclaimed by the provider.

The instance is removed from its elastic group right away so that the group starts a
replacement without waiting for the reclaim:

    * 'terminate': terminate through the group API, lifecycle hooks are triggered,
    * 'detach':    detach from the group, lifecycle hooks are not triggered,
    * 'auto':      'terminate' when the group has a termination lifecycle hook, 'detach' otherwise.

Desired capacity is never decremented.
"""
from botocore.exceptions import ClientError

import misc
from config import NotificationAction

import sslog
log = sslog.logger(__name__)

TERMINATING_TRANSITION = "autoscaling:EC2_INSTANCE_TERMINATING"


class SpotTermination:
    def __init__(self, region, autoscaling=None):
        self.region      = region
        self.autoscaling = autoscaling if autoscaling is not None else misc.client_for("autoscaling", region)

    def get_group_name(self, instance_id):
        response = self.autoscaling.describe_auto_scaling_instances(InstanceIds=[instance_id])
        instances = response.get("AutoScalingInstances", [])
        if not len(instances):
            return None
        return instances[0]["AutoScalingGroupName"]

    def has_termination_lifecycle_hook(self, group_name):
        response = self.autoscaling.describe_lifecycle_hooks(AutoScalingGroupName=group_name)
        return any(h.get("LifecycleTransition") == TERMINATING_TRANSITION for h in response.get("LifecycleHooks", []))

    def resolve_action(self, group_name, action):
        if action != NotificationAction.AUTO:
            return action
        if self.has_termination_lifecycle_hook(group_name):
            log.debug("Group '%s' has a termination lifecycle hook." % group_name)
            return NotificationAction.TERMINATE
        return NotificationAction.DETACH

    def execute_action(self, instance_id, action):
        """ Apply 'action' (a NotificationAction) to 'instance_id'. Return True on success.
        """
        try:
            group_name = self.get_group_name(instance_id)
            if group_name is None:
                log.info("Instance '%s' does not belong to any group in region '%s'. Nothing to do." %
                        (instance_id, self.region))
                return False
            action = self.resolve_action(group_name, action)
            if action == NotificationAction.TERMINATE:
                log.log(log.NOTICE, "Terminating instance '%s' of group '%s'..." % (instance_id, group_name))
                self.autoscaling.terminate_instance_in_auto_scaling_group(
                        InstanceId=instance_id,
                        ShouldDecrementDesiredCapacity=False)
            else:
                log.log(log.NOTICE, "Detaching instance '%s' from group '%s'..." % (instance_id, group_name))
                self.autoscaling.detach_instances(
                        InstanceIds=[instance_id],
                        AutoScalingGroupName=group_name,
                        ShouldDecrementDesiredCapacity=False)
        except ClientError as e:
            log.exception("Failed to handle interruption of instance '%s' in region '%s' : %s" %
                    (instance_id, self.region, e))
            return False
        return True
