""" engine.py

Fleet replacement engines, run once per scheduled invocation.

An engine receives the ConfigModel and discovers by itself the elastic groups to work on.
The built-in DiscoveryEngine performs the discovery part:

    * Lists the regions enabled by 'regions',
    * Lists the groups of each region and keeps those selected by the tag filters,
    * Evaluates the schedule gate of each group (group tags may override it),
    * Hands every permitted group to process_group().

process_group() is where a replacement algorithm plugs in. Another engine can be selected
with the 'replacement_engine' parameter ('module:attribute' of an engine factory).
"""
import importlib

import misc
import schedule

import sslog
log = sslog.logger(__name__)


class FleetReplacementEngine:
    def run(self, config):
        raise NotImplementedError


class DiscoveryEngine(FleetReplacementEngine):
    def __init__(self, client_factory=None, now=None):
        self.client_factory = client_factory if client_factory is not None else misc.client_for
        self.now            = now

    def enabled_regions(self, config):
        ec2      = self.client_factory("ec2", config.main_region)
        response = ec2.describe_regions()
        regions  = sorted([r["RegionName"] for r in response.get("Regions", [])])
        enabled  = [r for r in regions if config.region_enabled(r)]
        log.info("Enabled regions: %s" % enabled)
        return enabled

    def groups(self, region):
        client    = self.client_factory("autoscaling", region)
        paginator = client.get_paginator("describe_auto_scaling_groups")
        for response in paginator.paginate():
            for group in response.get("AutoScalingGroups", []):
                yield group

    def scan_region(self, region, config, now):
        permitted = []
        for group in self.groups(region):
            name = group["AutoScalingGroupName"]
            tags = {t["Key"]: t.get("Value", "") for t in group.get("Tags", [])}
            if not config.group_selected(tags):
                log.debug("Group '%s' (%s) not selected by tag filters." % (name, region))
                continue
            if not schedule.group_permits(tags, config, now):
                log.info("Group '%s' (%s) is outside of its action schedule. Skipping." % (name, region))
                continue
            self.process_group(region, group, config)
            permitted.append((region, name))
        return permitted

    def process_group(self, region, group, config):
        log.log(log.NOTICE, "Group '%s' (%s) is eligible for spot replacement (desired capacity=%s, min on-demand=%d)." %
                (group["AutoScalingGroupName"], region, group.get("DesiredCapacity"),
                 config.min_on_demand(group.get("DesiredCapacity", 0))))

    def run(self, config):
        """ Scan all enabled regions. Return the (region, group name) pairs allowed to act.
        """
        now = self.now if self.now is not None else schedule.local_moment(config.cron_timezone)
        log.debug("Current moment (hour, weekday) in %s: %s" % (config.cron_timezone, now))
        permitted = []
        for region in self.enabled_regions(config):
            permitted.extend(self.scan_region(region, config, now))
        log.info("%d group(s) permitted to act." % len(permitted))
        return permitted


def load_engine(reference=""):
    """ Instantiate the engine designated by 'module:attribute' (built-in DiscoveryEngine when empty).
    """
    if reference is None or reference == "":
        return DiscoveryEngine()
    module_name, _, attribute = reference.partition(":")
    if module_name == "" or attribute == "":
        raise ValueError("Engine reference '%s' must be written 'module:attribute'!" % reference)
    module = importlib.import_module(module_name)
    engine = getattr(module, attribute)()
    log.info("Using replacement engine '%s'." % reference)
    return engine
