""" config.py

Operational parameters of the agent.

Every parameter is declared in a registry with its default value, its format and a
description. Raw values are collected from stacked layers (lowest precedence first):

    * Built-in defaults,
    * YAML files listed in 'config_files' (s3://, file:// or http(s):// URLs),
    * Environment variables named after the upper-cased parameter (ex: MIN_ON_DEMAND_NUMBER),
    * Command line flags (ex: --min_on_demand_number 2).

build() validates the merged raw values and returns an immutable ConfigModel. A process
builds it once and hands it explicitly to whoever needs it.
"""
import os
import re
import sys
import math
import argparse
import fnmatch
from collections import namedtuple
from collections import OrderedDict
from enum import Enum
from importlib import metadata
from types import MappingProxyType

import arrow
import yaml

import misc
import schedule
import instancedata
from schedule import ScheduleState

import sslog
log = sslog.logger(__name__)


class ConfigError(Exception):
    pass

class InvalidConfigValue(ConfigError):
    def __init__(self, parameter, value, reason):
        self.parameter = parameter
        self.value     = value
        self.reason    = reason
        super().__init__("Invalid value %r for parameter '%s' : %s" % (value, parameter, reason))


class BiddingPolicy(Enum):
    NORMAL     = "normal"
    AGGRESSIVE = "aggressive"

class TagFilteringMode(Enum):
    OPT_IN  = "opt-in"
    OPT_OUT = "opt-out"

class TerminationMethod(Enum):
    TERMINATE = "terminate"
    DETACH    = "detach"

class NotificationAction(Enum):
    AUTO      = "auto"
    TERMINATE = "terminate"
    DETACH    = "detach"

class SpotProductDescription(Enum):
    LINUX       = "Linux/UNIX"
    SUSE        = "SUSE Linux"
    WINDOWS     = "Windows"
    LINUX_VPC   = "Linux/UNIX (Amazon VPC)"
    SUSE_VPC    = "SUSE Linux (Amazon VPC)"
    WINDOWS_VPC = "Windows (Amazon VPC)"


DEFAULT_TAG_FILTERS = {
    TagFilteringMode.OPT_IN:  (("spot-enabled", "true"),),
    TagFilteringMode.OPT_OUT: (("spot-enabled", "false"),),
}

_registry = OrderedDict()

def register(parameters, ignore_double_definition=False):
    """ Declare parameters.

    Keys are "<name>[,Stable]". Values are either a plain default value (String format) or a
    dict with at least "DefaultValue" and "Format".
    """
    for c in parameters:
        p   = misc.parse_line_as_list_of_dict(c)
        key = p[0]["_"]
        if not ignore_double_definition and key in _registry:
            raise Exception("Double definition of key '%s'!" % key)
        definition = parameters[c]
        if not isinstance(definition, dict):
            definition = {"DefaultValue": definition, "Format": "String"}
        metas = {k: v for k, v in p[0].items() if k != "_"}
        _registry[key] = dict(definition, Stable=bool(metas.get("Stable", False)))

def definitions():
    return _registry


register({
    "regions,Stable": {
        "DefaultValue": "",
        "Format"      : "PatternList",
        "Description" : """Regions where the agent is active.

Comma or whitespace separated list, globs supported. By default every region is enabled.
    Ex: --regions 'eu-*,us-east-1'
        """
    },
    "allowed_instance_types,Stable": {
        "DefaultValue": "",
        "Format"      : "PatternList",
        "Description" : """Instance types among which spot replacements are searched.

Comma or whitespace separated list, globs supported. By default any instance type is allowed.
    Ex: --allowed_instance_types 'c5.*,c4.xlarge'
        """
    },
    "disallowed_instance_types,Stable": {
        "DefaultValue": "",
        "Format"      : "PatternList",
        "Description" : """Instance types never used as spot replacements.

Comma or whitespace separated list, globs supported. Takes precedence over allowed_instance_types.
    Ex: --disallowed_instance_types 't2.*,c4.xlarge'
        """
    },
    "bidding_policy,Stable": {
        "DefaultValue": "normal",
        "Format"      : "Enum",
        "Enum"        : BiddingPolicy,
        "Description" : """Spot bid policy: 'normal' bids the on-demand price (times the multiplier),
'aggressive' bids spot_price_buffer_percentage above the current spot price.
        """
    },
    "min_on_demand_number,Stable": {
        "DefaultValue": 0,
        "Format"      : "Integer",
        "Min"         : 0,
        "Description" : """Number of on-demand instances kept running in each group.
        """
    },
    "min_on_demand_percentage,Stable": {
        "DefaultValue": 0.0,
        "Format"      : "Float",
        "Min"         : 0.0,
        "Max"         : 100.0,
        "Description" : """Percentage of the instances of each group kept on-demand.

Ignored when min_on_demand_number is also set.
        """
    },
    "on_demand_price_multiplier,Stable": {
        "DefaultValue": 1.0,
        "Format"      : "Float",
        "Min"         : 0.0,
        "MinExclusive": True,
        "Description" : """Multiplier applied to on-demand prices. Values below 1.0 model volume discounts.
    Ex: --on_demand_price_multiplier 0.6
        """
    },
    "spot_price_buffer_percentage,Stable": {
        "DefaultValue": 10.0,
        "Format"      : "Float",
        "Min"         : 0.0,
        "Description" : """Bid this percentage above the current spot price ('aggressive' policy).

A bid exceeding the on-demand price is capped to the on-demand price.
        """
    },
    "spot_product_description,Stable": {
        "DefaultValue": SpotProductDescription.LINUX_VPC.value,
        "Format"      : "Enum",
        "Enum"        : SpotProductDescription,
        "Description" : """Spot product used when looking up the spot price history.
        """
    },
    "tag_filtering_mode,Stable": {
        "DefaultValue": "opt-in",
        "Format"      : "Enum",
        "Enum"        : TagFilteringMode,
        "Description" : """'opt-in' processes only groups matching tag_filters, 'opt-out' processes all
groups except those matching tag_filters.
        """
    },
    "tag_filters,Stable": {
        "DefaultValue": "",
        "Format"      : "TagList",
        "Description" : """Comma separated key=value tags used to select groups.

Defaults to 'spot-enabled=true' in opt-in mode and 'spot-enabled=false' in opt-out mode.
    Ex: --tag_filters 'spot-enabled=true,Environment=dev,Team=vision'
        """
    },
    "instance_termination_method,Stable": {
        "DefaultValue": "terminate",
        "Format"      : "Enum",
        "Enum"        : TerminationMethod,
        "Description" : """How replaced on-demand instances are removed: 'terminate' or 'detach'.
        """
    },
    "termination_notification_action,Stable": {
        "DefaultValue": "auto",
        "Format"      : "Enum",
        "Enum"        : NotificationAction,
        "Description" : """Action on spot interruption notifications: 'terminate' (lifecycle hooks triggered),
'detach' (lifecycle hooks not triggered) or 'auto' (terminate if the group has a lifecycle hook, else detach).
        """
    },
    "cron_schedule,Stable": {
        "DefaultValue": "* *",
        "Format"      : "Schedule",
        "Description" : """Schedule in which to perform (or not) replacement actions. Format: <hours> <weekdays>
    Ex: --cron_schedule '9-18 1-5'  # Workdays during office hours
        """
    },
    "cron_schedule_state,Stable": {
        "DefaultValue": "on",
        "Format"      : "Enum",
        "Enum"        : ScheduleState,
        "Description" : """'on' takes actions only inside cron_schedule, 'off' only outside of it.
        """
    },
    "cron_timezone": {
        "DefaultValue": "UTC",
        "Format"      : "TimeZone",
        "Description" : """Timezone in which cron_schedule is evaluated.
        """
    },
    "instance_data_url": {
        "DefaultValue": instancedata.DEFAULT_URL,
        "Format"      : "String",
        "Description" : """Location of the instance type reference dataset.
        """
    },
    "replacement_engine": {
        "DefaultValue": "",
        "Format"      : "String",
        "Description" : """'module:attribute' of the fleet replacement engine factory. Empty means the built-in discovery engine.
        """
    },
    "config_files": {
        "DefaultValue": "",
        "Format"      : "StringList",
        "Description" : """Semi-column separated list of YAML files to load as a configuration layer.
        """
    },
    "version": {
        "DefaultValue": False,
        "Format"      : "Bool",
        "Description" : """Print version number and exit.
        """
    },
})


def version():
    v = os.environ.get("SPOTSWAP_VERSION", "")
    if v != "":
        return v
    try:
        return metadata.version("spotswap")
    except metadata.PackageNotFoundError:
        return "number missing"

def print_version_and_exit():
    print("SpotSwap build:", version())
    sys.exit(0)


# Value parsers by 'Format'

_TRUE  = ["1", "true", "yes", "on"]
_FALSE = ["0", "false", "no", "off", ""]

def _parse_bool(name, definition, value):
    if isinstance(value, bool):
        return value
    v = str(value).strip().lower()
    if v in _TRUE:  return True
    if v in _FALSE: return False
    raise InvalidConfigValue(name, value, "expected a boolean")

def _parse_number(name, definition, value, cls):
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InvalidConfigValue(name, value, "expected a number")
    try:
        if cls == int and isinstance(value, float):
            if not value.is_integer():
                raise ValueError("not an integer")
            v = int(value)
        else:
            v = cls(value.strip() if isinstance(value, str) else value)
    except ValueError as e:
        raise InvalidConfigValue(name, value, str(e))
    if not math.isfinite(v):
        raise InvalidConfigValue(name, value, "must be finite")
    if "Min" in definition:
        if v < definition["Min"] or (definition.get("MinExclusive") and v == definition["Min"]):
            op = ">" if definition.get("MinExclusive") else ">="
            raise InvalidConfigValue(name, value, "must be %s %s" % (op, definition["Min"]))
    if "Max" in definition and v > definition["Max"]:
        raise InvalidConfigValue(name, value, "must be <= %s" % definition["Max"])
    return v

def _parse_integer(name, definition, value):
    return _parse_number(name, definition, value, int)

def _parse_float(name, definition, value):
    return _parse_number(name, definition, value, float)

def _parse_string(name, definition, value):
    if isinstance(value, bool) or not isinstance(value, (str, int, float)):
        raise InvalidConfigValue(name, value, "expected a string")
    return str(value).strip()

def _parse_string_list(name, definition, value):
    return tuple(i.strip() for i in _parse_string(name, definition, value).split(";") if i.strip() != "")

def _parse_pattern_list(name, definition, value):
    v = _parse_string(name, definition, value)
    return tuple(p for p in re.split(r"[\s,]+", v) if p != "")

def _parse_tag_list(name, definition, value):
    v    = _parse_string(name, definition, value)
    tags = []
    for d in misc.parse_line_as_list_of_dict(v.replace(";", ","), with_leading_string=False, default=[]):
        for k in d:
            if k == "" or d[k] is True:
                raise InvalidConfigValue(name, value, "tag filters must be written key=value")
            tags.append((k, d[k]))
    return tuple(tags)

def _parse_enum(name, definition, value):
    cls = definition["Enum"]
    if isinstance(value, bool) and cls == ScheduleState:
        # YAML reads unquoted on/off as booleans
        value = "on" if value else "off"
    if not isinstance(value, str):
        raise InvalidConfigValue(name, value, "expected a string")
    try:
        return cls(value.strip())
    except ValueError:
        raise InvalidConfigValue(name, value, "must be one of %s" % "|".join([e.value for e in cls]))

def _parse_schedule(name, definition, value):
    try:
        return schedule.parse_window(value)
    except ValueError as e:
        raise InvalidConfigValue(name, value, str(e))

def _parse_timezone(name, definition, value):
    v = _parse_string(name, definition, value)
    try:
        arrow.utcnow().to(v)
    except Exception as e:
        raise InvalidConfigValue(name, value, "unknown timezone (%s)" % e)
    return v

_PARSERS = {
    "Bool"       : _parse_bool,
    "Integer"    : _parse_integer,
    "Float"      : _parse_float,
    "String"     : _parse_string,
    "StringList" : _parse_string_list,
    "PatternList": _parse_pattern_list,
    "TagList"    : _parse_tag_list,
    "Enum"       : _parse_enum,
    "Schedule"   : _parse_schedule,
    "TimeZone"   : _parse_timezone,
}


def _match_any(value, patterns, empty_matches):
    if not len(patterns):
        return empty_matches
    return any(fnmatch.fnmatchcase(value, p) for p in patterns)


class ConfigModel(namedtuple("ConfigModel", [
        "main_region",
        "regions",
        "allowed_instance_types",
        "disallowed_instance_types",
        "bidding_policy",
        "min_on_demand_number",
        "min_on_demand_percentage",
        "on_demand_price_multiplier",
        "spot_price_buffer_percentage",
        "spot_product_description",
        "tag_filtering_mode",
        "tag_filters",
        "instance_termination_method",
        "termination_notification_action",
        "cron_schedule",
        "cron_schedule_state",
        "cron_timezone",
        "instance_data_url",
        "replacement_engine",
        "instance_data",
        ])):
    __slots__ = ()

    def region_enabled(self, region):
        return _match_any(region, self.regions, empty_matches=True)

    def instance_type_allowed(self, instance_type):
        if _match_any(instance_type, self.disallowed_instance_types, empty_matches=False):
            return False
        return _match_any(instance_type, self.allowed_instance_types, empty_matches=True)

    def group_selected(self, tags):
        """ Tell if a group carrying 'tags' (a dict) is processed according to the tag filters.
        """
        matching = all(tags.get(k) == v for k, v in self.tag_filters)
        if self.tag_filtering_mode == TagFilteringMode.OPT_IN:
            return matching
        return not matching

    def min_on_demand(self, total):
        """ Number of instances to keep on-demand in a group of 'total' instances.
        """
        if self.min_on_demand_number > 0:
            return min(self.min_on_demand_number, total)
        return int(math.floor(total * self.min_on_demand_percentage / 100.0))

    def on_demand_price(self, price):
        return price * self.on_demand_price_multiplier

    def bid_price(self, spot_price, on_demand_price):
        cap = self.on_demand_price(on_demand_price)
        if self.bidding_policy == BiddingPolicy.NORMAL:
            return cap
        return min(spot_price * (1.0 + self.spot_price_buffer_percentage / 100.0), cap)

    def describe(self):
        return ("regions='%s' "
            "min_on_demand_number=%d "
            "min_on_demand_percentage=%.1f "
            "allowed_instance_types=%s "
            "disallowed_instance_types=%s "
            "on_demand_price_multiplier=%.2f "
            "spot_price_buffer_percentage=%.3f "
            "bidding_policy=%s "
            "tag_filters=%s "
            "tag_filter_mode=%s "
            "spot_product_description=%s "
            "instance_termination_method=%s "
            "termination_notification_action=%s "
            "cron_schedule=%s "
            "cron_schedule_state=%s "
            "cron_timezone=%s" % (
                ",".join(self.regions),
                self.min_on_demand_number,
                self.min_on_demand_percentage,
                list(self.allowed_instance_types),
                list(self.disallowed_instance_types),
                self.on_demand_price_multiplier,
                self.spot_price_buffer_percentage,
                self.bidding_policy.value,
                ",".join(["%s=%s" % t for t in self.tag_filters]),
                self.tag_filtering_mode.value,
                self.spot_product_description.value,
                self.instance_termination_method.value,
                self.termination_notification_action.value,
                self.cron_schedule,
                self.cron_schedule_state.value,
                self.cron_timezone))


def build(raw_inputs, with_instance_data=True, environ=None):
    """ Validate 'raw_inputs' (parameter name => str|bool|number) into a ConfigModel.

    A set 'version' parameter prints the version and exits before anything else is looked at.
    Raises InvalidConfigValue for the first invalid parameter (in declaration order), and
    instancedata.InstanceDataError when the reference dataset can not be loaded.
    """
    try:
        if _parse_bool("version", _registry["version"], raw_inputs.get("version", False)):
            print_version_and_exit()
    except InvalidConfigValue:
        pass # Reported below with the other parameters

    for k in raw_inputs:
        if k not in _registry:
            log.warning("Unknown configuration parameter '%s' (ignored)." % k)

    values = {}
    errors = []
    for name, definition in _registry.items():
        raw = raw_inputs.get(name, definition["DefaultValue"])
        try:
            values[name] = _PARSERS[definition["Format"]](name, definition, raw)
        except InvalidConfigValue as e:
            log.error(str(e))
            errors.append(e)
    if len(errors):
        raise errors[0]

    if values["min_on_demand_number"] > 0 and values["min_on_demand_percentage"] > 0:
        log.warning("min_on_demand_percentage=%s is ignored as min_on_demand_number=%s is set." %
                (values["min_on_demand_percentage"], values["min_on_demand_number"]))

    tag_filters = values["tag_filters"]
    if not len(tag_filters):
        tag_filters = DEFAULT_TAG_FILTERS[values["tag_filtering_mode"]]

    instance_data = MappingProxyType({})
    if with_instance_data:
        instance_data = instancedata.load(values["instance_data_url"])

    return ConfigModel(
        main_region=misc.main_region(environ),
        regions=values["regions"],
        allowed_instance_types=values["allowed_instance_types"],
        disallowed_instance_types=values["disallowed_instance_types"],
        bidding_policy=values["bidding_policy"],
        min_on_demand_number=values["min_on_demand_number"],
        min_on_demand_percentage=values["min_on_demand_percentage"],
        on_demand_price_multiplier=values["on_demand_price_multiplier"],
        spot_price_buffer_percentage=values["spot_price_buffer_percentage"],
        spot_product_description=values["spot_product_description"],
        tag_filtering_mode=values["tag_filtering_mode"],
        tag_filters=tag_filters,
        instance_termination_method=values["instance_termination_method"],
        termination_notification_action=values["termination_notification_action"],
        cron_schedule=values["cron_schedule"],
        cron_schedule_state=values["cron_schedule_state"],
        cron_timezone=values["cron_timezone"],
        instance_data_url=values["instance_data_url"],
        replacement_engine=values["replacement_engine"],
        instance_data=instance_data)


# Raw input collection

def argument_parser():
    parser = argparse.ArgumentParser(prog="spotswap",
            description="Replace on-demand instances of elastic groups by cheaper spot instances.")
    for name, definition in _registry.items():
        first_line = definition.get("Description", "").strip().split("\n")[0].replace("%", "%%")
        if not definition["Stable"]:
            first_line = "[unstable] %s" % first_line
        if definition["Format"] == "Bool":
            parser.add_argument("--%s" % name, action="store_true", default=None, help=first_line)
        else:
            parser.add_argument("--%s" % name, type=str, default=None,
                    help="%s (default: '%s')" % (first_line, str(definition["DefaultValue"]).replace("%", "%%")))
    return parser

def load_files(urls):
    """ Load YAML configuration layers. Faulty files are reported and ignored.
    """
    layers = []
    for f in urls:
        content = None
        c       = None
        try:
            content = misc.get_url(f, throw_exception_on_warning=True)
            c       = yaml.safe_load(content)
            if c is None: c = {} # Empty YAML file
            if not isinstance(c, dict):
                raise Exception("top level YAML element must be a mapping")
            layers.append({
                "source": f,
                "config": c
            })
        except Exception as e:
            if content is None:
                log.warning("Failed to load config file '%s'! %s (Notice: It will be safely ignored!)" % (f, e))
            else:
                log.warning("Failed to parse config file '%s'! %s (Notice: It will be safely ignored!)" % (f, e))
    return layers

def collect_inputs(argv=None, environ=None):
    """ Merge defaults, YAML files, environment and command line into a flat raw input dict.

    'version' is only read from the command line. A 'config_files' value given in the
    environment or on the command line selects the YAML layers.
    """
    environ = os.environ if environ is None else environ
    flags   = {k: v for k, v in vars(argument_parser().parse_args(argv)).items() if v is not None}
    env     = {}
    for name in _registry:
        if name != "version" and name.upper() in environ:
            env[name] = environ[name.upper()]

    files = flags.get("config_files", env.get("config_files", ""))
    files = [f.strip() for f in str(files).split(";") if f.strip() != ""]

    inputs = {}
    for layer in load_files(files):
        log.debug("Configuration layer '%s': %s" % (layer["source"], layer["config"]))
        inputs.update({k: v for k, v in layer["config"].items() if k != "version"})
    inputs.update(env)
    inputs.update(flags)
    return inputs
