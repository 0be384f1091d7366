""" instancedata.py

Static reference dataset describing the available instance types (vCPUs, memory,
per-region pricing...). It is loaded once when the configuration is built and
exposed read-only through ConfigModel.instance_data.
"""
from types import MappingProxyType

import misc

import sslog
log = sslog.logger(__name__)

DEFAULT_URL = "https://instances.vantage.sh/instances.json"


class InstanceDataError(Exception):
    pass


def index(records):
    """ Index dataset records by their 'instance_type' key.
    """
    if not isinstance(records, list):
        raise InstanceDataError("Instance dataset must be a JSON list (got %s)!" % type(records).__name__)
    data = {}
    for r in records:
        if not isinstance(r, dict) or not isinstance(r.get("instance_type"), str):
            log.debug("Skipping malformed instance dataset record: %s" % r)
            continue
        data[r["instance_type"]] = MappingProxyType(r)
    if not len(data):
        raise InstanceDataError("Instance dataset does not describe any instance type!")
    return MappingProxyType(data)


def load(url=DEFAULT_URL):
    log.debug("Loading instance dataset from '%s'..." % url)
    try:
        content = misc.get_url(url, throw_exception_on_warning=True)
        if content is None:
            raise InstanceDataError("Empty location '%s'!" % url)
        records = misc.decode_json(content)
    except InstanceDataError:
        raise
    except Exception as e:
        raise InstanceDataError("Failed to load instance dataset from '%s' : %s" % (url, e)) from e
    data = index(records)
    log.info("Loaded %d instance types from '%s'." % (len(data), url))
    return data
