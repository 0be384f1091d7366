import os
import re
import json
import gzip

import boto3
from botocore.config import Config
import requests
from requests_file import FileAdapter

import sslog
log = sslog.logger(__name__)

TRIGGERED = "triggered"
DIRECT    = "direct"

DEFAULT_REGION = "us-east-1"


def is_lambda(environ=None):
    environ = os.environ if environ is None else environ
    return environ.get("AWS_LAMBDA_FUNCTION_NAME", "") != ""

def invocation_mode(environ=None):
    return TRIGGERED if is_lambda(environ) else DIRECT

def main_region(environ=None):
    environ = os.environ if environ is None else environ
    return environ.get("AWS_REGION") or DEFAULT_REGION

def pprint(json_obj):
    return json.dumps(json_obj, indent=4, sort_keys=True, default=str)


def Session():
    s = requests.Session()
    s.mount('file://', FileAdapter())
    return s

def get_url(url, throw_exception_on_warning=False):
    """ Fetch the content pointed by 'url' as bytes.

    Supported schemes: s3://<bucket>/<key>, file://, http:// and https://.
    """
    def _warning(msg):
        if throw_exception_on_warning:
            raise Exception(msg)
        else:
            log.warning(msg)

    if url is None or url == "":
        return None

    # s3:// protocol management
    if url.startswith("s3://"):
        m = re.search(r"^s3://([-.\w]+)/(.*)", url)
        if m is None:
            _warning("Malformed S3 url '%s'!" % url)
            return None
        bucket, key = [m.group(1), m.group(2)]
        key         = "/".join([p for p in key.split("/") if p != ""])
        client = client_for("s3")
        try:
            response = client.get_object(Bucket=bucket, Key=key)
            return response["Body"].read()
        except Exception as e:
            _warning("Failed to fetch S3 url '%s' : %s" % (url, e))
            return None

    # <other>:// protocols management
    s = Session()
    try:
        response = s.get(url, timeout=30)
        response.raise_for_status()
    except Exception as e:
        _warning("Failed to fetch url '%s' : %s" % (url, e))
        return None
    return response.content

def decode_json(value):
    """ Decode a JSON document, possibly gzip compressed.
    """
    if value is None:
        return None
    if isinstance(value, bytes):
        if value[:2] == b"\x1f\x8b":
            value = gzip.decompress(value)
        value = str(value, "utf-8")
    return json.loads(value)


def parse_line_as_list_of_dict(string, with_leading_string=True, leading_keyname="_", default=None):
    """ Parse "lead,k1=v1,k2=v2;lead2,k3" into a list of dicts. A key without '=' gets the value True.
    """
    if string is None:
        return default
    l = []
    for d in string.split(";"):
        items = [i.strip() for i in d.split(",")]
        dct   = {}
        if with_leading_string:
            if items[0] == "": continue
            dct[leading_keyname] = items.pop(0)
        for item in items:
            if item == "": continue
            k, sep, v = item.partition("=")
            dct[k.strip()] = v.strip() if sep else True
        if len(dct):
            l.append(dct)
    return l


_clients = {}

def client_for(service, region=None):
    """ Return a cached boto3 client for (service, region).
    """
    k = "%s.%s" % (service, region)
    if k not in _clients:
        config = Config(
           retries = {
           'max_attempts': 5,
           'mode': 'standard'
           })
        log.debug("Initialize client '%s'." % k)
        _clients[k] = boto3.client(service, region_name=region, config=config)
    return _clients[k]
