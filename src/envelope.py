""" Classify the payload of a triggered invocation: a direct event, or one wrapped in an SNS/SQS envelope.
"""
import json
from collections import namedtuple
from enum import Enum

import sslog
log = sslog.logger(__name__)

INTERRUPTION_DETAIL_TYPE = "EC2 Spot Instance Interruption Warning"


class EventKind(Enum):
    INTERRUPTION = "interruption"
    SCHEDULED    = "scheduled"
    UNRECOGNIZED = "unrecognized"

ClassifiedEvent = namedtuple("ClassifiedEvent", ["kind", "detail_type", "region", "detail", "source", "reason"])

Decoded = namedtuple("Decoded", ["ok", "value", "reason"])

def _failed(reason):
    return Decoded(False, None, reason)


def _load(payload):
    """ Decode bytes/str payloads as JSON. Already decoded payloads are passed as-is.
    """
    if isinstance(payload, (bytes, bytearray)):
        try:
            payload = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            return _failed("payload is not UTF-8: %s" % e)
    if isinstance(payload, str):
        try:
            payload = json.loads(payload)
        except ValueError as e:
            return _failed("payload is not JSON: %s" % e)
    # A JSON 'null' decodes as an empty object
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        return _failed("expected a JSON object, got %s" % type(payload).__name__)
    return Decoded(True, payload, None)

def _record_message(record):
    if not isinstance(record, dict):
        return _failed("record is not an object")
    if record.get("Sns") is not None:
        sns = record["Sns"]
        if not isinstance(sns, dict):
            return _failed("'Sns' field is not an object")
        message = sns.get("Message", "")
    elif "body" in record:
        # SQS subscription
        message = record["body"]
    else:
        message = ""
    if not isinstance(message, str):
        return _failed("record message is not a string")
    return Decoded(True, message, None)

def unwrap_envelope(payload):
    d = _load(payload)
    if not d.ok:
        return d
    records = d.value.get("Records")
    if records is None:
        return d
    if not isinstance(records, list):
        return _failed("'Records' field is not a list")
    messages = []
    for r in records:
        m = _record_message(r)
        if not m.ok:
            return m
        messages.append(m.value)
    if not len(messages):
        return d
    log.debug("Unwrapped first message out of %d envelope record(s)." % len(messages))
    return Decoded(True, messages[0], None)

def decode_notification(payload):
    d = _load(payload)
    if not d.ok:
        return d
    event = d.value
    for field in ["detail-type", "detailType", "region"]:
        if event.get(field) is not None and not isinstance(event[field], str):
            return _failed("'%s' field is not a string" % field)
    return d

DECODE_CHAIN = (
    ("pub/sub envelope", unwrap_envelope),
    ("scheduled notification", decode_notification),
)


def classify(payload):
    working = payload
    for shape, decoder in DECODE_CHAIN:
        d = decoder(working)
        if not d.ok:
            log.warning("Dropping event that does not decode as a %s: %s" % (shape, d.reason))
            return ClassifiedEvent(EventKind.UNRECOGNIZED, None, None, None, None,
                    "not a valid %s: %s" % (shape, d.reason))
        working = d.value

    event       = working
    detail_type = event.get("detail-type") or event.get("detailType") or ""
    region      = event.get("region") or ""
    kind        = EventKind.INTERRUPTION if detail_type == INTERRUPTION_DETAIL_TYPE else EventKind.SCHEDULED
    log.info("Classified event as %s (detail-type='%s', region='%s')." % (kind.value, detail_type, region))
    return ClassifiedEvent(kind, detail_type, region, event.get("detail"), event.get("source"), None)
