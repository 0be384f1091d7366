import os
import pathlib

# Tests always run in direct mode, against stubbed AWS clients
for k in ["AWS_LAMBDA_FUNCTION_NAME", "AWS_SAM_LOCAL", "SPOTSWAP_LOGLEVELS"]:
    os.environ.pop(k, None)
os.environ.setdefault("AWS_ACCESS_KEY_ID", "testing")
os.environ.setdefault("AWS_SECRET_ACCESS_KEY", "testing")
os.environ.setdefault("AWS_DEFAULT_REGION", "us-east-1")

import pytest

import config as Cfg

DATA_DIR = pathlib.Path(__file__).parent / "data"


@pytest.fixture
def instance_data_url():
    return (DATA_DIR / "instances.json").as_uri()


@pytest.fixture
def make_config(instance_data_url):
    def _make(**raw):
        raw.setdefault("instance_data_url", instance_data_url)
        return Cfg.build(raw, environ={"AWS_REGION": "eu-west-1"})
    return _make
