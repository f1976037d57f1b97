import base64
import logging

import pytest
from botocore.exceptions import ClientError

from train_dispatch.clients.ec2_client import EC2Client
from train_dispatch.clients.s3_client import S3Client
from train_dispatch.clients.secrets_client import SecretCache, SecretsClient
from train_dispatch.domains.orchestration.schemas.constants import NodeState
from train_dispatch.errors import ComputeUnavailable, NodeNotFound, SecretUnavailable, StorageUnavailable
from train_dispatch.logs.cloudwatch_log_handler import CloudWatchLogHandler

from tests.fakes import FakeClock


def _client_error(code: str, operation: str) -> ClientError:
    return ClientError({"Error": {"Code": code, "Message": code}}, operation)


class FakeBotoEC2:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.started = []

    def describe_instances(self, InstanceIds):
        if self.error is not None:
            raise self.error
        return self.response

    def start_instances(self, InstanceIds):
        self.started.extend(InstanceIds)


def _instances(state_name: str) -> dict:
    return {"Reservations": [{"Instances": [{"InstanceId": "i-node", "State": {"Name": state_name}}]}]}


@pytest.mark.parametrize("raw_state, expected", [
    ("stopped", NodeState.STOPPED),
    ("pending", NodeState.PENDING),
    ("running", NodeState.RUNNING),
    ("stopping", NodeState.STOPPING),
    ("shutting-down", NodeState.UNKNOWN),
    ("terminated", NodeState.UNKNOWN),
])
def test_ec2_describe_maps_platform_states(raw_state, expected):
    assert EC2Client(FakeBotoEC2(_instances(raw_state))).describe("i-node") == expected


def test_ec2_describe_without_instances_is_not_found():
    with pytest.raises(NodeNotFound):
        EC2Client(FakeBotoEC2({"Reservations": []})).describe("i-node")


def test_ec2_describe_invalid_id_is_not_found():
    error = _client_error("InvalidInstanceID.NotFound", "DescribeInstances")

    with pytest.raises(NodeNotFound):
        EC2Client(FakeBotoEC2(error=error)).describe("i-node")


def test_ec2_other_api_errors_are_compute_unavailable():
    error = _client_error("UnauthorizedOperation", "DescribeInstances")

    with pytest.raises(ComputeUnavailable):
        EC2Client(FakeBotoEC2(error=error)).describe("i-node")


def test_ec2_start_requests_the_node():
    boto_ec2 = FakeBotoEC2()

    EC2Client(boto_ec2).start("i-node")

    assert boto_ec2.started == ["i-node"]


class FakePaginator:
    def __init__(self, pages, error=None):
        self.pages = pages
        self.error = error
        self.kwargs = None

    def paginate(self, **kwargs):
        if self.error is not None:
            raise self.error
        self.kwargs = kwargs
        return iter(self.pages)


class FakeBotoS3:
    def __init__(self, paginator):
        self.paginator = paginator

    def get_paginator(self, name):
        assert name == "list_objects_v2"
        return self.paginator


def test_s3_lists_common_prefixes_across_pages():
    paginator = FakePaginator([
        {"CommonPrefixes": [{"Prefix": "csv/agua/"}, {"Prefix": "csv/hola/"}]},
        {"Contents": [{"Key": "csv/readme.txt"}]},
        {"CommonPrefixes": [{"Prefix": "csv/backup/"}]},
    ])

    prefixes = S3Client(FakeBotoS3(paginator)).list_common_prefixes("bucket", "csv/")

    assert prefixes == ["csv/agua/", "csv/hola/", "csv/backup/"]
    assert paginator.kwargs == {"Bucket": "bucket", "Prefix": "csv/", "Delimiter": "/"}


def test_s3_errors_are_storage_unavailable():
    paginator = FakePaginator([], error=_client_error("NoSuchBucket", "ListObjectsV2"))

    with pytest.raises(StorageUnavailable):
        S3Client(FakeBotoS3(paginator)).list_common_prefixes("bucket", "csv/")


class FakeBotoSecrets:
    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = 0

    def get_secret_value(self, SecretId):
        self.calls += 1
        if self.error is not None:
            raise self.error
        return self.response


def test_secret_is_cached_within_ttl_and_refetched_after():
    clock = FakeClock()
    boto_secrets = FakeBotoSecrets({"SecretString": " lsm-bucket \n"})
    client = SecretsClient(boto_secrets, SecretCache(300, clock=clock))

    assert client.get_secret("bucket") == "lsm-bucket"
    clock.now = 299
    assert client.get_secret("bucket") == "lsm-bucket"
    assert boto_secrets.calls == 1

    clock.now = 301
    client.get_secret("bucket")
    assert boto_secrets.calls == 2


def test_json_secret_prefers_known_keys():
    boto_secrets = FakeBotoSecrets({"SecretString": '{"other": "x", "value": "signing-key"}'})

    assert SecretsClient(boto_secrets, SecretCache(300)).get_secret("jwt") == "signing-key"


def test_binary_secret_is_decoded():
    boto_secrets = FakeBotoSecrets({"SecretBinary": base64.b64encode(b"lsm-bucket").decode("ascii")})

    assert SecretsClient(boto_secrets, SecretCache(300)).get_secret("bucket") == "lsm-bucket"


def test_empty_secret_is_unavailable_and_not_cached():
    boto_secrets = FakeBotoSecrets({"SecretString": "   "})
    client = SecretsClient(boto_secrets, SecretCache(300))

    with pytest.raises(SecretUnavailable):
        client.get_secret("bucket")
    with pytest.raises(SecretUnavailable):
        client.get_secret("bucket")
    assert boto_secrets.calls == 2


def test_secret_api_error_is_unavailable():
    boto_secrets = FakeBotoSecrets(error=_client_error("ResourceNotFoundException", "GetSecretValue"))

    with pytest.raises(SecretUnavailable):
        SecretsClient(boto_secrets, SecretCache(300)).get_secret("bucket")


class FakeBotoLogs:
    def __init__(self, stream_exists=False):
        self.stream_exists = stream_exists
        self.created = 0
        self.events = []

    def create_log_stream(self, logGroupName, logStreamName):
        self.created += 1
        if self.stream_exists:
            raise _client_error("ResourceAlreadyExistsException", "CreateLogStream")

    def put_log_events(self, logGroupName, logStreamName, logEvents):
        self.events.append((logGroupName, logStreamName, logEvents))


def _record(message: str) -> logging.LogRecord:
    return logging.LogRecord("train_dispatch.test", logging.INFO, __file__, 1, message, None, None)


@pytest.mark.parametrize("stream_exists", [False, True])
def test_cloudwatch_handler_ships_records(stream_exists):
    boto_logs = FakeBotoLogs(stream_exists=stream_exists)
    handler = CloudWatchLogHandler(boto_logs, "/app/train-dispatch", "local-host")

    handler.emit(_record("first"))
    handler.emit(_record("second"))

    assert boto_logs.created == 1
    assert [events[0]["message"] for _, _, events in boto_logs.events] == ["first", "second"]
    assert boto_logs.events[0][:2] == ("/app/train-dispatch", "local-host")
