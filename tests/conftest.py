from typing import Optional

import pytest

from train_dispatch.domains.orchestration.schemas.constants import NodeState
from train_dispatch.domains.orchestration.services.dispatch_gateway import DispatchGateway
from train_dispatch.domains.orchestration.services.orchestrator import Orchestrator
from train_dispatch.domains.orchestration.services.presets import load_training_presets
from train_dispatch.domains.orchestration.services.readiness import NodeReadinessDriver
from train_dispatch.settings.settings import TRAINING_PRESETS_PATH, Settings

from tests.fakes import FakeChannel, FakeClock, FakePlatform, FakeStorage


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        s3_bucket="lsm-test-bucket",
        download_node_id="i-download",
        rollback_node_id="i-rollback",
        training_node_id="i-training",
        node_local_data_dir="/data/csv/",
        ssm_log_group="/ssm/training-jobs",
        readiness_max_attempts=15,
        readiness_poll_interval_seconds=10,
        readiness_timeout_seconds=0,
    )


@pytest.fixture
def presets() -> dict:
    return load_training_presets(TRAINING_PRESETS_PATH)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def channel() -> FakeChannel:
    return FakeChannel()


@pytest.fixture
def storage() -> FakeStorage:
    return FakeStorage({
        "csv/": ["csv/agua/", "csv/hola/", "csv/backup/"],
        "csv/backup/": ["csv/backup/agua/", "csv/backup/gracias/"],
    })


@pytest.fixture
def platform() -> FakePlatform:
    return FakePlatform([NodeState.RUNNING])


@pytest.fixture
def make_orchestrator(test_settings, storage, channel, clock, presets):
    def _make(platform: FakePlatform, config: Optional[Settings] = None, secrets=None) -> Orchestrator:
        config = config or test_settings
        readiness = NodeReadinessDriver(
            platform,
            max_attempts=config.readiness_max_attempts,
            poll_interval_seconds=config.readiness_poll_interval_seconds,
            sleep=clock.sleep,
            clock=clock
        )
        return Orchestrator(
            config,
            storage,
            secrets,
            readiness,
            DispatchGateway(channel, config.ssm_max_payload_bytes),
            lambda: presets
        )
    return _make
