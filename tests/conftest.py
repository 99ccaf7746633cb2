from __future__ import annotations

import logging
import os

import pytest

from seller_session.core.config.manager import ConfigManager
from seller_session.core.config.paths import ConfigFsPaths
from seller_session.core.controller import AuthController
from seller_session.core.crypto import generate_device_key_bytes, write_device_key
from seller_session.core.platform import ManualAppStateSource, ManualConnectivitySource
from seller_session.core.storage.session_store import SessionStore

from .helpers.fakes import FakeApi, FakeBiometricPlatform, FakeClock, MemoryBackend, RecordingSleep


@pytest.fixture(autouse=True)
def _isolate_package_logger():
    """Drop handlers a test attached to the shared package logger so they don't leak into later tests."""
    logger = logging.getLogger("seller_session")
    before = list(logger.handlers)
    yield
    for h in list(logger.handlers):
        if h not in before:
            logger.removeHandler(h)
            h.close()


@pytest.fixture
def tmp_config_root(tmp_path):
    """
    Provides an isolated root with config/ and secure/ under tmp_path.
    """
    fs = ConfigFsPaths(root=str(tmp_path))
    os.makedirs(fs.config_dir, exist_ok=True)
    os.makedirs(os.path.join(fs.root, "secure"), exist_ok=True)
    return fs


@pytest.fixture
def config_manager(tmp_config_root):
    cm = ConfigManager(fs=tmp_config_root, logger=None, read_only=False)
    cm.load_all()
    return cm


@pytest.fixture
def device_key_path(tmp_path):
    path = os.path.join(str(tmp_path), "secure", "device.key")
    write_device_key(path, generate_device_key_bytes())
    return path


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def sleep():
    return RecordingSleep()


@pytest.fixture
def secure_backend():
    return MemoryBackend()


@pytest.fixture
def plain_backend():
    return MemoryBackend()


@pytest.fixture
def store(secure_backend, plain_backend):
    return SessionStore(secure=secure_backend, plain=plain_backend)


@pytest.fixture
def api():
    return FakeApi()


@pytest.fixture
def net():
    return ManualConnectivitySource()


@pytest.fixture
def app_state():
    return ManualAppStateSource()


@pytest.fixture
def bio():
    return FakeBiometricPlatform()


@pytest.fixture
def make_controller(store, api, net, app_state, bio, sleep, clock):
    def _make(**overrides):
        kwargs = dict(
            store=store,
            api=api,
            connectivity_source=net,
            app_state_source=app_state,
            biometric_platform=bio,
            sleep=sleep,
            clock=clock.time,
        )
        kwargs.update(overrides)
        return AuthController(**kwargs)

    return _make


@pytest.fixture
def controller(make_controller):
    return make_controller()
