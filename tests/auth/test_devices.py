"""Tests for DeviceWorkflows - one workflow per browser."""

from unittest.mock import Mock

import pytest

from auth.devices import DeviceWorkflows
from auth.gateway import MagicLinkGateway
from auth.pending_store import ValkeyPendingSignInStore
from auth.workflow import AuthWorkflow


@pytest.fixture
def built():
    return {}


@pytest.fixture
def factory(built):
    def _factory(device_id):
        workflow = Mock(spec=AuthWorkflow)
        built[device_id] = workflow
        return workflow

    return _factory


class TestGet:

    def test_same_device_same_workflow(self, factory):
        devices = DeviceWorkflows(factory)

        assert devices.get("device-a") is devices.get("device-a")
        assert len(devices) == 1

    def test_devices_are_isolated(self, factory):
        devices = DeviceWorkflows(factory)

        assert devices.get("device-a") is not devices.get("device-b")
        assert "device-b" in devices

    def test_least_recent_evicted_and_closed(self, factory, built):
        devices = DeviceWorkflows(factory, max_devices=2)
        devices.get("device-a")
        devices.get("device-b")
        devices.get("device-a")

        devices.get("device-c")

        assert "device-b" not in devices
        assert "device-a" in devices
        built["device-b"].close.assert_called_once()
        built["device-a"].close.assert_not_called()


class TestClose:

    def test_closes_every_workflow(self, factory, built):
        devices = DeviceWorkflows(factory)
        devices.get("device-a")
        devices.get("device-b")

        devices.close()

        assert len(devices) == 0
        for workflow in built.values():
            workflow.close.assert_called_once()


def test_real_workflows_keep_separate_sessions(config, valkey, session_manager, mock_email_client,
                                               mock_security_logger, directory):
    def build(device_id):
        gateway = MagicLinkGateway(
            config=config,
            valkey=valkey,
            session_manager=session_manager,
            email_client=mock_email_client,
            security_logger=mock_security_logger,
        )
        return AuthWorkflow(
            config=config,
            gateway=gateway,
            directory=directory,
            pending_store=ValkeyPendingSignInStore(valkey, f"pending:{device_id}"),
        )

    devices = DeviceWorkflows(build)
    laptop = devices.get("laptop")
    laptop.request_sign_in("jane@example.com", config.continue_url, name="Jane")

    assert laptop.pending_email == "jane@example.com"
    assert devices.get("phone").pending_email is None
