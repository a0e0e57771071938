"""One auth workflow per client device.

AuthWorkflow tracks a single signed-in user. The HTTP service talks to
many browsers at once, so each device id (a random cookie value) gets a
workflow of its own: its own gateway session and its own pending sign-in
slot. Least recently used workflows are closed once the cap is reached.
"""

import logging
import threading
from collections import OrderedDict
from typing import Callable

from auth.workflow import AuthWorkflow

logger = logging.getLogger(__name__)


class DeviceWorkflows:
    """Workflows keyed by device id, created on first use."""

    def __init__(self, factory: Callable[[str], AuthWorkflow], max_devices: int = 10000):
        self._factory = factory
        self._max_devices = max_devices
        self._workflows: OrderedDict[str, AuthWorkflow] = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._workflows)

    def __contains__(self, device_id: str) -> bool:
        return device_id in self._workflows

    def get(self, device_id: str) -> AuthWorkflow:
        with self._lock:
            workflow = self._workflows.get(device_id)
            if workflow is not None:
                self._workflows.move_to_end(device_id)
                return workflow

            workflow = self._factory(device_id)
            self._workflows[device_id] = workflow
            while len(self._workflows) > self._max_devices:
                _, evicted = self._workflows.popitem(last=False)
                evicted.close()
            return workflow

    def close(self) -> None:
        with self._lock:
            for workflow in self._workflows.values():
                workflow.close()
            self._workflows.clear()
        logger.info("Device workflows closed")
