"""Test doubles shared by unit and integration tests."""

from podcore.services.deploy_service import DeployTrigger
from podcore.services.rate_limiter import MinIntervalGate


class RecordingDeployTrigger(DeployTrigger):
    """Deploy trigger that records hook calls instead of sending them."""

    def __init__(self) -> None:
        super().__init__("https://deploy.invalid/hook")
        self.calls: list[str] = []

    async def _fire(self, reason: str) -> bool:
        self.calls.append(reason)
        return True


class InstantGate(MinIntervalGate):
    """Rate gate that never sleeps; counts the requests it let through."""

    def __init__(self) -> None:
        super().__init__(0.0)
        self.passed = 0

    async def wait(self) -> None:
        self.passed += 1
