"""Synthetic load generator for exercising HUD clients without real agents.

The simulator writes straight into the registry with ``upsert``, the same
path an upstream agent uses to announce itself. That is also how a ``DONE``
agent gets restarted: the gateway never offers an action out of ``DONE``.
"""

import asyncio
import random
from dataclasses import dataclass, field

from agent_router.core.registry import AgentRegistry
from agent_router.schemas.messages import AgentRecord
from agent_router.schemas.types import AgentStatus
from agent_router.utils.telemetry import get_logger


@dataclass(frozen=True)
class FakeAgentProfile:
    """Canned texts for one simulated agent."""

    agent_id: str
    name: str
    summaries: dict[AgentStatus, str]
    details: dict[AgentStatus, str] = field(default_factory=dict)

    def summary(self, status: AgentStatus) -> str:
        return self.summaries.get(status, "")

    def detail(self, status: AgentStatus) -> str:
        return self.details.get(status, "")


FAKE_AGENTS: tuple[FakeAgentProfile, ...] = (
    FakeAgentProfile(
        agent_id="agent-1",
        name="Frontend",
        summaries={
            AgentStatus.RUNNING: "Implementing auth flow...",
            AgentStatus.PAUSED: "Paused by user",
            AgentStatus.WAITING_APPROVAL: "Delete old UI components?",
            AgentStatus.ERROR: "Build failed: missing dependency",
            AgentStatus.DONE: "Auth flow complete",
        },
        details={
            AgentStatus.RUNNING: (
                "Currently working on OAuth integration with Google. Added login "
                "button component and started on token refresh logic."
            ),
            AgentStatus.WAITING_APPROVAL: (
                "Found 12 unused UI components from the old design. Requesting "
                "permission to delete them to clean up the codebase."
            ),
            AgentStatus.ERROR: (
                "npm ERR! Could not resolve dependency: react-oauth-google@^1.0.0"
            ),
        },
    ),
    FakeAgentProfile(
        agent_id="agent-2",
        name="Backend",
        summaries={
            AgentStatus.RUNNING: "Optimizing database queries...",
            AgentStatus.PAUSED: "Waiting for approval",
            AgentStatus.WAITING_APPROVAL: "Delete user table?",
            AgentStatus.ERROR: "Connection refused to DB",
            AgentStatus.DONE: "API endpoints updated",
        },
        details={
            AgentStatus.RUNNING: (
                "Analyzing slow queries and adding indexes. Found 3 queries that "
                "can be optimized."
            ),
            AgentStatus.WAITING_APPROVAL: (
                "Agent is requesting permission to delete the users table. This "
                "will remove all user data permanently."
            ),
            AgentStatus.ERROR: "PostgreSQL connection refused. Is the database running?",
        },
    ),
    FakeAgentProfile(
        agent_id="agent-3",
        name="Tests",
        summaries={
            AgentStatus.RUNNING: "Running test suite...",
            AgentStatus.PAUSED: "Tests paused",
            AgentStatus.WAITING_APPROVAL: "Skip flaky tests?",
            AgentStatus.ERROR: "3 tests failed",
            AgentStatus.DONE: "All tests passed",
        },
        details={
            AgentStatus.RUNNING: "Executing 142 tests across 28 test files...",
            AgentStatus.WAITING_APPROVAL: (
                "Found 5 tests that intermittently fail. Skip them for now to "
                "unblock CI?"
            ),
            AgentStatus.ERROR: (
                "FAIL src/auth.test.js: Expected token to be defined\n"
                "FAIL src/api.test.js: Timeout exceeded"
            ),
        },
    ),
    FakeAgentProfile(
        agent_id="agent-4",
        name="Deploy",
        summaries={
            AgentStatus.RUNNING: "Deploying to staging...",
            AgentStatus.PAUSED: "Deployment paused",
            AgentStatus.WAITING_APPROVAL: "Deploy to production?",
            AgentStatus.ERROR: "Deployment failed",
            AgentStatus.DONE: "Deployed successfully",
        },
        details={
            AgentStatus.RUNNING: "Building Docker image and pushing to registry...",
            AgentStatus.WAITING_APPROVAL: (
                "All checks passed. Ready to deploy v2.3.1 to production. This "
                "will affect 10,000 users."
            ),
            AgentStatus.ERROR: "Failed to push Docker image: unauthorized",
        },
    ),
)


class AgentSimulator:
    """Periodically drives a fixed set of fake agents through their lifecycle.

    The update loop is a single asyncio task owned by this object. It is
    started and stopped explicitly, normally from the web adapter lifespan.
    """

    def __init__(
        self,
        registry: AgentRegistry,
        profiles: tuple[FakeAgentProfile, ...] = FAKE_AGENTS,
        initial_delay: float = 5.0,
        min_interval: float = 3.0,
        max_interval: float = 10.0,
        rng: random.Random | None = None,
    ):
        """Initialize the simulator.

        Args:
            registry: Registry to write fake agents into
            profiles: Fake agents to simulate
            initial_delay: Seconds before the first update
            min_interval: Lower bound of the random delay between updates
            max_interval: Upper bound of the random delay between updates
            rng: Random source, injectable for deterministic tests
        """
        if min_interval > max_interval:
            raise ValueError("min_interval must not exceed max_interval")

        self.registry = registry
        self.profiles = profiles
        self.initial_delay = initial_delay
        self.min_interval = min_interval
        self.max_interval = max_interval
        self.rng = rng or random.Random()
        self._task: asyncio.Task[None] | None = None
        self._logger = get_logger("agent_router.simulator")

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def seed(self) -> None:
        """Insert every fake agent in RUNNING state."""
        for profile in self.profiles:
            self.registry.upsert(
                AgentRecord(
                    agent_id=profile.agent_id,
                    name=profile.name,
                    status=AgentStatus.RUNNING,
                    summary=profile.summary(AgentStatus.RUNNING),
                    detail=profile.detail(AgentStatus.RUNNING),
                )
            )

    def step(self) -> AgentRecord | None:
        """Apply one random update to one random fake agent.

        The read and the write happen in one registry update, so an action
        applied concurrently from another thread is never overwritten.

        Returns:
            The committed record, or None if nothing changed
        """
        profile = self.rng.choice(self.profiles)
        return self.registry.update(
            profile.agent_id, lambda agent: self._advance(profile, agent)
        )

    def _advance(
        self, profile: FakeAgentProfile, agent: AgentRecord
    ) -> AgentRecord | None:
        if agent.status == AgentStatus.RUNNING:
            roll = self.rng.random()
            if roll < 0.3:
                status = AgentStatus.WAITING_APPROVAL
                update = {
                    "status": status,
                    "summary": profile.summary(status),
                    "detail": profile.detail(status),
                }
            elif roll < 0.4:
                status = AgentStatus.ERROR
                update = {
                    "status": status,
                    "summary": profile.summary(status),
                    "detail": profile.detail(status),
                }
            elif roll < 0.5:
                status = AgentStatus.DONE
                update = {
                    "status": status,
                    "summary": profile.summary(status),
                    "detail": "",
                }
            else:
                progress = self.rng.randrange(100)
                update = {
                    "summary": f"{profile.summary(AgentStatus.RUNNING)} ({progress}%)"
                }
        elif agent.status == AgentStatus.DONE:
            status = AgentStatus.RUNNING
            update = {
                "status": status,
                "summary": profile.summary(status),
                "detail": profile.detail(status),
            }
        else:
            # Paused, waiting or errored agents wait for a human.
            return None

        return agent.model_copy(update=update)

    def next_delay(self) -> float:
        return self.rng.uniform(self.min_interval, self.max_interval)

    def start(self) -> None:
        """Seed the fake agents and start the update loop."""
        if self.running:
            return

        self.seed()
        self._task = asyncio.create_task(self._run(), name="agent-simulator")
        self._logger.info(
            "Simulator started",
            agents=len(self.profiles),
            initial_delay=self.initial_delay,
        )

    async def stop(self) -> None:
        """Cancel the update loop and wait for it to finish."""
        if self._task is None:
            return

        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._task = None
        self._logger.info("Simulator stopped")

    async def _run(self) -> None:
        await asyncio.sleep(self.initial_delay)
        while True:
            try:
                self.step()
            except Exception as e:
                self._logger.error(
                    "Simulator step failed",
                    error=str(e),
                    error_type=type(e).__name__,
                )
            await asyncio.sleep(self.next_delay())
