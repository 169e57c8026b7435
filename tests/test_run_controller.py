"""
Tests for RunController - resume, funding skip, stop and failure handling.
"""

import random
from typing import Callable, List, Optional

import pytest

from conftest import TOKEN, make_params, no_sleep, seed_wallets
from volumebot.execution.funding import FundingConfig, FundingEngine
from volumebot.orchestrator.cycle_orchestrator import CycleOrchestrator, StopToken, StoppedByUser
from volumebot.orchestrator.run_controller import RunController, RunOutcome, RunPhase
from volumebot.state.bot_state import BotState
from volumebot.utils import to_wei

OTHER_TOKEN = "0x3333333333333333333333333333333333333333"


class MockOrchestrator:
    """Records cycles; honours the stop token the way CycleOrchestrator does."""

    def __init__(self, stop_token: StopToken, state_store, on_cycle: Optional[Callable] = None) -> None:
        self.stop_token = stop_token
        self.state_store = state_store
        self.on_cycle = on_cycle
        self.cycles: List[int] = []

    async def run_cycle(self, state: BotState):
        if self.stop_token.requested:
            self.state_store.save(state)
            raise StoppedByUser(state.current_cycle)
        self.cycles.append(state.current_cycle)
        if self.on_cycle:
            self.on_cycle(state)


@pytest.fixture
def params():
    return make_params(total_num_wallets=3, cycles_limit=3)


@pytest.fixture
def stop_token():
    return StopToken()


def make_funding(client, main_account, ledger, params) -> FundingEngine:
    client.set_balance(main_account.address, to_wei("100"))
    return FundingEngine(
        client,
        main_account,
        ledger,
        FundingConfig(
            total_num_wallets=params.total_num_wallets,
            min_deposit_wei=params.min_deposit_wei,
            max_deposit_wei=params.max_deposit_wei,
        ),
        rng=random.Random(3),
    )


def make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator):
    return RunController(
        make_funding(client, main_account, ledger, params),
        orchestrator,
        router,
        ledger,
        state_store,
        params,
        TOKEN,
        stop_token,
        rng=random.Random(5),
    )


class TestRunLifecycle:

    @pytest.mark.asyncio
    async def test_fresh_run_completes_and_clears_state(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        orchestrator = MockOrchestrator(stop_token, state_store)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        outcome = await controller.start()

        assert outcome == RunOutcome.COMPLETED
        assert controller.phase == RunPhase.COMPLETED
        assert orchestrator.cycles == [1, 2, 3]
        assert state_store.load() is None

    @pytest.mark.asyncio
    async def test_resume_from_saved_cycle(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        saved = BotState.fresh(TOKEN, 3)
        saved.current_cycle = 2
        state_store.save(saved)
        orchestrator = MockOrchestrator(stop_token, state_store)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        await controller.start()

        assert orchestrator.cycles == [2, 3]

    @pytest.mark.asyncio
    async def test_stale_state_for_other_token_is_discarded(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        saved = BotState.fresh(OTHER_TOKEN, 3)
        saved.current_cycle = 3
        state_store.save(saved)
        orchestrator = MockOrchestrator(stop_token, state_store)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        await controller.start()

        assert orchestrator.cycles == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_state_saved_after_each_cycle(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        checkpoints = []
        orchestrator = MockOrchestrator(
            stop_token, state_store,
            on_cycle=lambda state: checkpoints.append(state_store.load()),
        )
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        await controller.start()

        # checkpoint visible at the start of cycle N is N
        assert checkpoints[0] is None
        assert [c.current_cycle for c in checkpoints[1:]] == [2, 3]


class TestStop:

    @pytest.mark.asyncio
    async def test_stop_pauses_with_saved_state(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        controller = None

        def stop_after_first(state):
            if state.current_cycle == 1:
                controller.stop()

        orchestrator = MockOrchestrator(stop_token, state_store, on_cycle=stop_after_first)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        outcome = await controller.start()

        assert outcome == RunOutcome.PAUSED
        assert controller.phase == RunPhase.PAUSED
        assert orchestrator.cycles == [1]
        assert state_store.load().current_cycle == 2

    @pytest.mark.asyncio
    async def test_paused_run_can_be_started_again(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        controller = None

        def stop_after_first(state):
            if state.current_cycle == 1:
                controller.stop()

        orchestrator = MockOrchestrator(stop_token, state_store, on_cycle=stop_after_first)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        assert await controller.start() == RunOutcome.PAUSED
        assert await controller.start() == RunOutcome.COMPLETED
        assert orchestrator.cycles == [1, 2, 3]
        assert state_store.load() is None


class TestFailures:

    @pytest.mark.asyncio
    async def test_error_saves_state_and_propagates(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        def explode_on_second(state):
            if state.current_cycle == 2:
                raise OSError("disk full")

        orchestrator = MockOrchestrator(stop_token, state_store, on_cycle=explode_on_second)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        with pytest.raises(OSError):
            await controller.start()

        assert controller.phase == RunPhase.FAILED
        assert state_store.load().current_cycle == 2

    @pytest.mark.asyncio
    async def test_approval_failure_does_not_block(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        bad, *_ = seed_wallets(ledger, client, ["0.2", "0.2", "0.2"])
        router.fail_approve.add(bad.address.lower())
        orchestrator = MockOrchestrator(stop_token, state_store)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        outcome = await controller.start()

        assert outcome == RunOutcome.COMPLETED
        assert len(router.approvals) == 2


class TestFunding:

    @pytest.mark.asyncio
    async def test_funding_skipped_when_wallets_funded(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        seed_wallets(ledger, client, ["0.2", "0.2", "0.2"])
        orchestrator = MockOrchestrator(stop_token, state_store)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        await controller.start()

        assert client.transfers == []

    @pytest.mark.asyncio
    async def test_distribute_only_is_idempotent(
        self, client, router, ledger, state_store, main_account, params, stop_token,
    ):
        orchestrator = MockOrchestrator(stop_token, state_store)
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        first = await controller.distribute_only()
        second = await controller.distribute_only()

        assert first == 3
        assert second == 0
        assert orchestrator.cycles == []
        assert controller.phase == RunPhase.COMPLETED


class TestEndToEnd:

    @pytest.mark.asyncio
    async def test_full_run_with_real_orchestrator(
        self, client, router, ledger, state_store, main_account, stop_token,
    ):
        params = make_params(
            total_num_wallets=3, cycles_limit=2, min_sell_pct=50, max_sell_pct=100,
        )
        orchestrator = CycleOrchestrator(
            ledger, router, client, state_store, params, TOKEN, stop_token,
            rng=random.Random(11), sleep=no_sleep,
        )
        controller = make_controller(client, router, ledger, state_store, main_account, params, stop_token, orchestrator)

        outcome = await controller.start()

        assert outcome == RunOutcome.COMPLETED
        assert len(ledger) == 3
        assert len(router.buys) == 4
        assert len(router.sells) >= 2
        assert state_store.load() is None
