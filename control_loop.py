# control_loop.py
import asyncio
import logging
import time
from typing import Any, Dict, Optional

from analysis.models import BalanceSnapshot, NoAction, PegAction, RebalanceAction, RebalanceDirection, SwapRequest, SwapSide, Venue
from analysis.peg import peg_action, plan_peg_buy, plan_peg_sell
from analysis.rebalance import RebalanceDecisionEngine
from config import AppConfig
from constants import FLM, GAS, GAS_SCRIPT_HASH, LRB, POOL_FLM_USDL, TOKEN_DECIMALS, USDL
from errors import LedgerError, QuoteUnavailable
from services.price_aggregator import PriceAggregator
from services.swap_executor import AttemptStatus, SwapExecutor, SwapResult
from services.telegram_notifier import TelegramNotifier, format_spread_veto, format_swap_result
from storage import SQLiteRepository

logger = logging.getLogger(__name__)

ALERT_STATUSES = (
    AttemptStatus.SUCCEEDED,
    AttemptStatus.FAILED,
    AttemptStatus.TIMED_OUT,
    AttemptStatus.REJECTED,
)


class ControlLoop:
    """Peg correction followed by wallet rebalancing, once per interval, forever.

    Per-swap failures end in a SwapResult; a QuoteUnavailable skips the rest of its
    step; anything else is logged at the cycle boundary and the next cycle starts
    on schedule.
    """

    def __init__(
        self,
        config: AppConfig,
        aggregator: PriceAggregator,
        ledger,
        engine: RebalanceDecisionEngine,
        executor: SwapExecutor,
        *,
        transport=None,
        notifier: Optional[TelegramNotifier] = None,
        repository: Optional[SQLiteRepository] = None,
        status: Optional[Dict[str, Any]] = None,
        pegged: str = USDL,
        holding: str = LRB,
        peg_pool_id: str = POOL_FLM_USDL,
        clock=time.monotonic,
        sleep=asyncio.sleep,
    ):
        self.config = config
        self.aggregator = aggregator
        self.ledger = ledger
        self.engine = engine
        self.executor = executor
        self.transport = transport
        self.notifier = notifier or TelegramNotifier()
        self.repository = repository
        self.status = status if status is not None else {}
        self.pegged = pegged
        self.holding = holding
        self.peg_pool_id = peg_pool_id
        self.token_hashes = {
            LRB: config.script_hashes['lrb'],
            USDL: config.script_hashes['usdl'],
        }
        self.owner = config.owner_script_hash
        self.interval = config.sleep_millis / 1000.0
        self._clock = clock
        self._sleep = sleep
        self._cycle_id: Optional[int] = None

    async def start(self):
        """Waits for every collaborator once, then runs cycles until cancelled."""
        await self.wait_until_ready()
        logger.info("Wallet script hash=%s, dry_run=%s", self.owner, self.config.dry_run)
        await self._run_main_loop()

    async def wait_until_ready(self):
        logger.info("Waiting for price sources and notifications...")
        waits = [self.aggregator.initialize()]
        if self.transport is not None:
            waits.append(self.transport.available.wait())
        await asyncio.gather(*waits)
        self.status['ready'] = True
        logger.info("All collaborators ready")

    async def _run_main_loop(self):
        while True:
            started = self._clock()
            try:
                await self.run_cycle()
            except Exception as e:
                logger.exception("Error during control cycle: %s", e)
                self.status['last_error'] = str(e)

            elapsed = self._clock() - started
            remaining = max(0.0, self.interval - elapsed)
            if remaining > 0:
                logger.info("Sleeping %.0f milliseconds...", remaining * 1000)
                await self._sleep(remaining)

    async def run_cycle(self):
        self._cycle_id = await self._record_cycle_start()
        errors = []
        peg_price = None
        action = None
        decision = None
        try:
            try:
                await self.report_balances()
            except (QuoteUnavailable, LedgerError) as e:
                logger.warning("Could not report balances: %s", e)

            try:
                peg_price, action = await self.check_peg()
            except (QuoteUnavailable, LedgerError) as e:
                logger.error("Skipping peg check this cycle: %s", e)
                errors.append(f"peg: {e}")

            try:
                decision = await self.rebalance()
            except (QuoteUnavailable, LedgerError) as e:
                logger.error("Skipping rebalance this cycle: %s", e)
                errors.append(f"rebalance: {e}")
        finally:
            self.status['last_cycle_time'] = time.strftime('%Y-%m-%d %H:%M:%S UTC', time.gmtime())
            self.status['last_error'] = "; ".join(errors) or None
            await self._record_cycle_finish(peg_price, action, decision, errors)
            self._cycle_id = None

    async def report_balances(self) -> BalanceSnapshot:
        holding_raw, pegged_raw, gas_raw, holding_price, pegged_price = await asyncio.gather(
            self._balance(self.token_hashes[self.holding]),
            self._balance(self.token_hashes[self.pegged]),
            self._balance(GAS_SCRIPT_HASH),
            self.aggregator.global_price(self.holding),
            self.aggregator.global_price(self.pegged),
        )
        holding_amount = holding_raw / 10 ** TOKEN_DECIMALS[self.holding]
        pegged_amount = pegged_raw / 10 ** TOKEN_DECIMALS[self.pegged]
        snapshot = BalanceSnapshot(
            token_a=holding_amount,
            token_b=pegged_amount,
            value_a_usd=holding_amount * holding_price,
            value_b_usd=pegged_amount * pegged_price,
            gas=gas_raw / 10 ** TOKEN_DECIMALS[GAS],
        )
        logger.info("------Balances-------")
        logger.info("%s Balance: %s", self.holding, f"{snapshot.token_a:,.2f}")
        logger.info("%s Balance: %s", self.pegged, f"{snapshot.token_b:,.2f}")
        logger.info("%s Balance: %s", GAS, f"{snapshot.gas:,.2f}")
        logger.info("-------Prices--------")
        logger.info("%s Global Price: %s", self.holding, f"{holding_price:,.4f}")
        logger.info("%s Global Price: %s", self.pegged, f"{pegged_price:,.4f}")
        logger.info("--USD Market Values--")
        logger.info("%s Market Value: %s", self.holding, f"{snapshot.value_a_usd:,.2f}")
        logger.info("%s Market Value: %s", self.pegged, f"{snapshot.value_b_usd:,.2f}")
        logger.info("Total Market Value: %s", f"{snapshot.total_usd:,.2f}")
        self.status['last_balances'] = snapshot
        self.status['last_prices'] = {self.holding: holding_price, self.pegged: pegged_price}
        return snapshot

    async def check_peg(self):
        quote = await self.aggregator.quote(self.pegged)
        target = self.config.target_price
        ratio = quote.value / target
        action = peg_action(quote.value, target, self.config.peg_threshold)
        logger.debug(
            "Fetched prices: poolPrice=%s, targetPrice=%s, ratio=%s, pegThreshold=%s",
            quote.value, target, ratio, self.config.peg_threshold,
        )
        self.status['last_peg'] = {'price': quote.value, 'target': target, 'action': action.value}

        if action is PegAction.SELL:
            logger.info("Selling %s because ratio=%s and pegThreshold=%s", self.pegged, ratio, self.config.peg_threshold)
            await self.sell_pegged()
        elif action is PegAction.BUY:
            logger.info("Buying %s because inverse ratio=%s and pegThreshold=%s", self.pegged, 1 / ratio, self.config.peg_threshold)
            await self.buy_pegged()
        else:
            logger.info("Not performing any peg trades this cycle with ratio=%s and pegThreshold=%s", ratio, self.config.peg_threshold)
        return quote.value, action

    async def buy_pegged(self) -> Optional[SwapResult]:
        pool, bridge, holding_in_bridge, holding_balance = await asyncio.gather(
            self.aggregator.pool_reserves(self.peg_pool_id),
            self.aggregator.bridge_price(),
            self.aggregator.price_in_bridge(self.holding),
            self._balance(self.token_hashes[self.holding]),
        )
        pegged_in_bridge = pool.price_of(self.pegged)
        plan = plan_peg_buy(
            pool=pool,
            pool_target_price=bridge.value / self.config.target_price,
            pegged=self.pegged,
            holding=self.holding,
            holding_decimals=TOKEN_DECIMALS[self.holding],
            pegged_in_bridge=pegged_in_bridge,
            holding_in_bridge=holding_in_bridge,
            holding_balance=holding_balance,
            swap_ratio=self.config.swap_ratio,
            tolerance_bps=self.config.slippage_tolerance,
        )
        logger.debug(
            "Computed buy: quantity=%s, desired=%s, perfect=%s, %sPriceIn%s=%s, %sPriceIn%s=%s, %sBalance=%s, %sPrice=%s (%s)",
            plan.capped_quantity, plan.desired_quantity, plan.perfect_quantity,
            self.holding, FLM, holding_in_bridge, self.pegged, FLM, pegged_in_bridge,
            self.holding, holding_balance, FLM, bridge.value, bridge.source.value,
        )
        if plan.request is None:
            logger.info("Not buying %s: planned quantity=%s", self.pegged, plan.capped_quantity)
            return None
        return await self._submit(f"Buy {self.pegged}", plan.request, {'perfect_quantity': plan.perfect_quantity, 'desired_quantity': plan.desired_quantity})

    async def sell_pegged(self) -> Optional[SwapResult]:
        pool, bridge, holding_in_bridge, pegged_balance = await asyncio.gather(
            self.aggregator.pool_reserves(self.peg_pool_id),
            self.aggregator.bridge_price(),
            self.aggregator.price_in_bridge(self.holding),
            self._balance(self.token_hashes[self.pegged]),
        )
        pegged_in_bridge = pool.price_of(self.pegged)
        plan = plan_peg_sell(
            pool=pool,
            pool_target_price=bridge.value / self.config.target_price,
            pegged=self.pegged,
            holding=self.holding,
            holding_decimals=TOKEN_DECIMALS[self.holding],
            pegged_in_bridge=pegged_in_bridge,
            holding_in_bridge=holding_in_bridge,
            pegged_balance=pegged_balance,
            swap_ratio=self.config.swap_ratio,
            tolerance_bps=self.config.slippage_tolerance,
        )
        logger.debug(
            "Computed sell: quantity=%s, desired=%s, perfect=%s, %sPriceIn%s=%s, %sPriceIn%s=%s, %sBalance=%s, %sPrice=%s (%s)",
            plan.capped_quantity, plan.desired_quantity, plan.perfect_quantity,
            self.holding, FLM, holding_in_bridge, self.pegged, FLM, pegged_in_bridge,
            self.pegged, pegged_balance, FLM, bridge.value, bridge.source.value,
        )
        if plan.request is None:
            logger.info("Not selling %s: planned quantity=%s", self.pegged, plan.capped_quantity)
            return None
        return await self._submit(f"Sell {self.pegged}", plan.request, {'perfect_quantity': plan.perfect_quantity, 'desired_quantity': plan.desired_quantity})

    async def rebalance(self):
        holding_price, pegged_price, holding_balance, pegged_balance, holding_global, pegged_global = await asyncio.gather(
            self.aggregator.quote(self.holding),
            self.aggregator.quote(self.pegged),
            self._balance(self.token_hashes[self.holding]),
            self._balance(self.token_hashes[self.pegged]),
            self.aggregator.global_price(self.holding),
            self.aggregator.global_price(self.pegged),
        )
        decision = await self.engine.decide(
            holding_balance,
            pegged_balance,
            holding_price.value,
            pegged_price.value,
            holding_global,
            pegged_global,
        )
        self.status['last_rebalance'] = decision

        if isinstance(decision, NoAction):
            if decision.warning:
                await self.notifier.send(format_spread_veto(decision, self.config.max_spread))
            return decision

        if decision.direction is RebalanceDirection.SELL_B_FOR_A:
            sell_token, buy_token = self.pegged, self.holding
        else:
            sell_token, buy_token = self.holding, self.pegged
        request = SwapRequest(
            sell_token=sell_token,
            buy_token=buy_token,
            quantity=decision.quantity,
            bound_quantity=0,
            venue=Venue.AVIARY_STYLE,
            side=SwapSide.SELL,
            max_spread_bps=decision.max_spread_bps,
        )
        logger.info(
            "Created rebalance swap of %s %s for %s: %sValue=%.4f, %sValue=%.4f, totalValue=%.4f",
            decision.quantity, sell_token, buy_token,
            self.holding, decision.value_a, self.pegged, decision.value_b, decision.total_value,
        )
        await self._submit("Rebalance", request, {'spread_bps': decision.spread_bps})
        return decision

    async def _submit(self, label: str, request: SwapRequest, payload: Optional[dict] = None) -> SwapResult:
        result = await self.executor.execute(request)
        self.status['last_swap'] = result
        await self._record_swap_attempt(label, result, payload)
        if result.status in ALERT_STATUSES:
            await self.notifier.send(format_swap_result(label, result))
        return result

    async def _balance(self, token_hash: str) -> int:
        return await self.ledger.get_balance(token_hash, self.owner)

    async def _record_cycle_start(self) -> Optional[int]:
        if not self.repository:
            return None
        try:
            return await self.repository.record_cycle_start()
        except Exception as exc:
            logger.error("Failed to persist control cycle start: %s", exc)
            return None

    async def _record_cycle_finish(self, peg_price, action, decision, errors) -> None:
        if not self.repository or self._cycle_id is None:
            return
        if isinstance(decision, RebalanceAction):
            decision_label = decision.direction.value
        elif isinstance(decision, NoAction):
            decision_label = decision.reason
        else:
            decision_label = None
        try:
            await self.repository.record_cycle_finish(
                self._cycle_id,
                peg_price=peg_price,
                target_price=self.config.target_price,
                peg_action=action.value if action is not None else None,
                rebalance_decision=decision_label,
                error="; ".join(errors) or None,
            )
        except Exception as exc:
            logger.error("Failed to persist control cycle finish: %s", exc)

    async def _record_swap_attempt(self, label: str, result: SwapResult, payload: Optional[dict]) -> None:
        if not self.repository:
            return
        request = result.request
        try:
            await self.repository.record_swap_attempt(
                control_cycle_id=self._cycle_id,
                label=label,
                venue=request.venue.value,
                side=request.side.value,
                sell_token=request.sell_token,
                buy_token=request.buy_token,
                quantity=request.quantity,
                bound_quantity=request.bound_quantity,
                max_spread_bps=request.max_spread_bps,
                status=result.status.value,
                tx_id=result.tx_id,
                reason=result.reason,
                raw_payload=payload,
            )
        except Exception as exc:
            logger.error("Failed to persist swap attempt: %s", exc)
