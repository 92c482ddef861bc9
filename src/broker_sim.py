import argparse
import logging
import random
from collections import deque
from pathlib import Path
from typing import Deque, List, Optional

from pydantic import BaseModel

import broker_objects as G
from broker_intel import IntelService, NotificationSink, INTEL_CATEGORY
from broker_market import MarketData, seed_market
from broker_register import ContentRegistry, EXPIRED_INTEL_TEMPLATES, load_registry
from broker_state import GameStore

logger = logging.getLogger(__name__)

# Constants
SAVE_PATH = Path("broker_save.json")
STARTING_CREDITS = 5000
DEFAULT_EXPIRY_MESSAGE = "Intel on {Commodity Name} at {Location Name} has expired."

# -----------------------------------
# Persistence
# -----------------------------------

def new_game(
    registry: ContentRegistry,
    rng: random.Random,
    *,
    credits: int = STARTING_CREDITS,
    start_location_id: Optional[str] = None,
) -> G._GameState:
    """Fresh state: tier 1 goods unlocked, markets seeded, brokers empty until the first refresh."""
    start = start_location_id or next(iter(registry.locations))
    player = G._PlayerState(
        credits=credits,
        unlocked_commodities=[c.id for c in registry.commodities.values() if c.tier <= 1],
        revealed_tier=1,
    )
    return G._GameState(
        day=1,
        current_location_id=start,
        player=player,
        market=seed_market(registry, rng),
        intel_market={location_id: [] for location_id in registry.locations},
    )


def load_game(path: Path = SAVE_PATH) -> Optional[G._GameState]:
    if path.exists():
        raw = path.read_text(encoding="utf-8")
        return G._GameState.model_validate_json(raw)
    return None


def save_game(state: G._GameState, path: Path = SAVE_PATH) -> None:
    path.write_text(state.model_dump_json(indent=2), encoding="utf-8")

# -----------------------------------
# News
# -----------------------------------

class NewsMessage(BaseModel):
    text: str
    category: str
    is_priority: bool = False


class NewsTicker(NotificationSink):
    """Keeps the latest messages; priority messages go to the front."""

    def __init__(self, capacity: int = 50):
        self.messages: Deque[NewsMessage] = deque(maxlen=capacity)

    def push_message(self, text: str, category: str, is_priority: bool = False) -> None:
        message = NewsMessage(text=text, category=category, is_priority=is_priority)
        if is_priority:
            self.messages.appendleft(message)
        else:
            self.messages.append(message)
        logger.info("[%s] %s", category, text)

    def latest(self, count: int = 5) -> List[NewsMessage]:
        return list(self.messages)[:count]

# -----------------------------------
# Clock
# -----------------------------------

class DayClock:
    """Advances the game one day at a time and drives the periodic systems."""

    def __init__(
        self,
        store: GameStore,
        registry: ContentRegistry,
        market: MarketData,
        intel: IntelService,
        news: Optional[NotificationSink] = None,
        rng: Optional[random.Random] = None,
    ):
        self.store = store
        self.registry = registry
        self.market = market
        self.intel = intel
        self.news = news
        self.random = rng or random.Random()

    @property
    def day(self) -> int:
        return self.store.state.day

    def is_refresh_day(self, day: int) -> bool:
        # Day 1 of every refresh window: 1, 121, 241, ...
        return (day - 1) % self.registry.settings.refresh_interval_days == 0

    def advance_day(self) -> None:
        with self.store.transaction("advance day") as working:
            working.day += 1
            day = working.day
            self.market.evolve_prices(self.random)
            expired = self.expire_intel_deal(working)
            if self.is_refresh_day(day):
                self.intel.generate_intel_refresh()
        if expired is not None:
            self._announce_expiry(expired)

    def expire_intel_deal(self, working: G._GameState) -> Optional[G._ActiveIntelDeal]:
        """Clear the active deal once its expiry day is reached, delisting its packet."""
        deal = working.active_intel_deal
        if deal is None or not deal.is_expired(working.day):
            return None
        working.active_intel_deal = None
        listing = working.intel_market.get(deal.offer_location_id, [])
        working.intel_market[deal.offer_location_id] = [p for p in listing if p.id != deal.source_packet_id]
        logger.info("Day %d: intel deal on %s at %s expired", working.day, deal.commodity_id, deal.deal_location_id)
        return deal

    def _announce_expiry(self, deal: G._ActiveIntelDeal) -> None:
        if self.news is None:
            return
        templates = self.registry.templates(EXPIRED_INTEL_TEMPLATES) or [DEFAULT_EXPIRY_MESSAGE]
        try:
            message = (
                self.random.choice(templates)
                .replace("{Commodity Name}", self.registry.commodity(deal.commodity_id).name)
                .replace("{Location Name}", self.registry.location(deal.deal_location_id).name)
            )
            self.news.push_message(message, INTEL_CATEGORY, False)
        except Exception:
            logger.exception("Could not announce expiry of %s", deal.source_packet_id)

    def run(self, days: int) -> None:
        for _ in range(days):
            self.advance_day()

# -----------------------------------
# Wiring
# -----------------------------------

class BrokerGame:
    """One game session: the store plus every service operating on it."""

    def __init__(self, registry: ContentRegistry, state: G._GameState, seed: int = 0):
        self.registry = registry
        self.store = GameStore(state)
        self.random = random.Random(seed)
        self.news = NewsTicker(registry.settings.news_capacity)
        self.market = MarketData(registry, self.store)
        self.intel = IntelService(self.store, registry, self.market, self.news, self.random)
        self.clock = DayClock(self.store, registry, self.market, self.intel, self.news, self.random)

    @property
    def state(self) -> G._GameState:
        return self.store.state

# -----------------------------------
# Main Simulation Loop
# -----------------------------------

def main(days: int = 10, seed: int = 0, save_path: Path = SAVE_PATH) -> BrokerGame:
    """Load or start a game, run it for a number of days using the given RNG seed, and save it."""
    registry = load_registry()
    state = load_game(save_path)
    fresh = state is None
    if state is None:
        state = new_game(registry, random.Random(seed))
    game = BrokerGame(registry, state, seed=seed)
    if fresh:
        game.intel.generate_intel_refresh()

    game.clock.run(days)
    save_game(game.state, save_path)
    logger.info("Saved day %d to %s", game.state.day, save_path)
    return game


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Run the data broker economy")
    parser.add_argument("--days", type=int, default=10, help="Number of days to run")
    parser.add_argument("--seed", type=int, default=0, help="RNG seed for deterministic runs")
    parser.add_argument("--save", type=Path, default=SAVE_PATH, help="Save file to load and write")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(levelname)s %(name)s: %(message)s")
    main(days=args.days, seed=args.seed, save_path=args.save)
