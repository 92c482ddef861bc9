from decimal import Decimal
from pathlib import Path
import logging
import random
import sys

# Make src modules discoverable
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

import broker_sim as sim  # type: ignore
from broker_intel import format_credits  # type: ignore
from broker_market import compute_sale_details  # type: ignore
from broker_register import load_registry  # type: ignore

import matplotlib.pyplot as plt


def setup_game(seed: int, credits: int) -> sim.BrokerGame:
    """Fresh game with every tier revealed so the whole market moves."""
    registry = load_registry()
    state = sim.new_game(registry, random.Random(seed), credits=credits)
    state.player.revealed_tier = max(c.tier for c in registry.commodities.values())
    game = sim.BrokerGame(registry, state, seed=seed)
    game.intel.generate_intel_refresh()
    return game


def buy_best_intel(game: sim.BrokerGame) -> None:
    """Buy the deepest-discount packet on offer anywhere, if no deal is running."""
    state = game.state
    if state.active_intel_deal is not None:
        return
    on_sale = [p for p in state.all_packets() if not p.is_purchased]
    if not on_sale:
        return
    packet = max(on_sale, key=lambda p: p.discount_percent)
    price = game.intel.calculate_intel_price(packet)
    if game.intel.purchase_intel(packet.id, packet.offer_location_id, price):
        print(game.intel.details_text(game.state.find_packet(packet.offer_location_id, packet.id)))


def plot_slippage_curves(settings) -> None:
    """Share of the base price received, by fraction of market stock sold, one line per tier."""
    stock = 1000
    fractions = [i / 100 for i in range(1, 101)]
    fig, ax = plt.subplots()
    for tier in (1, 3, 6):
        received = []
        for f in fractions:
            quantity = int(stock * f)
            details = compute_sale_details(
                stock=stock, tier=tier, base_price=100, avg_cost=Decimal(0),
                quantity=quantity, settings=settings,
            )
            received.append(float(details.effective_price_per_unit) / 100)
        ax.plot(fractions, received, label=f"tier {tier}")
    ax.set_xlabel("Quantity sold / market stock")
    ax.set_ylabel("Effective price / base price")
    ax.set_title("Sell-Price Decay")
    ax.legend()


def run_simulation(days: int = 365, seed: int = 42, credits: int = 250_000) -> None:
    """Run the broker economy day by day with a live chart of one commodity across markets."""
    game = setup_game(seed, credits)
    registry = game.registry
    commodity_id = next(iter(registry.commodities))

    plt.ion()
    fig_prices, ax_prices = plt.subplots()
    price_history = {loc: [] for loc in registry.locations}
    price_lines = {}
    for loc_id, location in registry.locations.items():
        (line,) = ax_prices.plot([], [], label=location.name)
        price_lines[loc_id] = line
    ax_prices.set_xlabel("Day")
    ax_prices.set_ylabel("Price")
    ax_prices.set_title(f"{registry.commodity(commodity_id).name} Prices")
    ax_prices.legend(fontsize="small")

    for t in range(1, days + 1):
        buy_best_intel(game)
        game.clock.advance_day()

        for loc_id in registry.locations:
            price_history[loc_id].append(game.market.get_price(loc_id, commodity_id))
            price_lines[loc_id].set_data(range(1, t + 1), price_history[loc_id])

        deal = game.state.active_intel_deal
        deal_note = f"deal {deal.commodity_id}@{deal.deal_location_id} until {deal.expiry_day}" if deal else "no deal"
        print(f"Day {game.state.day:>4}: credits {format_credits(game.state.player.credits)} | {deal_note}")

        ax_prices.relim()
        ax_prices.autoscale_view()
        plt.pause(0.001)

    for message in game.news.latest(10):
        print(f"[{message.category}] {message.text}")

    plot_slippage_curves(registry.settings)
    plt.ioff()
    plt.show()


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    run_simulation()
