"""Game backend services: players, items, orders, request dispatch and benchmarks."""

__version__ = "1.0.0"

__all__ = [
    "benchmark",
    "errors",
    "game_handler",
    "item_service",
    "order_service",
    "player_service",
]