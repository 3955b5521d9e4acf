# gamedatahub

Business services for an online game's backend. It covers player accounts and
sessions, inventory items and payment orders. It also has a per-game request
dispatcher and a small load-testing toolkit.

## Modules

- `gamedatahub.player_service`
  - `PlayerService` registers players, with passwords hashed by bcrypt.
  - It logs players in by user id (`login_player`) or by username and password (`login_player_by_username`).
  - It creates, validates and invalidates sessions, which last 24 hours.
  - It updates nickname and avatar, and adds experience, coins and diamonds (`update_player_stats`). Levels go up automatically and currencies never drop below zero.
  - Players returned by the service never carry the password hash.
  - `calculate_level(experience)` gives the level reached by an amount of experience. Level *n* needs *n × 100* experience to go past.
  - The data classes are `Player`, `PlayerSession` and `LoginResult`.
- `gamedatahub.item_service`
  - `ItemService` creates, reads, updates, consumes, deletes and transfers `Item` objects.
  - `transfer_item` merges into a stack of the receiver's with the same name and type, or creates a new item. If that step fails it puts the sender's quantity back.
  - `batch_create_items` takes a list of `ItemRequest` entries.
- `gamedatahub.order_service`
  - `OrderService` creates `Order` objects and moves them from `pending` to `paid` or `cancelled`, and from `paid` to `refunded`.
  - A refund may not exceed the order amount.
  - `calculate_total_revenue` always returns `0` and `get_order_statistics` always returns an empty `OrderStatistics`.
- `gamedatahub.game_handler`
  - `GameHandler.handle(game_id, request)` dispatches a `Request` by its `MessageType`: player login, player logout, item operation (`create`, `consume`, `transfer`) or order operation (`create`, `pay`, `cancel`).
  - The request's `data` must be JSON bytes.
  - It always returns a `Response`:
    - `code` 0 on success;
    - 4001 for an unsupported message type;
    - 4002 for malformed data;
    - 4003 for an unsupported operation;
    - 5001 to 5008 when a service call fails.
- `gamedatahub.benchmark`
  - `BenchmarkRunner` drives a cache (any object with `set(key, value)` and `get(key)`) or an HTTP URL with concurrent worker threads for a configured time.
  - It reports throughput and latency percentiles in a `BenchmarkResult`.
  - `BenchmarkConfig` holds durations in seconds. `default_benchmark_config()` gives 100 workers, 30 s, a 10 ms request interval and a 5 s warm-up.
  - `StressTest` runs several `StressTestRunner` subclasses side by side in the background. `wait()` returns their results by name and `generate_report()` logs and returns a summary.
  - `calculate_stats(result, response_times)` fills in the statistics of a result.
- `gamedatahub.errors`
  - `ServiceError` and its subclasses are raised by the services:
    - `NotFoundError`, also a `LookupError`;
    - `ValidationError`, also a `ValueError`;
    - `StorageError`, which wraps any failure of the data access object.

## Storage and logging

The services take a `dao` object that stores and looks up players, sessions,
items and orders. The methods each service calls are listed in the
`Protocol` classes of its module, for example `create_item`,
`get_item_by_id` and `update_order_status`.

An optional `logger` (a `logging.Logger`) may also be passed. It defaults to
the module's logger.

`PlayerService` accepts an `auth_service` argument but does not use it. Its
tokens are simply `"token_" + session_id`.

## Example

```python
from gamedatahub.player_service import calculate_level
from gamedatahub.benchmark import default_benchmark_config

calculate_level(0)     # 1
calculate_level(250)   # 3

config = default_benchmark_config()
config.concurrency     # 100
```

Errors are raised, not returned:

```python
from gamedatahub.errors import ValidationError

try:
    item_service.consume_item("item_1", 0)
except ValidationError as exc:
    print(exc)   # quantity to consume must be greater than 0: 0
```

## What it does not do

The package is a library only. It has:

- no HTTP or TCP server;
- no binary wire protocol;
- no JWT authentication;
- no cache;
- no database layer;
- no command-line program.

You provide the storage object and the transport that delivers `Request`
objects to a `GameHandler`.

## Requirements

Python 3.10 or later and `bcrypt`. The tests use `pytest`, available through
the `test` extra.