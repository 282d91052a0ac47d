# firefly_cardano

Building blocks for a FireFly connector to the Cardano blockchain, in plain
Python with no third-party runtime dependencies. Most of the API is `async`
and meant to run under `asyncio`.

## Modules

- `firefly_cardano.operations`: `Operation`, `OperationStatus`
  (`succeeded()`, `pending()`, `failed(message)`) and `OperationUpdate`, the
  records that track a deploy or invoke request.
- `firefly_cardano.chain`: blockchain configuration (`BlockchainConfig` with
  `from_dict`, `resolved_magic` and `resolved_genesis_hash`; `Network`;
  `Secret`, which prints as `<redacted>`), block references (`BlockReference`,
  `BlockInfo`), the chain-following interface (`ChainSyncClient`,
  `RollForward`, `RollBackward`) and ledger access (`UtxoLedger`, the abstract
  source of UTxOs and parameters, and `LedgerProvider`, which checks and
  adapts its answers; errors derive from `LedgerError`).
- `firefly_cardano.mockchain`: `MockChain` and `MockChainSync`, an in-memory
  chain of deterministic, seeded blocks. `start()` adds a block every
  interval; `generate_block()` and `roll_back(from_ref, to_ref)` drive it by
  hand.
- `firefly_cardano.persistence`: `Stream`, `Listener`, `EventFilter`,
  `StreamCheckpoint` and `BlockRecord`, the abstract `Persistence`, the
  in-memory `MockPersistence`, `PersistenceConfig` and `init_persistence`.
  Errors are `NotFoundError` and `ConflictError`, both `ApiError`s with an
  HTTP `status_code`.
- `firefly_cardano.sqlite_persistence`: `SqlitePersistence`, the same store in
  an SQLite file; its tables are created when it is opened.
- `firefly_cardano.balius`: helpers for contract code: a key-value store
  (`KvStore`, `MemoryKv`, `kv_get`, `kv_set`), custom events (`EventData`,
  `Event`, `emit_events`), transaction monitoring (`FinalityMonitor`,
  `AfterBlocks`, `new_monitored_tx_response`) and a `Worker` that routes
  requests by method name, with `with_tx_submitted_handler` for
  `SubmittedTx` notices.
- `firefly_cardano.coinselection`: `select_coins`, which picks UTxOs in order
  of reference until they cover a target `Value` plus the fee, or raises
  `OutputsTooHighError`.
- `firefly_cardano.contract_kv`: `SqliteKv`, a key-value store with one SQLite
  table per contract.
- `firefly_cardano.listener`: `ContractListener`, which feeds blocks to
  contract runtimes and caches the `ContractEvent`s matching a listener's
  filters; `find_contract_filters` groups filters by contract.
- `firefly_cardano.lifecycle`: `TxLifecycleTracker`, which records
  `TransactionAccepted`, `TransactionRolledBack` and `TransactionFinalized`
  events for monitored transactions; `parse_json_response` tells a `NewTx`
  from a plain `JsonResponse`.
- `firefly_cardano.manager`: `OperationsManager`, which runs deploy, invoke
  and query requests against the objects it is given and records each step
  as an operation update.
- `firefly_cardano.params`: `pparams_from_blockfrost`, which turns a
  latest-epoch-parameters response into `PParams`, and the helpers it uses
  (`f64_to_rational`, `string_to_num`, `ex_units`, `voting_thresholds`).

## Examples

Recording an operation:

```python
import asyncio

from firefly_cardano.operations import Operation, OperationStatus
from firefly_cardano.persistence import MockPersistence


async def main():
    store = MockPersistence()
    op = Operation(id="op-1", status=OperationStatus.pending())
    update_id = await store.write_operation(op)
    print(update_id, await store.read_operation("op-1"))


asyncio.run(main())
```

Following the mock chain:

```python
import asyncio

from firefly_cardano.chain import BlockReference
from firefly_cardano.mockchain import MockChain


async def main():
    chain = MockChain(initial_height=5)
    sync = chain.sync()
    intersect, tip = await sync.find_intersect([BlockReference.origin()])
    print(intersect, tip)
    print(await sync.request_next())


asyncio.run(main())
```

Selecting coins:

```python
from firefly_cardano.chain import TxoRef
from firefly_cardano.coinselection import UnspentOutput, Value, select_coins

utxos = [UnspentOutput(TxoRef(bytes(32), 0), Value(5_000_000))]
print(select_coins(utxos, Value(1_000_000), estimated_fee=0))
```

## What it does not do

This is a library of parts, not a running connector. It has no command-line
program and no HTTP or websocket server. It holds no network client for a
Cardano node or for Blockfrost: chain data comes from `MockChain` or from
your own `ChainSyncClient` and `UtxoLedger`. It does not decode, build or
sign transactions, and it does not run contract code; `OperationsManager`,
`ContractListener` and `TxLifecycleTracker` call whatever objects you hand
them for that.

## Running the tests

```
pip install -e ".[test]"
pytest
```