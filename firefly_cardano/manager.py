"""Runs deploy, invoke and query requests and records them as operations."""

from __future__ import annotations

from typing import Any, Callable, Optional

from .operations import Operation, OperationStatus
from .persistence import NotFoundError, Persistence

UpdateSink = Callable[[Optional[str]], Any]


class OperationsManager:
    """Carries out contract operations and keeps their status up to date.

    ``blockchain`` provides ``async submit(transaction) -> tx_id``.
    ``contracts`` provides ``async deploy(address, contract)``,
    ``async invoke(contract, method, params) -> NewTx | None``,
    ``async query(contract, method, params)`` and
    ``async handle_submit(contract, tx_id, tx)``.
    ``signer`` provides ``async sign(address, tx_bytes)`` returning the signed
    transaction. ``operation_update_sink`` is called with the id of every
    operation update as it is written.
    """

    def __init__(
        self,
        blockchain: Any,
        contracts: Any,
        persistence: Persistence,
        signer: Any,
        operation_update_sink: Optional[UpdateSink] = None,
    ) -> None:
        self.blockchain = blockchain
        self.contracts = contracts
        self.persistence = persistence
        self.signer = signer
        self._sink = operation_update_sink
        self.latest_update: Optional[str] = None

    async def deploy(self, op_id: str, address: str, contract: bytes) -> None:
        """Deploy a contract under address, recording the outcome."""
        op = Operation(
            id=op_id,
            status=OperationStatus.pending(),
            tx_id=None,
            contract_address=address,
        )
        await self._update_operation(op)
        try:
            await self.contracts.deploy(address, contract)
        except Exception as error:
            op.status = OperationStatus.failed(str(error))
            await self._update_operation(op)
            raise
        op.status = OperationStatus.succeeded()
        await self._update_operation(op)

    async def invoke(
        self, op_id: str, from_address: str, contract: str, method: str, params: Any
    ) -> None:
        """Invoke a contract method; submit the transaction it builds, if any."""
        op = Operation(id=op_id, status=OperationStatus.pending())
        await self._update_operation(op)
        try:
            new_tx = await self.contracts.invoke(contract, method, params)
        except Exception as error:
            op.status = OperationStatus.failed(str(error))
            await self._update_operation(op)
            raise
        if new_tx is not None:
            tx_id = await self._submit_transaction(from_address, new_tx.bytes)
            op.tx_id = tx_id
            await self.contracts.handle_submit(contract, tx_id, new_tx)
        op.status = OperationStatus.succeeded()
        await self._update_operation(op)

    async def query(self, contract: str, method: str, params: Any) -> Any:
        return await self.contracts.query(contract, method, params)

    async def get_operation(self, op_id: str) -> Operation:
        op = await self.persistence.read_operation(op_id)
        if op is None:
            raise NotFoundError("No operation found with that id")
        return op

    async def _update_operation(self, op: Operation) -> None:
        update_id = await self.persistence.write_operation(op)
        self.latest_update = update_id
        if self._sink is not None:
            self._sink(update_id)

    async def _submit_transaction(self, address: str, tx: bytes) -> str:
        signed = await self.signer.sign(address, bytes(tx))
        try:
            return await self.blockchain.submit(signed)
        except Exception as error:
            raise RuntimeError(f"could not submit transaction: {error}") from error