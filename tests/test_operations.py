import pytest

from firefly_cardano.operations import Operation, OperationStatus, OperationUpdate


def test_status_names():
    assert OperationStatus.succeeded().name() == "Succeeded"
    assert OperationStatus.pending().name() == "Pending"
    assert OperationStatus.failed("oops").name() == "Failed"


def test_error_message_only_for_failed():
    assert OperationStatus.failed("oops").error_message == "oops"
    assert OperationStatus.succeeded().error_message is None
    assert OperationStatus.pending().error_message is None


def test_failed_with_empty_message_keeps_message():
    status = OperationStatus.failed("")
    assert status.error_message == ""
    assert status.name() == "Failed"


def test_statuses_compare_by_value():
    assert OperationStatus.failed("a") == OperationStatus.failed("a")
    assert OperationStatus.failed("a") != OperationStatus.failed("b")
    assert OperationStatus.pending() != OperationStatus.succeeded()


def test_unknown_kind_rejected():
    with pytest.raises(ValueError):
        OperationStatus("Exploded")


def test_message_on_non_failed_rejected():
    with pytest.raises(ValueError):
        OperationStatus("Pending", "nope")


def test_operation_defaults_and_update():
    op = Operation(id="op1", status=OperationStatus.pending())
    assert op.tx_id is None
    assert op.contract_address is None
    update = OperationUpdate(update_id="u1", operation=op)
    assert update.operation == Operation("op1", OperationStatus.pending())
    op.status = OperationStatus.succeeded()
    assert update.operation.status.name() == "Succeeded"