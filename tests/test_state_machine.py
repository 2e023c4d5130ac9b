from services.operation_tracking.models import OperationStatus
from services.operation_tracking.state_machine import StateMachine


def test_terminal_states_have_no_exits():
    machine = StateMachine()
    for terminal in (OperationStatus.COMPLETED, OperationStatus.FAILED):
        assert machine.is_terminal(terminal)
        assert machine.get_allowed_transitions(terminal) == set()
        assert not machine.is_valid_transition(terminal, OperationStatus.RUNNING)


def test_unknown_may_jump_to_any_status():
    machine = StateMachine()
    for status in OperationStatus:
        assert machine.is_valid_transition(OperationStatus.UNKNOWN, status)


def test_running_may_fall_back_to_pending():
    machine = StateMachine()
    assert machine.is_valid_transition(OperationStatus.RUNNING, OperationStatus.PENDING)
    assert not machine.is_terminal(OperationStatus.RUNNING)
