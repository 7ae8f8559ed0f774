"""Tests for the takedown status machine."""

import pytest

from copyguard.db.models import TakedownRequest, TakedownStatus
from copyguard.errors import InvalidTransitionError
from copyguard.notify.state import ALLOWED_TRANSITIONS, can_transition, transition

S = TakedownStatus


@pytest.mark.parametrize(
    "current,new",
    [
        (S.PENDING, S.SENT),
        (S.PENDING, S.FAILED),
        (S.PENDING, S.PENDING),
        (S.SENT, S.ACKNOWLEDGED),
        (S.SENT, S.REMOVED),
        (S.SENT, S.REJECTED),
        (S.ACKNOWLEDGED, S.REMOVED),
        (S.FAILED, S.PENDING),
        (S.REJECTED, S.PENDING),
    ],
)
def test_allowed(current, new):
    request = TakedownRequest(id="t1", status=current.value)
    transition(request, new)
    assert request.status == new.value


@pytest.mark.parametrize(
    "current,new",
    [
        (S.PENDING, S.REMOVED),
        (S.SENT, S.PENDING),
        (S.FAILED, S.SENT),
        (S.REJECTED, S.SENT),
        (S.REMOVED, S.PENDING),
        (S.REMOVED, S.FAILED),
    ],
)
def test_rejected(current, new):
    request = TakedownRequest(id="t1", status=current.value)
    with pytest.raises(InvalidTransitionError):
        transition(request, new)
    assert request.status == current.value


def test_removed_is_terminal():
    assert not any(can_transition(S.REMOVED, s) for s in S)


def test_every_status_has_an_entry():
    assert set(ALLOWED_TRANSITIONS) == set(S)
