"""Tests for lantern/cancellation.py"""

import pytest

from lantern.cancellation import CancellationHandle, CancellationToken
from lantern.errors import GenerationCancelled


def test_cancel_is_one_way_and_runs_callbacks_once():
    token = CancellationToken()
    calls = []
    token.on_cancel(lambda: calls.append("fired"))

    token.cancel()
    token.cancel()

    assert token.is_cancelled
    assert calls == ["fired"]


def test_callback_registered_after_cancel_runs_immediately():
    token = CancellationToken()
    token.cancel()
    calls = []
    token.on_cancel(lambda: calls.append("late"))
    assert calls == ["late"]


def test_unregister_callback():
    token = CancellationToken()
    calls = []
    unregister = token.on_cancel(lambda: calls.append("fired"))
    unregister()
    token.cancel()
    assert calls == []


def test_child_follows_parent_but_not_the_reverse():
    parent = CancellationToken()
    child = CancellationToken(parent=parent)

    child.cancel()
    assert child.is_cancelled
    assert not parent.is_cancelled

    other_child = CancellationToken(parent=parent)
    parent.cancel()
    assert other_child.is_cancelled


def test_detached_child_ignores_parent():
    parent = CancellationToken()
    child = CancellationToken(parent=parent)
    child.detach()
    parent.cancel()
    assert not child.is_cancelled


def test_wait_and_raise():
    token = CancellationToken()
    assert token.wait(0.01) is False
    token.raise_if_cancelled()

    token.cancel()
    assert token.wait(0.01) is True
    with pytest.raises(GenerationCancelled):
        token.raise_if_cancelled()


def test_owned_handle_cancels_its_token():
    handle = CancellationHandle.create()
    assert handle.owned
    assert handle.linked_signal() is handle.token
    handle.cancel()
    assert handle.is_cancelled


def test_borrowed_handle_cannot_cancel():
    external = CancellationToken()
    handle = CancellationHandle.borrow(external)
    assert not handle.owned
    with pytest.raises(RuntimeError):
        handle.cancel()
    assert not external.is_cancelled


def test_borrowed_linked_signal_is_private_child():
    external = CancellationToken()
    signal = CancellationHandle.borrow(external).linked_signal()

    assert signal is not external
    signal.cancel()
    assert not external.is_cancelled

    fresh = CancellationHandle.borrow(external).linked_signal()
    external.cancel()
    assert fresh.is_cancelled
