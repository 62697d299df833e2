import pytest

from conftest import DummyQueue, DummySender
from newsletter.workers import handlers
from newsletter.workers.send_content import SendContentHandler


@pytest.fixture(autouse=True)
def empty_registry(monkeypatch):
    monkeypatch.setattr(handlers, "HANDLERS", {})


def test_register_handler_keys_it_by_task_type(session_factory):
    handler = SendContentHandler(session_factory, DummySender())

    handlers.register_handler(handler)

    assert handlers.HANDLERS["send_newsletter"] is handler
    assert handlers.list_handlers() == ["send_newsletter"]


def test_register_rejects_objects_that_are_not_handlers():
    with pytest.raises(TypeError):
        handlers.register_handler(object())


def test_bind_handlers_registers_execute_on_the_queue(session_factory):
    handler = SendContentHandler(session_factory, DummySender())
    handlers.register_handler(handler)
    queue = DummyQueue()

    handlers.bind_handlers(queue)

    assert queue.handlers == {"send_newsletter": handler.execute}


def test_bind_handlers_with_empty_registry_binds_nothing():
    queue = DummyQueue()

    handlers.bind_handlers(queue)

    assert queue.handlers == {}


def test_fanout_concurrency_must_be_positive(session_factory):
    with pytest.raises(ValueError):
        SendContentHandler(session_factory, DummySender(), fanout_concurrency=0)
