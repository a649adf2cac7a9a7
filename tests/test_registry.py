import itertools

from callrelay.core.registry import ConnectionRegistry


def _counter_ids():
    counter = itertools.count(1)
    return lambda: f"c{next(counter)}"


def test_on_open_allocates_unbound_connection():
    reg = ConnectionRegistry(id_factory=_counter_ids())
    cid = reg.on_open("link-1")
    assert cid == "c1"
    assert cid in reg
    assert reg.user_of(cid) is None
    assert reg.link_of(cid) == "link-1"


def test_default_ids_are_unique():
    reg = ConnectionRegistry()
    ids = {reg.on_open(object()) for _ in range(50)}
    assert len(ids) == 50
    assert len(reg) == 50


def test_bind_overwrites_and_is_idempotent():
    reg = ConnectionRegistry(id_factory=_counter_ids())
    cid = reg.on_open("link")
    assert reg.bind(cid, "alice") is None
    assert reg.bind(cid, "alice") == "alice"
    assert reg.bind(cid, "bob") == "alice"
    assert reg.user_of(cid) == "bob"


def test_unbind_returns_previous_user_once():
    reg = ConnectionRegistry(id_factory=_counter_ids())
    cid = reg.on_open("link")
    reg.bind(cid, "alice")
    assert reg.unbind(cid) == "alice"
    assert reg.unbind(cid) is None
    # the connection itself is still open until forgotten
    assert cid in reg


def test_unknown_connection_is_a_no_op():
    reg = ConnectionRegistry()
    assert reg.bind("nope", "alice") is None
    assert reg.unbind("nope") is None
    assert reg.user_of("nope") is None
    assert reg.link_of("nope") is None
    reg.forget("nope")
    assert len(reg) == 0


def test_forget_drops_record():
    reg = ConnectionRegistry(id_factory=_counter_ids())
    cid = reg.on_open("link")
    reg.bind(cid, "alice")
    reg.forget(cid)
    assert cid not in reg
    assert reg.link_of(cid) is None
