import io

from coprocs.workers.kv_store import KVStore
from coprocs.workers.loop import serve


def test_set_then_get_returns_value():
    kv = KVStore()
    assert kv.handle("SET name John") == "OK"
    assert kv.handle("GET name") == "VALUE John"
    assert kv.handle("SET name Jane Doe") == "OK"
    assert kv.handle("GET name") == "VALUE Jane Doe"


def test_get_unset_key_not_found():
    assert KVStore().handle("GET missing") == "NOT_FOUND"


def test_list_in_insertion_order():
    kv = KVStore()
    assert kv.handle("LIST") == "KEYS"
    kv.handle("SET name John")
    kv.handle("SET age 30")
    assert kv.handle("LIST") == "KEYS name age"


def test_errors_are_response_lines():
    kv = KVStore()
    assert kv.handle("DELETE name") == "ERROR Unknown command"
    assert kv.handle("") == "ERROR Unknown command"
    assert kv.handle("SET onlykey") == "ERROR Missing argument"
    assert kv.handle("GET") == "ERROR Missing argument"
    assert not kv.finished


def test_serve_stops_after_quit():
    stdin = io.StringIO("SET name John\nGET name\nQUIT\nGET name\n")
    stdout = io.StringIO()
    serve(KVStore(), stdin=stdin, stdout=stdout)
    assert stdout.getvalue().splitlines() == ["OK", "VALUE John", "BYE"]
