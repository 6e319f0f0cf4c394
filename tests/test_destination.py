import pytest

from shared.transport import Destination, Err, ErrorKind, Ok, PeerClosed, TransportError


def test_from_host_packs_network_order():
    dest = Destination.from_host("10.0.0.7", 8080)
    assert dest.address == b"\x0a\x00\x00\x07"
    assert dest.host == "10.0.0.7"
    assert dest.sockaddr == ("10.0.0.7", 8080)
    assert dest.wire_port == b"\x1f\x90"
    assert str(dest) == "10.0.0.7:8080"


def test_loopback_and_sockaddr_agree():
    assert Destination.loopback(53) == Destination.from_sockaddr(("127.0.0.1", 53))


def test_destination_is_a_value():
    a = Destination(b"\x7f\x00\x00\x01", 9)
    b = Destination(bytearray(b"\x7f\x00\x00\x01"), 9)
    assert a == b
    assert hash(a) == hash(b)


@pytest.mark.parametrize(
    "address, port",
    [
        (b"\x7f\x00\x00", 1),
        (b"\x7f\x00\x00\x01\x00", 1),
        (b"\x7f\x00\x00\x01", -1),
        (b"\x7f\x00\x00\x01", 65536),
        ("127.0.0.1", 1),
    ],
)
def test_invalid_destination_rejected(address, port):
    with pytest.raises(ValueError):
        Destination(address, port)


def test_from_host_rejects_names():
    with pytest.raises(ValueError):
        Destination.from_host("not-an-ip", 80)


def test_result_variants():
    assert Ok(3).ok and Ok(3).unwrap() == 3
    short = PeerClosed(b"abc")
    assert not short.ok
    assert short.count == 3
    assert short.unwrap() == b"abc"

    failure = Err(ErrorKind.TIMEOUT, 11, b"ab", "timed out")
    assert not failure.ok
    with pytest.raises(TransportError) as info:
        failure.unwrap()
    assert info.value.kind is ErrorKind.TIMEOUT
    assert info.value.errno == 11


def test_failed_results_all_expose_kind():
    # callers branch on `not r.ok` then read r.kind; a short read has none
    for result in (PeerClosed(b"ab"), Err(ErrorKind.BAD_SOCKET)):
        assert not result.ok
    assert PeerClosed(b"ab").kind is None
    assert Err(ErrorKind.BAD_SOCKET).kind is ErrorKind.BAD_SOCKET
