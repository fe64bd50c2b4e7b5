import pytest

from raftkit.config import RaftConfig, Server


def test_default_cluster():
    config = RaftConfig()
    servers = config.get_all()
    assert [s.id for s in servers] == list(range(len(servers)))
    assert len(servers) == 2
    assert servers[0].port == 15000
    assert all(s.address == "localhost" for s in servers)


def test_sized_cluster_ports_are_spaced():
    config = RaftConfig(5, 10000)
    servers = config.get_all()
    assert len(servers) == 5
    assert servers[0] == Server(id=0, address="localhost", port=10000)
    gaps = {b.port - a.port for a, b in zip(servers, servers[1:])}
    assert gaps == {1000}


def test_get_one_by_index_matches_get_all():
    config = RaftConfig(5, 10000)
    assert [config.get_one_by_index(i) for i in range(5)] == config.get_all()


@pytest.mark.parametrize("index", [5, 6, -1])
def test_get_one_by_index_out_of_range(index):
    config = RaftConfig(5, 10000)
    with pytest.raises(IndexError, match="index out of range"):
        config.get_one_by_index(index)


def test_get_all_returns_a_copy():
    config = RaftConfig(3, 10000)
    servers = config.get_all()
    servers.clear()
    assert len(config.get_all()) == 3
    assert len(config) == 3
    assert list(config) == config.get_all()


def test_empty_cluster_has_no_servers():
    config = RaftConfig(0, 10000)
    assert config.get_all() == []
    with pytest.raises(IndexError):
        config.get_one_by_index(0)