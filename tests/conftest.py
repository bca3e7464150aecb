import pytest

from factories import FakeClock, make_container, make_entity, make_snapshot, seeded_store


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fleet():
    """
    Three buses serving stop_a. bus_1 starts with 4 morning riders e1..e4,
    bus_2 is empty, bus_3 only accepts the morning shift and has 2 riders.
    """
    containers = [
        make_container("bus_1", capacity=10, load={"morning": 4}, label="AS-01-PC-9094"),
        make_container("bus_2", capacity=10, load={}),
        make_container("bus_3", capacity=5, load={"morning": 2}, tag="morning"),
    ]
    entities = [make_entity(f"e{i}", "bus_1") for i in range(1, 5)]
    entities += [make_entity("m1", "bus_3"), make_entity("m2", "bus_3")]
    return entities, containers


@pytest.fixture
def fleet_snapshot(fleet):
    entities, containers = fleet
    return make_snapshot(entities, containers)


@pytest.fixture
def fleet_store(fleet):
    entities, containers = fleet
    return seeded_store(entities, containers)
