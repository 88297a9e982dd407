import asyncio

from conftest import port
from rpi_adapter.core.state import ObjectDescriptor
from rpi_adapter.core.sync import LEGACY_BUTTON_EVENTS, StateTreeSync


def run_sync(store, *ports):
    async def scenario():
        sync = StateTreeSync(store)
        for p in ports:
            await sync.sync(p)
        return await store.list_objects("gpio.")

    return asyncio.run(scenario())


def obj(store, path):
    return asyncio.run(store.get_object(path))


def test_input_port_objects(store):
    objects = run_sync(store, port(4, "in", label="Door"))

    assert objects == ["gpio.4", "gpio.4.isInput", "gpio.4.state"]
    assert obj(store, "gpio.4").name == "Door"
    st = obj(store, "gpio.4.state")
    assert (st.role, st.value_type, st.read, st.write) == ("indicator", "boolean", True, False)
    assert asyncio.run(store.get_state("gpio.4.isInput")).val is True


def test_output_port_objects(store):
    run_sync(store, port(5, "outlow"))

    st = obj(store, "gpio.5.state")
    assert (st.role, st.read, st.write) == ("switch", False, True)
    assert obj(store, "gpio.5").name == "GPIO 5"
    assert asyncio.run(store.get_state("gpio.5.isInput")).val is False


def test_reconfigure_input_to_sensor(store):
    run_sync(store, port(7, "in"))
    objects = run_sync(store, port(7, "dht22"))

    assert objects == ["gpio.7", "gpio.7.humidity", "gpio.7.isInput", "gpio.7.temperature"]
    temp = obj(store, "gpio.7.temperature")
    assert (temp.role, temp.value_type, temp.write) == ("value.temperature", "number", False)
    assert asyncio.run(store.get_state("gpio.7.state")) is None


def test_reconfigure_sensor_to_output(store):
    run_sync(store, port(7, "dht11"))
    objects = run_sync(store, port(7, "out"))
    assert objects == ["gpio.7", "gpio.7.isInput", "gpio.7.state"]


def test_button_has_write_only_state(store):
    objects = run_sync(store, port(26, "button"))

    assert objects == ["gpio.26", "gpio.26.isInput", "gpio.26.state"]
    st = obj(store, "gpio.26.state")
    assert (st.role, st.read, st.write) == ("button", False, True)


def test_legacy_button_events_are_always_removed(store):
    async def seed():
        for event in LEGACY_BUTTON_EVENTS:
            await store.ensure_object(f"gpio.26.{event}", ObjectDescriptor(type="state", name=event, role="button"))

    asyncio.run(seed())
    objects = run_sync(store, port(26, "button"))
    assert not any(p.endswith(LEGACY_BUTTON_EVENTS) for p in objects)


def test_disabled_port_removes_channel(store):
    run_sync(store, port(8, "in"))
    asyncio.run(store.set_state("gpio.8.state", True))

    objects = run_sync(store, port(8, "disabled"))

    assert objects == []
    assert asyncio.run(store.all_states()) == {}


def test_direction_is_refreshed_on_every_sync(store):
    run_sync(store, port(4, "in"))
    asyncio.run(store.set_state("gpio.4.isInput", False))

    run_sync(store, port(4, "in"))
    assert asyncio.run(store.get_state("gpio.4.isInput")).val is True


def test_sync_is_idempotent(store):
    ports = [port(4, "in"), port(5, "out"), port(7, "dht22")]
    first = run_sync(store, *ports)
    descriptors = {p: obj(store, p) for p in first}

    assert run_sync(store, *ports) == first
    assert {p: obj(store, p) for p in first} == descriptors


def test_cleanup_removes_unconfigured_pins(store):
    run_sync(store, port(3, "dht22"), port(5, "out"))

    async def scenario():
        await store.set_state("gpio.3.temperature", 21.0)
        # osierocona wartość bez obiektu
        await store.set_state("gpio.11.state", True)
        return await StateTreeSync(store).cleanup([5])

    removed = asyncio.run(scenario())
    assert removed == [3, 11]
    assert asyncio.run(store.list_objects("gpio.")) == ["gpio.5", "gpio.5.isInput", "gpio.5.state"]
    assert list(asyncio.run(store.all_states())) == ["gpio.5.isInput"]


def test_sync_all_returns_removed_pins(store):
    run_sync(store, port(3, "in"))

    async def scenario():
        return await StateTreeSync(store).sync_all([port(4, "out")])

    assert asyncio.run(scenario()) == [3]
