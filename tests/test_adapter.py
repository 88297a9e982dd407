import asyncio
import logging

from conftest import gpio_changes
from rpi_adapter.core.adapter import Adapter
from rpi_adapter.core.config_model import normalize
from rpi_adapter.core.errors import EXIT_CODE_REBUILD, HardwareVersionMismatch
from rpi_adapter.core.state import ObjectDescriptor
from rpi_adapter.core.state_store import StateStore
from rpi_adapter.hw.mock import MockLineDriver


def make_adapter(store, raw_config, driver, clock, sensors=None, terminate=None):
    config, _ = normalize(raw_config)
    kwargs = {}
    if terminate is not None:
        kwargs["terminate"] = terminate
    return Adapter(
        store,
        config,
        driver_factory=lambda: driver,
        sensor_factory=(lambda: sensors) if sensors is not None else None,
        clock=clock,
        **kwargs,
    )


CONFIG = {
    "ports": [
        {"pin": 4, "role": "in", "pull_up": True},
        {"pin": 5, "role": "outhigh", "label": "Relay"},
        {"pin": 6, "role": "out"},
        {"pin": 7, "role": "dht22", "debounce_or_poll_ms": 5_000},
        {"pin": 9, "role": "disabled"},
    ],
}


def test_start_builds_tree_and_acquires_lines(store, driver, clock, sensors):
    adapter = make_adapter(store, CONFIG, driver, clock, sensors)

    async def scenario():
        await adapter.start()
        objects = await store.list_objects("gpio.")
        s5 = await store.get_state("gpio.5.state")
        await adapter.stop()
        return objects, s5

    objects, s5 = asyncio.run(scenario())

    assert "gpio.4.state" in objects
    assert "gpio.5.state" in objects
    assert "gpio.7.temperature" in objects
    assert not any(p.startswith("gpio.9") for p in objects)
    assert sorted(driver.lines) == [4, 5, 6]
    assert (s5.val, s5.ack) == (True, True)
    assert sensors.sensors[7].closed
    assert all(line.released for line in driver.lines.values())
    assert not adapter.running


def test_external_write_is_routed_and_acknowledged(store, driver, clock):
    adapter = make_adapter(store, CONFIG, driver, clock)

    async def scenario():
        await adapter.start()
        await store.request_write("gpio.6.state", "true")
        st = await store.get_state("gpio.6.state")
        await adapter.stop()
        return st

    st = asyncio.run(scenario())
    assert driver.lines[6].writes == [True]
    assert (st.val, st.ack) == (True, True)


def test_external_write_to_input_stays_unacknowledged(store, driver, clock):
    adapter = make_adapter(store, CONFIG, driver, clock)

    async def scenario():
        await adapter.start()
        await store.request_write("gpio.4.state", False)
        st = await store.get_state("gpio.4.state")
        await adapter.stop()
        return st

    st = asyncio.run(scenario())
    assert st.ack is False
    assert driver.lines[4].writes == []


def test_null_write_drives_outputs_low(store, driver, clock):
    adapter = make_adapter(store, CONFIG, driver, clock)

    async def scenario():
        await adapter.start()
        await store.request_write("gpio.5.state", None)
        await store.request_write("gpio.6.state", None)
        states = [await store.get_state("gpio.5.state"), await store.get_state("gpio.6.state")]
        await adapter.stop()
        return states

    s5, s6 = asyncio.run(scenario())
    assert driver.lines[5].writes == [True, False]
    assert driver.lines[6].writes == [False]
    assert (s5.val, s5.ack) == (False, True)
    assert (s6.val, s6.ack) == (False, True)


def test_failed_edge_watch_does_not_abort_start(store, clock):
    driver = MockLineDriver(fail_watch_pins=[4])
    adapter = make_adapter(store, CONFIG, driver, clock)

    async def scenario():
        await adapter.start()
        running = adapter.running
        await adapter.stop()
        return running

    assert asyncio.run(scenario()) is True
    assert driver.lines[4].released
    assert driver.lines[5].writes == [True]


class BrokenOutputDriver(MockLineDriver):
    def request_output(self, pin, initial, *, chip):
        raise ValueError(f"unexpected failure on line {pin}")


def test_unexpected_setup_error_releases_acquired_lines(store, clock, caplog):
    driver = BrokenOutputDriver()
    adapter = make_adapter(store, CONFIG, driver, clock)

    with caplog.at_level(logging.ERROR):
        asyncio.run(adapter.start())

    assert not adapter.running
    assert driver.lines[4].released
    assert driver.closed
    assert any("GPIO setup failed" in r.getMessage() for r in caplog.records)

def test_writes_outside_state_suffix_are_ignored(store, driver, clock):
    adapter = make_adapter(store, CONFIG, driver, clock)

    async def scenario():
        await adapter.start()
        await store.request_write("gpio.6.isInput", True)
        await store.request_write("system.cpu", 1)
        await adapter.stop()

    asyncio.run(scenario())
    assert driver.lines[6].writes == []


def test_force_init_rebuilds_tree(store, driver, clock):
    config = {"force_init": True, "ports": [{"pin": 5, "role": "out"}]}
    adapter = make_adapter(store, config, driver, clock)

    async def scenario():
        await store.ensure_object("other.thing", ObjectDescriptor(type="state", name="x", role="state"))
        await store.set_state("gpio.5.state", True)
        await adapter.start()
        objects = await store.list_objects()
        st = await store.get_state("gpio.5.state")
        await adapter.stop()
        return objects, st

    objects, st = asyncio.run(scenario())
    assert "other.thing" not in objects
    assert "gpio.5.state" in objects
    # poprzednia wartość też zniknęła -> zwykłe "out" startuje nisko
    assert st is None
    assert driver.lines[5].level is False


def test_removed_pin_is_cleaned_up_between_restarts(store, driver, clock, sensors):
    first = {"ports": [{"pin": 3, "role": "dht22"}, {"pin": 5, "role": "out"}]}
    second = {"ports": [{"pin": 5, "role": "out"}]}

    async def scenario():
        a1 = make_adapter(store, first, driver, clock, sensors)
        await a1.start()
        await a1.stop()
        before = await store.list_objects("gpio.3")

        a2 = make_adapter(store, second, driver, clock, sensors)
        await a2.start()
        after = await store.list_objects("gpio.")
        states = await store.all_states()
        await a2.stop()
        return before, after, states

    before, after, states = asyncio.run(scenario())
    assert "gpio.3.temperature" in before
    assert not any(p.startswith("gpio.3") for p in after)
    assert not any(p.startswith("gpio.3") for p in states)
    assert "gpio.5.state" in after


def test_version_mismatch_terminates_with_rebuild_code(store, clock):
    calls = []

    def factory():
        raise HardwareVersionMismatch("gpiod 1.6.3 exposes the v1 API")

    config, _ = normalize({"ports": [{"pin": 4, "role": "in"}]})
    adapter = Adapter(
        store,
        config,
        driver_factory=factory,
        clock=clock,
        terminate=lambda reason, code: calls.append((reason, code)),
    )

    asyncio.run(adapter.start())
    assert calls == [("A dependency requires a rebuild.", EXIT_CODE_REBUILD)]
    assert EXIT_CODE_REBUILD == 13
    assert not adapter.running


def test_stop_persists_states(tmp_path, driver, clock):
    path = tmp_path / "states.yaml"
    store = StateStore(path)
    adapter = make_adapter(store, {"ports": [{"pin": 5, "role": "outhigh"}]}, driver, clock)

    async def scenario():
        await adapter.start()
        await adapter.stop()

    asyncio.run(scenario())
    assert path.exists()

    reloaded = StateStore(path)
    st = asyncio.run(reloaded.get_state("gpio.5.state"))
    assert st.val is True
    assert gpio_changes(reloaded, "gpio.5.state") == []
